"""ToolFlow: tool catalog, execution ledger and multi-agent workflows."""

__version__ = "0.1.0"
