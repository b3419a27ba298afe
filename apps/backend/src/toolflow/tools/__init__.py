from .custom import CustomToolDefinition, DirectoryToolSource, SupabaseToolSource
from .integrations import CalculatorIntegration, Integration, WikipediaIntegration
from .params import schema_to_model, validate_parameters
from .registry import ExecutionRecorder, InitState, ToolCatalog
from .schema import ToolDescriptor

__all__ = [
    "CalculatorIntegration",
    "CustomToolDefinition",
    "DirectoryToolSource",
    "ExecutionRecorder",
    "InitState",
    "Integration",
    "SupabaseToolSource",
    "ToolCatalog",
    "ToolDescriptor",
    "WikipediaIntegration",
    "schema_to_model",
    "validate_parameters",
]
