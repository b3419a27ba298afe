"""Logging setup shared by every ToolFlow entry point.

Modules only ever do ``logger = logging.getLogger(__name__)``; the host
process calls :func:`setup_logging` once at startup.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logging_configured = False


def setup_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """Configure the root logger with a single console handler.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Defaults to ``Settings.log_level``.
        force: Reconfigure even if logging was already set up.
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    if level is None:
        from .config import get_settings

        level = get_settings().log_level
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(console)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    _logging_configured = True
