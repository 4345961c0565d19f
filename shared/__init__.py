"""
Regulatory Truth Shared Library
===============================

Common utilities, configuration, and abstractions shared by the
regulatory truth pipeline.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Async SQLAlchemy client
    - models: Shared Pydantic models and domain enums

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "Regulatory Truth Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
