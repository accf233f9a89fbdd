"""
obstack.core — ambient primitives shared by the deployment tooling.

- :mod:`obstack.core.logging` — structlog configuration and loggers
- :mod:`obstack.core.errors` — typed error hierarchy
"""

from obstack.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    InvalidPlanError,
    MissingConfigError,
    MissingFieldError,
    ObstackError,
    OrchestrationError,
    RenderError,
)
from obstack.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidConfigError",
    "InvalidPlanError",
    "LogContext",
    "MissingConfigError",
    "MissingFieldError",
    "ObstackError",
    "OrchestrationError",
    "RenderError",
    "configure_logging",
    "get_logger",
]
