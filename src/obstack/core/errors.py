"""
Structured error types for obstack.

Provides a small hierarchy of typed errors with metadata for categorisation,
reporting and root cause analysis through error chaining.

Step and stage failures during a deployment are *data* (they end up in a
``StageResult``), so the hierarchy here only covers the conditions that are
allowed to stop the process: a configuration that cannot be built, a template
that cannot be rendered, and a malformed stage plan.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      ObstackError                            │
        │  (category, context, cause)                                  │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ConfigError         RenderError       OrchestrationError   │
        │  (CONFIG)            (RENDER)          (ORCHESTRATION)      │
        │       │                   │                   │             │
        │  MissingConfigError  MissingFieldError  InvalidPlanError    │
        │  InvalidConfigError                                         │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = MissingFieldError(["ports.client", "tenant_name"])
    >>> error.fields
    ['ports.client', 'tenant_name']
    >>> error.to_dict()["category"]
    'RENDER'

Tags:
    exception, error-hierarchy, error-context, obstack, config, render
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"
    RENDER = "RENDER"
    EXECUTION = "EXECUTION"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are serialised by ``to_dict()``. Anything that does
    not fit a typed field goes into ``metadata``.
    """

    run_id: str | None = None
    stage: str | None = None
    step: str | None = None
    config_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "stage", "step", "config_key"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ObstackError(Exception):
    """
    Base exception for all obstack errors.

    Every error carries a ``category`` for routing, an ``ErrorContext`` with
    structured metadata, and an optional ``cause`` that is also chained as
    ``__cause__`` so tracebacks keep the original exception.

    Subclasses set ``default_category`` to provide a sensible default.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ObstackError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InvalidPlanError("Duplicate stage").with_context(stage="proxy-bringup")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ObstackError):
    """
    Configuration error.

    The deployment cannot start until the configuration is fixed.
    """

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value or document is structurally invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None, cause: Exception | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}", cause=cause)


# =============================================================================
# RENDER ERRORS
# =============================================================================


class RenderError(ObstackError):
    """A configuration template could not be rendered."""

    default_category = ErrorCategory.RENDER


class MissingFieldError(RenderError):
    """A template references config fields that are absent or unset."""

    def __init__(self, fields: Iterable[str], template_name: str | None = None):
        self.fields = list(fields)
        self.template_name = template_name
        where = f" in template {template_name!r}" if template_name else ""
        super().__init__(f"Missing config field(s){where}: {', '.join(self.fields)}")


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(ObstackError):
    """The orchestrator was used incorrectly (e.g. a second run)."""

    default_category = ErrorCategory.ORCHESTRATION


class InvalidPlanError(OrchestrationError):
    """The stage list violates ordering or dependency rules."""


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ObstackError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "RenderError",
    "MissingFieldError",
    "OrchestrationError",
    "InvalidPlanError",
]
