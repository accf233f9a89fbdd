"""Tests for obstack.core.errors module."""

import pytest

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


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.run_id is None
        assert ctx.stage is None
        assert ctx.metadata == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields, plus metadata."""
        ctx = ErrorContext(run_id="run-1", stage="storage-bringup", metadata={"attempt": 2})
        assert ctx.to_dict() == {"run_id": "run-1", "stage": "storage-bringup", "attempt": 2}


class TestObstackError:
    """Test the base error."""

    def test_default_category(self):
        err = ObstackError("boom")
        assert err.category == ErrorCategory.INTERNAL
        assert err.message == "boom"
        assert str(err) == "boom"

    def test_cause_is_chained(self):
        cause = ValueError("bad")
        err = ObstackError("wrapped", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "bad"

    def test_with_context_sets_fields_and_metadata(self):
        err = ObstackError("x").with_context(stage="proxy-bringup", detail="extra")
        assert err.context.stage == "proxy-bringup"
        assert err.context.metadata["detail"] == "extra"

    def test_to_dict(self):
        d = InvalidPlanError("dup").with_context(stage="a").to_dict()
        assert d["error_type"] == "InvalidPlanError"
        assert d["category"] == "ORCHESTRATION"
        assert d["context"] == {"stage": "a"}


class TestHierarchy:
    """Subclasses land in the right categories."""

    @pytest.mark.parametrize(
        ("error", "parent", "category"),
        [
            (MissingConfigError("password"), ConfigError, ErrorCategory.CONFIG),
            (InvalidConfigError("ports.client", "abc"), ConfigError, ErrorCategory.CONFIG),
            (MissingFieldError(["host"]), RenderError, ErrorCategory.RENDER),
            (InvalidPlanError("bad"), OrchestrationError, ErrorCategory.ORCHESTRATION),
        ],
    )
    def test_categories(self, error, parent, category):
        assert isinstance(error, parent)
        assert isinstance(error, ObstackError)
        assert error.category == category

    def test_missing_field_lists_every_field(self):
        err = MissingFieldError(["host", "ports.proxy"], template_name="deploy.conf.json")
        assert err.fields == ["host", "ports.proxy"]
        assert "host" in err.message
        assert "ports.proxy" in err.message
        assert "deploy.conf.json" in err.message

    def test_invalid_config_keeps_key_and_value(self):
        err = InvalidConfigError("ports.client", "abc")
        assert err.key == "ports.client"
        assert err.value == "abc"
        assert "ports.client" in err.message

    def test_missing_config_message(self):
        assert MissingConfigError("password").message == "Missing required configuration: password"
