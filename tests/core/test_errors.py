"""Tests for the conveyor error hierarchy."""

import pytest

from conveyor.core.errors import (
    ConfigurationError,
    ConveyorError,
    ErrorCategory,
    HandlerNotFoundError,
    InvalidTransitionError,
    NotFoundError,
    PermanentHandlerError,
    PipelineConfigurationError,
    PipelineFailedError,
    TemplateSyntaxError,
    ToolNotFoundError,
    TransientHandlerError,
    TriggerDefinitionError,
    UnresolvedBindingError,
)


class TestConveyorError:
    def test_defaults(self):
        error = ConveyorError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.retry_after is None

    def test_with_context_sets_known_fields_and_metadata(self):
        error = ConveyorError("boom").with_context(job_id="job_1", attempt=2)
        assert error.context.job_id == "job_1"
        assert error.context.metadata == {"attempt": 2}

    def test_to_dict(self):
        cause = ValueError("inner")
        error = TransientHandlerError("busy", retry_after=30, cause=cause).with_context(run_id="run_1")
        data = error.to_dict()
        assert data["error_type"] == "TransientHandlerError"
        assert data["category"] == "HANDLER"
        assert data["retryable"] is True
        assert data["retry_after"] == 30
        assert data["context"] == {"run_id": "run_1"}
        assert data["cause"] == "inner"
        assert error.__cause__ is cause

    def test_retryable_override(self):
        assert TransientHandlerError("x", retryable=False).retryable is False
        assert PermanentHandlerError("x", retryable=True).retryable is True


class TestSubclasses:
    @pytest.mark.parametrize(
        "error",
        [
            HandlerNotFoundError("send_email"),
            ToolNotFoundError("email.send"),
            TemplateSyntaxError("{{x", "unterminated"),
            UnresolvedBindingError("a.b", "email.send"),
            TriggerDefinitionError("bad"),
            PipelineConfigurationError("bad", result=None),
        ],
    )
    def test_configuration_errors_are_never_retryable(self, error):
        assert isinstance(error, ConfigurationError)
        assert error.retryable is False
        assert error.category == ErrorCategory.CONFIG

    def test_pipeline_failed_is_transient(self):
        error = PipelineFailedError("Action 'x' failed", result={"log": []})
        assert isinstance(error, TransientHandlerError)
        assert error.retryable is True
        assert error.category == ErrorCategory.PIPELINE
        assert error.result == {"log": []}

    def test_unresolved_binding_message(self):
        error = UnresolvedBindingError("booking.email", "email.send")
        assert error.message == "Unresolved binding 'booking.email' in args for tool 'email.send'"
        assert error.context.tool == "email.send"

    def test_invalid_transition_message(self):
        error = InvalidTransitionError("job", "job_1", "dead", "pending")
        assert error.message == "Invalid job transition for job_1: dead -> pending"
        assert error.category == ErrorCategory.STATE

    def test_not_found_message(self):
        error = NotFoundError("trigger run", "run_1")
        assert error.message == "trigger run not found: run_1"
        assert error.category == ErrorCategory.NOT_FOUND

    def test_handler_not_found_records_job_type(self):
        error = HandlerNotFoundError("resize")
        assert error.job_type == "resize"
        assert error.context.job_type == "resize"
        assert "resize" in error.message
