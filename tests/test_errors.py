"""Tests for structured error categorization and retryability flags."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from storyboard_mcp.errors import (
    ErrorCategory,
    ErrorKind,
    GenerationError,
    InvalidTransitionError,
    RunValidationError,
    StoryboardError,
    categorize_error,
    make_tool_error,
)
from storyboard_mcp.models.generation import GenerationRequest


class TestExceptionHierarchy:
    def test_run_validation_error_is_value_error(self):
        assert issubclass(RunValidationError, ValueError)
        assert issubclass(RunValidationError, StoryboardError)

    def test_invalid_transition_is_runtime_error(self):
        assert issubclass(InvalidTransitionError, RuntimeError)

    def test_generation_error_carries_shot_id(self):
        cause = RuntimeError("boom")
        err = GenerationError("failed", shot_id="s1", cause=cause)
        assert err.shot_id == "s1"
        assert err.kind == ErrorKind.PROVIDER_ERROR
        assert err.cause is cause


class TestCategorizeError:
    def test_run_validation(self):
        cat, hint = categorize_error(RunValidationError("no shots"))
        assert cat == ErrorCategory.RUN_INVALID
        assert hint == "no shots"

    def test_pydantic_validation(self):
        with pytest.raises(ValidationError) as exc_info:
            GenerationRequest(shot_id="s1", prompt="")
        cat, _ = categorize_error(exc_info.value)
        assert cat == ErrorCategory.REQUEST_INVALID

    def test_model_unavailable_kind(self):
        err = GenerationError("no images", shot_id="s1", kind=ErrorKind.MODEL_UNAVAILABLE)
        cat, _ = categorize_error(err)
        assert cat == ErrorCategory.MODEL_UNAVAILABLE

    def test_generation_error_uses_cause(self):
        err = GenerationError(
            "failed", shot_id="s1", cause=RuntimeError("429 RESOURCE_EXHAUSTED"),
        )
        cat, _ = categorize_error(err)
        assert cat == ErrorCategory.API_QUOTA_EXCEEDED

    @pytest.mark.parametrize("msg,expected", [
        ("403 PERMISSION_DENIED", ErrorCategory.API_PERMISSION_DENIED),
        ("Prompt blocked by safety filter", ErrorCategory.CONTENT_BLOCKED),
        ("400 invalid argument: aspect_ratio", ErrorCategory.API_INVALID_ARGUMENT),
        ("503 Service Unavailable", ErrorCategory.NETWORK_ERROR),
        ("sqlite3.OperationalError: database is locked", ErrorCategory.STORAGE_ERROR),
        ("something odd", ErrorCategory.UNKNOWN),
    ])
    def test_string_patterns(self, msg, expected):
        cat, _ = categorize_error(Exception(msg))
        assert cat == expected


class TestMakeToolError:
    def test_builtin_timeout_maps_to_network_error(self):
        result = make_tool_error(TimeoutError())
        assert result["category"] == "NETWORK_ERROR"
        assert result["retryable"] is True

    def test_quota_sets_retry_after(self):
        result = make_tool_error(Exception("429 quota exceeded"))
        assert result["category"] == "API_QUOTA_EXCEEDED"
        assert result["retryable"] is True
        assert result["retry_after_seconds"] == 60

    def test_run_invalid_not_retryable(self):
        result = make_tool_error(RunValidationError("Duplicate shot_id 's1'"))
        assert result["category"] == "RUN_INVALID"
        assert result["retryable"] is False
        assert result["retry_after_seconds"] is None
        assert "Duplicate" in result["error"]
