"""Structured error handling: per-shot error kinds, exceptions, and tool error model."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


class ErrorKind(str, Enum):
    """Why a single shot failed to produce an artifact."""

    MODEL_UNAVAILABLE = "model_unavailable"
    PROVIDER_ERROR = "provider_error"
    VALIDATION_ERROR = "validation_error"
    RETRIES_EXHAUSTED = "retries_exhausted"


class ErrorCategory(str, Enum):
    """Categories of errors for diagnostics."""

    RUN_INVALID = "RUN_INVALID"
    REQUEST_INVALID = "REQUEST_INVALID"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    API_PERMISSION_DENIED = "API_PERMISSION_DENIED"
    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    API_INVALID_ARGUMENT = "API_INVALID_ARGUMENT"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    NETWORK_ERROR = "NETWORK_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    UNKNOWN = "UNKNOWN"


class StoryboardError(Exception):
    """Base class for errors raised by the orchestrator."""


class GenerationError(StoryboardError):
    """A single shot could not be generated.

    Always carries the originating shot id so callers can correlate the
    failure with a specific unit. Never aborts a project run.
    """

    def __init__(
        self,
        message: str,
        *,
        shot_id: str,
        kind: ErrorKind = ErrorKind.PROVIDER_ERROR,
        cause: BaseException | None = None,
    ) -> None:
        self.shot_id = shot_id
        self.kind = kind
        self.cause = cause
        super().__init__(message)


class RunValidationError(StoryboardError, ValueError):
    """A project run was rejected before any generation started."""


class InvalidTransitionError(StoryboardError, RuntimeError):
    """A shot state change violates the shot lifecycle."""


class ToolError(BaseModel):
    """Structured error returned from any tool."""

    error: str
    category: str
    hint: str
    retryable: bool = False
    retry_after_seconds: int | None = None


def categorize_error(error: BaseException) -> tuple[ErrorCategory, str]:
    """Map an exception to an ErrorCategory + human-readable hint."""
    if isinstance(error, RunValidationError):
        return (ErrorCategory.RUN_INVALID, str(error))
    if isinstance(error, PydanticValidationError):
        return (
            ErrorCategory.REQUEST_INVALID,
            "Malformed shot request — each shot needs shot_id, a non-empty prompt and WIDTHxHEIGHT size",
        )
    if isinstance(error, GenerationError):
        if error.kind == ErrorKind.MODEL_UNAVAILABLE:
            return (
                ErrorCategory.MODEL_UNAVAILABLE,
                "Provider returned no images — try again or switch STORYBOARD_IMAGE_MODEL",
            )
        if error.kind == ErrorKind.VALIDATION_ERROR:
            return (ErrorCategory.REQUEST_INVALID, str(error))
        if error.cause is not None:
            return categorize_error(error.cause)
    if isinstance(error, TimeoutError):
        return (
            ErrorCategory.NETWORK_ERROR,
            "Image generation timed out — retry or raise STORYBOARD_PROVIDER_TIMEOUT",
        )

    s = str(error).lower()

    if "403" in s or "permission" in s:
        return (
            ErrorCategory.API_PERMISSION_DENIED,
            "API key lacks permission for the image model — check GEMINI_API_KEY",
        )
    if "429" in s or "quota" in s or "resource_exhausted" in s:
        return (
            ErrorCategory.API_QUOTA_EXCEEDED,
            "Rate limit hit — wait and retry, or lower the concurrency limit",
        )
    if "safety" in s or "blocked" in s:
        return (
            ErrorCategory.CONTENT_BLOCKED,
            "Prompt was blocked by the provider's safety filter — rephrase the shot prompt",
        )
    if "400" in s or "invalid argument" in s:
        return (
            ErrorCategory.API_INVALID_ARGUMENT,
            "Bad request — check prompt length, size and model name",
        )
    if "timeout" in s or "timed out" in s or "503" in s or "unavailable" in s:
        return (
            ErrorCategory.NETWORK_ERROR,
            "Provider unreachable or overloaded — try again",
        )
    if "sqlite" in s or "database" in s:
        return (
            ErrorCategory.STORAGE_ERROR,
            "Result store failed — check STORYBOARD_RESULTS_DB",
        )

    return (ErrorCategory.UNKNOWN, str(error))


def make_tool_error(error: BaseException) -> dict:
    """Create a serialisable ToolError dict from an exception."""
    cat, hint = categorize_error(error)
    retryable = cat in {
        ErrorCategory.API_QUOTA_EXCEEDED,
        ErrorCategory.NETWORK_ERROR,
        ErrorCategory.MODEL_UNAVAILABLE,
    }
    return ToolError(
        error=str(error),
        category=cat.value,
        hint=hint,
        retryable=retryable,
        retry_after_seconds=60 if cat == ErrorCategory.API_QUOTA_EXCEEDED else None,
    ).model_dump(mode="json")
