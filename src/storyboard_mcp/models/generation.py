"""Generation models — shot requests, provider responses and results.

GenerationRequest is the caller-owned input for one shot. A capability
answers with a ProviderResponse, which ShotGenerator wraps into an
immutable GenerationResult. ProjectRunResult aggregates one project run.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ErrorKind
from ..types import parse_size


class ModelKind(str, Enum):
    """Which family of capability produced an artifact."""

    PLACEHOLDER = "placeholder"
    IMAGEN = "imagen"
    CUSTOM = "custom"


class GenerationRequest(BaseModel):
    """One shot to generate. Read-only to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    shot_id: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    size: str = Field(default="1024x1024", description="Output size as WIDTHxHEIGHT")
    model: str | None = Field(default=None, description="Optional model hint for the provider")

    @field_validator("size")
    @classmethod
    def validate_size(cls, value: str) -> str:
        width, height = parse_size(value)
        return f"{width}x{height}"


class ProviderResponse(BaseModel):
    """Typed answer from an image-generation capability."""

    artifacts: list[str] = Field(default_factory=list)
    resolved_model: str
    kind: ModelKind = ModelKind.CUSTOM


class ResultMetadata(BaseModel):
    """Provenance of a generated artifact."""

    model_config = ConfigDict(frozen=True)

    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model: str
    kind: ModelKind = ModelKind.CUSTOM
    generation_time_ms: int = 0
    size: str
    cached: bool = False


class GenerationResult(BaseModel):
    """A completed shot. Created exactly once per successful unit."""

    model_config = ConfigDict(frozen=True)

    shot_id: str
    artifact: str
    prompt: str
    metadata: ResultMetadata


class ShotFailure(BaseModel):
    """Failure record for a shot, correlated by shot id."""

    shot_id: str
    error: str
    kind: ErrorKind = ErrorKind.PROVIDER_ERROR
    retry_count: int = 0


class RetryPolicy(BaseModel):
    """Whole-shot retry settings applied after all batches have run."""

    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0, description="Seconds to wait before each retry")


class RunOptions(BaseModel):
    """Per-run options supplied by the caller of ``run_project``."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    concurrency_limit: int = 3
    retry: RetryPolicy | None = None
    on_progress: Callable[[Any], None] | None = Field(
        default=None, exclude=True, description="Synchronous listener called with each ProjectRunState snapshot",
    )

    @field_validator("on_progress")
    @classmethod
    def validate_on_progress(cls, value: Callable[[Any], None] | None) -> Callable[[Any], None] | None:
        if value is not None and inspect.iscoroutinefunction(value):
            raise ValueError("on_progress must be a synchronous callable, not a coroutine function")
        return value


class ProjectRunResult(BaseModel):
    """Output of one project run: every input shot lands in exactly one list."""

    project_id: str
    successes: list[GenerationResult] = Field(default_factory=list)
    failures: list[ShotFailure] = Field(default_factory=list)
    total_shots: int = 0
    processing_time_ms: int = 0


class SaveOptions(BaseModel):
    """Options forwarded to the result sink by ``save_results``."""

    overwrite: bool = False
    additional_metadata: dict[str, Any] = Field(default_factory=dict)


class CacheStats(BaseModel):
    """Snapshot of prompt-cache occupancy."""

    size: int
    capacity: int
    hits: int
    total_bytes: int
    ttl_seconds: int
