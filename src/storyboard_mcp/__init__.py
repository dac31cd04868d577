"""Batch storyboard image generation with bounded concurrency, caching and retries."""

from __future__ import annotations

from .cache import PromptCache
from .errors import ErrorKind, GenerationError, RunValidationError, StoryboardError
from .models.generation import (
    GenerationRequest,
    GenerationResult,
    ModelKind,
    ProjectRunResult,
    ProviderResponse,
    RetryPolicy,
    RunOptions,
    SaveOptions,
)
from .models.state import ProjectRunState, RunPhase, ShotState, ShotStatus
from .orchestrator import Orchestrator

__all__ = [
    "ErrorKind",
    "GenerationError",
    "GenerationRequest",
    "GenerationResult",
    "ModelKind",
    "Orchestrator",
    "ProjectRunResult",
    "ProjectRunState",
    "PromptCache",
    "ProviderResponse",
    "RetryPolicy",
    "RunOptions",
    "RunPhase",
    "RunValidationError",
    "SaveOptions",
    "ShotState",
    "ShotStatus",
    "StoryboardError",
]
