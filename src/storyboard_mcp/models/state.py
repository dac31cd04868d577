"""Run-state models — per-shot lifecycle and project-level progress.

These are mutated only by UnitStateTracker; everything handed out to
callers is a deep copy.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from ..errors import ErrorKind
from .generation import GenerationResult


class ShotStatus(str, Enum):
    """Lifecycle states of a single shot."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


ACTIVE_STATUSES = frozenset({ShotStatus.PENDING, ShotStatus.RUNNING, ShotStatus.RETRYING})


class RunPhase(str, Enum):
    """Phases of a project run, in order."""

    INITIALIZED = "initialized"
    BATCHING = "batching"
    RETRYING = "retrying"
    FINALIZED = "finalized"


class ShotState(BaseModel):
    """Generation state of one shot within a project run."""

    shot_id: str
    status: ShotStatus = ShotStatus.PENDING
    retry_count: int = 0
    error: str = ""
    error_kind: ErrorKind | None = None
    result: GenerationResult | None = None
    completed_at: datetime | None = None


class ProjectRunState(BaseModel):
    """Aggregate progress of one orchestrator invocation."""

    project_id: str
    phase: RunPhase = RunPhase.INITIALIZED
    total_shots: int
    completed_shots: int = 0
    failed_shots: int = 0
    overall_progress: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    estimated_completion: datetime | None = None
    current_batch: int = 0
    total_batches: int = 0
    shot_states: dict[str, ShotState] = Field(default_factory=dict)

    @property
    def active_shots(self) -> int:
        """Shots still pending, running or retrying."""
        return sum(1 for s in self.shot_states.values() if s.status in ACTIVE_STATUSES)
