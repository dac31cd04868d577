"""Per-run shot state tracking with aggregate progress and ETA."""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from .errors import ErrorKind, InvalidTransitionError
from .models.generation import GenerationRequest, GenerationResult
from .models.state import ProjectRunState, RunPhase, ShotState, ShotStatus

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[ShotStatus, frozenset[ShotStatus]] = {
    ShotStatus.PENDING: frozenset({ShotStatus.RUNNING}),
    ShotStatus.RUNNING: frozenset({ShotStatus.COMPLETED, ShotStatus.FAILED}),
    ShotStatus.FAILED: frozenset({ShotStatus.RETRYING}),
    ShotStatus.RETRYING: frozenset({ShotStatus.RUNNING}),
    ShotStatus.COMPLETED: frozenset(),
}

ProgressListener = Callable[[ProjectRunState], None]


class UnitStateTracker:
    """Owns the ProjectRunState of one run.

    Updates arrive from concurrently completing tasks within a batch and a
    UI may poll from another thread, so every update-and-recompute step and
    every snapshot runs under one lock.
    """

    def __init__(
        self,
        project_id: str,
        requests: Iterable[GenerationRequest],
        *,
        listener: ProgressListener | None = None,
    ) -> None:
        shot_states = {r.shot_id: ShotState(shot_id=r.shot_id) for r in requests}
        self._state = ProjectRunState(
            project_id=project_id,
            total_shots=len(shot_states),
            shot_states=shot_states,
        )
        if listener is not None and inspect.iscoroutinefunction(listener):
            raise TypeError("Progress listener must be synchronous; coroutine functions are never awaited")
        self._lock = threading.Lock()
        self._listener = listener

    @property
    def project_id(self) -> str:
        return self._state.project_id

    def update(
        self,
        shot_id: str,
        *,
        status: ShotStatus | None = None,
        result: GenerationResult | None = None,
        error: str | None = None,
        error_kind: ErrorKind | None = None,
        retry_count: int | None = None,
    ) -> ShotState:
        """Merge changes into a shot's state and recompute aggregates.

        Args:
            shot_id: Shot to update. Must belong to this run.
            status: New lifecycle status; validated against allowed transitions.
            result: Result reference for a completed shot.
            error: Last error message.
            error_kind: Classification of the last error.
            retry_count: Number of retries performed so far.

        Returns:
            A copy of the updated ShotState.

        Raises:
            KeyError: If *shot_id* is not part of this run.
            InvalidTransitionError: If the status change is not allowed.
        """
        with self._lock:
            shot = self._state.shot_states[shot_id]
            if status is not None and status != shot.status:
                if status not in _ALLOWED_TRANSITIONS[shot.status]:
                    raise InvalidTransitionError(
                        f"Shot {shot_id}: cannot move from {shot.status.value} to {status.value}"
                    )
                shot.status = status
                if status in {ShotStatus.COMPLETED, ShotStatus.FAILED}:
                    shot.completed_at = datetime.now(timezone.utc)
                else:
                    shot.completed_at = None
            if result is not None:
                shot.result = result
            if error is not None:
                shot.error = error
            if error_kind is not None:
                shot.error_kind = error_kind
            if retry_count is not None:
                shot.retry_count = retry_count
            self._recompute()
            updated = shot.model_copy(deep=True)
            snapshot = self._state.model_copy(deep=True) if self._listener else None
        self._notify(snapshot)
        return updated

    def set_phase(
        self,
        phase: RunPhase,
        *,
        current_batch: int | None = None,
        total_batches: int | None = None,
    ) -> None:
        """Record the run phase and batch position."""
        with self._lock:
            self._state.phase = phase
            if current_batch is not None:
                self._state.current_batch = current_batch
            if total_batches is not None:
                self._state.total_batches = total_batches
            snapshot = self._state.model_copy(deep=True) if self._listener else None
        self._notify(snapshot)

    def finalize(self) -> ProjectRunState:
        """Mark the run finished at 100% and return the final snapshot."""
        with self._lock:
            self._recompute()
            now = datetime.now(timezone.utc)
            self._state.phase = RunPhase.FINALIZED
            self._state.overall_progress = 100
            self._state.finished_at = now
            self._state.estimated_completion = now
            snapshot = self._state.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def snapshot(self) -> ProjectRunState:
        """Deep copy of the current run state, safe to hand to a poller."""
        with self._lock:
            return self._state.model_copy(deep=True)

    def shot(self, shot_id: str) -> ShotState:
        """Copy of one shot's state. Raises KeyError for unknown ids."""
        with self._lock:
            return self._state.shot_states[shot_id].model_copy(deep=True)

    def shots_with_status(self, status: ShotStatus) -> list[ShotState]:
        """Copies of all shots currently in *status*, in input order."""
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._state.shot_states.values()
                if s.status == status
            ]

    def _recompute(self) -> None:
        """Refresh counts, progress and ETA. Caller holds the lock."""
        state = self._state
        completed = 0
        failed = 0
        for shot in state.shot_states.values():
            if shot.status == ShotStatus.COMPLETED:
                completed += 1
            elif shot.status == ShotStatus.FAILED:
                failed += 1
        state.completed_shots = completed
        state.failed_shots = failed

        progress = round(completed / state.total_shots * 100) if state.total_shots else 0
        # Completed shots are terminal, so this only guards finalize() ordering.
        state.overall_progress = max(state.overall_progress, progress)

        if completed > 0:
            now = datetime.now(timezone.utc)
            per_shot = (now - state.started_at) / completed
            remaining = state.total_shots - completed - failed
            state.estimated_completion = now + per_shot * remaining
        else:
            state.estimated_completion = None

    def _notify(self, snapshot: ProjectRunState | None) -> None:
        """Hand a snapshot to the listener; listener errors never reach the run."""
        if snapshot is None or self._listener is None:
            return
        try:
            self._listener(snapshot)
        except Exception:
            logger.warning(
                "Progress listener failed for project %s", snapshot.project_id, exc_info=True,
            )
