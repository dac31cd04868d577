"""Project-level orchestration of batched shot generation.

A run moves through ``initialized → batching → retrying → finalized``.
Shots are split into batches no larger than the concurrency limit; batches
run one after another, concurrency is bounded inside each batch, and
failures are retried sequentially once every batch has drained. A shot's
failure never aborts the run. Only invalid run input is raised.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from .cache import PromptCache
from .config import DEFAULT_IMAGE_MODEL
from .errors import ErrorKind, RunValidationError
from .executor import BatchExecutor
from .generator import ImageGenerateFn, ShotGenerator
from .models.generation import (
    CacheStats,
    GenerationRequest,
    GenerationResult,
    ProjectRunResult,
    RunOptions,
    SaveOptions,
    ShotFailure,
)
from .models.state import ProjectRunState, RunPhase, ShotStatus
from .persistence import ResultSink
from .retry_queue import RetryCoordinator
from .tracker import UnitStateTracker

logger = logging.getLogger(__name__)

DEFAULT_MAX_ARCHIVED_RUNS = 50


def make_batches(
    requests: Sequence[GenerationRequest], batch_size: int,
) -> list[list[GenerationRequest]]:
    """Split *requests* into consecutive slices of at most *batch_size*."""
    return [list(requests[i:i + batch_size]) for i in range(0, len(requests), batch_size)]


class Orchestrator:
    """Runs whole projects of shots against one image capability.

    Construct one per call site; the cache, tracker state and result sink
    are owned by the instance, not by module globals.
    """

    def __init__(
        self,
        generate_fn: ImageGenerateFn,
        *,
        cache: PromptCache | None = None,
        default_model: str = DEFAULT_IMAGE_MODEL,
        result_sink: ResultSink | None = None,
        max_archived_runs: int = DEFAULT_MAX_ARCHIVED_RUNS,
    ) -> None:
        self._cache = cache if cache is not None else PromptCache()
        self._generator = ShotGenerator(generate_fn, self._cache, default_model=default_model)
        self._sink = result_sink
        self._active: dict[str, UnitStateTracker] = {}
        self._archive: dict[str, ProjectRunState] = {}
        self._max_archived_runs = max_archived_runs

    @property
    def cache(self) -> PromptCache:
        return self._cache

    async def run_project(
        self,
        project_id: str,
        requests: Sequence[GenerationRequest],
        options: RunOptions | None = None,
    ) -> ProjectRunResult:
        """Generate every shot of a project.

        Args:
            project_id: Identifier for this run; one active run per id.
            requests: Shots to generate, in start order.
            options: Concurrency limit, optional retry policy and progress listener.

        Returns:
            ProjectRunResult where every input shot is either in
            ``successes`` or in ``failures``.

        Raises:
            RunValidationError: If the run cannot be initialised.
        """
        options = options or RunOptions()
        self._validate_run(project_id, requests, options)

        start = time.monotonic()
        tracker = UnitStateTracker(project_id, requests, listener=options.on_progress)
        self._active[project_id] = tracker
        logger.info(
            "Starting project %s: %d shot(s), concurrency=%d, retries=%s",
            project_id, len(requests), options.concurrency_limit,
            options.retry.max_retries if options.retry else "off",
        )

        try:
            successes = await self._run_batches(tracker, requests, options)
            tracker.finalize()
            failures = self._collect_failures(tracker, retried=options.retry is not None)
        finally:
            self._archive_run(project_id, tracker)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Finished project %s: %d succeeded, %d failed in %d ms",
            project_id, len(successes), len(failures), elapsed_ms,
        )
        return ProjectRunResult(
            project_id=project_id,
            successes=successes,
            failures=failures,
            total_shots=len(requests),
            processing_time_ms=elapsed_ms,
        )

    async def _run_batches(
        self,
        tracker: UnitStateTracker,
        requests: Sequence[GenerationRequest],
        options: RunOptions,
    ) -> list[GenerationResult]:
        """Batching and retry phases. Returns successes from both."""
        limit = options.concurrency_limit
        batches = make_batches(requests, limit)
        executor = BatchExecutor(self._generator, tracker)
        retries = RetryCoordinator(self._generator, tracker)
        by_shot = {r.shot_id: r for r in requests}
        successes: list[GenerationResult] = []

        for index, batch in enumerate(batches, start=1):
            tracker.set_phase(RunPhase.BATCHING, current_batch=index, total_batches=len(batches))
            outcome = await executor.run(batch, limit)
            successes.extend(outcome.successes)
            for failure in outcome.failures:
                retries.add_failed(failure.shot_id, by_shot[failure.shot_id])

        if options.retry is not None and retries.pending:
            tracker.set_phase(RunPhase.RETRYING)
            successes.extend(
                await retries.process_retries(options.retry.max_retries, options.retry.retry_delay)
            )
        return successes

    @staticmethod
    def _collect_failures(tracker: UnitStateTracker, *, retried: bool) -> list[ShotFailure]:
        """Build failure records from shots that ended the run failed."""
        failures = []
        for shot in tracker.shots_with_status(ShotStatus.FAILED):
            kind = shot.error_kind or ErrorKind.PROVIDER_ERROR
            error = shot.error
            if retried and shot.retry_count > 0:
                kind = ErrorKind.RETRIES_EXHAUSTED
                error = f"Retries exhausted after {shot.retry_count} attempt(s): {shot.error}"
            failures.append(ShotFailure(
                shot_id=shot.shot_id, error=error, kind=kind, retry_count=shot.retry_count,
            ))
        return failures

    def _validate_run(
        self,
        project_id: str,
        requests: Sequence[GenerationRequest],
        options: RunOptions,
    ) -> None:
        """Reject runs that cannot be initialised, before any work starts."""
        if not project_id or not project_id.strip():
            raise RunValidationError("project_id must be a non-empty string")
        if not requests:
            raise RunValidationError(f"Project {project_id} has no shots to generate")
        if options.concurrency_limit < 1:
            raise RunValidationError(
                f"concurrency_limit must be >= 1, got {options.concurrency_limit}"
            )
        seen: set[str] = set()
        for request in requests:
            if not isinstance(request, GenerationRequest):
                raise RunValidationError(
                    f"Expected GenerationRequest, got {type(request).__name__}"
                )
            if request.shot_id in seen:
                raise RunValidationError(f"Duplicate shot_id {request.shot_id!r} in project {project_id}")
            seen.add(request.shot_id)
        if project_id in self._active:
            raise RunValidationError(f"Project {project_id} already has a run in progress")

    def _archive_run(self, project_id: str, tracker: UnitStateTracker) -> None:
        """Move a finished run from the active set to the bounded archive."""
        self._active.pop(project_id, None)
        self._archive.pop(project_id, None)
        self._archive[project_id] = tracker.snapshot()
        while len(self._archive) > self._max_archived_runs:
            self._archive.pop(next(iter(self._archive)))

    def get_run_state(self, project_id: str) -> ProjectRunState | None:
        """Snapshot of the active run, else the last finished run, else None."""
        tracker = self._active.get(project_id)
        if tracker is not None:
            return tracker.snapshot()
        archived = self._archive.get(project_id)
        return archived.model_copy(deep=True) if archived is not None else None

    async def save_results(
        self,
        project_id: str,
        results: Sequence[GenerationResult],
        options: SaveOptions | None = None,
    ) -> int:
        """Hand *results* to the configured sink. Returns rows written.

        Raises:
            RuntimeError: If the orchestrator was built without a result sink.
        """
        if self._sink is None:
            raise RuntimeError("No result sink configured for this orchestrator")
        options = options or SaveOptions()
        return self._sink.save(
            project_id,
            list(results),
            overwrite=options.overwrite,
            metadata=options.additional_metadata,
        )

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> int:
        """Drop all cached artifacts. Returns count removed."""
        removed = self._cache.clear()
        logger.info("Cleared %d cached artifact(s)", removed)
        return removed
