"""Bounded-concurrency execution of one batch of shots."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Sequence

from pydantic import BaseModel, Field

from . import tracing
from .errors import GenerationError, RunValidationError
from .generator import ShotGenerator
from .models.generation import GenerationRequest, GenerationResult, ShotFailure
from .models.state import ShotStatus
from .tracker import UnitStateTracker

logger = logging.getLogger(__name__)


class BatchOutcome(BaseModel):
    """Partition of one batch's shots into successes and failures."""

    batch_id: str
    successes: list[GenerationResult] = Field(default_factory=list)
    failures: list[ShotFailure] = Field(default_factory=list)
    processing_time_ms: int = 0


class BatchExecutor:
    """Runs shots through a ShotGenerator with at most N calls in flight.

    A permit is taken before each shot starts, so start order follows
    input order and the ceiling holds structurally. In-flight work is
    keyed by shot id; each task reports to the tracker before it leaves
    the in-flight set and frees its permit.
    """

    def __init__(self, generator: ShotGenerator, tracker: UnitStateTracker) -> None:
        self._generator = generator
        self._tracker = tracker

    async def run(
        self,
        requests: Sequence[GenerationRequest],
        concurrency_limit: int,
    ) -> BatchOutcome:
        """Generate every request in *requests*.

        Args:
            requests: Shots of this batch, in start order.
            concurrency_limit: Maximum simultaneous generations.

        Returns:
            BatchOutcome covering every request exactly once. Completion
            order within each list is not input order.

        Raises:
            RunValidationError: If *concurrency_limit* is below 1.
        """
        if concurrency_limit < 1:
            raise RunValidationError(f"concurrency_limit must be >= 1, got {concurrency_limit}")

        outcome = BatchOutcome(batch_id=uuid.uuid4().hex[:12])
        start = time.monotonic()
        with tracing.span(
            "batch",
            span_type="CHAIN",
            attributes={
                "batch_id": outcome.batch_id,
                "project_id": self._tracker.project_id,
                "shots": len(requests),
                "concurrency_limit": concurrency_limit,
            },
        ) as live:
            await self._drain(requests, concurrency_limit, outcome)
            outcome.processing_time_ms = int((time.monotonic() - start) * 1000)
            if live is not None:
                live.set_outputs({
                    "succeeded": len(outcome.successes),
                    "failed": len(outcome.failures),
                })

        logger.info(
            "Batch %s: %d succeeded, %d failed in %d ms",
            outcome.batch_id, len(outcome.successes), len(outcome.failures),
            outcome.processing_time_ms,
        )
        return outcome

    async def _drain(
        self,
        requests: Sequence[GenerationRequest],
        concurrency_limit: int,
        outcome: BatchOutcome,
    ) -> None:
        """Start each shot once a permit is free, then wait for all of them."""
        permits = asyncio.Semaphore(concurrency_limit)
        in_flight: dict[str, asyncio.Task[None]] = {}
        started: list[asyncio.Task[None]] = []

        async def _process(request: GenerationRequest) -> None:
            try:
                await self._run_one(request, outcome)
            finally:
                in_flight.pop(request.shot_id, None)
                permits.release()

        try:
            for request in requests:
                if permits.locked():
                    logger.debug(
                        "Shot %s waiting for a permit (%s in flight)",
                        request.shot_id, ", ".join(in_flight),
                    )
                await permits.acquire()
                task = asyncio.create_task(_process(request), name=f"shot-{request.shot_id}")
                in_flight[request.shot_id] = task
                started.append(task)
        except BaseException:
            for task in started:
                task.cancel()
            await asyncio.gather(*started, return_exceptions=True)
            raise

        # Every task is drained before a non-generation fault is re-raised.
        faults = [
            r for r in await asyncio.gather(*started, return_exceptions=True)
            if isinstance(r, BaseException)
        ]
        if faults:
            raise faults[0]

    async def _run_one(self, request: GenerationRequest, outcome: BatchOutcome) -> None:
        """Generate one shot and record its outcome."""
        self._tracker.update(request.shot_id, status=ShotStatus.RUNNING)
        try:
            result = await self._generator.generate(request)
        except GenerationError as exc:
            message = str(exc)
            self._tracker.update(
                request.shot_id, status=ShotStatus.FAILED, error=message, error_kind=exc.kind,
            )
            outcome.failures.append(
                ShotFailure(shot_id=request.shot_id, error=message, kind=exc.kind)
            )
            logger.warning("Shot %s failed: %s", request.shot_id, message)
        else:
            self._tracker.update(request.shot_id, status=ShotStatus.COMPLETED, result=result)
            outcome.successes.append(result)
