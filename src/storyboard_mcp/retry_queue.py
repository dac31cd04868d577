"""Sequential whole-shot retries after the batch passes of a run."""

from __future__ import annotations

import asyncio
import logging

from .errors import GenerationError
from .generator import ShotGenerator
from .models.generation import GenerationRequest, GenerationResult
from .models.state import ShotStatus
from .tracker import UnitStateTracker

logger = logging.getLogger(__name__)


class RetryCoordinator:
    """Re-queues failed shots of one project run up to a retry ceiling.

    Retries run one shot at a time, never concurrently, so a struggling
    provider is not hit with another burst. Each pass tries every queued
    shot at most once; shots that fail again go into the next pass until
    their ``retry_count`` reaches ``max_retries``.
    """

    def __init__(self, generator: ShotGenerator, tracker: UnitStateTracker) -> None:
        self._generator = generator
        self._tracker = tracker
        self._queue: list[GenerationRequest] = []

    @property
    def pending(self) -> int:
        """Number of shots waiting for a retry."""
        return len(self._queue)

    def add_failed(self, shot_id: str, request: GenerationRequest) -> None:
        """Queue *request* for retry.

        Raises:
            ValueError: If *shot_id* does not match the request.
        """
        if request.shot_id != shot_id:
            raise ValueError(f"Shot id mismatch: {shot_id!r} vs request {request.shot_id!r}")
        self._queue.append(request)
        logger.debug("Queued shot %s for retry (%d queued)", shot_id, len(self._queue))

    async def process_retries(
        self, max_retries: int, retry_delay: float,
    ) -> list[GenerationResult]:
        """Drain the queue, retrying each shot until it succeeds or hits the ceiling.

        Args:
            max_retries: Ceiling on retries per shot. 0 disables retries.
            retry_delay: Seconds to wait before each retry attempt.

        Returns:
            Results of shots that succeeded on retry. Shots that never
            succeed stay ``failed`` in the tracker.
        """
        results: list[GenerationResult] = []
        pending, self._queue = self._queue, []
        pass_number = 0

        while pending:
            pass_number += 1
            still_failing: list[GenerationRequest] = []
            for request in pending:
                shot_id = request.shot_id
                state = self._tracker.shot(shot_id)
                if state.retry_count >= max_retries:
                    logger.info(
                        "Shot %s reached retry ceiling (%d), leaving it failed",
                        shot_id, max_retries,
                    )
                    continue

                await asyncio.sleep(retry_delay)
                attempt = state.retry_count + 1
                self._tracker.update(shot_id, status=ShotStatus.RETRYING, retry_count=attempt)
                self._tracker.update(shot_id, status=ShotStatus.RUNNING)
                try:
                    result = await self._generator.generate(request)
                except GenerationError as exc:
                    logger.warning(
                        "Retry %d/%d failed for shot %s: %s", attempt, max_retries, shot_id, exc,
                    )
                    self._tracker.update(
                        shot_id, status=ShotStatus.FAILED, error=str(exc), error_kind=exc.kind,
                    )
                    still_failing.append(request)
                else:
                    logger.info("Shot %s succeeded on retry %d", shot_id, attempt)
                    self._tracker.update(shot_id, status=ShotStatus.COMPLETED, result=result)
                    results.append(result)
            logger.debug(
                "Retry pass %d done: %d recovered so far, %d still failing",
                pass_number, len(results), len(still_failing),
            )
            pending = still_failing

        return results
