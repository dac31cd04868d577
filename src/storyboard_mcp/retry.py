"""Backoff for transient Imagen failures within a single provider call.

Whole-shot retries after a batch pass belong to
:class:`~storyboard_mcp.retry_queue.RetryCoordinator`; this module only
smooths over rate limits and overloaded backends while one shot is in
flight. Safety and RAI rejections are final: retrying the same prompt
cannot change the verdict.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from google.genai import errors as genai_errors

from .config import get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_BLOCKED_MARKERS = ("safety", "blocked", "rai_", "responsible ai", "prohibited")
_TRANSIENT_MARKERS = ("resource_exhausted", "quota", "overloaded", "deadline exceeded")


def is_blocked(exc: BaseException) -> bool:
    """True when the provider refused the prompt on content grounds."""
    msg = str(exc).lower()
    return any(marker in msg for marker in _BLOCKED_MARKERS)


def is_transient(exc: BaseException) -> bool:
    """Classify *exc* as worth another attempt with the same prompt.

    Timeouts and dropped connections are transient by type; google-genai
    API errors by HTTP status. Other exceptions fall back to the
    quota/overload wording the Imagen backend uses.
    """
    if is_blocked(exc):
        return False
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, genai_errors.APIError):
        return exc.code in TRANSIENT_STATUS_CODES
    msg = str(exc).lower()
    return any(marker in msg for marker in _TRANSIENT_MARKERS)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Full-jitter delay before retry number ``attempt + 1``."""
    return random.uniform(0, min(max_delay, base_delay * (2 ** attempt)))


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    label: str = "provider call",
) -> T:
    """Await ``coro_factory()`` again after transient failures.

    Args:
        coro_factory: Zero-arg callable returning a fresh awaitable per attempt.
        label: Short description used in log lines.

    Returns:
        The result of the first successful attempt.

    Raises:
        The last exception when it is not transient or attempts run out.
    """
    cfg = get_config()
    attempts = cfg.retry_max_attempts
    for attempt in range(attempts):
        try:
            return await coro_factory()
        except Exception as exc:
            if attempt == attempts - 1 or not is_transient(exc):
                raise
            delay = backoff_delay(attempt, cfg.retry_base_delay, cfg.retry_max_delay)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                label, attempt + 1, attempts, delay, exc,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable: retry loop always returns or raises")
