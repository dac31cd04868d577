"""Single-shot generation: cache lookup, provider call, result wrapping."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from . import tracing
from .cache import CacheEntry, PromptCache
from .config import DEFAULT_IMAGE_MODEL
from .errors import ErrorKind, GenerationError
from .models.generation import GenerationRequest, GenerationResult, ProviderResponse, ResultMetadata

logger = logging.getLogger(__name__)

ImageGenerateFn = Callable[[str, str, str], Awaitable[ProviderResponse]]
"""Async capability ``(prompt, size, model) -> ProviderResponse``."""


class ShotGenerator:
    """Generates one shot at a time against an injected capability.

    Identical requests share work: a cache hit returns immediately, and a
    request whose fingerprint is already being generated waits for that
    call instead of issuing its own.
    """

    def __init__(
        self,
        generate_fn: ImageGenerateFn,
        cache: PromptCache,
        *,
        default_model: str = DEFAULT_IMAGE_MODEL,
    ) -> None:
        self._generate_fn = generate_fn
        self._cache = cache
        self._default_model = default_model
        self._inflight: dict[str, asyncio.Future[None]] = {}

    @property
    def cache(self) -> PromptCache:
        return self._cache

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Produce a result for *request*.

        Args:
            request: The shot to generate.

        Returns:
            A GenerationResult; ``generation_time_ms`` is 0 when served from cache.

        Raises:
            GenerationError: For every failure mode, tagged with the shot id.
        """
        if not request.prompt.strip():
            raise GenerationError(
                f"Shot {request.shot_id} has an empty prompt",
                shot_id=request.shot_id,
                kind=ErrorKind.VALIDATION_ERROR,
            )

        model = request.model or self._default_model
        key = self._cache.key(request.prompt, request.size, model)

        entry = self._cache.get(key)
        if entry is not None:
            return self._result_from_cache(request.shot_id, entry)

        pending = self._inflight.get(key)
        if pending is not None:
            logger.debug("Shot %s waiting on in-flight generation %s", request.shot_id, key[:12])
            # Shielded so a cancelled waiter never cancels the shared future.
            await asyncio.shield(pending)
            entry = self._cache.get(key)
            if entry is not None:
                return self._result_from_cache(request.shot_id, entry)

        return await self._call_provider(request, model, key)

    async def _call_provider(
        self, request: GenerationRequest, model: str, key: str,
    ) -> GenerationResult:
        """Invoke the capability and cache a successful artifact."""
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._inflight[key] = done
        start = time.monotonic()
        try:
            try:
                with tracing.span(
                    "shot",
                    span_type="LLM",
                    attributes={"shot_id": request.shot_id, "model": model, "size": request.size},
                ) as live:
                    raw = await self._generate_fn(request.prompt, request.size, model)
                    response = ProviderResponse.model_validate(raw)
                    if live is not None:
                        live.set_outputs({
                            "artifacts": len(response.artifacts),
                            "resolved_model": response.resolved_model,
                        })
            except Exception as exc:
                raise GenerationError(
                    f"Failed to generate shot {request.shot_id}: {exc}",
                    shot_id=request.shot_id,
                    kind=ErrorKind.PROVIDER_ERROR,
                    cause=exc,
                ) from exc

            if not response.artifacts:
                raise GenerationError(
                    f"No images generated for shot {request.shot_id} (model={response.resolved_model})",
                    shot_id=request.shot_id,
                    kind=ErrorKind.MODEL_UNAVAILABLE,
                )

            elapsed_ms = int((time.monotonic() - start) * 1000)
            artifact = response.artifacts[0]
            result = GenerationResult(
                shot_id=request.shot_id,
                artifact=artifact,
                prompt=request.prompt,
                metadata=ResultMetadata(
                    model=response.resolved_model,
                    kind=response.kind,
                    generation_time_ms=elapsed_ms,
                    size=request.size,
                ),
            )
            self._cache.put(
                key, request.prompt, artifact, response.resolved_model, request.size, response.kind,
            )
            logger.info(
                "Generated shot %s in %d ms (model=%s)",
                request.shot_id, elapsed_ms, response.resolved_model,
            )
            return result
        finally:
            if self._inflight.get(key) is done:
                del self._inflight[key]
            if not done.done():
                done.set_result(None)

    @staticmethod
    def _result_from_cache(shot_id: str, entry: CacheEntry) -> GenerationResult:
        """Build a zero-latency result from a cache entry."""
        return GenerationResult(
            shot_id=shot_id,
            artifact=entry.artifact,
            prompt=entry.prompt,
            metadata=ResultMetadata(
                model=entry.model,
                kind=entry.kind,
                generation_time_ms=0,
                size=entry.size,
                cached=True,
            ),
        )
