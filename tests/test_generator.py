"""Tests for single-shot generation with cache and single-flight dedup."""

from __future__ import annotations

import asyncio

import pytest

from storyboard_mcp.cache import PromptCache
from storyboard_mcp.errors import ErrorKind, GenerationError
from storyboard_mcp.generator import ShotGenerator
from storyboard_mcp.models.generation import GenerationRequest, ModelKind, ProviderResponse
from tests.conftest import FakeProvider


def _request(shot_id: str = "s1", prompt: str = "a lighthouse at dusk", **kwargs) -> GenerationRequest:
    return GenerationRequest(shot_id=shot_id, prompt=prompt, **kwargs)


class TestShotGenerator:
    async def test_generates_and_caches(self, fake_provider):
        gen = ShotGenerator(fake_provider, PromptCache(), default_model="m")

        result = await gen.generate(_request(size="640x480"))

        assert result.shot_id == "s1"
        assert result.artifact == "data:image/png;base64,a lighthouse at dusk"
        assert result.metadata.model == "m"
        assert result.metadata.size == "640x480"
        assert result.metadata.cached is False
        assert fake_provider.calls == [("a lighthouse at dusk", "640x480", "m")]
        assert len(gen.cache) == 1

    async def test_request_model_overrides_default(self, fake_provider):
        gen = ShotGenerator(fake_provider, PromptCache(), default_model="m")
        await gen.generate(_request(model="imagen-x"))
        assert fake_provider.calls[0][2] == "imagen-x"

    async def test_cache_hit_skips_provider(self, fake_provider):
        gen = ShotGenerator(fake_provider, PromptCache(), default_model="m")
        first = await gen.generate(_request("s1"))

        second = await gen.generate(_request("s2"))

        assert len(fake_provider.calls) == 1
        assert second.shot_id == "s2"
        assert second.artifact == first.artifact
        assert second.metadata.generation_time_ms == 0
        assert second.metadata.cached is True

    async def test_concurrent_duplicates_call_provider_once(self):
        release = asyncio.Event()
        calls = []

        async def slow_provider(prompt, size, model):
            calls.append(prompt)
            await release.wait()
            return ProviderResponse(artifacts=["img"], resolved_model=model)

        gen = ShotGenerator(slow_provider, PromptCache(), default_model="m")
        first = asyncio.create_task(gen.generate(_request("s1")))
        second = asyncio.create_task(gen.generate(_request("s2")))
        await asyncio.sleep(0)
        release.set()

        a, b = await asyncio.gather(first, second)

        assert calls == ["a lighthouse at dusk"]
        assert a.metadata.cached is False
        assert b.metadata.cached is True
        assert b.shot_id == "s2"

    async def test_waiter_retries_itself_when_leader_fails(self):
        attempts = []

        async def flaky(prompt, size, model):
            attempts.append(prompt)
            await asyncio.sleep(0)
            if len(attempts) == 1:
                raise RuntimeError("boom")
            return ProviderResponse(artifacts=["img"], resolved_model=model)

        gen = ShotGenerator(flaky, PromptCache(), default_model="m")
        results = await asyncio.gather(
            gen.generate(_request("s1")), gen.generate(_request("s2")), return_exceptions=True,
        )

        assert isinstance(results[0], GenerationError)
        assert results[1].artifact == "img"
        assert len(attempts) == 2

    async def test_empty_artifacts_is_model_unavailable(self):
        gen = ShotGenerator(FakeProvider(empty_prompts={"nothing"}), PromptCache(), default_model="m")

        with pytest.raises(GenerationError) as exc_info:
            await gen.generate(_request("s9", "nothing"))

        assert exc_info.value.kind == ErrorKind.MODEL_UNAVAILABLE
        assert exc_info.value.shot_id == "s9"
        assert len(gen.cache) == 0

    async def test_provider_exception_is_wrapped(self):
        gen = ShotGenerator(FakeProvider(fail_prompts={"bad"}), PromptCache(), default_model="m")

        with pytest.raises(GenerationError) as exc_info:
            await gen.generate(_request("s3", "bad"))

        err = exc_info.value
        assert err.kind == ErrorKind.PROVIDER_ERROR
        assert err.shot_id == "s3"
        assert isinstance(err.cause, RuntimeError)
        assert "s3" in str(err)

    async def test_malformed_provider_payload_is_provider_error(self):
        async def bad_payload(prompt, size, model):
            return {"artifacts": "not-a-list"}

        gen = ShotGenerator(bad_payload, PromptCache(), default_model="m")
        with pytest.raises(GenerationError) as exc_info:
            await gen.generate(_request())
        assert exc_info.value.kind == ErrorKind.PROVIDER_ERROR

    async def test_whitespace_prompt_is_validation_error(self, fake_provider):
        gen = ShotGenerator(fake_provider, PromptCache(), default_model="m")

        with pytest.raises(GenerationError) as exc_info:
            await gen.generate(_request(prompt="   "))

        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR
        assert fake_provider.calls == []

    async def test_kind_is_carried_into_cache_hits(self):
        async def placeholder(prompt, size, model):
            return ProviderResponse(artifacts=["svg"], resolved_model="placeholder", kind=ModelKind.PLACEHOLDER)

        gen = ShotGenerator(placeholder, PromptCache(), default_model="m")
        await gen.generate(_request("s1"))
        hit = await gen.generate(_request("s2"))

        assert hit.metadata.kind == ModelKind.PLACEHOLDER
        assert hit.metadata.model == "placeholder"

    async def test_cancelled_waiter_leaves_leader_intact(self):
        release = asyncio.Event()

        async def held(prompt, size, model):
            await release.wait()
            return ProviderResponse(artifacts=["img"], resolved_model=model)

        gen = ShotGenerator(held, PromptCache(), default_model="m")
        leader = asyncio.create_task(gen.generate(_request("a")))
        await asyncio.sleep(0)
        follower = asyncio.create_task(gen.generate(_request("b")))
        await asyncio.sleep(0)

        follower.cancel()
        with pytest.raises(asyncio.CancelledError):
            await follower
        release.set()

        result = await leader
        assert result.shot_id == "a"
        assert result.metadata.cached is False
