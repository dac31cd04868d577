"""Shared test fixtures for storyboard-mcp."""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import pytest

from storyboard_mcp.models.generation import GenerationRequest, ModelKind, ProviderResponse


def unwrap_tool(tool: Any) -> Any:
    """Extract the raw coroutine from a FastMCP FunctionTool, if wrapped.

    FastMCP 2.x wraps @server.tool functions in FunctionTool (not callable).
    FastMCP 3.x preserves the original function. This helper works with both.
    """
    return getattr(tool, "fn", tool)


@pytest.fixture(autouse=True)
def _disable_tracing(monkeypatch):
    """Disable MLflow tracing in all tests to avoid real tracking-server calls.

    The ``test_tracing.py`` module patches the tracing module directly
    and does not rely on this fixture.
    """
    monkeypatch.setenv("STORYBOARD_TRACING_ENABLED", "false")


@pytest.fixture(autouse=True)
def _isolate_dotenv(tmp_path, monkeypatch):
    """Prevent tests from loading the user's real ~/.config/storyboard-mcp/.env."""
    monkeypatch.setattr(
        "storyboard_mcp.dotenv.ENV_FILE",
        tmp_path / "nonexistent.env",
    )


@pytest.fixture()
def clean_config():
    """Reset the config singleton between tests."""
    import storyboard_mcp.config as cfg_mod

    cfg_mod._config = None
    yield
    cfg_mod._config = None


@pytest.fixture()
def mock_gemini_client():
    """Patch GeminiClient.get() so providers never build a real client."""
    with patch("storyboard_mcp.providers.GeminiClient.get") as mock_get:
        yield mock_get


class FakeProvider:
    """Scriptable image capability that records every call.

    Prompts listed in ``fail_prompts`` raise on every call; prompts in
    ``fail_times`` raise that many times and then succeed.
    """

    def __init__(
        self,
        *,
        fail_prompts: set[str] | None = None,
        fail_times: dict[str, int] | None = None,
        empty_prompts: set[str] | None = None,
    ) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.fail_prompts = fail_prompts or set()
        self.fail_times = dict(fail_times or {})
        self.empty_prompts = empty_prompts or set()

    async def __call__(self, prompt: str, size: str, model: str) -> ProviderResponse:
        self.calls.append((prompt, size, model))
        if prompt in self.fail_prompts:
            raise RuntimeError(f"provider exploded on {prompt!r}")
        if self.fail_times.get(prompt, 0) > 0:
            self.fail_times[prompt] -= 1
            raise RuntimeError(f"transient failure on {prompt!r}")
        if prompt in self.empty_prompts:
            return ProviderResponse(artifacts=[], resolved_model=model, kind=ModelKind.CUSTOM)
        return ProviderResponse(
            artifacts=[f"data:image/png;base64,{prompt}"],
            resolved_model=model,
            kind=ModelKind.CUSTOM,
        )


@pytest.fixture()
def fake_provider():
    return FakeProvider()


def make_requests(count: int, *, prefix: str = "shot") -> list[GenerationRequest]:
    """Build *count* requests with distinct prompts."""
    return [
        GenerationRequest(shot_id=f"{prefix}-{i}", prompt=f"{prefix} prompt {i}")
        for i in range(count)
    ]


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Drop the config singleton and the tools' shared orchestrator."""
    import storyboard_mcp.config as cfg_mod
    from storyboard_mcp.tools import storyboard as storyboard_tools

    cfg_mod._config = None
    storyboard_tools.reset()
    yield
    storyboard_tools.reset()
    cfg_mod._config = None
