"""Storyboard tools — 4 tools on a FastMCP sub-server."""

from __future__ import annotations

import logging
from typing import Annotated

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field, TypeAdapter

from ..cache import PromptCache
from ..config import get_config
from ..errors import make_tool_error
from ..models.generation import GenerationRequest, RetryPolicy, RunOptions, SaveOptions
from ..orchestrator import Orchestrator
from ..persistence import ResultStore
from ..providers import build_provider
from ..tracing import trace
from ..types import CacheAction, ProjectId, coerce_json_param

logger = logging.getLogger(__name__)

storyboard_server = FastMCP("storyboard")

_requests_adapter = TypeAdapter(list[GenerationRequest])

_orchestrator: Orchestrator | None = None
_store: ResultStore | None = None


def get_store() -> ResultStore:
    """Return the process-wide result store, opening it on first access."""
    global _store
    if _store is None:
        _store = ResultStore(get_config().results_db_path)
    return _store


def get_orchestrator() -> Orchestrator:
    """Return the process-wide orchestrator, built from config on first access."""
    global _orchestrator
    if _orchestrator is None:
        cfg = get_config()
        _orchestrator = Orchestrator(
            build_provider(cfg),
            cache=PromptCache(cfg.cache_ttl_seconds, cfg.cache_max_entries),
            default_model=cfg.image_model,
            result_sink=get_store(),
            max_archived_runs=cfg.max_archived_runs,
        )
    return _orchestrator


def reset() -> None:
    """Drop the shared orchestrator and close the result store."""
    global _orchestrator, _store
    _orchestrator = None
    if _store is not None:
        _store.close()
        _store = None


def _parse_shots(shots: list[dict] | str) -> list[GenerationRequest]:
    """Validate raw shot dicts, filling in the configured default size."""
    raw = coerce_json_param(shots, list)
    if isinstance(raw, list):
        default_size = get_config().default_size
        raw = [
            {"size": default_size, **item} if isinstance(item, dict) else item
            for item in raw
        ]
    return _requests_adapter.validate_python(raw)


@storyboard_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
@trace(name="storyboard_generate", span_type="TOOL")
async def storyboard_generate(
    project_id: ProjectId,
    shots: Annotated[list[dict] | str, Field(
        description='Shots to generate: [{"shot_id": "s1", "prompt": "...", "size": "1024x576"}]',
    )],
    concurrency_limit: Annotated[int | None, Field(
        ge=1, le=16, description="Maximum generation calls in flight at once",
    )] = None,
    max_retries: Annotated[int | None, Field(
        ge=0, le=10, description="Retries per failed shot (0 disables retries)",
    )] = None,
    retry_delay_seconds: Annotated[float | None, Field(
        ge=0.0, le=60.0, description="Seconds to wait before each retry",
    )] = None,
    save: Annotated[bool, Field(description="Persist successful shots to the result store")] = True,
    overwrite: Annotated[bool, Field(
        description="Replace everything stored for the project instead of adding new shots",
    )] = False,
) -> dict:
    """Generate every shot of a storyboard project with bounded concurrency.

    Shots run in batches no larger than the concurrency limit. Identical
    prompts are served from the prompt cache; failed shots are retried
    sequentially after all batches finish.

    Args:
        project_id: Identifier grouping this run's shots.
        shots: List of shot dicts (or its JSON string) with shot_id, prompt
            and optional size / model.
        concurrency_limit: Maximum generations in flight; config default when omitted.
        max_retries: Retry ceiling per shot; config default when omitted.
        retry_delay_seconds: Delay before each retry; config default when omitted.
        save: Whether to persist successes.
        overwrite: Replace the project's stored results when saving.

    Returns:
        Dict with successes, failures, total_shots, processing_time_ms and
        saved (row count) — or a ToolError dict.
    """
    cfg = get_config()
    try:
        requests = _parse_shots(shots)
        options = RunOptions(
            concurrency_limit=concurrency_limit or cfg.concurrency_limit,
            retry=RetryPolicy(
                max_retries=cfg.max_retries if max_retries is None else max_retries,
                retry_delay=cfg.retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds,
            ),
        )
        orchestrator = get_orchestrator()
        result = await orchestrator.run_project(project_id, requests, options)

        saved = 0
        if save and result.successes:
            saved = await orchestrator.save_results(
                project_id, result.successes, SaveOptions(overwrite=overwrite),
            )
        payload = result.model_dump(mode="json")
        payload["saved"] = saved
        return payload
    except Exception as exc:
        return make_tool_error(exc)


@storyboard_server.tool(annotations=ToolAnnotations(readOnlyHint=True))
@trace(name="storyboard_status", span_type="TOOL")
async def storyboard_status(project_id: ProjectId) -> dict:
    """Report progress of a storyboard run — active, or the last finished one.

    Args:
        project_id: Project to inspect.

    Returns:
        Dict with phase, per-shot states, progress percentage and ETA.
    """
    try:
        state = get_orchestrator().get_run_state(project_id)
        if state is None:
            raise LookupError(f"No run found for project {project_id}")
        return state.model_dump(mode="json")
    except Exception as exc:
        return make_tool_error(exc)


@storyboard_server.tool(annotations=ToolAnnotations(readOnlyHint=True))
@trace(name="storyboard_results", span_type="TOOL")
async def storyboard_results(project_id: ProjectId) -> dict:
    """List the stored shots of a project.

    Args:
        project_id: Project whose saved results to load.

    Returns:
        Dict with project_id, count and results.
    """
    try:
        results = get_store().load(project_id)
        return {
            "project_id": project_id,
            "count": len(results),
            "results": [r.model_dump(mode="json") for r in results],
        }
    except Exception as exc:
        return make_tool_error(exc)


@storyboard_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
@trace(name="storyboard_cache", span_type="TOOL")
async def storyboard_cache(action: CacheAction = "stats") -> dict:
    """Inspect or clear the prompt cache.

    Args:
        action: "stats" for size/hit counters, "clear" to drop every entry.

    Returns:
        Cache statistics, or the number of entries removed.
    """
    try:
        orchestrator = get_orchestrator()
        if action == "stats":
            return orchestrator.cache_stats().model_dump(mode="json")
        if action == "clear":
            return {"removed": orchestrator.clear_cache()}
    except Exception as exc:
        return make_tool_error(exc)
    return {"error": f"Unknown action: {action}", "valid_actions": ["stats", "clear"]}
