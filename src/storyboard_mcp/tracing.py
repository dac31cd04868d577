"""Optional MLflow spans around tools, batches and individual shots.

Span tree for one ``storyboard_generate`` call::

    storyboard_generate (TOOL)
    └── batch (CHAIN)          one per batch of the run
        └── shot (LLM)         one per provider call; cache hits add none
            └── Imagen call    from ``mlflow.gemini.autolog()``

Everything here is a no-op unless ``mlflow-tracing`` is importable and
``tracing_enabled`` is set in config.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

try:
    import mlflow
    import mlflow.gemini

    _HAS_MLFLOW = True
except ImportError:
    _HAS_MLFLOW = False


def is_enabled() -> bool:
    if not _HAS_MLFLOW:
        return False
    from .config import get_config

    return get_config().tracing_enabled


def trace(
    func: Callable | None = None,
    *,
    name: str | None = None,
    span_type: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Callable:
    """Decorate an MCP tool with a root span; returns *func* untouched when tracing is off."""
    if not is_enabled():
        return func if func is not None else (lambda f: f)
    return mlflow.trace(func, name=name, span_type=span_type, attributes=attributes)


@contextmanager
def span(
    name: str,
    *,
    span_type: str = "UNKNOWN",
    attributes: dict[str, Any] | None = None,
) -> Iterator[Any]:
    """Open a child span for a batch or shot.

    Yields the live span, or ``None`` when tracing is off, so callers can
    attach outputs with ``if live is not None: live.set_outputs(...)``.
    """
    if not is_enabled():
        yield None
        return
    with mlflow.start_span(name=name, span_type=span_type, attributes=attributes or {}) as live:
        yield live


def setup() -> None:
    """Point MLflow at the configured server and autolog google-genai calls."""
    if not is_enabled():
        return

    from .config import get_config

    cfg = get_config()
    try:
        mlflow.set_tracking_uri(cfg.mlflow_tracking_uri)
        mlflow.set_experiment(cfg.mlflow_experiment_name)
        mlflow.gemini.autolog()
    except Exception:
        logger.warning("Could not enable MLflow tracing, serving without it", exc_info=True)
        return
    logger.info(
        "Tracing shots to %s (experiment=%s)", cfg.mlflow_tracking_uri, cfg.mlflow_experiment_name,
    )


def shutdown() -> None:
    """Flush spans still queued for async export."""
    if not is_enabled():
        return
    try:
        mlflow.flush_trace_async_logging()
    except Exception:
        logger.warning("Flushing MLflow spans failed", exc_info=True)
