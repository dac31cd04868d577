"""Main FastMCP server — mounts the storyboard sub-server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from . import tracing
from .client import GeminiClient
from .tools import storyboard
from .tools.storyboard import storyboard_server

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP):
    """Startup/shutdown hook — tracing, shared Gemini clients, result store."""
    tracing.setup()
    yield {}
    storyboard.reset()
    closed = await GeminiClient.close_all()
    tracing.shutdown()
    logger.info("Lifespan shutdown: closed %d client(s)", closed)


app = FastMCP(
    "storyboard",
    instructions=(
        "Storyboard image generation — runs every shot of a project through "
        "Imagen with bounded concurrency, prompt caching and automatic retries."
    ),
    lifespan=_lifespan,
)

app.mount(storyboard_server)


def main() -> None:
    """Entry-point for ``storyboard-mcp`` console script."""
    app.run()


if __name__ == "__main__":
    main()
