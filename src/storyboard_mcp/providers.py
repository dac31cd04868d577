"""Image-generation capabilities the orchestrator can be built with.

Each provider is an async callable ``(prompt, size, model) -> ProviderResponse``
and owns its own per-call timeout; the orchestrator never times calls out.
"""

from __future__ import annotations

import asyncio
import base64
import html
import logging

from google.genai import types

from .client import GeminiClient
from .config import ServerConfig
from .generator import ImageGenerateFn
from .models.generation import ModelKind, ProviderResponse
from .retry import with_retry
from .types import parse_size

logger = logging.getLogger(__name__)

# Aspect ratios accepted by Imagen's GenerateImagesConfig.
_SUPPORTED_ASPECT_RATIOS: dict[str, float] = {
    "1:1": 1.0,
    "3:4": 3 / 4,
    "4:3": 4 / 3,
    "9:16": 9 / 16,
    "16:9": 16 / 9,
}

PLACEHOLDER_MODEL = "placeholder"


def select_aspect_ratio(size: str) -> str:
    """Pick the supported aspect ratio closest to a ``WIDTHxHEIGHT`` size."""
    width, height = parse_size(size)
    target = width / height
    return min(_SUPPORTED_ASPECT_RATIOS, key=lambda r: abs(_SUPPORTED_ASPECT_RATIOS[r] - target))


def _to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ImagenProvider:
    """Generates shots with Imagen through the google-genai SDK.

    Transient errors (429, 503, timeouts) are retried with backoff inside
    the call; the whole call is bounded by ``timeout`` seconds.

    Args:
        api_key: Gemini API key; falls back to config/env when omitted.
        timeout: Per-call timeout in seconds, covering backoff retries.
    """

    def __init__(self, *, api_key: str | None = None, timeout: float = 60.0) -> None:
        self._api_key = api_key
        self._timeout = timeout

    async def __call__(self, prompt: str, size: str, model: str) -> ProviderResponse:
        client = GeminiClient.get(self._api_key)
        config = types.GenerateImagesConfig(
            number_of_images=1,
            aspect_ratio=select_aspect_ratio(size),
        )
        response = await asyncio.wait_for(
            with_retry(
                lambda: client.aio.models.generate_images(
                    model=model, prompt=prompt, config=config,
                ),
                label=f"Imagen {model}",
            ),
            timeout=self._timeout,
        )

        artifacts: list[str] = []
        for generated in response.generated_images or []:
            image = generated.image
            if image is None or not image.image_bytes:
                if generated.rai_filtered_reason:
                    logger.warning("Imagen filtered an image: %s", generated.rai_filtered_reason)
                continue
            artifacts.append(_to_data_url(image.image_bytes, image.mime_type or "image/png"))
        return ProviderResponse(artifacts=artifacts, resolved_model=model, kind=ModelKind.IMAGEN)


def build_placeholder_svg(prompt: str, size: str) -> str:
    """Render an SVG preview card showing a prompt excerpt, as a data URL."""
    width, height = parse_size(size)
    text = html.escape((prompt or "preview")[:80])
    svg = f"""<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" viewBox="0 0 {width} {height}">
  <defs>
    <linearGradient id="g" x1="0" y1="0" x2="1" y2="1">
      <stop offset="0%" stop-color="#e0e7ff"/>
      <stop offset="100%" stop-color="#f0f9ff"/>
    </linearGradient>
  </defs>
  <rect width="100%" height="100%" fill="url(#g)"/>
  <text x="50%" y="48%" dominant-baseline="middle" text-anchor="middle" fill="#1f2937" font-size="18" font-family="sans-serif">Storyboard Preview</text>
  <text x="50%" y="56%" dominant-baseline="middle" text-anchor="middle" fill="#4b5563" font-size="12" font-family="monospace">{text}</text>
  <rect x="16" y="16" width="{max(width - 32, 0)}" height="{max(height - 32, 0)}" fill="none" stroke="#93c5fd" stroke-width="2" stroke-dasharray="6 6"/>
</svg>"""
    return _to_data_url(svg.encode("utf-8"), "image/svg+xml")


class PlaceholderProvider:
    """Offline capability that returns an SVG preview card per shot."""

    async def __call__(self, prompt: str, size: str, model: str) -> ProviderResponse:
        return ProviderResponse(
            artifacts=[build_placeholder_svg(prompt, size)],
            resolved_model=PLACEHOLDER_MODEL,
            kind=ModelKind.PLACEHOLDER,
        )


def build_provider(cfg: ServerConfig) -> ImageGenerateFn:
    """Return the capability selected by ``cfg.image_provider``."""
    if cfg.image_provider == "imagen":
        logger.info("Using Imagen provider (model=%s)", cfg.image_model)
        return ImagenProvider(
            api_key=cfg.gemini_api_key or None,
            timeout=cfg.provider_timeout_seconds,
        )
    logger.info("Using placeholder provider")
    return PlaceholderProvider()
