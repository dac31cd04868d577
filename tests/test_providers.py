"""Tests for the Imagen and placeholder image providers."""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest

from storyboard_mcp.config import ServerConfig
from storyboard_mcp.models.generation import ModelKind
from storyboard_mcp.providers import (
    ImagenProvider,
    PlaceholderProvider,
    build_placeholder_svg,
    build_provider,
    select_aspect_ratio,
)


def _decode(data_url: str) -> str:
    header, payload = data_url.split(",", 1)
    assert header.endswith(";base64")
    return base64.b64decode(payload).decode("utf-8")


class TestSelectAspectRatio:
    @pytest.mark.parametrize("size,expected", [
        ("1024x1024", "1:1"),
        ("1920x1080", "16:9"),
        ("1080x1920", "9:16"),
        ("1024x768", "4:3"),
        ("768x1024", "3:4"),
        ("2000x1000", "16:9"),
    ])
    def test_nearest_supported_ratio(self, size, expected):
        assert select_aspect_ratio(size) == expected

    def test_rejects_malformed_size(self):
        with pytest.raises(ValueError, match="Invalid size"):
            select_aspect_ratio("huge")


class TestPlaceholderProvider:
    def test_svg_contains_escaped_prompt(self):
        url = build_placeholder_svg("cats & <dogs>", "320x240")
        assert url.startswith("data:image/svg+xml;base64,")
        svg = _decode(url)
        assert 'width="320"' in svg
        assert "cats &amp; &lt;dogs&gt;" in svg
        assert "Storyboard Preview" in svg

    async def test_call_returns_placeholder_kind(self):
        response = await PlaceholderProvider()("a quiet street", "640x360", "ignored")
        assert response.kind == ModelKind.PLACEHOLDER
        assert response.resolved_model == "placeholder"
        assert len(response.artifacts) == 1


class TestImagenProvider:
    async def test_builds_data_urls(self, mock_gemini_client):
        image = MagicMock(image_bytes=b"\x89PNG", mime_type="image/png")
        response = MagicMock(generated_images=[MagicMock(image=image, rai_filtered_reason=None)])
        client = MagicMock()
        client.aio.models.generate_images = AsyncMock(return_value=response)
        mock_gemini_client.return_value = client

        result = await ImagenProvider(api_key="k")("a harbour", "1920x1080", "imagen-test")

        assert result.kind == ModelKind.IMAGEN
        assert result.resolved_model == "imagen-test"
        assert result.artifacts == ["data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()]
        kwargs = client.aio.models.generate_images.await_args.kwargs
        assert kwargs["model"] == "imagen-test"
        assert kwargs["prompt"] == "a harbour"
        assert kwargs["config"].aspect_ratio == "16:9"
        assert kwargs["config"].number_of_images == 1
        mock_gemini_client.assert_called_once_with("k")

    async def test_filtered_images_yield_no_artifacts(self, mock_gemini_client):
        filtered = MagicMock(image=None, rai_filtered_reason="blocked by safety filter")
        client = MagicMock()
        client.aio.models.generate_images = AsyncMock(return_value=MagicMock(generated_images=[filtered]))
        mock_gemini_client.return_value = client

        result = await ImagenProvider()("x", "1024x1024", "imagen-test")

        assert result.artifacts == []

    async def test_errors_propagate(self, mock_gemini_client):
        client = MagicMock()
        client.aio.models.generate_images = AsyncMock(side_effect=ValueError("400 invalid argument"))
        mock_gemini_client.return_value = client

        with pytest.raises(ValueError, match="invalid argument"):
            await ImagenProvider()("x", "1024x1024", "imagen-test")


class TestBuildProvider:
    def test_placeholder(self):
        assert isinstance(build_provider(ServerConfig(image_provider="placeholder")), PlaceholderProvider)

    def test_imagen(self):
        provider = build_provider(ServerConfig(image_provider="imagen", gemini_api_key="k"))
        assert isinstance(provider, ImagenProvider)
