"""Tests for the Gemini and Ollama gateways with mocked transports"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from picturebook.errors import NoImageGeneratedError, TransientUpstreamError
from picturebook.llm import ContentPart, GeminiClient, LLMMessage, OllamaClient
from picturebook.llm.gemini_client import _translate_api_error


def gemini_with_response(response):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response)
    return GeminiClient(client=client), client


def image_response(*parts):
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))],
        prompt_feedback=None,
    )


@pytest.mark.asyncio
async def test_gemini_generate_image_returns_inline_data():
    text_part = SimpleNamespace(inline_data=None, text="Here you go")
    image_part = SimpleNamespace(inline_data=SimpleNamespace(data=b"png-bytes", mime_type="image/png"))
    gemini, client = gemini_with_response(image_response(text_part, image_part))

    image = await gemini.generate_image(
        "A meadow",
        reference_images=[ContentPart.from_image(b"ref", "image/png")],
        aspect_ratio="3:2",
        image_size="2K",
    )

    assert image.data == b"png-bytes"
    assert image.mime_type == "image/png"
    kwargs = client.aio.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "gemini-2.5-flash-image"
    assert kwargs["config"].image_config.aspect_ratio == "3:2"
    assert len(kwargs["contents"][0].parts) == 2


@pytest.mark.asyncio
async def test_gemini_without_image_raises_no_image():
    gemini, _ = gemini_with_response(image_response(SimpleNamespace(inline_data=None, text="I can't")))

    with pytest.raises(NoImageGeneratedError):
        await gemini.generate_image("A meadow")


@pytest.mark.asyncio
async def test_gemini_text_uses_system_instruction():
    gemini, client = gemini_with_response(SimpleNamespace(text='{"ok": true}', usage_metadata=None))

    response = await gemini.generate([
        LLMMessage(role="system", content="Be brief"),
        LLMMessage(role="user", content="Analyze", parts=[ContentPart.from_image(b"img")]),
    ], temperature=0.2)

    assert response.content == '{"ok": true}'
    kwargs = client.aio.models.generate_content.call_args.kwargs
    assert kwargs["config"].system_instruction == "Be brief"
    assert kwargs["config"].temperature == 0.2
    assert len(kwargs["contents"]) == 1
    assert len(kwargs["contents"][0].parts) == 2


def test_busy_status_is_transient():
    assert isinstance(_translate_api_error(SimpleNamespace(code=429)), TransientUpstreamError)
    assert not isinstance(_translate_api_error(SimpleNamespace(code=400)), TransientUpstreamError)


def test_ollama_message_conversion():
    client = OllamaClient(model="llava")

    converted = client._convert_messages([
        LLMMessage(role="system", content="You review books"),
        LLMMessage(role="user", content="Check these", parts=[
            ContentPart.from_text("[PAGE 1]"),
            ContentPart.from_image(b"abc"),
        ]),
    ])

    assert converted == [{
        "role": "user",
        "content": "You review books\n\nCheck these\n\n[PAGE 1]",
        "images": ["YWJj"],
    }]
