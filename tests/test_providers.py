"""Wire-format tests for the provider adapters."""

import base64

import httpx
import pytest

from conftest import claude_payload, gemini_payload, json_response, openai_payload
from vision_compare.errors import (
    InvalidProviderResponseError,
    NetworkTransportError,
    ProviderHttpError,
)
from vision_compare.image_processor import ImageRef
from vision_compare.providers.anthropic import ANTHROPIC_VERSION, ClaudeAdapter
from vision_compare.providers.base import ModelConfig
from vision_compare.providers.google import GeminiAdapter
from vision_compare.providers.openai import OpenAIAdapter, OpenRouterAdapter

PROMPT = "Read the receipt"


# Gemini


@pytest.mark.asyncio
async def test_gemini_request_shape(mock_http, acquirer_factory, gemini_config, image_file, png_bytes):
    client, handler = mock_http(lambda request: json_response(gemini_payload("Total: 12.50")))
    adapter = GeminiAdapter(client, acquirer_factory(client))

    result = await adapter.recognize(ImageRef.from_path(image_file), PROMPT, gemini_config)

    request = handler.last
    assert request.method == "POST"
    assert request.url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
    assert request.url.params["key"] == "gm-key"

    parts = handler.last_json()["contents"][0]["parts"]
    assert parts[0] == {"text": PROMPT}
    assert parts[1]["inlineData"]["mimeType"] == "image/png"
    assert base64.b64decode(parts[1]["inlineData"]["data"]) == png_bytes

    assert result.content == "Total: 12.50"
    assert result.confidence == 0.95
    assert result.provider == "gemini"
    assert result.model == "gemini-1.5-flash"
    assert result.timestamp.endswith("Z")
    assert result.metadata["finish_reason"] == "STOP"


@pytest.mark.asyncio
async def test_gemini_downloads_remote_images(mock_http, acquirer_factory, gemini_config, png_bytes):
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.host == "cdn.example.com":
            return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})
        return json_response(gemini_payload())

    client, handler = mock_http(responder)
    adapter = GeminiAdapter(client, acquirer_factory(client))

    await adapter.recognize(ImageRef.from_url("https://cdn.example.com/r.png"), PROMPT, gemini_config)

    assert [r.url.host for r in handler.requests] == [
        "cdn.example.com",
        "generativelanguage.googleapis.com",
    ]


def test_gemini_endpoint_does_not_double_models(mock_http, acquirer_factory, gemini_config):
    client, _ = mock_http(lambda request: json_response({}))
    adapter = GeminiAdapter(client, acquirer_factory(client))
    config = ModelConfig(
        provider="gemini",
        model="gemini-pro-vision",
        api_key="k",
        api_url="https://relay.example.com/v1beta/models/",
    )
    assert adapter.endpoint(config) == "https://relay.example.com/v1beta/models/gemini-pro-vision:generateContent"


@pytest.mark.asyncio
async def test_gemini_http_error(mock_http, acquirer_factory, gemini_config, image_file):
    client, _ = mock_http(
        lambda request: json_response({"error": {"message": "API key not valid"}}, status=400)
    )
    adapter = GeminiAdapter(client, acquirer_factory(client))

    with pytest.raises(ProviderHttpError) as excinfo:
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, gemini_config)

    assert excinfo.value.status == 400
    assert "API key not valid" in str(excinfo.value)
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_gemini_missing_candidates(mock_http, acquirer_factory, gemini_config, image_file):
    client, _ = mock_http(lambda request: json_response({"candidates": []}))
    adapter = GeminiAdapter(client, acquirer_factory(client))

    with pytest.raises(InvalidProviderResponseError, match=r"candidates\[0\]\.content\.parts\[0\]\.text"):
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, gemini_config)


@pytest.mark.asyncio
async def test_gemini_transport_error(mock_http, acquirer_factory, gemini_config, image_file):
    def fail(request):
        raise httpx.ConnectError("connection reset", request=request)

    client, _ = mock_http(fail)
    adapter = GeminiAdapter(client, acquirer_factory(client))

    with pytest.raises(NetworkTransportError):
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, gemini_config)


# OpenAI-compatible


@pytest.mark.asyncio
async def test_openai_passes_remote_url_through(mock_http, acquirer_factory, openai_config):
    client, handler = mock_http(lambda request: json_response(openai_payload("A cat")))
    adapter = OpenAIAdapter(client, acquirer_factory(client))

    result = await adapter.recognize(
        ImageRef.from_url("https://cdn.example.com/cat.jpg"), PROMPT, openai_config, max_tokens=4000
    )

    assert len(handler.requests) == 1
    request = handler.last
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"

    body = handler.last_json()
    assert body["model"] == "gpt-4o"
    assert body["max_tokens"] == 4000
    content = body["messages"][0]["content"]
    assert body["messages"][0]["role"] == "user"
    assert content[0] == {"type": "text", "text": PROMPT}
    assert content[1] == {"type": "image_url", "image_url": {"url": "https://cdn.example.com/cat.jpg"}}

    assert result.content == "A cat"
    assert result.confidence == 0.92
    assert result.metadata["usage"]["total_tokens"] == 12


@pytest.mark.asyncio
async def test_openai_sends_local_image_as_data_url(mock_http, acquirer_factory, openai_config, image_file):
    client, handler = mock_http(lambda request: json_response(openai_payload()))
    adapter = OpenAIAdapter(client, acquirer_factory(client))

    await adapter.recognize(ImageRef.from_path(image_file), PROMPT, openai_config)

    url = handler.last_json()["messages"][0]["content"][1]["image_url"]["url"]
    assert url.startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_openai_strips_chat_completions_suffix(mock_http, acquirer_factory, image_file):
    client, handler = mock_http(lambda request: json_response(openai_payload()))
    adapter = OpenAIAdapter(client, acquirer_factory(client))
    config = ModelConfig(
        provider="custom-openai",
        model="qwen-vl",
        api_key="k",
        api_url="https://relay.example.com/v1/chat/completions",
        is_custom=True,
    )

    await adapter.recognize(ImageRef.from_path(image_file), PROMPT, config)

    assert str(handler.last.url) == "https://relay.example.com/v1/chat/completions"


@pytest.mark.asyncio
async def test_openai_rate_limit_is_provider_http_error(mock_http, acquirer_factory, openai_config, image_file):
    client, handler = mock_http(
        lambda request: json_response({"error": {"message": "Rate limit reached"}}, status=429)
    )
    adapter = OpenAIAdapter(client, acquirer_factory(client))

    with pytest.raises(ProviderHttpError) as excinfo:
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, openai_config)

    assert excinfo.value.status == 429
    assert "Rate limit reached" in str(excinfo.value)
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_openai_empty_choices(mock_http, acquirer_factory, openai_config, image_file):
    payload = openai_payload()
    payload["choices"] = []
    client, _ = mock_http(lambda request: json_response(payload))
    adapter = OpenAIAdapter(client, acquirer_factory(client))

    with pytest.raises(InvalidProviderResponseError, match=r"choices\[0\]\.message\.content"):
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, openai_config)


@pytest.mark.asyncio
async def test_openai_transport_error(mock_http, acquirer_factory, openai_config, image_file):
    def fail(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = mock_http(fail)
    adapter = OpenAIAdapter(client, acquirer_factory(client))

    with pytest.raises(NetworkTransportError):
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, openai_config)


@pytest.mark.asyncio
async def test_openrouter_identifies_client(mock_http, acquirer_factory, image_file):
    client, handler = mock_http(lambda request: json_response(openai_payload()))
    adapter = OpenRouterAdapter(client, acquirer_factory(client))
    config = ModelConfig(
        provider="openrouter",
        model="google/gemini-flash-1.5",
        api_key="or-key",
        api_url="https://openrouter.ai/api/v1",
    )

    result = await adapter.recognize(ImageRef.from_path(image_file), PROMPT, config)

    assert handler.last.url.path == "/api/v1/chat/completions"
    assert handler.last.headers["x-title"] == "vision-compare"
    assert "http-referer" in handler.last.headers
    assert result.confidence == 0.85


# Claude


@pytest.mark.asyncio
async def test_claude_request_shape(mock_http, acquirer_factory, claude_config, image_file, png_bytes):
    client, handler = mock_http(lambda request: json_response(claude_payload("Invoice #42")))
    adapter = ClaudeAdapter(client, acquirer_factory(client))

    result = await adapter.recognize(ImageRef.from_path(image_file), PROMPT, claude_config, max_tokens=1234)

    request = handler.last
    assert request.url.path == "/v1/messages"
    assert request.headers["x-api-key"] == "ant-test"
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION

    body = handler.last_json()
    assert body["model"] == "claude-3-5-sonnet-latest"
    assert body["max_tokens"] == 1234
    content = body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": PROMPT}
    assert content[1]["source"]["type"] == "base64"
    assert content[1]["source"]["media_type"] == "image/png"
    assert base64.b64decode(content[1]["source"]["data"]) == png_bytes

    assert result.content == "Invoice #42"
    assert result.confidence == 0.93
    assert result.provider == "claude"


@pytest.mark.asyncio
async def test_claude_relay_prefix_is_kept(mock_http, acquirer_factory, image_file):
    client, handler = mock_http(lambda request: json_response(claude_payload()))
    adapter = ClaudeAdapter(client, acquirer_factory(client))
    config = ModelConfig(
        provider="custom-claude",
        model="claude-3-haiku",
        api_key="k",
        api_url="https://relay.example.com/anthropic/v1/messages",
        is_custom=True,
    )

    await adapter.recognize(ImageRef.from_path(image_file), PROMPT, config)

    assert str(handler.last.url) == "https://relay.example.com/anthropic/v1/messages"


@pytest.mark.asyncio
async def test_claude_http_error(mock_http, acquirer_factory, claude_config, image_file):
    client, _ = mock_http(
        lambda request: json_response(
            {"type": "error", "error": {"type": "invalid_request_error", "message": "Image is invalid"}},
            status=400,
        )
    )
    adapter = ClaudeAdapter(client, acquirer_factory(client))

    with pytest.raises(ProviderHttpError) as excinfo:
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, claude_config)

    assert excinfo.value.status == 400
    assert "Image is invalid" in str(excinfo.value)


@pytest.mark.asyncio
async def test_claude_empty_content(mock_http, acquirer_factory, claude_config, image_file):
    payload = claude_payload()
    payload["content"] = []
    client, _ = mock_http(lambda request: json_response(payload))
    adapter = ClaudeAdapter(client, acquirer_factory(client))

    with pytest.raises(InvalidProviderResponseError):
        await adapter.recognize(ImageRef.from_path(image_file), PROMPT, claude_config)


# Connection checks


@pytest.mark.asyncio
@pytest.mark.parametrize("status,ok", [(200, True), (403, True), (401, False), (500, False)])
async def test_check_connection_statuses(mock_http, acquirer_factory, openai_config, status, ok):
    client, handler = mock_http(lambda request: json_response({"data": []}, status=status))
    adapter = OpenAIAdapter(client, acquirer_factory(client))

    check = await adapter.check_connection(openai_config)

    assert check.ok is ok
    assert check.status == status
    assert handler.last.method == "GET"
    assert handler.last.url.path == "/v1/models"


@pytest.mark.asyncio
async def test_check_connection_transport_failure(mock_http, acquirer_factory, claude_config):
    def fail(request):
        raise httpx.ConnectError("no route to host", request=request)

    client, _ = mock_http(fail)
    check = await ClaudeAdapter(client, acquirer_factory(client)).check_connection(claude_config)

    assert check.ok is False
    assert check.status is None
