"""Shared fixtures: fake HTTP transports, images and recorded sleeps."""

import io
import json
from pathlib import Path
from typing import Callable

import httpx
import pytest
from PIL import Image

from vision_compare.image_processor import ImageAcquirer
from vision_compare.providers.base import ModelConfig


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingHandler:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> dict:
        return json.loads(self.last.content)


def make_png(size: tuple[int, int] = (4, 4), color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def image_file(tmp_path: Path, png_bytes: bytes) -> Path:
    path = tmp_path / "sample.png"
    path.write_bytes(png_bytes)
    return path


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def mock_http():
    """Factory for an AsyncClient whose traffic goes to a RecordingHandler."""

    def factory(responder: Callable[[httpx.Request], httpx.Response]):
        handler = RecordingHandler(responder)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=5.0)
        return client, handler

    return factory


@pytest.fixture
def acquirer_factory(tmp_path: Path):
    def factory(client: httpx.AsyncClient, max_bytes: int = 1024 * 1024) -> ImageAcquirer:
        return ImageAcquirer(client, max_bytes=max_bytes, uploads_dir=tmp_path / "uploads")

    return factory


@pytest.fixture
def gemini_config() -> ModelConfig:
    return ModelConfig(
        provider="gemini",
        model="gemini-1.5-flash",
        api_key="gm-key",
        api_url="https://generativelanguage.googleapis.com/v1beta",
    )


@pytest.fixture
def openai_config() -> ModelConfig:
    return ModelConfig(
        provider="openai",
        model="gpt-4o",
        api_key="sk-test",
        api_url="https://api.openai.com/v1",
    )


@pytest.fixture
def claude_config() -> ModelConfig:
    return ModelConfig(
        provider="claude",
        model="claude-3-5-sonnet-latest",
        api_key="ant-test",
        api_url="https://api.anthropic.com/v1",
    )


def json_response(payload: dict, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload)


def gemini_payload(text: str = "Hello") -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}],
        "usageMetadata": {"totalTokenCount": 12},
    }


def openai_payload(text: str = "Hello") -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 2, "total_tokens": 12},
    }


def claude_payload(text: str = "Hello") -> dict:
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 10, "output_tokens": 2},
    }
