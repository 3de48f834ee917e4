"""OpenAI chat-completions provider and its compatible variants."""

import logging

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from ..errors import ProviderHttpError, provider_error_message
from ..image_processor import ImageRef
from .base import (
    ModelConfig,
    ProviderAdapter,
    RecognitionResult,
    decode_json,
    extract_field,
    safe_json,
)

logger = logging.getLogger(__name__)

TEXT_PATH = ("choices", 0, "message", "content")


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat-completions implementation.

    Remote images are passed to the provider by URL; local images are sent
    inline as a ``data:`` URL. DeepSeek, OpenRouter, Zhipu and unknown
    providers reuse this wire shape through the subclasses below.
    """

    provider_name = "openai"
    confidence = 0.92
    extra_headers: dict = {}

    def base_url(self, config: ModelConfig) -> str:
        base = config.api_url.rstrip("/")
        if base.endswith("/chat/completions"):
            base = base[: -len("/chat/completions")]
        return base

    def _client(self, config: ModelConfig) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=config.api_key,
            base_url=self.base_url(config),
            max_retries=0,
            timeout=self._http.timeout,
            http_client=self._http,
            default_headers=self.extra_headers or None,
        )

    async def _image_url(self, image: ImageRef) -> str:
        if image.is_remote:
            return image.value
        image_data = await self._acquirer.load(image)
        return image_data.to_data_url()

    async def recognize(
        self,
        image: ImageRef,
        prompt: str,
        config: ModelConfig,
        max_tokens: int = 2000,
    ) -> RecognitionResult:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": await self._image_url(image)}},
                ],
            }
        ]

        logger.debug(f"{self.provider_name} request: {self.base_url(config)}/chat/completions")

        try:
            raw = await self._client(config).chat.completions.with_raw_response.create(
                model=config.model,
                messages=messages,
                max_tokens=max_tokens,
            )
        except APIStatusError as e:
            logger.error(f"{self.provider_name} API error: HTTP {e.status_code}")
            raise ProviderHttpError(
                self.provider_name,
                e.status_code,
                e.response.text,
                provider_error_message(safe_json(e.response), e.response.reason_phrase),
            ) from e
        except APIConnectionError as e:
            raise self._transport_error(e) from e

        payload = decode_json(raw.http_response, self.provider_name)
        content = extract_field(payload, TEXT_PATH, self.provider_name)

        return self._result(
            content,
            config,
            metadata={
                "finish_reason": payload["choices"][0].get("finish_reason"),
                "usage": payload.get("usage") or {},
            },
        )

    def probe_request(self, config: ModelConfig) -> tuple[str, dict, dict]:
        headers = {"Authorization": f"Bearer {config.api_key}", **self.extra_headers}
        return f"{self.base_url(config)}/models", headers, {}


class DeepSeekAdapter(OpenAIAdapter):
    provider_name = "deepseek"
    confidence = 0.90


class OpenRouterAdapter(OpenAIAdapter):
    """OpenRouter asks clients to identify themselves with two extra headers."""

    provider_name = "openrouter"
    confidence = 0.85
    extra_headers = {
        "HTTP-Referer": "https://github.com/vision-compare/vision-compare",
        "X-Title": "vision-compare",
    }


class ZhipuAdapter(OpenAIAdapter):
    provider_name = "zhipu"
    confidence = 0.85


class GenericAdapter(OpenAIAdapter):
    """Fallback for any provider speaking the OpenAI chat-completions schema."""

    provider_name = "generic"
    confidence = 0.85
