"""Anthropic Claude provider (Messages API)."""

import logging

import httpx
from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

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

ANTHROPIC_VERSION = "2023-06-01"
TEXT_PATH = ("content", 0, "text")


class ClaudeAdapter(ProviderAdapter):
    """Anthropic Claude implementation.

    Claude requires base64 image data, so URL images are downloaded first.
    Requests go to ``{api_url}/messages`` exactly, which lets relays that
    mount the API under a different prefix work unchanged.
    """

    provider_name = "claude"
    confidence = 0.93

    def base_url(self, config: ModelConfig) -> str:
        base = config.api_url.rstrip("/")
        if base.endswith("/messages"):
            base = base[: -len("/messages")]
        return base

    def _client(self, config: ModelConfig) -> AsyncAnthropic:
        return AsyncAnthropic(
            api_key=config.api_key,
            base_url=self.base_url(config),
            max_retries=0,
            timeout=self._http.timeout,
            http_client=self._http,
            default_headers={"anthropic-version": ANTHROPIC_VERSION},
        )

    async def recognize(
        self,
        image: ImageRef,
        prompt: str,
        config: ModelConfig,
        max_tokens: int = 2000,
    ) -> RecognitionResult:
        image_data = await self._acquirer.load(image)

        body = {
            "model": config.model,
            "max_tokens": max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": image_data.content_type,
                                "data": image_data.to_base64(),
                            },
                        },
                    ],
                }
            ],
        }

        logger.debug(f"Claude request: {self.base_url(config)}/messages ({image_data.size:,} image bytes)")

        try:
            response = await self._client(config).post(
                "/messages",
                cast_to=httpx.Response,
                body=body,
            )
        except APIStatusError as e:
            logger.error(f"Claude API error: HTTP {e.status_code}")
            raise ProviderHttpError(
                self.provider_name,
                e.status_code,
                e.response.text,
                provider_error_message(safe_json(e.response), e.response.reason_phrase),
            ) from e
        except APIConnectionError as e:
            raise self._transport_error(e) from e

        payload = decode_json(response, self.provider_name)
        content = extract_field(payload, TEXT_PATH, self.provider_name)

        return self._result(
            content,
            config,
            metadata={
                "finish_reason": payload.get("stop_reason"),
                "usage": payload.get("usage") or {},
            },
        )

    def probe_request(self, config: ModelConfig) -> tuple[str, dict, dict]:
        headers = {"x-api-key": config.api_key, "anthropic-version": ANTHROPIC_VERSION}
        return f"{self.base_url(config)}/models", headers, {}
