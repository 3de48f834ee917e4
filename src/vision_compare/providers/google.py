"""Google Gemini provider (generateContent REST API)."""

import logging

import httpx

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

TEXT_PATH = ("candidates", 0, "content", "parts", 0, "text")


class GeminiAdapter(ProviderAdapter):
    """Gemini implementation.

    Gemini only accepts inline image data, so remote images are downloaded
    and base64-encoded first. The API key travels in the ``key`` query
    parameter.
    """

    provider_name = "gemini"
    confidence = 0.95

    def endpoint(self, config: ModelConfig) -> str:
        """Build ``{api_url}/models/{model}:generateContent``.

        An ``api_url`` that already ends in ``/models`` is not doubled.
        """
        base = config.api_url.rstrip("/")
        if base.endswith("/models"):
            return f"{base}/{config.model}:generateContent"
        return f"{base}/models/{config.model}:generateContent"

    async def recognize(
        self,
        image: ImageRef,
        prompt: str,
        config: ModelConfig,
        max_tokens: int = 2000,
    ) -> RecognitionResult:
        image_data = await self._acquirer.load(image)

        body = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {
                            "inlineData": {
                                "mimeType": image_data.content_type,
                                "data": image_data.to_base64(),
                            }
                        },
                    ]
                }
            ]
        }

        url = self.endpoint(config)
        logger.debug(f"Gemini request: {url} ({image_data.size:,} image bytes)")

        try:
            response = await self._http.post(url, params={"key": config.api_key}, json=body)
        except httpx.TransportError as e:
            raise self._transport_error(e) from e

        if not response.is_success:
            payload = safe_json(response)
            logger.error(f"Gemini API error: HTTP {response.status_code}")
            raise ProviderHttpError(
                self.provider_name,
                response.status_code,
                response.text,
                provider_error_message(payload, response.reason_phrase),
            )

        payload = decode_json(response, self.provider_name)
        content = extract_field(payload, TEXT_PATH, self.provider_name)

        candidate = payload["candidates"][0]
        return self._result(
            content,
            config,
            metadata={
                "finish_reason": candidate.get("finishReason", "unknown"),
                "usage": payload.get("usageMetadata", {}),
            },
        )

    def probe_request(self, config: ModelConfig) -> tuple[str, dict, dict]:
        base = config.api_url.rstrip("/")
        url = base if base.endswith("/models") else f"{base}/models"
        return url, {}, {"key": config.api_key}
