"""Single-model recognition dispatch."""

import logging
import time
from dataclasses import dataclass, replace
from typing import Optional

import httpx

from .classifier import Classification, classify_image
from .config import DEFAULT_API_URLS, EngineSettings
from .errors import (
    ConfigurationError,
    ImageDownloadError,
    ImageNotFoundError,
    ImageTooLargeError,
    RecognitionError,
)
from .image_processor import ImageAcquirer, ImageRef
from .prompts import RecognitionType, parse_recognition_type, resolve_prompt
from .providers.base import ConnectionCheck, ModelConfig, ProviderAdapter, RecognitionResult
from .providers.registry import AdapterRegistry
from .retry import RetryExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionRequest:
    """Caller-owned request for one recognition."""

    image: ImageRef
    model_config: ModelConfig
    recognition_type: str = RecognitionType.AUTO.value
    prompt_override: Optional[str] = None


class RecognitionDispatcher:
    """Resolves prompts and adapters, then runs the call through the retry executor.

    Owns the shared ``httpx.AsyncClient`` unless one is passed in. Use as an
    async context manager, or call ``aclose()`` when done.

    Examples:
        async with RecognitionDispatcher() as dispatcher:
            result = await dispatcher.recognize(
                RecognitionRequest(
                    image=ImageRef.from_url("https://example.com/receipt.jpg"),
                    model_config=config,
                    recognition_type="receipt",
                )
            )
            print(result.content)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[AdapterRegistry] = None,
        acquirer: Optional[ImageAcquirer] = None,
        retry: Optional[RetryExecutor] = None,
    ):
        """Initialize the dispatcher.

        Args:
            settings: Engine settings (defaults when omitted)
            http_client: Shared HTTP client; created and owned here when omitted
            registry: Adapter registry override
            acquirer: Image acquirer override
            retry: Retry executor override
        """
        self.settings = settings or EngineSettings()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout)
        self.acquirer = acquirer or ImageAcquirer(
            self._http,
            max_bytes=self.settings.max_image_bytes,
            uploads_dir=self.settings.uploads_dir,
        )
        self.registry = registry or AdapterRegistry(self._http, self.acquirer)
        self.retry = retry or RetryExecutor(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_base_delay,
            attempt_timeout=self.settings.request_timeout,
        )

    async def __aenter__(self) -> "RecognitionDispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def max_tokens_for(self, recognition_type: RecognitionType) -> int:
        if recognition_type is RecognitionType.TABLE:
            return self.settings.max_tokens * 2
        return self.settings.max_tokens

    async def recognize(self, request: RecognitionRequest) -> RecognitionResult:
        """Recognize one image with one model.

        Args:
            request: Image, model config, recognition type and optional prompt override

        Returns:
            Normalized recognition result

        Raises:
            RecognitionError: Classified failure (configuration, image, transport or provider)
        """
        config = request.model_config
        config.validate(development=self.settings.development)
        if request.prompt_override is not None and not isinstance(request.prompt_override, str):
            raise ConfigurationError("prompt must be a string")

        recognition_type = parse_recognition_type(request.recognition_type)
        adapter = self.registry.resolve(config)

        classification = None
        if (
            recognition_type is RecognitionType.AUTO
            and not (request.prompt_override and request.prompt_override.strip())
            and self.settings.auto_classify
        ):
            classification = await self._classify(adapter, request.image, config)
            if classification is not None:
                recognition_type = classification.recognition_type

        prompt = resolve_prompt(recognition_type, request.prompt_override)
        max_tokens = self.max_tokens_for(recognition_type)

        logger.info(
            f"Recognizing {request.image.kind.value} image with {config.identifier} "
            f"via {adapter.provider_name} ({recognition_type.value})"
        )
        started = time.perf_counter()

        try:
            result = await self.retry.run(
                lambda: adapter.recognize(request.image, prompt, config, max_tokens=max_tokens)
            )
        except RecognitionError as e:
            logger.error(f"Recognition with {config.identifier} failed: [{e.code}] {e}")
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure recognizing with {config.identifier}")
            raise RecognitionError(f"Recognition failed: {e}") from e

        elapsed = (time.perf_counter() - started) * 1000
        logger.info(f"{config.identifier} finished in {elapsed:.0f}ms ({len(result.content):,} chars)")
        if classification is not None:
            result = replace(result, metadata={**result.metadata, "classification": classification.to_dict()})
        return result

    async def _classify(
        self, adapter: ProviderAdapter, image: ImageRef, config: ModelConfig
    ) -> Optional[Classification]:
        """Detect the image's content type; None keeps the auto prompt."""

        async def ask(prompt: str, max_tokens: int) -> str:
            result = await self.retry.run(
                lambda: adapter.recognize(image, prompt, config, max_tokens=max_tokens)
            )
            return result.content

        try:
            return await classify_image(ask)
        except (ImageNotFoundError, ImageTooLargeError, ImageDownloadError):
            # The recognition call would fail on the same image.
            raise
        except RecognitionError as e:
            logger.warning(f"Classification with {config.identifier} failed, using auto prompt: {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected failure classifying with {config.identifier}")
            raise RecognitionError(f"Classification failed: {e}") from e

    async def check_connection(self, config: ModelConfig) -> ConnectionCheck:
        """Probe a provider's endpoint with the configured credentials."""
        config.validate(development=self.settings.development)
        adapter = self.registry.resolve(config)
        return await adapter.check_connection(config)

    async def handle(self, body: dict) -> tuple[int, dict]:
        """Run a recognition from a JSON request body and build the response envelope.

        Args:
            body: ``{fileId | imageUrl, modelConfig, recognitionType, prompt?}``

        Returns:
            ``(status, payload)`` where payload is
            ``{"success": True, "recognition": {...}}`` or
            ``{"success": False, "error": code, "message": text}``
        """
        try:
            request = self.parse_request(body)
            result = await self.recognize(request)
        except RecognitionError as e:
            return e.status_code, {"success": False, "error": e.code, "message": str(e)}

        recognition = result.to_dict()
        if "classification" in result.metadata:
            recognition["classification"] = result.metadata["classification"]
        return 200, {"success": True, "recognition": recognition}

    def parse_request(self, body: dict) -> RecognitionRequest:
        """Translate a JSON request body into a RecognitionRequest."""
        if not isinstance(body, dict):
            raise ConfigurationError("Request body must be a JSON object")

        if body.get("imageUrl"):
            image = ImageRef.from_url(str(body["imageUrl"]))
        elif body.get("fileId"):
            image = ImageRef.from_file_id(str(body["fileId"]))
        else:
            raise ConfigurationError("Provide fileId or imageUrl")

        raw_config = body.get("modelConfig")
        if not isinstance(raw_config, dict):
            raise ConfigurationError("modelConfig is required")

        provider = str(raw_config.get("provider") or "custom")
        model_config = ModelConfig(
            provider=provider,
            model=str(raw_config.get("model") or ""),
            api_key=str(raw_config.get("apiKey") or ""),
            api_url=str(raw_config.get("apiUrl") or DEFAULT_API_URLS.get(provider.lower(), "")),
            is_custom=bool(raw_config.get("isCustom", False)),
        )

        return RecognitionRequest(
            image=image,
            model_config=model_config,
            recognition_type=str(body.get("recognitionType") or RecognitionType.AUTO.value),
            prompt_override=body.get("prompt"),
        )
