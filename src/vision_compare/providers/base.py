"""Base classes and contracts for recognition providers."""

import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union
from urllib.parse import urlparse

import httpx

from ..errors import ConfigurationError, InvalidProviderResponseError, NetworkTransportError
from ..image_processor import ImageAcquirer, ImageRef

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = {"localhost"}


@dataclass(frozen=True)
class ModelConfig:
    """Caller-owned description of one provider/model pair.

    Immutable for the duration of a dispatch. The API key is kept out of
    ``repr`` so configs can be logged safely.
    """

    provider: str
    model: str
    api_key: str = field(repr=False)
    api_url: str
    is_custom: bool = False

    @property
    def identifier(self) -> str:
        """Stable ``provider::model`` identifier used in comparison runs."""
        return f"{self.provider}::{self.model}"

    def validate(self, development: bool = False) -> None:
        """Check the invariants required before any network call.

        Args:
            development: Allow plain HTTP to loopback hosts

        Raises:
            ConfigurationError: If the model, key or URL is unusable
        """
        if not self.model or not self.model.strip():
            raise ConfigurationError("Model name is required")
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError(f"API key is required for {self.identifier}")
        if not is_allowed_api_url(self.api_url, development):
            raise ConfigurationError(
                f"API URL must be a well-formed HTTPS URL: {self.api_url!r}"
            )


def is_allowed_api_url(url: Optional[str], development: bool = False) -> bool:
    """HTTPS anywhere; HTTP only for loopback hosts in development mode."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.netloc or not parsed.hostname:
        return False
    if parsed.scheme == "https":
        return True
    if parsed.scheme == "http" and development:
        return _is_loopback(parsed.hostname)
    return False


def _is_loopback(host: str) -> bool:
    if host in LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


@dataclass(frozen=True)
class RecognitionResult:
    """Normalized recognition result returned by every adapter."""

    content: str
    confidence: float
    model: str
    provider: str
    timestamp: str
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "confidence": self.confidence,
            "model": self.model,
            "provider": self.provider,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ConnectionCheck:
    """Outcome of a provider connectivity probe."""

    ok: bool
    message: str
    status: Optional[int] = None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


PathSegment = Union[str, int]


def extract_field(payload: Any, path: Sequence[PathSegment], provider: str) -> str:
    """Walk ``path`` through a decoded JSON payload and return the text leaf.

    Args:
        payload: Decoded provider response
        path: Keys and list indexes, e.g. ``("choices", 0, "message", "content")``
        provider: Provider name for the error message

    Returns:
        The string found at ``path``

    Raises:
        InvalidProviderResponseError: If any segment is missing or the leaf is not a string
    """
    current = payload
    for segment in path:
        if isinstance(segment, int):
            if not isinstance(current, list) or len(current) <= segment:
                raise _shape_error(provider, path)
        elif not isinstance(current, dict) or segment not in current:
            raise _shape_error(provider, path)
        current = current[segment]
    if not isinstance(current, str):
        raise _shape_error(provider, path)
    return current


def _shape_error(provider: str, path: Sequence[PathSegment]) -> InvalidProviderResponseError:
    dotted = "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in path).lstrip(".")
    return InvalidProviderResponseError(
        f"Invalid {provider} response structure: missing {dotted}"
    )


def decode_json(response: httpx.Response, provider: str) -> Any:
    """Decode a provider JSON body, classifying non-JSON bodies as shape errors."""
    try:
        return response.json()
    except ValueError as e:
        raise InvalidProviderResponseError(
            f"Invalid {provider} response structure: body is not JSON"
        ) from e


def safe_json(response: httpx.Response) -> Any:
    """Decoded body of an error response, or None when it is not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Each adapter owns one provider's wire format: request body, auth scheme,
    endpoint layout and response field path. Adapters share the engine's
    ``httpx.AsyncClient`` and image acquirer.
    """

    provider_name: str
    confidence: float

    def __init__(self, http_client: httpx.AsyncClient, acquirer: ImageAcquirer) -> None:
        self._http = http_client
        self._acquirer = acquirer

    @abstractmethod
    async def recognize(
        self,
        image: ImageRef,
        prompt: str,
        config: ModelConfig,
        max_tokens: int = 2000,
    ) -> RecognitionResult:
        """Run one recognition call.

        Args:
            image: Image reference to recognize
            prompt: Prompt text
            config: Model configuration
            max_tokens: Output token budget where the provider accepts one

        Returns:
            Normalized recognition result
        """
        ...

    @abstractmethod
    def probe_request(self, config: ModelConfig) -> tuple[str, dict, dict]:
        """Return ``(url, headers, params)`` for a model-listing GET."""
        ...

    async def check_connection(self, config: ModelConfig) -> ConnectionCheck:
        """Probe the provider with its auth scheme.

        HTTP 200 and 403 both mean the endpoint is reachable.
        """
        url, headers, params = self.probe_request(config)
        try:
            response = await self._http.get(url, headers=headers, params=params)
        except httpx.TransportError as e:
            logger.warning(f"{self.provider_name} connection check failed: {e}")
            return ConnectionCheck(ok=False, message=f"Connection failed: {e}")

        if response.status_code in (200, 403):
            return ConnectionCheck(
                ok=True,
                message=f"Connected ({self.provider_name})",
                status=response.status_code,
            )
        return ConnectionCheck(
            ok=False,
            message=f"HTTP {response.status_code}: {response.reason_phrase}",
            status=response.status_code,
        )

    def _result(self, content: str, config: ModelConfig, metadata: Optional[dict] = None) -> RecognitionResult:
        return RecognitionResult(
            content=content,
            confidence=self.confidence,
            model=config.model,
            provider=self.provider_name,
            timestamp=utc_timestamp(),
            metadata=metadata or {},
        )

    def _transport_error(self, error: Exception) -> NetworkTransportError:
        logger.warning(f"{self.provider_name} request failed in transport: {error}")
        return NetworkTransportError(f"{self.provider_name} network request failed: {error}")
