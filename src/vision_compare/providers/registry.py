"""Adapter selection for model configurations."""

import logging
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..image_processor import ImageAcquirer
from .anthropic import ClaudeAdapter
from .base import ModelConfig, ProviderAdapter
from .google import GeminiAdapter
from .openai import (
    DeepSeekAdapter,
    GenericAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
    ZhipuAdapter,
)

logger = logging.getLogger(__name__)


class ProviderTag(str, Enum):
    """Closed set of provider wire-format variants."""

    GEMINI = "gemini"
    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    CLAUDE = "claude"
    ZHIPU = "zhipu"
    OPENROUTER = "openrouter"
    GENERIC = "generic"


PROVIDER_ALIASES = {
    "gemini": ProviderTag.GEMINI,
    "google": ProviderTag.GEMINI,
    "openai": ProviderTag.OPENAI,
    "deepseek": ProviderTag.DEEPSEEK,
    "claude": ProviderTag.CLAUDE,
    "anthropic": ProviderTag.CLAUDE,
    "zhipu": ProviderTag.ZHIPU,
    "glm": ProviderTag.ZHIPU,
    "openrouter": ProviderTag.OPENROUTER,
    "generic": ProviderTag.GENERIC,
}

# Host suffix -> provider, consulted only for custom or unknown providers
API_HOST_PATTERNS = (
    ("generativelanguage.googleapis.com", ProviderTag.GEMINI),
    ("openrouter.ai", ProviderTag.OPENROUTER),
    ("deepseek.com", ProviderTag.DEEPSEEK),
    ("openai.com", ProviderTag.OPENAI),
    ("anthropic.com", ProviderTag.CLAUDE),
    ("bigmodel.cn", ProviderTag.ZHIPU),
)

# Checked in this order; first hit wins
MODEL_PATTERNS = (
    ("gemini", ProviderTag.GEMINI),
    ("claude", ProviderTag.CLAUDE),
    ("deepseek", ProviderTag.DEEPSEEK),
    ("gpt", ProviderTag.OPENAI),
    ("glm", ProviderTag.ZHIPU),
)

DEFAULT_ADAPTERS: dict[ProviderTag, type[ProviderAdapter]] = {
    ProviderTag.GEMINI: GeminiAdapter,
    ProviderTag.OPENAI: OpenAIAdapter,
    ProviderTag.DEEPSEEK: DeepSeekAdapter,
    ProviderTag.CLAUDE: ClaudeAdapter,
    ProviderTag.ZHIPU: ZhipuAdapter,
    ProviderTag.OPENROUTER: OpenRouterAdapter,
    ProviderTag.GENERIC: GenericAdapter,
}


def tag_for_provider(provider: Optional[str]) -> Optional[ProviderTag]:
    """Map an explicit provider identifier to its tag.

    A ``custom-`` prefix is stripped so ``custom-gemini`` selects the Gemini
    wire format. Plain ``custom`` and unknown names return None.
    """
    if not provider:
        return None
    name = provider.strip().lower()
    if name.startswith("custom-"):
        name = name[len("custom-"):]
    return PROVIDER_ALIASES.get(name)


def tag_for_api_url(api_url: Optional[str]) -> Optional[ProviderTag]:
    if not api_url:
        return None
    try:
        host = (urlparse(api_url).hostname or "").lower()
    except ValueError:
        return None
    for suffix, tag in API_HOST_PATTERNS:
        if host == suffix or host.endswith("." + suffix):
            return tag
    return None


def tag_for_model(model: Optional[str]) -> Optional[ProviderTag]:
    name = (model or "").lower()
    for pattern, tag in MODEL_PATTERNS:
        if pattern in name:
            return tag
    return None


class AdapterRegistry:
    """Maps model configurations to provider adapters.

    Selection order: explicit provider tag, then the API host, then the model
    name, then the generic OpenAI-compatible adapter. Custom configurations
    (``is_custom``) check the API host first, so a custom entry pointing at
    an official endpoint uses that provider's wire format.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        acquirer: ImageAcquirer,
        adapters: Optional[dict[ProviderTag, type[ProviderAdapter]]] = None,
    ):
        self._http = http_client
        self._acquirer = acquirer
        self._adapters = dict(adapters or DEFAULT_ADAPTERS)
        self._instances: dict[ProviderTag, ProviderAdapter] = {}

    def register(self, tag: ProviderTag, adapter_cls: type[ProviderAdapter]) -> None:
        """Replace the adapter class used for ``tag``."""
        self._adapters[tag] = adapter_cls
        self._instances.pop(tag, None)

    def detect(self, config: ModelConfig) -> ProviderTag:
        """Determine which wire format a model configuration speaks.

        Args:
            config: Model configuration

        Returns:
            Provider tag
        """
        explicit = tag_for_provider(config.provider)
        if explicit is not None and not config.is_custom:
            return explicit

        by_host = tag_for_api_url(config.api_url)
        if by_host is not None:
            logger.debug(f"Provider for {config.identifier} detected from API host: {by_host.value}")
            return by_host

        if explicit is not None:
            return explicit

        by_model = tag_for_model(config.model)
        if by_model is not None:
            logger.debug(f"Provider for {config.identifier} detected from model name: {by_model.value}")
            return by_model

        return ProviderTag.GENERIC

    def resolve(self, config: ModelConfig) -> ProviderAdapter:
        """Get the adapter instance for a model configuration."""
        tag = self.detect(config)
        adapter = self._instances.get(tag)
        if adapter is None:
            adapter = self._adapters[tag](self._http, self._acquirer)
            self._instances[tag] = adapter
        return adapter
