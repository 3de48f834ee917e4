"""Engine settings and provider catalog."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError
from .image_processor import DEFAULT_MAX_IMAGE_BYTES
from .providers.base import ModelConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "VISION_COMPARE_"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_API_URLS = {
    "gemini": "https://generativelanguage.googleapis.com/v1beta",
    "openai": "https://api.openai.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "claude": "https://api.anthropic.com/v1",
    "zhipu": "https://open.bigmodel.cn/api/paas/v4",
    "openrouter": "https://openrouter.ai/api/v1",
}

# Environment variable names for API keys
API_KEY_ENV_VARS = {
    "gemini": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
    "openai": ["OPENAI_API_KEY"],
    "deepseek": ["DEEPSEEK_API_KEY"],
    "claude": ["ANTHROPIC_API_KEY", "CLAUDE_API_KEY"],
    "zhipu": ["ZHIPU_API_KEY"],
    "openrouter": ["OPENROUTER_API_KEY"],
}


def parse_flag(raw: str) -> bool:
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


@dataclass
class EngineSettings:
    """Tunables for the recognition engine."""

    request_timeout: float = 30.0
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    pacing_delay: float = 1.0
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    batch_concurrency: int = 3
    max_tokens: int = 2000
    uploads_dir: Path = field(default_factory=lambda: Path("uploads"))
    development: bool = False
    auto_classify: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """Build settings from ``VISION_COMPARE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Settings with defaults for anything unset

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        settings = cls()

        def read(name: str, cast):
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw == "":
                return None
            try:
                return cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from e

        for name, attr, cast in (
            ("TIMEOUT", "request_timeout", float),
            ("MAX_ATTEMPTS", "max_attempts", int),
            ("RETRY_BASE_DELAY", "retry_base_delay", float),
            ("PACING_DELAY", "pacing_delay", float),
            ("MAX_IMAGE_BYTES", "max_image_bytes", int),
            ("BATCH_CONCURRENCY", "batch_concurrency", int),
            ("MAX_TOKENS", "max_tokens", int),
            ("UPLOADS_DIR", "uploads_dir", Path),
            ("AUTO_CLASSIFY", "auto_classify", parse_flag),
        ):
            value = read(name, cast)
            if value is not None:
                setattr(settings, attr, value)

        environment = env.get(ENV_PREFIX + "ENV", "").strip().lower()
        settings.development = environment in ("dev", "development")
        return settings


def resolve_api_key(provider: str, explicit_key: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Resolve an API key from an explicit value, then environment variables.

    Returns:
        The key, or None when nothing is configured
    """
    if explicit_key:
        return explicit_key

    env = os.environ if environ is None else environ
    for var in API_KEY_ENV_VARS.get(provider.lower(), []):
        key = env.get(var)
        if key:
            logger.debug(f"Using API key from {var} for {provider}")
            return key
    return None


@dataclass(frozen=True)
class ProviderEntry:
    """One configured provider: credentials plus its model list."""

    id: str
    api_key: Optional[str] = field(default=None, repr=False)
    api_url: Optional[str] = None
    models: tuple[str, ...] = ()

    @property
    def is_custom(self) -> bool:
        return self.id.startswith("custom")


class ProviderCatalog:
    """Explicit provider list passed to the engine at call time.

    Example file::

        {"providers": [
            {"id": "gemini", "apiKey": "...", "models": ["gemini-1.5-flash"]},
            {"id": "custom-relay", "apiUrl": "https://relay.example/v1", "apiKey": "..."}
        ]}
    """

    def __init__(self, providers: list[ProviderEntry], environ: Optional[Mapping[str, str]] = None):
        self._providers = {p.id: p for p in providers}
        self._environ = environ

    @classmethod
    def from_dict(cls, data: dict, environ: Optional[Mapping[str, str]] = None) -> "ProviderCatalog":
        entries = []
        for raw in data.get("providers", []):
            if not isinstance(raw, dict) or not raw.get("id"):
                raise ConfigurationError(f"Provider entry without an id: {raw!r}")
            entries.append(
                ProviderEntry(
                    id=str(raw["id"]),
                    api_key=raw.get("apiKey") or raw.get("api_key"),
                    api_url=raw.get("apiUrl") or raw.get("api_url"),
                    models=tuple(raw.get("models", ())),
                )
            )
        return cls(entries, environ=environ)

    @classmethod
    def load(cls, path: Path, environ: Optional[Mapping[str, str]] = None) -> "ProviderCatalog":
        """Load a catalog from a JSON file."""
        path = Path(path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Providers file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Providers file is not valid JSON: {path}: {e}") from e
        catalog = cls.from_dict(data, environ=environ)
        logger.debug(f"Loaded {len(catalog)} providers from {path}")
        return catalog

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def model_identifiers(self) -> list[str]:
        """Every configured ``provider::model``, in catalog order."""
        return [f"{p.id}::{model}" for p in self._providers.values() for model in p.models]

    def model_config(self, identifier: str) -> ModelConfig:
        """Build the ModelConfig for a ``provider::model`` identifier.

        Providers missing from the catalog are still usable when a key can be
        found in the environment and a default URL is known.

        Raises:
            ConfigurationError: Malformed identifier, or no key or URL available
        """
        provider_id, sep, model = identifier.partition("::")
        if not sep or not provider_id or not model:
            raise ConfigurationError(
                f"Model identifier must look like 'provider::model', got {identifier!r}"
            )

        entry = self._providers.get(provider_id) or ProviderEntry(id=provider_id)
        api_key = resolve_api_key(provider_id, entry.api_key, self._environ)
        if not api_key:
            raise ConfigurationError(f"No API key configured for provider {provider_id!r}")

        api_url = entry.api_url or DEFAULT_API_URLS.get(provider_id.lower())
        if not api_url:
            raise ConfigurationError(f"No API URL configured for provider {provider_id!r}")

        return ModelConfig(
            provider=provider_id,
            model=model,
            api_key=api_key,
            api_url=api_url,
            is_custom=entry.is_custom,
        )
