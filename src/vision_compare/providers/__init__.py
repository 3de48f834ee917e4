"""Provider adapters for multi-model recognition."""

from .base import ConnectionCheck, ModelConfig, ProviderAdapter, RecognitionResult
from .registry import AdapterRegistry, ProviderTag

__all__ = [
    "AdapterRegistry",
    "ConnectionCheck",
    "ModelConfig",
    "ProviderAdapter",
    "ProviderTag",
    "RecognitionResult",
]
