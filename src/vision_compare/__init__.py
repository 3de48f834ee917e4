"""Multi-model image recognition and comparison (Gemini, OpenAI-compatible, Claude)."""

from .comparison import ComparisonOrchestrator, ComparisonRun
from .config import EngineSettings, ProviderCatalog
from .dispatcher import RecognitionDispatcher, RecognitionRequest
from .image_processor import ImageRef
from .providers import ModelConfig, RecognitionResult

__version__ = "0.1.0"
__all__ = [
    "ComparisonOrchestrator",
    "ComparisonRun",
    "EngineSettings",
    "ImageRef",
    "ModelConfig",
    "ProviderCatalog",
    "RecognitionDispatcher",
    "RecognitionRequest",
    "RecognitionResult",
]
