"""Recognition types and their canned prompts."""

import logging
from enum import Enum
from typing import Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class RecognitionType(str, Enum):
    AUTO = "auto"
    ANCIENT = "ancient"
    RECEIPT = "receipt"
    DOCUMENT = "document"
    POETRY = "poetry"
    SHOPPING = "shopping"
    ARTWORK = "artwork"
    ID = "id"
    TABLE = "table"
    HANDWRITING = "handwriting"
    PROMPT = "prompt"
    TRANSLATE = "translate"


RECOGNITION_PROMPTS = {
    RecognitionType.AUTO: "Recognize the text in this image, or describe the image content if it contains no text.",
    RecognitionType.ANCIENT: "Transcribe the text of this ancient book or manuscript, keeping the original layout.",
    RecognitionType.RECEIPT: "Extract the merchant, amount, date and other key fields from this receipt or invoice.",
    RecognitionType.DOCUMENT: "Transcribe all text in this document, preserving its structure.",
    RecognitionType.POETRY: "Transcribe this poem, keeping its line breaks.",
    RecognitionType.SHOPPING: "Extract the store, purchased items, prices and total from this shopping receipt.",
    RecognitionType.ARTWORK: "Describe the content, style and characteristics of this artwork.",
    RecognitionType.ID: "Extract the key fields from this identity document.",
    RecognitionType.TABLE: "Extract the data from this table and return it as a Markdown table.",
    RecognitionType.HANDWRITING: "Transcribe the handwritten text in this image as accurately as possible.",
    RecognitionType.PROMPT: "Write a detailed AI image-generation prompt for this picture, covering style, color and composition.",
    RecognitionType.TRANSLATE: "Recognize the text in this image and translate it into Chinese.",
}


def parse_recognition_type(value: Optional[str]) -> RecognitionType:
    """Map a raw recognition type to a known one; unknown values become AUTO."""
    if isinstance(value, RecognitionType):
        return value
    try:
        return RecognitionType((value or "").strip().lower())
    except ValueError:
        logger.debug(f"Unknown recognition type {value!r}, using auto")
        return RecognitionType.AUTO


def resolve_prompt(recognition_type: Optional[str], override: Optional[str] = None) -> str:
    """Return the prompt to send: an explicit override wins over the template.

    Raises:
        ConfigurationError: If the override is not a string
    """
    if override is not None and not isinstance(override, str):
        raise ConfigurationError("prompt must be a string")
    if override and override.strip():
        return override
    return RECOGNITION_PROMPTS[parse_recognition_type(recognition_type)]
