"""Content-type detection for auto recognition.

Before an ``auto`` recognition the same model is asked what kind of image it
is looking at, then how sure it is. The detected type picks the prompt for the
real recognition call.
"""

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable

from .prompts import RECOGNITION_PROMPTS, RecognitionType

logger = logging.getLogger(__name__)

# Detected type name -> recognition type whose prompt is used.
# photo and other have no specialised prompt and keep the auto template.
CLASSIFIABLE_TYPES = {
    "ancient": RecognitionType.ANCIENT,
    "receipt": RecognitionType.RECEIPT,
    "document": RecognitionType.DOCUMENT,
    "poetry": RecognitionType.POETRY,
    "shopping": RecognitionType.SHOPPING,
    "artwork": RecognitionType.ARTWORK,
    "id": RecognitionType.ID,
    "table": RecognitionType.TABLE,
    "handwriting": RecognitionType.HANDWRITING,
    "photo": RecognitionType.AUTO,
    "other": RecognitionType.AUTO,
}

CLASSIFICATION_PROMPT = (
    "Classify this image. Reply with exactly one of these type names and nothing else:\n"
    "ancient - ancient books, manuscripts or classical texts\n"
    "receipt - receipts, invoices or bills\n"
    "document - printed documents, contracts or reports\n"
    "poetry - poems or verse\n"
    "shopping - shopping lists or supermarket receipts\n"
    "artwork - paintings, drawings or other artwork\n"
    "id - identity cards, passports or licences\n"
    "table - tables, spreadsheets or charts\n"
    "handwriting - handwritten notes or letters\n"
    "photo - ordinary photographs without much text\n"
    "other - anything else"
)

CONFIDENCE_PROMPT = (
    "You classified this image as '{detected_type}'. Rate your confidence from 0 to 100 "
    "and give a short reason, formatted exactly as: score|reason"
)

DEFAULT_CONFIDENCE = 80
CLASSIFICATION_MAX_TOKENS = 100

AskModel = Callable[[str, int], Awaitable[str]]


@dataclass(frozen=True)
class Classification:
    """What the model thinks the image is."""

    detected_type: str
    recognition_type: RecognitionType
    confidence: int
    reasoning: str

    @property
    def prompt(self) -> str:
        return RECOGNITION_PROMPTS[self.recognition_type]

    def to_dict(self) -> dict:
        return {
            "detected_type": self.detected_type,
            "recognition_type": self.recognition_type.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


def parse_detected_type(text: str) -> str:
    """Return the first known type name in a model reply, or ``other``."""
    for word in re.findall(r"[a-z]+", (text or "").lower()):
        if word in CLASSIFIABLE_TYPES:
            return word
    return "other"


def parse_confidence(text: str) -> tuple[int, str]:
    """Parse a ``score|reason`` reply.

    Unparseable or zero scores fall back to ``DEFAULT_CONFIDENCE``; scores are
    clamped to 0-100.
    """
    score_text, _, reasoning = (text or "").partition("|")
    match = re.search(r"\d+", score_text)
    score = int(match.group()) if match else 0
    if not score:
        score = DEFAULT_CONFIDENCE
    return min(score, 100), reasoning.strip() or "automatic classification"


async def classify_image(ask: AskModel) -> Classification:
    """Ask the model for the image's content type, then for its confidence.

    Args:
        ask: Coroutine sending ``(prompt, max_tokens)`` to the model for the
            image being classified and returning the reply text

    Returns:
        The classification

    Raises:
        RecognitionError: If either model call fails
    """
    reply = await ask(CLASSIFICATION_PROMPT, CLASSIFICATION_MAX_TOKENS)
    detected_type = parse_detected_type(reply)

    reply = await ask(CONFIDENCE_PROMPT.format(detected_type=detected_type), CLASSIFICATION_MAX_TOKENS)
    confidence, reasoning = parse_confidence(reply)

    logger.info(f"Image classified as {detected_type} ({confidence}%)")
    return Classification(
        detected_type=detected_type,
        recognition_type=CLASSIFIABLE_TYPES[detected_type],
        confidence=confidence,
        reasoning=reasoning,
    )
