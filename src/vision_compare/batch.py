"""Batch paths: bounded-parallel uploads and sequential multi-image recognition."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from .dispatcher import RecognitionRequest
from .errors import RecognitionError
from .image_processor import ImageRef
from .prompts import RecognitionType
from .providers.base import ModelConfig, RecognitionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_CONCURRENCY = 3


@dataclass(frozen=True)
class BatchOutcome(Generic[T, R]):
    """Result of one batch item; exactly one of ``value`` and ``error`` is set."""

    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport(Generic[T, R]):
    """Outcomes in input order plus the size of each wave that ran."""

    outcomes: list[BatchOutcome[T, R]] = field(default_factory=list)
    waves: list[int] = field(default_factory=list)

    @property
    def succeeded(self) -> list[BatchOutcome[T, R]]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[BatchOutcome[T, R]]:
        return [o for o in self.outcomes if not o.ok]


class BatchUploader(Generic[T, R]):
    """Runs an async operation over many items in waves of bounded size.

    Each wave starts up to ``concurrency`` operations together and waits for
    all of them to settle before the next wave begins. A failed item is
    recorded and never stops later waves.
    """

    def __init__(self, operation: Callable[[T], Awaitable[R]], concurrency: int = DEFAULT_BATCH_CONCURRENCY):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self._operation = operation
        self.concurrency = concurrency

    async def run(self, items: Sequence[T]) -> BatchReport[T, R]:
        report: BatchReport[T, R] = BatchReport()

        for start in range(0, len(items), self.concurrency):
            wave = list(items[start:start + self.concurrency])
            wave_number = len(report.waves) + 1
            logger.info(f"Batch wave {wave_number}: {len(wave)} items")

            settled = await asyncio.gather(
                *(self._operation(item) for item in wave),
                return_exceptions=True,
            )

            for item, value in zip(wave, settled):
                if isinstance(value, asyncio.CancelledError):
                    raise value
                if isinstance(value, BaseException):
                    logger.warning(f"Batch item {item} failed: {value}")
                    report.outcomes.append(BatchOutcome(item=item, error=value))
                else:
                    report.outcomes.append(BatchOutcome(item=item, value=value))
            report.waves.append(len(wave))

        logger.info(
            f"Batch finished: {len(report.succeeded)}/{len(report.outcomes)} succeeded "
            f"in {len(report.waves)} waves"
        )
        return report


class BatchRecognizer:
    """Recognizes several images with one model, one image at a time."""

    def __init__(
        self,
        dispatcher: Any,
        pacing_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._dispatcher = dispatcher
        self.pacing_delay = pacing_delay
        self._sleep = sleep or asyncio.sleep

    async def run(
        self,
        images: Sequence[ImageRef],
        model_config: ModelConfig,
        recognition_type: str = RecognitionType.AUTO.value,
        prompt_override: Optional[str] = None,
    ) -> BatchReport[ImageRef, RecognitionResult]:
        """Recognize each image in order with the pacing delay in between.

        Args:
            images: Images to recognize
            model_config: Model used for every image
            recognition_type: Recognition type shared by every image
            prompt_override: Optional prompt replacing the canned template

        Returns:
            Report with one outcome per image; failures carry the RecognitionError
        """
        report: BatchReport[ImageRef, RecognitionResult] = BatchReport()

        for index, image in enumerate(images):
            request = RecognitionRequest(
                image=image,
                model_config=model_config,
                recognition_type=recognition_type,
                prompt_override=prompt_override,
            )
            try:
                result = await self._dispatcher.recognize(request)
            except RecognitionError as e:
                logger.warning(f"Batch recognition of {image} failed: {e}")
                report.outcomes.append(BatchOutcome(item=image, error=e))
            else:
                report.outcomes.append(BatchOutcome(item=image, value=result))
            report.waves.append(1)

            if index < len(images) - 1:
                await self._sleep(self.pacing_delay)

        logger.info(f"Batch recognition finished: {len(report.succeeded)}/{len(images)} succeeded")
        return report
