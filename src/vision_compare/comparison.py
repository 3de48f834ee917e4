"""Sequential multi-model comparison runs."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from .dispatcher import RecognitionRequest
from .errors import RecognitionError
from .image_processor import ImageRef
from .prompts import RecognitionType, parse_recognition_type
from .providers.base import ModelConfig, RecognitionResult
from .results import ComparisonResult, ComparisonStatus
from .scoring import PerformanceStats, compute_performance_stats

logger = logging.getLogger(__name__)

DEFAULT_PACING_DELAY = 1.0


class Dispatcher(Protocol):
    async def recognize(self, request: RecognitionRequest) -> RecognitionResult: ...


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"


@dataclass(frozen=True)
class ComparisonRun:
    """Immutable outcome of one comparison run, handed to the caller."""

    results: tuple[ComparisonResult, ...]
    stats: Optional[PerformanceStats]
    recognition_type: RecognitionType
    stopped_early: bool = False

    @property
    def completed(self) -> tuple[ComparisonResult, ...]:
        return tuple(r for r in self.results if r.status is ComparisonStatus.COMPLETED)

    @property
    def failed(self) -> tuple[ComparisonResult, ...]:
        return tuple(r for r in self.results if r.status is ComparisonStatus.ERROR)


def _now_ms() -> float:
    return time.time() * 1000


class ComparisonOrchestrator:
    """Runs one image through several models, one at a time.

    Models are dispatched strictly in caller order with a fixed pacing delay
    between calls. A model's failure is recorded on its own entry and never
    stops the others.

    ``pause()`` sets a flag checked before each dispatch; it cannot interrupt
    a call already in flight. Once the loop has stopped on the flag, the
    remaining entries stay ``pending`` and the run finishes; continuing means
    starting a new run.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = _now_ms,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator.

        Args:
            dispatcher: Object with an async ``recognize(RecognitionRequest)``
            pacing_delay: Seconds to wait between consecutive dispatches
            sleep: Async sleep used for pacing (injectable for tests)
            clock: Millisecond wall clock for start/end times
            monotonic: Seconds clock used to measure durations
        """
        self._dispatcher = dispatcher
        self.pacing_delay = pacing_delay
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._monotonic = monotonic
        self._state = OrchestratorState.IDLE
        self._pause_requested = False
        self._results: list[ComparisonResult] = []

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def results(self) -> tuple[ComparisonResult, ...]:
        """Snapshot of the current run's entries."""
        return tuple(r.snapshot() for r in self._results)

    def pause(self) -> None:
        if self._state is not OrchestratorState.RUNNING:
            logger.debug(f"pause() ignored in state {self._state.value}")
            return
        self._pause_requested = True
        self._state = OrchestratorState.PAUSED
        logger.info("Comparison pause requested")

    def resume(self) -> None:
        if self._state is not OrchestratorState.PAUSED:
            logger.debug(f"resume() ignored in state {self._state.value}")
            return
        self._pause_requested = False
        self._state = OrchestratorState.RUNNING
        logger.info("Comparison resumed")

    async def run(
        self,
        image: ImageRef,
        model_configs: Sequence[ModelConfig],
        recognition_type: str = RecognitionType.AUTO.value,
        prompt_override: Optional[str] = None,
        on_update: Optional[Callable[[ComparisonResult], None]] = None,
    ) -> ComparisonRun:
        """Compare several models on the same image.

        Args:
            image: Image to recognize
            model_configs: Models to compare, dispatched in this order
            recognition_type: Recognition type shared by every model
            prompt_override: Optional prompt replacing the canned template
            on_update: Called with a snapshot whenever an entry changes state

        Returns:
            Snapshot of every entry plus performance stats over completed ones
        """
        if self._state in (OrchestratorState.RUNNING, OrchestratorState.PAUSED):
            raise RuntimeError("A comparison run is already in progress")

        kind = parse_recognition_type(recognition_type)
        self._results = [ComparisonResult(model_identifier=c.identifier) for c in model_configs]
        self._pause_requested = False
        self._state = OrchestratorState.RUNNING
        stopped_early = False

        logger.info(f"Starting comparison of {len(model_configs)} models ({kind.value})")

        try:
            for index, (config, entry) in enumerate(zip(model_configs, self._results)):
                if self._pause_requested:
                    stopped_early = True
                    logger.info(f"Comparison paused before {entry.model_identifier}")
                    break

                entry.mark_processing(self._clock())
                started = self._monotonic()
                self._notify(on_update, entry)

                request = RecognitionRequest(
                    image=image,
                    model_config=config,
                    recognition_type=kind.value,
                    prompt_override=prompt_override,
                )
                try:
                    result = await self._dispatcher.recognize(request)
                except RecognitionError as e:
                    entry.mark_failed(str(e), self._clock(), self._elapsed_ms(started))
                    logger.warning(
                        f"{entry.model_identifier} failed after {entry.duration_ms:.0f}ms: {e}"
                    )
                except Exception as e:
                    entry.mark_failed(f"Unexpected error: {e}", self._clock(), self._elapsed_ms(started))
                    logger.exception(f"{entry.model_identifier} raised an unexpected error")
                else:
                    entry.mark_completed(result, self._clock(), self._elapsed_ms(started))
                    logger.info(f"{entry.model_identifier} completed in {entry.duration_ms:.0f}ms")
                self._notify(on_update, entry)

                if index < len(model_configs) - 1:
                    await self._sleep(self.pacing_delay)
        finally:
            self._state = OrchestratorState.FINISHED

        snapshot = self.results
        stats = compute_performance_stats(snapshot, total_models=len(model_configs))
        if stats:
            logger.info(
                f"Comparison finished: {stats.completed_models}/{stats.total_models} completed, "
                f"recommended {stats.recommended_model}"
            )
        else:
            logger.info("Comparison finished with no completed models")

        return ComparisonRun(
            results=snapshot,
            stats=stats,
            recognition_type=kind,
            stopped_early=stopped_early,
        )

    def _elapsed_ms(self, started: float) -> float:
        return (self._monotonic() - started) * 1000

    @staticmethod
    def _notify(callback: Optional[Callable[[ComparisonResult], None]], entry: ComparisonResult) -> None:
        if callback is not None:
            callback(entry.snapshot())
