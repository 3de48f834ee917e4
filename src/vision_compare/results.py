"""Per-model entries of a comparison run."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .providers.base import RecognitionResult


class ComparisonStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ComparisonStatus.COMPLETED, ComparisonStatus.ERROR)


_ALLOWED_TRANSITIONS = {
    ComparisonStatus.PENDING: {ComparisonStatus.PROCESSING},
    ComparisonStatus.PROCESSING: {ComparisonStatus.COMPLETED, ComparisonStatus.ERROR},
    ComparisonStatus.COMPLETED: set(),
    ComparisonStatus.ERROR: set(),
}


class InvalidTransitionError(RuntimeError):
    """A comparison entry was asked to move backward or skip a state."""


@dataclass
class ComparisonResult:
    """Lifecycle of one model within a comparison run.

    ``pending -> processing -> completed | error``; never backward. Start and
    end times are epoch milliseconds; ``duration_ms`` is never negative.
    """

    model_identifier: str
    status: ComparisonStatus = ComparisonStatus.PENDING
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    result: Optional[RecognitionResult] = None
    error: Optional[str] = None

    @property
    def provider(self) -> str:
        return self.model_identifier.partition("::")[0]

    @property
    def model(self) -> str:
        return self.model_identifier.partition("::")[2]

    def _move(self, target: ComparisonStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"{self.model_identifier}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_processing(self, now_ms: float) -> None:
        self._move(ComparisonStatus.PROCESSING)
        self.start_time = now_ms

    def mark_completed(
        self, result: RecognitionResult, now_ms: float, duration_ms: Optional[float] = None
    ) -> None:
        self._move(ComparisonStatus.COMPLETED)
        self.result = result
        self._finish(now_ms, duration_ms)

    def mark_failed(self, error: str, now_ms: float, duration_ms: Optional[float] = None) -> None:
        self._move(ComparisonStatus.ERROR)
        self.error = error
        self._finish(now_ms, duration_ms)

    def _finish(self, now_ms: float, duration_ms: Optional[float]) -> None:
        # A measured duration comes from a monotonic clock; wall-clock
        # subtraction is only the fallback and is clamped at zero.
        self.end_time = now_ms
        if duration_ms is None:
            start = self.start_time if self.start_time is not None else now_ms
            duration_ms = now_ms - start
        self.duration_ms = max(0.0, duration_ms)

    def snapshot(self) -> "ComparisonResult":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "model": self.model_identifier,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "confidence": self.result.confidence if self.result else None,
            "content": self.result.content if self.result else None,
            "error": self.error,
        }
