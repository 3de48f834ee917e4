"""Performance statistics and model recommendation for comparison runs."""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .results import ComparisonResult, ComparisonStatus

CONFIDENCE_WEIGHT = 0.7
SPEED_WEIGHT = 0.3


@dataclass(frozen=True)
class PerformanceStats:
    total_models: int
    completed_models: int
    average_duration_ms: float
    fastest_model: str
    most_accurate_model: str
    recommended_model: str


def composite_score(confidence: float, duration_ms: float, max_duration_ms: float) -> float:
    """Weighted 70/30 blend of confidence and normalized speed.

    When every duration in the set is zero the speed term counts as 1.
    """
    speed = 1.0 if max_duration_ms <= 0 else 1.0 - duration_ms / max_duration_ms
    return CONFIDENCE_WEIGHT * confidence + SPEED_WEIGHT * speed


def _first_max(items: Sequence[ComparisonResult], key) -> ComparisonResult:
    best = items[0]
    best_key = key(best)
    for item in items[1:]:
        value = key(item)
        if value > best_key:
            best, best_key = item, value
    return best


def compute_performance_stats(
    results: Iterable[ComparisonResult],
    total_models: Optional[int] = None,
) -> Optional[PerformanceStats]:
    """Compute stats over the completed entries of a comparison run.

    Ties resolve to the entry encountered first.

    Args:
        results: All entries of the run, in dispatch order
        total_models: Number of models requested (defaults to ``len(results)``)

    Returns:
        Stats, or None when no entry completed
    """
    results = list(results)
    completed = [
        r for r in results
        if r.status is ComparisonStatus.COMPLETED and r.result is not None
    ]
    if not completed:
        return None

    durations = [r.duration_ms or 0.0 for r in completed]
    max_duration = max(durations)

    fastest = _first_max(completed, lambda r: -(r.duration_ms or 0.0))
    most_accurate = _first_max(completed, lambda r: r.result.confidence)
    recommended = _first_max(
        completed,
        lambda r: composite_score(r.result.confidence, r.duration_ms or 0.0, max_duration),
    )

    return PerformanceStats(
        total_models=len(results) if total_models is None else total_models,
        completed_models=len(completed),
        average_duration_ms=sum(durations) / len(durations),
        fastest_model=fastest.model_identifier,
        most_accurate_model=most_accurate.model_identifier,
        recommended_model=recommended.model_identifier,
    )
