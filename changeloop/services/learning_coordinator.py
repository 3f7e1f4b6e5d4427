"""Recommendation/outcome feedback loop.

A run id is untracked, tracked (recommendation recorded) or closed (outcome
attached). Every recorded outcome appends one learning history entry;
improvement metrics and the trend are derived from the closed runs.
State lives for the process lifetime only.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from changeloop.core.types import utc_now

REINFORCE_DELTA = 0.05
MODIFY_DELTA = -0.03
DEFAULT_FAILURE_REASON = "Metric did not improve"
PATTERN_IMPLICATION = "Requires further analysis"

MIN_TREND_OUTCOMES = 5
HIGH_CONFIDENCE_OUTCOMES = 10
RECENT_WINDOW = 10


def _lookup(mapping: Mapping[str, Any] | None, *names: str) -> Any:
    """First present value among snake_case / camelCase spellings."""
    if not mapping:
        return None
    for name in names:
        value = mapping.get(name)
        if value is not None:
            return value
    return None


def _percent(numerator: int, denominator: int) -> str:
    if denominator == 0:
        return "N/A"
    return f"{numerator / denominator * 100:.1f}%"


@dataclass
class RecommendationRecord:
    run_id: str
    recommendation: Any
    tracked_at: datetime
    implemented: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "recommendation": self.recommendation,
            "tracked_at": self.tracked_at.isoformat(),
            "implemented": self.implemented,
        }


@dataclass
class OutcomeRecord:
    run_id: str
    recommendation: Any
    tracked_at: datetime
    implemented: bool
    outcome: dict[str, Any]
    success: bool
    completed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "recommendation": self.recommendation,
            "tracked_at": self.tracked_at.isoformat(),
            "implemented": self.implemented,
            "outcome": self.outcome,
            "success": self.success,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class Adjustments:
    confidence_adjustment: float = 0.0
    strategy_adjustments: list[dict[str, Any]] = field(default_factory=list)
    new_patterns: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence_adjustment": self.confidence_adjustment,
            "strategy_adjustments": list(self.strategy_adjustments),
            "new_patterns": list(self.new_patterns),
        }


@dataclass(frozen=True)
class LearningHistoryEntry:
    recommendation_summary: str | None
    outcome: dict[str, Any]
    success: bool
    adjustments: Adjustments
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation_summary": self.recommendation_summary,
            "outcome": self.outcome,
            "success": self.success,
            "adjustments": self.adjustments.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


class LearningCoordinator:
    """Correlates recommendations with observed outcomes."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self.recommendations: dict[str, RecommendationRecord] = {}
        self.outcomes: dict[str, OutcomeRecord] = {}
        self._history: list[LearningHistoryEntry] = []

    @property
    def history(self) -> tuple[LearningHistoryEntry, ...]:
        return tuple(self._history)

    def track_recommendation(self, run_id: str, recommendation: Any) -> RecommendationRecord:
        """Record what was recommended for a run; re-tracking overwrites."""
        record = RecommendationRecord(
            run_id=run_id, recommendation=recommendation, tracked_at=self._clock()
        )
        self.recommendations[run_id] = record
        logger.info(f"Tracked recommendation for run {run_id}")
        return record

    def record_outcome(
        self, run_id: str, outcome: Mapping[str, Any]
    ) -> OutcomeRecord | None:
        """Attach an observed outcome to a tracked run.

        Unknown run ids are reported and ignored (returns None).
        """
        record = self.recommendations.get(run_id)
        if record is None:
            logger.warning(f"No recommendation found for run {run_id}")
            return None

        outcome = dict(outcome)
        success = bool(_lookup(outcome, "metric_improved", "metricImproved"))
        completed_at = self._clock()
        outcome_record = OutcomeRecord(
            run_id=record.run_id,
            recommendation=record.recommendation,
            tracked_at=record.tracked_at,
            implemented=record.implemented,
            outcome=outcome,
            success=success,
            completed_at=completed_at,
        )
        self.outcomes[run_id] = outcome_record

        adjustments = self.calculate_adjustments(record, outcome)
        self._history.append(
            LearningHistoryEntry(
                recommendation_summary=self._summary(record.recommendation),
                outcome=outcome,
                success=success,
                adjustments=adjustments,
                timestamp=completed_at,
            )
        )
        logger.info(
            f"Recorded outcome for run {run_id}: "
            f"{'improved' if success else 'not improved'} "
            f"(confidence {adjustments.confidence_adjustment:+.2f})"
        )
        return outcome_record

    @staticmethod
    def _summary(recommendation: Any) -> str | None:
        if isinstance(recommendation, Mapping):
            return _lookup(recommendation, "executive_summary", "executiveSummary", "summary")
        return None

    def calculate_adjustments(
        self, record: RecommendationRecord, outcome: Mapping[str, Any]
    ) -> Adjustments:
        adjustments = Adjustments()
        strategy = self._summary(record.recommendation)

        if _lookup(outcome, "metric_improved", "metricImproved"):
            adjustments.confidence_adjustment = REINFORCE_DELTA
            adjustments.strategy_adjustments.append({"type": "reinforce", "strategy": strategy})
        else:
            adjustments.confidence_adjustment = MODIFY_DELTA
            adjustments.strategy_adjustments.append(
                {
                    "type": "modify",
                    "strategy": strategy,
                    "reason": _lookup(outcome, "failure_reason", "failureReason")
                    or DEFAULT_FAILURE_REASON,
                }
            )

        unexpected = _lookup(outcome, "unexpected_results", "unexpectedResults")
        if unexpected:
            adjustments.new_patterns.append(
                {"observation": unexpected, "implication": PATTERN_IMPLICATION}
            )
        return adjustments

    def get_improvement_metrics(self) -> dict[str, Any]:
        outcomes = list(self.outcomes.values())
        successful = sum(1 for o in outcomes if o.success)
        recent = sorted(outcomes, key=lambda o: o.completed_at, reverse=True)[:RECENT_WINDOW]
        recent_successful = sum(1 for o in recent if o.success)
        return {
            "total_recommendations": len(outcomes),
            "success_rate": _percent(successful, len(outcomes)),
            "recent_success_rate": _percent(recent_successful, len(recent)),
            "improvement_trend": self.calculate_trend(),
            "learning_iterations": len(self._history),
        }

    def calculate_trend(self) -> dict[str, Any] | str:
        """Compare success fractions of the older and newer half of outcomes."""
        if len(self.outcomes) < MIN_TREND_OUTCOMES:
            return "insufficient_data"

        ordered = sorted(self.outcomes.values(), key=lambda o: o.completed_at)
        split = len(ordered) // 2
        first, second = ordered[:split], ordered[split:]
        first_rate = sum(1 for o in first if o.success) / len(first)
        second_rate = sum(1 for o in second if o.success) / len(second)

        if first_rate == 0:
            change = "N/A"
        else:
            change = f"{(second_rate - first_rate) / first_rate * 100:.1f}%"

        return {
            "direction": "improving" if second_rate > first_rate else "declining",
            "change": change,
            "confidence": "high" if len(ordered) >= HIGH_CONFIDENCE_OUTCOMES else "medium",
        }

    def get_recommendations(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recently tracked recommendations, newest first."""
        records = sorted(
            self.recommendations.values(), key=lambda r: r.tracked_at, reverse=True
        )
        listing = []
        for record in records[:limit]:
            entry = record.to_dict()
            outcome = self.outcomes.get(record.run_id)
            entry["outcome"] = outcome.outcome if outcome else None
            entry["success"] = outcome.success if outcome else None
            listing.append(entry)
        return listing
