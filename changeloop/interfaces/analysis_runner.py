"""Analysis engine interface.

The analysis itself (scoring reviews, metrics, producing recommendations)
lives outside changeloop; pipelines only see this boundary and call it at
most once per fired batch.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass
class AnalysisResult:
    """Outcome of one ``run_analysis`` call."""

    success: bool
    run_id: str
    recommendation: dict[str, Any] | None = None
    insights: Any = None
    error: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisResult":
        """Build from an engine reply; accepts ``run_id`` or ``workflowId``."""
        run_id = data.get("run_id") or data.get("runId") or data.get("workflowId")
        return cls(
            success=bool(data.get("success", False)),
            run_id=str(run_id) if run_id is not None else "",
            recommendation=data.get("recommendation"),
            insights=data.get("insights"),
            error=data.get("error"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "recommendation": self.recommendation,
            "insights": self.insights,
            "error": self.error,
        }


class AnalysisRunner(ABC):
    """Abstract analysis entrypoint."""

    @abstractmethod
    async def run_analysis(
        self, subject_id: str, payload: dict[str, Any]
    ) -> AnalysisResult:
        """Run the downstream analysis for ``subject_id``.

        Returns an unsuccessful result when the engine reports failure;
        raises when the engine cannot be reached at all.
        """
        ...

    async def close(self) -> None:
        """Release transport resources."""
        return None
