"""Boundaries to external collaborators (analysis engine, data stores)."""

from .analysis_runner import AnalysisResult, AnalysisRunner
from .change_source import ChangeSource, ChangeStream, SourceEvent

__all__ = [
    "AnalysisResult",
    "AnalysisRunner",
    "ChangeSource",
    "ChangeStream",
    "SourceEvent",
]
