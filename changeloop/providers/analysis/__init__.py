"""Analysis engine providers."""

from .http_runner import HttpAnalysisRunner

__all__ = ["HttpAnalysisRunner"]
