"""Process-wide pipeline state, owned explicitly.

``PipelineContext`` holds the configuration, the learning coordinator, the
event queue and the analysis runner for one process. It is created once at
startup, initialized, handed to the components that need it and shut down
at exit.
"""

from typing import Any

from loguru import logger

from changeloop.core.config import Config
from changeloop.core.exceptions import AnalysisError
from changeloop.interfaces.analysis_runner import AnalysisResult, AnalysisRunner
from changeloop.services.event_queue import SequentialEventQueue
from changeloop.services.learning_coordinator import LearningCoordinator

ANALYSIS_REQUEST = "analysis_request"
WEBHOOK = "webhook"
OUTCOME_UPDATE = "outcome_update"


class TrackedAnalysisRunner(AnalysisRunner):
    """Runner wrapper that records each successful recommendation."""

    def __init__(self, inner: AnalysisRunner, learning: LearningCoordinator):
        self.inner = inner
        self.learning = learning

    async def run_analysis(
        self, subject_id: str, payload: dict[str, Any]
    ) -> AnalysisResult:
        result = await self.inner.run_analysis(subject_id, payload)
        if result.success and result.run_id:
            self.learning.track_recommendation(result.run_id, result.recommendation)
        return result

    async def close(self) -> None:
        await self.inner.close()


class PipelineContext:
    """Owner of the shared pipeline components."""

    def __init__(
        self,
        config: Config | None = None,
        runner: AnalysisRunner | None = None,
        learning: LearningCoordinator | None = None,
    ):
        self.config = config or Config()
        self.learning = learning or LearningCoordinator()
        self._base_runner = runner
        self._runner: TrackedAnalysisRunner | None = None
        self._queue: SequentialEventQueue | None = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def runner(self) -> TrackedAnalysisRunner:
        if self._runner is None:
            raise RuntimeError("PipelineContext is not initialized")
        return self._runner

    @property
    def queue(self) -> SequentialEventQueue:
        if self._queue is None:
            raise RuntimeError("PipelineContext is not initialized")
        return self._queue

    async def initialize(self) -> None:
        if self._initialized:
            return

        base_runner = self._base_runner
        if base_runner is None:
            from changeloop.providers.analysis.http_runner import HttpAnalysisRunner

            base_runner = HttpAnalysisRunner(
                self.config.analysis.url, timeout=self.config.analysis.timeout
            )
        self._runner = TrackedAnalysisRunner(base_runner, self.learning)

        self._queue = SequentialEventQueue(pause_seconds=self.config.queue.pause_seconds)
        self._queue.register_handler(ANALYSIS_REQUEST, self._handle_analysis_request)
        self._queue.register_handler(WEBHOOK, self._handle_webhook)
        self._queue.register_handler(OUTCOME_UPDATE, self._handle_outcome_update)

        self._initialized = True
        logger.info("Pipeline context initialized")

    async def shutdown(self) -> None:
        """Stop the queue and release the runner; safe to call repeatedly."""
        if not self._initialized:
            return
        self._initialized = False
        if self._queue is not None:
            await self._queue.close()
        if self._runner is not None:
            await self._runner.close()
        logger.info("Pipeline context shut down")

    async def __aenter__(self) -> "PipelineContext":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def _handle_analysis_request(self, payload: dict[str, Any]) -> AnalysisResult:
        subject_id = payload["subject_id"]
        logger.info(f"Running requested analysis for {subject_id}")
        result = await self.runner.run_analysis(subject_id, payload.get("data") or {})
        if not result.success:
            raise AnalysisError(result.error or f"Analysis failed for {subject_id}")
        return result

    async def _handle_webhook(self, payload: dict[str, Any]) -> AnalysisResult | None:
        source = payload.get("source", "unknown")
        body = payload.get("data") or {}
        logger.info(f"Processing webhook from {source}")

        subject_id = body.get("subject_id") or body.get("startup_id")
        if subject_id and body.get("trigger_analysis"):
            logger.info(f"Webhook from {source} triggers analysis for {subject_id}")
            return await self.runner.run_analysis(str(subject_id), body)
        return None

    async def _handle_outcome_update(self, payload: dict[str, Any]) -> Any:
        return self.learning.record_outcome(payload["run_id"], payload.get("outcome") or {})
