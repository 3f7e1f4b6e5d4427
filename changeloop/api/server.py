"""HTTP surface for changeloop.

A thin Starlette application over a ``PipelineContext``: analysis requests
and inbound webhooks are enqueued on the sequential event queue, and the
queue status and learning metrics are exposed read-only.

Usage:
    changeloop serve --port 3000
"""

import contextlib
import json
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from changeloop.core.documents import to_jsonable
from changeloop.core.types import utc_now
from changeloop.services.pipeline_context import (
    ANALYSIS_REQUEST,
    WEBHOOK,
    PipelineContext,
)
from changeloop.version import __version__

RECOMMENDATION_LISTING_LIMIT = 10


def _json(content: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(to_jsonable(content), status_code=status_code)


async def _read_body(request: Request) -> dict[str, Any] | None:
    """Parsed JSON object body; empty bodies count as ``{}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_app(context: PipelineContext) -> Starlette:
    """Create the Starlette application bound to ``context``."""

    async def handle_health(request: Request) -> JSONResponse:
        return _json(
            {
                "status": "healthy",
                "service": "changeloop",
                "version": __version__,
                "timestamp": utc_now().isoformat(),
                "mode": "active" if context.initialized else "initializing",
            }
        )

    async def handle_analyze(request: Request) -> JSONResponse:
        body = await _read_body(request)
        if body is None:
            return _json({"success": False, "error": "JSON object body required"}, 400)

        subject_id = body.get("subject_id") or body.get("startup_id")
        if not subject_id:
            return _json({"success": False, "error": "subject_id is required"}, 400)

        logger.info(f"Received analysis request for: {subject_id}")
        event_id = context.queue.enqueue(
            ANALYSIS_REQUEST,
            {"subject_id": str(subject_id), "data": body.get("data") or {}},
        )
        return _json(
            {"success": True, "event_id": event_id, "status": "queued"}, 202
        )

    async def handle_webhook(request: Request) -> JSONResponse:
        source = request.path_params["source"]
        body = await _read_body(request)
        if body is None:
            return _json({"success": False, "error": "JSON object body required"}, 400)

        logger.info(f"Received webhook from {source}")
        event_id = context.queue.enqueue(WEBHOOK, {"source": source, "data": body})
        return _json(
            {
                "success": True,
                "message": f"Webhook from {source} received",
                "event_id": event_id,
                "timestamp": utc_now().isoformat(),
            }
        )

    async def handle_metrics(request: Request) -> JSONResponse:
        return _json(
            {
                "success": True,
                "metrics": context.learning.get_improvement_metrics(),
                "timestamp": utc_now().isoformat(),
            }
        )

    async def handle_queue_status(request: Request) -> JSONResponse:
        return _json(
            {
                "success": True,
                "queue": context.queue.get_status(),
                "timestamp": utc_now().isoformat(),
            }
        )

    async def handle_recommendations(request: Request) -> JSONResponse:
        listing = context.learning.get_recommendations(RECOMMENDATION_LISTING_LIMIT)
        return _json(
            {
                "success": True,
                "count": len(context.learning.recommendations),
                "recommendations": listing,
                "timestamp": utc_now().isoformat(),
            }
        )

    async def handle_outcome(request: Request) -> JSONResponse:
        run_id = request.path_params["run_id"]
        body = await _read_body(request)
        if body is None:
            return _json({"success": False, "error": "JSON object body required"}, 400)

        logger.info(f"Recording outcome for run: {run_id}")
        record = context.learning.record_outcome(run_id, body)
        if record is None:
            return _json(
                {"success": False, "error": f"No recommendation found for run {run_id}"},
                404,
            )
        return _json(
            {
                "success": True,
                "outcome": record.to_dict(),
                "metrics": context.learning.get_improvement_metrics(),
            }
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await context.initialize()
        try:
            yield
        finally:
            await context.shutdown()

    routes = [
        Route("/health", endpoint=handle_health, methods=["GET"]),
        Route("/api/analyze", endpoint=handle_analyze, methods=["POST"]),
        Route("/api/webhook/{source}", endpoint=handle_webhook, methods=["POST"]),
        Route("/api/metrics", endpoint=handle_metrics, methods=["GET"]),
        Route("/api/queue/status", endpoint=handle_queue_status, methods=["GET"]),
        Route("/api/recommendations", endpoint=handle_recommendations, methods=["GET"]),
        Route("/api/outcome/{run_id}", endpoint=handle_outcome, methods=["POST"]),
    ]
    return Starlette(routes=routes, lifespan=lifespan)


class ChangeLoopServer:
    """Runs the HTTP surface with uvicorn."""

    def __init__(self, context: PipelineContext, host: str = "localhost", port: int = 3000):
        self.context = context
        self.host = host
        self.port = port
        self._server: Any = None

    async def run(self) -> None:
        import uvicorn

        app = create_app(self.context)
        config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            log_level="info",
            access_log=True,
        )
        self._server = uvicorn.Server(config)

        logger.info(f"Starting changeloop API server on {self.host}:{self.port}")
        logger.info(f"Health check: http://{self.host}:{self.port}/health")
        logger.info(f"Trigger analysis: POST http://{self.host}:{self.port}/api/analyze")

        await self._server.serve()
