"""HTTP analysis runner for changeloop."""

from typing import Any

import httpx
from loguru import logger

from changeloop.core.documents import to_jsonable
from changeloop.core.exceptions import AnalysisError
from changeloop.interfaces.analysis_runner import AnalysisResult, AnalysisRunner


class HttpAnalysisRunner(AnalysisRunner):
    """Calls an external analysis engine over HTTP.

    The engine receives ``POST {subject_id, payload}`` and answers with a JSON
    object carrying ``success``, ``run_id`` (or ``workflowId``),
    ``recommendation`` and ``insights``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the runner.

        Args:
            url: Engine endpoint
            timeout: Seconds to wait for one run
            client: Optional pre-built client (tests pass one with a mock transport)
        """
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._requests_made = 0

    @property
    def url(self) -> str:
        return self._url

    async def run_analysis(
        self, subject_id: str, payload: dict[str, Any]
    ) -> AnalysisResult:
        body = {"subject_id": subject_id, "payload": to_jsonable(payload)}
        logger.debug(f"Requesting analysis for {subject_id} from {self._url}")
        try:
            response = await self._client.post(self._url, json=body)
        except httpx.HTTPError as e:
            raise AnalysisError(f"Analysis engine unreachable at {self._url}: {e}") from e
        self._requests_made += 1

        if not response.is_success:
            return AnalysisResult(
                success=False,
                run_id="",
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        try:
            data = response.json()
        except ValueError as e:
            return AnalysisResult(
                success=False, run_id="", error=f"Invalid JSON from engine: {e}"
            )
        if not isinstance(data, dict):
            return AnalysisResult(
                success=False, run_id="", error="Engine reply is not a JSON object"
            )
        return AnalysisResult.from_mapping(data)

    def get_usage_stats(self) -> dict[str, Any]:
        return {"requests_made": self._requests_made}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
