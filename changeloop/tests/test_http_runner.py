import json
import unittest

import httpx

from changeloop.core.exceptions import AnalysisError
from changeloop.providers.analysis import HttpAnalysisRunner

_URL = "http://engine.local/analyze"


class HttpAnalysisRunnerTests(unittest.IsolatedAsyncioTestCase):
    def _runner(self, handler) -> HttpAnalysisRunner:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(client.aclose)
        return HttpAnalysisRunner(_URL, client=client)

    async def test_successful_run(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "workflowId": "wf-7",
                    "recommendation": {"executive_summary": "Ship it"},
                    "insights": {"score": 0.8},
                },
            )

        runner = self._runner(handler)
        result = await runner.run_analysis("acme", {"files": [], "source": "test"})

        self.assertTrue(result.success)
        self.assertEqual(result.run_id, "wf-7")
        self.assertEqual(result.recommendation, {"executive_summary": "Ship it"})
        self.assertEqual(seen, [{"subject_id": "acme", "payload": {"files": [], "source": "test"}}])
        self.assertEqual(runner.get_usage_stats(), {"requests_made": 1})

    async def test_http_error_status_is_unsuccessful(self) -> None:
        runner = self._runner(lambda request: httpx.Response(503, text="overloaded"))

        result = await runner.run_analysis("acme", {})

        self.assertFalse(result.success)
        self.assertEqual(result.error, "HTTP 503: overloaded")

    async def test_non_object_reply_is_unsuccessful(self) -> None:
        runner = self._runner(lambda request: httpx.Response(200, json=["not", "a", "dict"]))

        result = await runner.run_analysis("acme", {})

        self.assertFalse(result.success)

    async def test_invalid_json_is_unsuccessful(self) -> None:
        runner = self._runner(lambda request: httpx.Response(200, text="<html>"))

        result = await runner.run_analysis("acme", {})

        self.assertFalse(result.success)
        self.assertIn("Invalid JSON", result.error)

    async def test_unreachable_engine_raises(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        runner = self._runner(refuse)

        with self.assertRaises(AnalysisError):
            await runner.run_analysis("acme", {})

    async def test_close_leaves_injected_client_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        runner = HttpAnalysisRunner(_URL, client=client)

        await runner.close()

        self.assertFalse(client.is_closed)
        await client.aclose()


if __name__ == "__main__":
    unittest.main()
