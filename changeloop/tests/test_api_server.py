import unittest

import httpx

from changeloop.api.server import create_app
from changeloop.core.config import Config, QueueConfig
from changeloop.services.pipeline_context import PipelineContext
from changeloop.tests.fakes import RecordingRunner
from changeloop.version import __version__


class ApiServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.runner = RecordingRunner()
        self.context = PipelineContext(
            Config(queue=QueueConfig(pause_seconds=0)), runner=self.runner
        )
        # ASGITransport does not run the lifespan
        await self.context.initialize()
        self.client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=create_app(self.context)),
            base_url="http://testserver",
        )

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        await self.context.shutdown()

    async def test_health(self) -> None:
        response = await self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "healthy")
        self.assertEqual(body["version"], __version__)
        self.assertEqual(body["mode"], "active")

    async def test_analyze_is_queued(self) -> None:
        response = await self.client.post(
            "/api/analyze", json={"startup_id": "acme", "data": {"metrics": {}}}
        )

        self.assertEqual(response.status_code, 202)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"], "queued")

        await self.context.queue.wait_idle()
        self.assertEqual(self.runner.calls, [("acme", {"metrics": {}})])
        event = self.context.queue.get_event(body["event_id"])
        self.assertEqual(event.status.value, "completed")

    async def test_analyze_requires_subject(self) -> None:
        missing = await self.client.post("/api/analyze", json={"data": {}})
        not_object = await self.client.post("/api/analyze", json=[1, 2])
        garbage = await self.client.post(
            "/api/analyze", content=b"{nope", headers={"Content-Type": "application/json"}
        )

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(not_object.status_code, 400)
        self.assertEqual(garbage.status_code, 400)
        self.assertEqual(self.context.queue.get_status()["queue_length"], 0)

    async def test_webhook_is_acknowledged(self) -> None:
        response = await self.client.post(
            "/api/webhook/stripe", json={"startup_id": "acme", "event": "charge"}
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["message"], "Webhook from stripe received")
        self.assertTrue(body["event_id"].startswith("evt-"))

        await self.context.queue.wait_idle()
        self.assertEqual(self.runner.calls, [])
        self.assertEqual(self.context.queue.get_status()["processed_count"], 1)

    async def test_queue_status(self) -> None:
        response = await self.client.get("/api/queue/status")

        queue = response.json()["queue"]
        self.assertEqual(queue["queue_length"], 0)
        self.assertEqual(queue["success_rate"], "N/A")

    async def test_outcome_flow(self) -> None:
        await self.client.post("/api/analyze", json={"subject_id": "acme"})
        await self.context.queue.wait_idle()

        listing = (await self.client.get("/api/recommendations")).json()
        self.assertEqual(listing["count"], 1)
        self.assertEqual(listing["recommendations"][0]["run_id"], "run-1")

        response = await self.client.post(
            "/api/outcome/run-1", json={"metricImproved": True}
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["outcome"]["success"])
        self.assertEqual(body["metrics"]["success_rate"], "100.0%")

        metrics = (await self.client.get("/api/metrics")).json()["metrics"]
        self.assertEqual(metrics["total_recommendations"], 1)
        self.assertEqual(metrics["improvement_trend"], "insufficient_data")

    async def test_outcome_for_unknown_run(self) -> None:
        response = await self.client.post("/api/outcome/ghost", json={"metric_improved": True})

        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.json()["success"])


if __name__ == "__main__":
    unittest.main()
