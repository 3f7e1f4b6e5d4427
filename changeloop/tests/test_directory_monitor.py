import json
import tempfile
import unittest
from pathlib import Path

from changeloop.core.config.watch_config import DirectoryWatchConfig
from changeloop.core.exceptions import AnalysisError
from changeloop.core.types import ChangeKind
from changeloop.interfaces.analysis_runner import AnalysisResult
from changeloop.services.directory_monitor import RESULTS_FILENAME, DataDirectoryMonitor
from changeloop.tests.fakes import OfflineWatcher, RecordingRunner


class DataDirectoryMonitorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.monitors: list[DataDirectoryMonitor] = []

    async def asyncTearDown(self) -> None:
        for monitor in self.monitors:
            await monitor.stop()
        self._tmp.cleanup()

    async def _start(
        self, runner: RecordingRunner, trigger_delay: float = 0.05, **overrides
    ) -> DataDirectoryMonitor:
        config = DirectoryWatchConfig(
            path=self.root / "inbox",
            processed_path=self.root / "processed",
            debounce_delay=0.02,
            trigger_delay=trigger_delay,
            **overrides,
        )
        monitor = DataDirectoryMonitor(config, runner, watcher=OfflineWatcher(config))
        await monitor.start()
        self.monitors.append(monitor)
        return monitor

    def _drop(self, monitor: DataDirectoryMonitor, name: str, content: object) -> Path:
        path = monitor.watcher.watch_path / name
        path.write_text(json.dumps(content), encoding="utf-8")
        monitor.watcher.handle_raw_event(ChangeKind.INSERT, path)
        return path

    async def test_dropped_file_triggers_one_analysis(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner)

        self._drop(monitor, "reviews_startup_42.json", {"rating": 2})
        await monitor.wait_idle()

        self.assertEqual(len(runner.calls), 1)
        subject_id, payload = runner.calls[0]
        self.assertEqual(subject_id, "42")
        self.assertEqual(payload["source"], "directory_monitor")
        self.assertEqual(payload["aggregated"], {"reviews": [{"rating": 2}]})
        self.assertEqual(
            [(f["name"], f["type"]) for f in payload["files"]],
            [("reviews_startup_42.json", "reviews")],
        )

    async def test_success_moves_files_and_writes_artifact(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner)

        source = self._drop(monitor, "reviews_startup_42.json", {"rating": 2})
        await monitor.wait_idle()

        run_dir = self.root / "processed" / "run-1"
        self.assertFalse(source.exists())
        self.assertTrue((run_dir / "reviews_startup_42.json").exists())

        artifact = json.loads((run_dir / RESULTS_FILENAME).read_text(encoding="utf-8"))
        self.assertEqual(artifact["run_id"], "run-1")
        self.assertEqual(artifact["subject_id"], "42")
        self.assertEqual(artifact["files"], ["reviews_startup_42.json"])
        self.assertEqual(artifact["recommendation"], {"executive_summary": "Act on 42"})

    async def test_burst_of_files_becomes_one_batch(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner, trigger_delay=0.2)

        self._drop(monitor, "reviews.json", [{"rating": 5}])
        self._drop(monitor, "metrics.json", {"activeUsers": 10})
        self._drop(monitor, "sales_startup_acme.json", {"total": 3})
        await monitor.wait_idle()

        self.assertEqual(len(runner.calls), 1)
        subject_id, payload = runner.calls[0]
        self.assertEqual(subject_id, "acme")
        self.assertEqual(set(payload["aggregated"]), {"reviews", "metrics", "sales"})
        self.assertEqual(len(payload["files"]), 3)

    async def test_rewrite_before_trigger_keeps_latest_content(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner, trigger_delay=0.2)

        self._drop(monitor, "reviews.json", {"rating": 1})
        await monitor.watcher.wait_idle()
        self._drop(monitor, "reviews.json", {"rating": 4})
        await monitor.wait_idle()

        self.assertEqual(len(runner.calls), 1)
        self.assertEqual(runner.calls[0][1]["aggregated"], {"reviews": [{"rating": 4}]})

    async def test_file_deleted_before_trigger_is_dropped(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner, trigger_delay=0.3)

        doomed = self._drop(monitor, "customers.json", [{"id": 1}])
        self._drop(monitor, "metrics.json", {"activeUsers": 1})
        await monitor.watcher.wait_idle()
        self.assertEqual(monitor.batch.pending_count, 2)

        doomed.unlink()
        monitor.watcher.handle_raw_event(ChangeKind.DELETE, doomed)
        await monitor.wait_idle()

        self.assertEqual(len(runner.calls), 1)
        self.assertEqual(
            [f["name"] for f in runner.calls[0][1]["files"]], ["metrics.json"]
        )

    async def test_subject_falls_back_to_synthesized_id(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner)

        self._drop(monitor, "metrics.json", {"activeUsers": 1})
        await monitor.wait_idle()

        self.assertTrue(runner.calls[0][0].startswith("auto_"))

    async def test_unsuccessful_analysis_leaves_files_in_place(self) -> None:
        runner = RecordingRunner(
            result=AnalysisResult(success=False, run_id="", error="engine busy")
        )
        monitor = await self._start(runner)

        source = self._drop(monitor, "reviews.json", {"rating": 3})
        await monitor.wait_idle()

        self.assertEqual(len(runner.calls), 1)
        self.assertTrue(source.exists())
        self.assertEqual(list((self.root / "processed").iterdir()), [])

    async def test_unreachable_engine_drops_batch_and_keeps_running(self) -> None:
        runner = RecordingRunner(error=AnalysisError("connection refused"))
        monitor = await self._start(runner)

        first = self._drop(monitor, "reviews.json", {"rating": 3})
        await monitor.wait_idle()
        self._drop(monitor, "metrics.json", {"activeUsers": 2})
        await monitor.wait_idle()

        self.assertEqual(len(runner.calls), 2)
        self.assertTrue(first.exists())
        self.assertEqual(monitor.batch.pending_count, 0)

    async def test_immediate_mode_runs_per_file(self) -> None:
        runner = RecordingRunner()
        monitor = await self._start(runner, trigger_delay=10.0, batch_mode=False)

        self._drop(monitor, "reviews_startup_1.json", {"rating": 5})
        self._drop(monitor, "reviews_startup_2.json", {"rating": 1})
        await monitor.wait_idle()

        self.assertEqual(sorted(call[0] for call in runner.calls), ["1", "2"])
        self.assertTrue((self.root / "processed" / "run-1").is_dir())
        self.assertTrue((self.root / "processed" / "run-2").is_dir())


if __name__ == "__main__":
    unittest.main()
