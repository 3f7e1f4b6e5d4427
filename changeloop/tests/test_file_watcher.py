import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from changeloop.core.config.watch_config import DirectoryWatchConfig
from changeloop.core.types import ChangeCategory, ChangeKind, WatchedChange, WatchTopic
from changeloop.services.file_watcher import FileChangeWatcher
from changeloop.tests.fakes import OfflineWatcher, wait_until


def _config(root: Path, **overrides) -> DirectoryWatchConfig:
    return DirectoryWatchConfig(
        path=root / "inbox",
        processed_path=root / "processed",
        debounce_delay=0.05,
        trigger_delay=0.05,
        **overrides,
    )


class FileFilterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.watcher = FileChangeWatcher(DirectoryWatchConfig(path=Path("unused")))

    def test_allowed_extensions(self) -> None:
        self.assertTrue(self.watcher.should_watch_file("reviews.json"))
        self.assertTrue(self.watcher.should_watch_file("SALES.CSV"))
        self.assertFalse(self.watcher.should_watch_file("image.png"))
        self.assertFalse(self.watcher.should_watch_file("Makefile"))

    def test_hidden_and_temporary_files_excluded(self) -> None:
        for name in (".hidden.json", "~$report.csv", "data.json.tmp", "data.json~", "x.swp"):
            with self.subTest(name=name):
                self.assertFalse(self.watcher.should_watch_file(name))


class FileChangeWatcherTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.watcher = OfflineWatcher(_config(self.root))
        await self.watcher.start()
        self.inbox = self.watcher.watch_path

        self.changed: list[WatchedChange] = []
        self.categorized: list[WatchedChange] = []
        self.deleted: list[dict] = []
        self.watcher.subscribe(WatchTopic.FILE_CHANGED, self.changed.append)
        self.watcher.subscribe(WatchTopic.CATEGORY_DATA, self.categorized.append)
        self.watcher.subscribe(WatchTopic.FILE_DELETED, self.deleted.append)

    async def asyncTearDown(self) -> None:
        await self.watcher.stop()
        self._tmp.cleanup()

    async def test_settled_json_file_is_parsed_and_classified(self) -> None:
        path = self.inbox / "reviews_startup_42.json"
        path.write_text(json.dumps({"rating": 2}), encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.INSERT, path)
        self.watcher.handle_raw_event(ChangeKind.UPDATE, path)
        await self.watcher.wait_idle()

        self.assertEqual(len(self.changed), 1)
        change = self.changed[0]
        self.assertIs(change.kind, ChangeKind.INSERT)
        self.assertIs(change.category, ChangeCategory.REVIEWS)
        self.assertEqual(change.data, {"rating": 2})
        self.assertEqual(change.filename, "reviews_startup_42.json")
        self.assertEqual(change.source, "directory_watcher")
        self.assertEqual(change.size, path.stat().st_size)
        self.assertEqual(self.categorized, [change])

    async def test_csv_rows_become_dicts(self) -> None:
        path = self.inbox / "sales.csv"
        path.write_text("region,total\nnorth,10\nsouth,20\n", encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.INSERT, path)
        await self.watcher.wait_idle()

        self.assertEqual(
            self.changed[0].data,
            [{"region": "north", "total": "10"}, {"region": "south", "total": "20"}],
        )

    async def test_unparseable_json_keeps_raw_text(self) -> None:
        path = self.inbox / "metrics.json"
        path.write_text("{not json", encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.INSERT, path)
        await self.watcher.wait_idle()

        self.assertEqual(self.changed[0].data, "{not json")
        self.assertIs(self.changed[0].category, ChangeCategory.METRICS)

    async def test_filtered_files_are_ignored(self) -> None:
        for name in ("photo.png", ".secret.json", "draft.json.tmp"):
            path = self.inbox / name
            path.write_text("{}", encoding="utf-8")
            self.watcher.handle_raw_event(ChangeKind.INSERT, path)

        await self.watcher.wait_idle()

        self.assertEqual(self.changed, [])

    async def test_deleted_file_publishes_deletion(self) -> None:
        path = self.inbox / "customers.json"

        self.watcher.handle_raw_event(ChangeKind.DELETE, path)
        await self.watcher.wait_idle()

        self.assertEqual(self.changed, [])
        self.assertEqual(len(self.deleted), 1)
        self.assertEqual(self.deleted[0]["filename"], "customers.json")
        self.assertEqual(self.deleted[0]["path"], path)

    async def test_create_then_delete_before_settling(self) -> None:
        path = self.inbox / "reviews.json"
        path.write_text("[]", encoding="utf-8")
        self.watcher.handle_raw_event(ChangeKind.INSERT, path)
        path.unlink()
        self.watcher.handle_raw_event(ChangeKind.DELETE, path)

        await self.watcher.wait_idle()

        self.assertEqual(self.changed, [])
        self.assertEqual([d["filename"] for d in self.deleted], ["reviews.json"])

    async def test_modified_existing_file_settles_as_update(self) -> None:
        path = self.inbox / "metrics.json"
        path.write_text("{}", encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.UPDATE, path)
        await self.watcher.wait_idle()

        self.assertIs(self.changed[0].kind, ChangeKind.UPDATE)

    async def test_delete_then_recreate_settles_as_update(self) -> None:
        path = self.inbox / "customers.json"
        path.write_text("[]", encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.DELETE, path)
        self.watcher.handle_raw_event(ChangeKind.INSERT, path)
        self.watcher.handle_raw_event(ChangeKind.UPDATE, path)
        await self.watcher.wait_idle()

        self.assertEqual(self.deleted, [])
        self.assertEqual(len(self.changed), 1)
        self.assertIs(self.changed[0].kind, ChangeKind.UPDATE)
        self.assertEqual(self.changed[0].data, [])

    async def test_delete_of_file_that_still_exists_settles_as_update(self) -> None:
        path = self.inbox / "reviews.json"
        path.write_text("[]", encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.DELETE, path)
        await self.watcher.wait_idle()

        self.assertEqual(self.deleted, [])
        self.assertIs(self.changed[0].kind, ChangeKind.UPDATE)

    async def test_new_directory_files_are_picked_up(self) -> None:
        nested = self.inbox / "batch-1"
        nested.mkdir()
        (nested / "sales.json").write_text('{"total": 5}', encoding="utf-8")
        (nested / "ignore.bin").write_text("x", encoding="utf-8")

        self.watcher.handle_raw_event(ChangeKind.INSERT, nested, is_directory=True)
        await self.watcher.wait_idle()

        self.assertEqual([c.filename for c in self.changed], ["sales.json"])
        self.assertIs(self.changed[0].kind, ChangeKind.INSERT)

    async def test_snapshot_lists_qualifying_files(self) -> None:
        (self.inbox / "reviews.json").write_text("[1]", encoding="utf-8")
        (self.inbox / "notes.txt").write_text("hello", encoding="utf-8")
        (self.inbox / "skip.png").write_text("png", encoding="utf-8")

        snapshot = self.watcher.get_snapshot()

        self.assertEqual(
            [(f["name"], f["type"]) for f in snapshot["files"]],
            [("notes.txt", "general"), ("reviews.json", "reviews")],
        )
        self.assertEqual(snapshot["total_size"], 8)
        self.assertIsNotNone(snapshot["last_modified"])


class ObserverIntegrationTests(unittest.IsolatedAsyncioTestCase):
    async def test_real_observer_detects_new_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            watcher = FileChangeWatcher(_config(Path(tmp)))
            changed: list[WatchedChange] = []
            watcher.subscribe(WatchTopic.FILE_CHANGED, changed.append)
            await watcher.start()
            try:
                self.assertTrue(watcher.running)
                self.assertIn(str(watcher.watch_path), watcher.watched_directories)

                await asyncio.sleep(0.1)
                (watcher.watch_path / "metrics.json").write_text(
                    '{"activeUsers": 3}', encoding="utf-8"
                )

                detected = await wait_until(lambda: len(changed) > 0, timeout=5.0)
                self.assertTrue(detected)
                self.assertEqual(changed[-1].data, {"activeUsers": 3})
            finally:
                await watcher.stop()

            self.assertFalse(watcher.running)
            self.assertEqual(watcher.watched_directories, set())


if __name__ == "__main__":
    unittest.main()
