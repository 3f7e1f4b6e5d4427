import asyncio
import unittest

from changeloop.core.types import ChangeCategory, ChangeKind, WatchedChange
from changeloop.services.batch_trigger import BatchTriggerCoordinator


def _change(key: str, kind: ChangeKind, data: object) -> WatchedChange:
    return WatchedChange(key=key, kind=kind, category=ChangeCategory.REVIEWS, data=data)


class BatchTriggerCoordinatorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.batches: list[list[WatchedChange]] = []
        self.batch = BatchTriggerCoordinator(0.05, self._on_batch)

    async def asyncTearDown(self) -> None:
        self.batch.stop()

    async def _on_batch(self, changes: list[WatchedChange]) -> None:
        self.batches.append(changes)

    async def test_insert_then_update_same_key_keeps_only_update(self) -> None:
        self.batch.add(_change("reviews-1", ChangeKind.INSERT, {"rating": 2}))
        self.batch.add(_change("reviews-1", ChangeKind.UPDATE, {"rating": 4}))

        await self.batch.wait_idle()

        self.assertEqual(len(self.batches), 1)
        (only,) = self.batches[0]
        self.assertEqual(only.kind, ChangeKind.UPDATE)
        self.assertEqual(only.data, {"rating": 4})

    async def test_distinct_keys_share_one_batch(self) -> None:
        for i in range(3):
            self.batch.add(_change(f"k{i}", ChangeKind.INSERT, i))
            await asyncio.sleep(0.01)

        await self.batch.wait_idle()

        self.assertEqual(len(self.batches), 1)
        self.assertEqual(sorted(c.key for c in self.batches[0]), ["k0", "k1", "k2"])
        self.assertEqual(self.batch.pending_count, 0)
        self.assertEqual(self.batch.batches_fired, 1)

    async def test_arrivals_rearm_the_timer(self) -> None:
        self.batch.add(_change("a", ChangeKind.INSERT, 1))
        await asyncio.sleep(0.03)
        self.batch.add(_change("b", ChangeKind.INSERT, 2))
        await asyncio.sleep(0.03)

        # 60ms after the first arrival, but only 30ms after the latest one
        self.assertEqual(self.batches, [])
        self.assertTrue(self.batch.is_armed())

        await self.batch.wait_idle()
        self.assertEqual(len(self.batches), 1)

    async def test_discard_removes_pending_change(self) -> None:
        self.batch.add(_change("a", ChangeKind.INSERT, 1))
        self.batch.add(_change("b", ChangeKind.INSERT, 2))

        self.assertTrue(self.batch.discard("a"))
        self.assertFalse(self.batch.discard("a"))
        await self.batch.wait_idle()

        self.assertEqual([c.key for c in self.batches[0]], ["b"])

    async def test_failed_trigger_drops_batch(self) -> None:
        attempts: list[int] = []

        async def failing(changes: list[WatchedChange]) -> None:
            attempts.append(len(changes))
            raise RuntimeError("analysis engine down")

        batch = BatchTriggerCoordinator(0.01, failing)
        batch.add(_change("a", ChangeKind.INSERT, 1))
        await batch.wait_idle()

        self.assertEqual(attempts, [1])
        self.assertEqual(batch.pending_count, 0)

        # The coordinator keeps working after a failure
        batch.add(_change("b", ChangeKind.INSERT, 2))
        await batch.wait_idle()
        self.assertEqual(attempts, [1, 1])

    async def test_immediate_mode_dispatches_each_change(self) -> None:
        batch = BatchTriggerCoordinator(10.0, self._on_batch, batch_mode=False)
        batch.add(_change("a", ChangeKind.INSERT, 1))
        batch.add(_change("a", ChangeKind.UPDATE, 2))

        await batch.wait_idle()

        self.assertEqual([[c.data for c in b] for b in self.batches], [[1], [2]])
        self.assertFalse(batch.is_armed())

    async def test_stop_drops_pending(self) -> None:
        self.batch.add(_change("a", ChangeKind.INSERT, 1))
        self.batch.stop()
        await asyncio.sleep(0.1)

        self.assertEqual(self.batches, [])
        self.assertEqual(self.batch.pending_count, 0)

    async def test_flush_fires_now(self) -> None:
        self.batch.add(_change("a", ChangeKind.INSERT, 1))

        sent = await self.batch.flush()

        self.assertEqual(sent, 1)
        self.assertEqual(len(self.batches), 1)
        self.assertFalse(self.batch.is_armed())


if __name__ == "__main__":
    unittest.main()
