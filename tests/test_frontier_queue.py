import asyncio
import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from crawlfrontier.errors import DepthExceeded, QueueFull, RedirectionLoopSuspected
from crawlfrontier.frontier.frontier_queue import FrontierQueue
from crawlfrontier.frontier.work_item import WorkItem


def item(url: str, doc_id: int, priority: int = 0, depth: int = 0, **kwargs) -> WorkItem:
    return WorkItem(url=url, doc_id=doc_id, priority=priority, depth=depth, **kwargs)


class FrontierQueueTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.path = str(Path(self._tmp.name) / "frontier.jsonl")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_orders_by_priority_then_depth_then_fifo(self) -> None:
        queue = FrontierQueue(self.path)
        try:
            queue.put(item("http://a.com/deep", 1, priority=0, depth=2))
            queue.put(item("http://b.com/first", 2, priority=0, depth=1))
            queue.put(item("http://c.com/urgent", 3, priority=-5, depth=3))
            queue.put(item("http://d.com/second", 4, priority=0, depth=1))
            queue.put(item("http://e.com/low", 5, priority=10, depth=0))

            order = [queue.take().doc_id for _ in range(5)]

            self.assertEqual([3, 2, 4, 1, 5], order)
            self.assertIsNone(queue.take())
        finally:
            queue.close()

    def test_peek_does_not_remove(self) -> None:
        queue = FrontierQueue(self.path)
        try:
            queue.put(item("http://a.com/", 1))
            self.assertEqual(1, queue.peek().doc_id)
            self.assertEqual(1, len(queue))
        finally:
            queue.close()

    def test_take_by_host(self) -> None:
        queue = FrontierQueue(self.path)
        try:
            queue.put(item("http://a.com/1", 1))
            queue.put(item("http://b.com/1", 2))

            self.assertEqual(2, queue.take("b.com").doc_id)
            self.assertIsNone(queue.take("b.com"))
            self.assertEqual(["a.com"], queue.pending_hosts())
        finally:
            queue.close()

    def test_take_best_skips_hosts_that_are_not_ready(self) -> None:
        queue = FrontierQueue(self.path)
        try:
            queue.put(item("http://a.com/1", 1, priority=-1))
            queue.put(item("http://b.com/1", 2, priority=5))

            taken = queue.take_best(lambda host: host != "a.com")

            self.assertEqual(2, taken.doc_id)
            self.assertIsNone(queue.take_best(lambda host: host != "a.com"))
        finally:
            queue.close()

    def test_capacity_is_enforced_before_writing(self) -> None:
        queue = FrontierQueue(self.path, max_size=2)
        try:
            queue.put(item("http://a.com/1", 1))
            queue.put(item("http://a.com/2", 2))

            with self.assertRaises(QueueFull):
                queue.ensure_capacity()
            with self.assertRaises(QueueFull):
                queue.put(item("http://a.com/3", 3))

            self.assertEqual(2, len(queue))
        finally:
            queue.close()

    def test_depth_bound(self) -> None:
        queue = FrontierQueue(self.path, max_depth=2)
        try:
            queue.put(item("http://a.com/ok", 1, depth=2))
            with self.assertRaises(DepthExceeded):
                queue.put(item("http://a.com/deep", 2, depth=3))
            self.assertEqual(1, len(queue))
        finally:
            queue.close()

    def test_unlimited_depth(self) -> None:
        queue = FrontierQueue(self.path, max_depth=-1)
        try:
            queue.put(item("http://a.com/deep", 1, depth=500))
            self.assertEqual(1, len(queue))
        finally:
            queue.close()

    def test_redirection_bound(self) -> None:
        queue = FrontierQueue(self.path, max_redirection_depth=2)
        try:
            queue.put(item("http://a.com/r2", 1, redirection_depth=2))
            with self.assertRaises(RedirectionLoopSuspected):
                queue.put(item("http://a.com/r3", 2, redirection_depth=3))
        finally:
            queue.close()

    def test_restart_recovers_untaken_items_in_order(self) -> None:
        queue = FrontierQueue(self.path)
        for doc_id in range(1, 6):
            queue.put(item(f"http://host{doc_id}.com/", doc_id))
        self.assertEqual(1, queue.take().doc_id)
        self.assertEqual(2, queue.take().doc_id)
        queue.close()

        reopened = FrontierQueue(self.path)
        try:
            self.assertEqual(3, len(reopened))
            self.assertEqual([3, 4, 5], [i.doc_id for i in reopened.items()])

            # New items still go behind the recovered ones
            reopened.put(item("http://host6.com/", 6))
            self.assertEqual([3, 4, 5, 6], [reopened.take().doc_id for _ in range(4)])
        finally:
            reopened.close()

    def test_recovery_without_clean_close(self) -> None:
        queue = FrontierQueue(self.path)
        queue.put(item("http://a.com/1", 1))
        queue.put(item("http://a.com/2", 2))
        queue.take()
        # Simulate a crash: only the file handle is released
        queue._journal.close()

        reopened = FrontierQueue(self.path)
        try:
            self.assertEqual([2], [i.doc_id for i in reopened.items()])
        finally:
            reopened.close()

    def test_item_fields_survive_restart(self) -> None:
        queue = FrontierQueue(self.path)
        queue.put(WorkItem(
            url="http://a.com/page",
            doc_id=7,
            parent_doc_id=3,
            parent_url="http://a.com/",
            depth=1,
            redirection_depth=1,
            priority=-2,
            tag="a",
            label="docs",
            attributes={"anchor": "Page"},
        ))
        queue.close()

        reopened = FrontierQueue(self.path)
        try:
            restored = reopened.take()
            self.assertEqual(3, restored.parent_doc_id)
            self.assertEqual("http://a.com/", restored.parent_url)
            self.assertEqual(-2, restored.priority)
            self.assertEqual("docs", restored.label)
            self.assertEqual({"anchor": "Page"}, restored.attributes)
            self.assertEqual("a.com", restored.host)
        finally:
            reopened.close()

    def test_compaction_drops_taken_records(self) -> None:
        queue = FrontierQueue(self.path, compact_threshold=4)
        try:
            for doc_id in range(1, 5):
                queue.put(item(f"http://a.com/{doc_id}", doc_id))
            queue.take()
            queue.take()

            records = [json.loads(line) for line in Path(self.path).read_text().splitlines()]
            self.assertEqual(["put", "put"], [r["op"] for r in records])
            self.assertEqual([3, 4], [r["item"]["doc_id"] for r in records])
        finally:
            queue.close()


class FrontierQueueAsyncTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.queue = FrontierQueue(str(Path(self._tmp.name) / "frontier.jsonl"))

    async def asyncTearDown(self) -> None:
        self.queue.close()
        self._tmp.cleanup()

    async def test_get_blocks_until_put(self) -> None:
        getter = asyncio.create_task(self.queue.get())
        await asyncio.sleep(0.05)
        self.assertFalse(getter.done())

        self.queue.put(item("http://a.com/", 1))

        got = await asyncio.wait_for(getter, timeout=1)
        self.assertEqual(1, got.doc_id)

    async def test_stop_releases_blocked_getters(self) -> None:
        getters = [asyncio.create_task(self.queue.get()) for _ in range(3)]
        await asyncio.sleep(0.05)

        self.queue.stop()

        results = await asyncio.wait_for(asyncio.gather(*getters), timeout=1)
        self.assertEqual([None, None, None], results)

    async def test_get_after_stop_returns_none(self) -> None:
        self.queue.put(item("http://a.com/", 1))
        self.queue.stop()

        self.assertIsNone(await self.queue.get())


if __name__ == "__main__":
    unittest.main()
