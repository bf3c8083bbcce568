import unittest
from tempfile import TemporaryDirectory

from crawlfrontier.config import (
    FrontierConfig,
    LimitsConfig,
    PolitenessConfig,
    ScopeConfig,
    StorageConfig,
)
from crawlfrontier.errors import QueueFull
from crawlfrontier.frontier.crawl_frontier import CrawlFrontier
from crawlfrontier.net.fetcher import FetchResult
from crawlfrontier.policy import Discovery

ROBOTS_TXT = "User-agent: *\nDisallow: /private\n"


class RobotsOnlyFetcher:
    """Serves a fixed robots.txt for every host."""

    def __init__(self, robots_txt: str = ROBOTS_TXT):
        self.robots_txt = robots_txt
        self.requests = []

    async def fetch(self, url: str) -> FetchResult:
        self.requests.append(url)
        if url.endswith("/robots.txt"):
            return FetchResult(url=url, status_code=200, body=self.robots_txt.encode("utf-8"))
        return FetchResult(url=url, status_code=404)


def make_config(workspace: str, resumable: bool = True, **limits) -> FrontierConfig:
    return FrontierConfig(
        workspace=workspace,
        user_agent="TestBot/1.0",
        resumable=resumable,
        politeness=PolitenessConfig(delay_ms=0),
        limits=LimitsConfig(**limits),
        scope=ScopeConfig(allowed_domains=["example.com"]),
        storage=StorageConfig(sync_writes=False),
    )


def html_result(url: str, body: str) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=200,
        headers={"content-type": "text/html"},
        body=body.encode("utf-8"),
    )


class CrawlFrontierTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.workspace = self._tmp.name
        self.fetcher = RobotsOnlyFetcher()
        self.frontier = None

    async def asyncTearDown(self) -> None:
        if self.frontier is not None:
            self.frontier.close()
        self._tmp.cleanup()

    def open_frontier(self, **kwargs) -> CrawlFrontier:
        resumable = kwargs.pop("resumable", True)
        self.frontier = CrawlFrontier(make_config(self.workspace, resumable, **kwargs), fetcher=self.fetcher)
        return self.frontier

    async def test_seed_is_canonicalized_and_assigned(self) -> None:
        frontier = self.open_frontier()

        item = await frontier.add_seed("HTTP://Example.COM:80/start?b=2&a=1", priority=-1, label="seed")

        self.assertEqual("http://example.com/start?a=1&b=2", item.url)
        self.assertEqual(1, item.doc_id)
        self.assertEqual(0, item.depth)
        self.assertEqual(-1, item.parent_doc_id)
        self.assertEqual(-1, item.priority)
        self.assertEqual("seed", item.label)
        self.assertEqual(1, len(frontier.queue))

    async def test_duplicate_seed_is_dropped(self) -> None:
        frontier = self.open_frontier()

        await frontier.add_seed("http://example.com/")
        again = await frontier.add_seed("http://EXAMPLE.com/#frag")

        self.assertIsNone(again)
        self.assertEqual(1, frontier.stats["duplicates"])
        self.assertEqual(1, len(frontier.queue))

    async def test_seed_with_explicit_doc_id(self) -> None:
        frontier = self.open_frontier()

        item = await frontier.add_seed("http://example.com/", doc_id=100)
        child = await frontier.add_seed("http://example.com/next")

        self.assertEqual(100, item.doc_id)
        self.assertEqual(101, child.doc_id)

    async def test_robots_disallowed_url_consumes_no_doc_id(self) -> None:
        frontier = self.open_frontier()

        blocked = await frontier.add_seed("http://example.com/private/page")
        allowed = await frontier.add_seed("http://example.com/public")

        self.assertIsNone(blocked)
        self.assertEqual(1, allowed.doc_id)
        self.assertFalse(frontier.seen.is_seen("http://example.com/private/page"))
        self.assertEqual(1, frontier.stats["robots_disallowed"])

    async def test_malformed_and_out_of_scope_discoveries_are_counted(self) -> None:
        frontier = self.open_frontier()

        self.assertIsNone(await frontier.admit(Discovery(url="not a url")))
        self.assertIsNone(await frontier.admit(Discovery(url="http://other.org/")))

        self.assertEqual(1, frontier.stats["malformed"])
        self.assertEqual(1, frontier.stats["policy_rejected"])
        self.assertEqual(0, frontier.seen.last_doc_id)

    async def test_on_fetched_admits_links_one_level_deeper(self) -> None:
        frontier = self.open_frontier()
        seed = await frontier.add_seed("http://example.com/")
        dispatched = await frontier.next_ready()
        self.assertEqual(seed.doc_id, dispatched.doc_id)

        body = (
            '<a href="/docs">Docs</a>'
            '<a href="/private/admin">Admin</a>'
            '<a href="http://elsewhere.org/">Out</a>'
            '<a href="/">Home</a>'
        )
        children = await frontier.on_fetched(dispatched, html_result(dispatched.url, body))
        frontier.complete(dispatched)

        self.assertEqual(["http://example.com/docs"], [c.url for c in children])
        child = children[0]
        self.assertEqual(1, child.depth)
        self.assertEqual(seed.doc_id, child.parent_doc_id)
        self.assertEqual(seed.url, child.parent_url)
        self.assertEqual("a", child.tag)
        self.assertEqual("Docs", child.attribute("anchor"))

        stats = frontier.stats
        self.assertEqual(1, stats["robots_disallowed"])
        self.assertEqual(1, stats["policy_rejected"])
        self.assertEqual(1, stats["duplicates"])
        self.assertEqual(1, stats["completed"])

    async def test_links_beyond_max_depth_are_skipped(self) -> None:
        frontier = self.open_frontier(max_depth=0)
        await frontier.add_seed("http://example.com/")
        item = await frontier.next_ready()

        children = await frontier.on_fetched(item, html_result(item.url, '<a href="/a">A</a><a href="/b">B</a>'))

        self.assertEqual([], children)
        self.assertEqual(2, frontier.stats["links_beyond_depth"])

    async def test_redirect_keeps_depth_and_parent(self) -> None:
        frontier = self.open_frontier()
        seed = await frontier.add_seed("http://example.com/")
        child = await frontier.admit(Discovery(url="http://example.com/old", parent=seed))

        redirect = FetchResult(url=child.url, status_code=301, redirect_target="http://example.com/new")
        admitted = await frontier.on_fetched(child, redirect)

        self.assertEqual(1, len(admitted))
        moved = admitted[0]
        self.assertEqual("http://example.com/new", moved.url)
        self.assertEqual(child.depth, moved.depth)
        self.assertEqual(child.parent_doc_id, moved.parent_doc_id)
        self.assertEqual(1, moved.redirection_depth)
        self.assertEqual(1, frontier.stats["redirects"])

    async def test_redirection_bound_is_enforced(self) -> None:
        frontier = self.open_frontier(max_redirection_depth=1)
        seed = await frontier.add_seed("http://example.com/r0")

        first = await frontier.report_redirect(seed, "http://example.com/r1")
        second = await frontier.report_redirect(first, "http://example.com/r2")

        self.assertEqual(1, first.redirection_depth)
        self.assertIsNone(second)
        self.assertEqual(1, frontier.stats["redirect_loops"])
        self.assertFalse(frontier.seen.is_seen("http://example.com/r2"))

    async def test_queue_full_propagates_without_assigning(self) -> None:
        frontier = self.open_frontier(max_queue_size=1)
        await frontier.add_seed("http://example.com/a")

        with self.assertRaises(QueueFull):
            await frontier.admit(Discovery(url="http://example.com/b"))

        self.assertFalse(frontier.seen.is_seen("http://example.com/b"))
        self.assertEqual(1, frontier.stats["queue_full"])

    async def test_retry_is_bounded(self) -> None:
        frontier = self.open_frontier(max_retries=1)
        await frontier.add_seed("http://example.com/flaky")

        item = await frontier.next_ready()
        self.assertTrue(frontier.retry(item))

        again = await frontier.next_ready()
        self.assertEqual(item.doc_id, again.doc_id)
        self.assertEqual(1, again.retries)
        self.assertFalse(frontier.retry(again))

        self.assertTrue(frontier.is_finished())
        self.assertEqual(1, frontier.stats["retries_exhausted"])

    async def test_is_finished_tracks_in_flight_items(self) -> None:
        frontier = self.open_frontier()
        await frontier.add_seed("http://example.com/")
        self.assertFalse(frontier.is_finished())

        item = await frontier.next_ready()
        self.assertFalse(frontier.is_finished())
        self.assertEqual(1, frontier.in_flight())

        frontier.complete(item)
        self.assertTrue(frontier.is_finished())

    async def test_state_survives_restart(self) -> None:
        frontier = self.open_frontier()
        await frontier.add_seed("http://example.com/")
        await frontier.add_seed("http://example.com/second")
        taken = await frontier.next_ready()
        frontier.complete(taken)
        frontier.close()

        frontier = self.open_frontier()
        again = await frontier.add_seed("http://example.com/")
        fresh = await frontier.add_seed("http://example.com/third")

        self.assertIsNone(again)
        self.assertEqual(3, fresh.doc_id)
        self.assertEqual(1, frontier.seen.get_doc_id("http://example.com/"))
        self.assertEqual(
            ["http://example.com/second", "http://example.com/third"],
            [i.url for i in frontier.queue.items()],
        )

    async def test_unfinished_fetch_is_requeued_after_restart(self) -> None:
        frontier = self.open_frontier()
        seed = await frontier.add_seed("http://example.com/")
        taken = await frontier.next_ready()
        self.assertEqual(seed.doc_id, taken.doc_id)
        # Process ends while the fetch is still running
        frontier.close()

        frontier = self.open_frontier()

        self.assertEqual(1, frontier.stats["recovered"])
        self.assertEqual(["http://example.com/"], [i.url for i in frontier.queue.items()])
        self.assertIsNone(await frontier.add_seed("http://example.com/"))

        again = await frontier.next_ready()
        self.assertEqual(seed.doc_id, again.doc_id)
        frontier.complete(again)
        self.assertTrue(frontier.is_finished())
        frontier.close()

        frontier = self.open_frontier()
        self.assertEqual(0, frontier.stats["recovered"])
        self.assertEqual(0, len(frontier.queue))

    async def test_retried_item_is_recovered_once(self) -> None:
        frontier = self.open_frontier(max_retries=2)
        await frontier.add_seed("http://example.com/flaky")
        item = await frontier.next_ready()
        self.assertTrue(frontier.retry(item))
        frontier.close()

        frontier = self.open_frontier(max_retries=2)

        self.assertEqual(0, frontier.stats["recovered"])
        self.assertEqual(1, len(frontier.queue))
        self.assertEqual(1, frontier.queue.items()[0].retries)

    async def test_out_of_range_priority_is_dropped(self) -> None:
        frontier = self.open_frontier()
        seed = await frontier.add_seed("http://example.com/")

        dropped = await frontier.admit(Discovery(url="http://example.com/x", parent=seed, priority=500))
        seed_dropped = await frontier.add_seed("http://example.com/y", priority=-129)
        kept = await frontier.admit(Discovery(url="http://example.com/z", parent=seed, priority=127))

        self.assertIsNone(dropped)
        self.assertIsNone(seed_dropped)
        self.assertEqual(127, kept.priority)
        self.assertEqual(2, frontier.stats["invalid_priority"])
        self.assertFalse(frontier.seen.is_seen("http://example.com/x"))

    async def test_non_resumable_crawl_starts_fresh(self) -> None:
        frontier = self.open_frontier()
        await frontier.add_seed("http://example.com/")
        frontier.close()

        frontier = self.open_frontier(resumable=False)
        item = await frontier.add_seed("http://example.com/")

        self.assertEqual(1, item.doc_id)
        self.assertEqual(1, len(frontier.queue))


if __name__ == "__main__":
    unittest.main()
