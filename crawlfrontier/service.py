import asyncio
import logging
from typing import Dict, List, Optional

from .config import FrontierConfig
from .errors import QueueFull
from .frontier.crawl_frontier import CrawlFrontier
from .frontier.work_item import WorkItem
from .net.fetcher import Fetcher, HttpxFetcher
from .policy import PolicyHook

logger = logging.getLogger(__name__)


class CrawlerService:
    """Pool of fetch workers driven by the crawl frontier."""

    def __init__(
        self,
        config: FrontierConfig,
        fetcher: Optional[Fetcher] = None,
        policy: Optional[PolicyHook] = None,
    ):
        self.config = config
        self.workspace = config.get_workspace_path()

        self.fetcher = fetcher
        self.policy = policy
        self._owns_fetcher = fetcher is None
        self.frontier: Optional[CrawlFrontier] = None

        self._stop = False
        self._running = False

        self.stats = {
            "urls_fetched": 0,
            "fetch_errors": 0,
            "server_errors": 0,
            "redirects": 0,
            "urls_enqueued": 0,
        }

    async def start(self, seeds: List[str]) -> None:
        """Initialize components and seed the frontier.

        Args:
            seeds: Initial seed URLs to crawl
        """
        logger.info("Initializing crawler components...")
        self.workspace.mkdir(parents=True, exist_ok=True)

        if self.fetcher is None:
            self.fetcher = HttpxFetcher(
                user_agent=self.config.user_agent,
                connect_timeout_ms=self.config.limits.connect_timeout_ms,
                read_timeout_ms=self.config.limits.read_timeout_ms,
            )

        self.frontier = CrawlFrontier(self.config, fetcher=self.fetcher, policy=self.policy)

        logger.info(f"Seeding frontier with {len(seeds)} URLs...")
        for seed in seeds:
            try:
                item = await self.frontier.add_seed(seed)
            except QueueFull as e:
                logger.warning(f"{e} - remaining seeds skipped")
                break
            if item is None:
                logger.info(f"Seed not queued (already seen or rejected): {seed}")

        logger.info(
            f"Crawler initialized. Frontier size: {len(self.frontier.queue)}, "
            f"seen URLs: {len(self.frontier.seen)}"
        )

    async def run(self) -> None:
        """Run workers until the frontier is exhausted or a stop is requested."""
        if self._running:
            logger.warning("Crawler already running")
            return
        if self.frontier.is_finished():
            logger.info("Frontier is empty - nothing to crawl")
            return

        self._running = True
        workers = [
            asyncio.create_task(self._worker(i), name=f"crawl-worker-{i}")
            for i in range(self.config.limits.workers)
        ]
        logger.info(f"Starting {len(workers)} crawl workers...")

        try:
            await asyncio.gather(*workers)
        except Exception:
            logger.error("Crawl worker failed - stopping all workers", exc_info=True)
            self.frontier.stop()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        finally:
            self._running = False
            logger.info("Crawler workers stopped")

    async def _worker(self, worker_id: int):
        while not self._stop:
            item = await self.frontier.next_ready()
            if item is None:
                break

            await self._process(item)

            if self.frontier.is_finished():
                logger.info("Frontier exhausted - stopping crawl")
                self.frontier.stop()
        logger.debug(f"Worker {worker_id} exiting")

    async def _process(self, item: WorkItem):
        logger.info(f"Fetching doc {item.doc_id}: {item.url}")
        try:
            result = await self.fetcher.fetch(item.url)
        except Exception as e:
            self.stats["fetch_errors"] += 1
            logger.warning(f"Fetcher raised for {item.url}: {e}")
            self.frontier.retry(item)
            return

        if result.error:
            self.stats["fetch_errors"] += 1
            logger.warning(f"Failed to fetch {item.url}: {result.error}")
            self.frontier.retry(item)
            return
        if result.status_code >= 500:
            self.stats["server_errors"] += 1
            logger.warning(f"Server error {result.status_code} for {item.url}")
            self.frontier.retry(item)
            return

        self.stats["urls_fetched"] += 1
        if result.redirect_target:
            self.stats["redirects"] += 1
        queued = await self.frontier.on_fetched(item, result)
        self.frontier.complete(item)

        self.stats["urls_enqueued"] += len(queued)
        logger.debug(f"{item.url}: status {result.status_code}, {len(queued)} new URLs")

    def request_stop(self) -> None:
        """Stop dispatching; in-flight fetches finish first."""
        if self._stop:
            return
        logger.info("Stop requested - finishing in-flight fetches...")
        self._stop = True
        if self.frontier is not None:
            self.frontier.stop()

    def get_stats(self) -> Dict:
        stats = dict(self.stats)
        if self.frontier is not None:
            stats["frontier"] = self.frontier.stats
        return stats

    async def stop(self) -> None:
        logger.info("Stopping crawler...")
        self.request_stop()

        while self._running:
            await asyncio.sleep(0.1)

        logger.info("Cleaning up components...")

        try:
            if self.frontier:
                self.frontier.close()
        finally:
            if self.fetcher and self._owns_fetcher:
                await self.fetcher.close()

        logger.info("=== Crawler Statistics ===")
        for key, value in self.get_stats().items():
            logger.info(f"  {key}: {value}")

        logger.info("Crawler stopped successfully")
