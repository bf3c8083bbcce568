"""Per-host politeness on top of the frontier queue.

A host that was dispatched recently is cooling down; its items stay in the
queue's per-host heap until the cooldown elapses while items of other hosts
are handed out.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from .frontier_queue import FrontierQueue
from .work_item import WorkItem

logger = logging.getLogger(__name__)


class HostCooldowns:
    """Last dispatch time and required delay per host."""

    def __init__(
        self,
        floor_sec: float = 0.2,
        max_delay_sec: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.floor_sec = floor_sec
        self.max_delay_sec = max_delay_sec
        self._clock = clock
        self._entries: Dict[str, Tuple[float, float]] = {}

    def delay_for(self, robots_delay: Optional[float]) -> float:
        """Effective delay: robots delay capped at the maximum, never below the floor."""
        if robots_delay is None:
            return self.floor_sec
        return max(self.floor_sec, min(robots_delay, self.max_delay_sec))

    def ready_at(self, host: str) -> float:
        entry = self._entries.get(host)
        if entry is None:
            return 0.0
        last_dispatch, delay = entry
        return last_dispatch + delay

    def is_ready(self, host: str, now: Optional[float] = None) -> bool:
        if now is None:
            now = self._clock()
        return self.ready_at(host) <= now

    def record_dispatch(
        self, host: str, robots_delay: Optional[float] = None, now: Optional[float] = None
    ) -> float:
        """Start the cooldown of ``host``; returns the delay applied."""
        if now is None:
            now = self._clock()
        delay = self.delay_for(robots_delay)
        self._entries[host] = (now, delay)
        return delay

    def __len__(self) -> int:
        return len(self._entries)


class PolitenessScheduler:
    """Hands out the best queued item whose host is not cooling down."""

    def __init__(
        self,
        queue: FrontierQueue,
        robots=None,
        delay_ms: int = 200,
        max_crawl_delay_sec: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize scheduler.

        Args:
            queue: Frontier queue to draw from
            robots: Engine exposing ``cached_crawl_delay(host)``, or None
            delay_ms: Minimum delay between two fetches of one host
            max_crawl_delay_sec: Cap applied to robots.txt crawl delays
            clock: Monotonic clock
        """
        self.queue = queue
        self.robots = robots
        self._clock = clock
        self.cooldowns = HostCooldowns(delay_ms / 1000, max_crawl_delay_sec, clock)
        self._stopped = False

        self.stats = {
            "dispatched": 0,
            "waits": 0,
            "capped_delays": 0,
        }

    def _robots_delay(self, host: str) -> Optional[float]:
        if self.robots is None:
            return None
        delay = self.robots.cached_crawl_delay(host)
        if delay is not None and delay > self.cooldowns.max_delay_sec:
            self.stats["capped_delays"] += 1
            logger.warning(
                f"Crawl-delay {delay}s for {host} capped at {self.cooldowns.max_delay_sec}s"
            )
        return delay

    def _time_until_ready(self, now: float) -> Optional[float]:
        """Seconds until the earliest cooling host with pending items is ready."""
        pending = self.queue.pending_hosts()
        if not pending:
            return None
        earliest = min(self.cooldowns.ready_at(host) for host in pending)
        return max(earliest - now, 0.001)

    async def next_ready(self) -> Optional[WorkItem]:
        """Block until an item may be fetched.

        Returns:
            The item to fetch, or None once stopped
        """
        while True:
            if self._stopped or self.queue.stopped:
                return None

            now = self._clock()
            item = self.queue.take_best(lambda host: self.cooldowns.is_ready(host, now))
            if item is not None:
                delay = self.cooldowns.record_dispatch(
                    item.host, self._robots_delay(item.host), now
                )
                self.stats["dispatched"] += 1
                logger.debug(f"Dispatching {item.url} (next {item.host} fetch in {delay:.2f}s)")
                return item

            self.stats["waits"] += 1
            await self.queue.wait_for_change(self._time_until_ready(now))

    def stop(self):
        """Release every waiting ``next_ready`` with None."""
        self._stopped = True
        self.queue.stop()

    @property
    def stopped(self) -> bool:
        return self._stopped
