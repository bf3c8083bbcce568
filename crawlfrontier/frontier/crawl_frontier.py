"""Crawl frontier facade.

Wires URL canonicalization, the seen-URL store, the robots engine, the
frontier queue and the politeness scheduler into one admission pipeline:

    canonicalize -> policy -> depth/redirect bounds -> seen? -> robots
    -> capacity -> assign doc id -> enqueue

Robots is consulted before a doc id is assigned, so disallowed URLs never
consume ids and a full queue never leaves a URL marked seen but unqueued.

Dispatched items are kept in the in-process log until the worker reports
them complete; whatever is still there on the next start goes back into the
queue.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

import tldextract

from ..config import FrontierConfig
from ..errors import DepthExceeded, MalformedURL, QueueFull, RedirectionLoopSuspected
from ..io.journal import remove_state_file
from ..net.fetcher import Fetcher, FetchResult
from ..policy import Discovery, PolicyHook, ScopePolicy
from ..robots_cache import RobotsDirectiveEngine
from ..url_tools import UrlCanonicalizer, build_suffix_extractor
from .frontier_queue import FrontierQueue
from .in_process import InProcessLog
from .scheduler import PolitenessScheduler
from .seen_store import SeenUrlStore
from .work_item import PRIORITY_MAX, PRIORITY_MIN, WorkItem

logger = logging.getLogger(__name__)


class CrawlFrontier:
    """Admission, scheduling and bookkeeping for one crawl."""

    def __init__(
        self,
        config: FrontierConfig,
        fetcher: Optional[Fetcher] = None,
        policy: Optional[PolicyHook] = None,
        suffix_extractor: Optional[tldextract.TLDExtract] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Open (or resume) the crawl state under the configured workspace.

        Args:
            config: Crawl configuration
            fetcher: Used by the robots engine to fetch robots.txt
            policy: Admission hook; defaults to a ScopePolicy built from config
            suffix_extractor: Public-suffix lookup; built from config when omitted
            clock: Monotonic clock for politeness
        """
        self.config = config
        storage = config.storage
        seen_path = config.get_state_path(storage.seen_file)
        frontier_path = config.get_state_path(storage.frontier_file)
        in_process_path = config.get_state_path(storage.in_process_file)
        robots_path = config.get_state_path(storage.robots_cache_file)

        if not config.resumable:
            logger.info("Non-resumable crawl: discarding previous state")
            for path in (seen_path, frontier_path, in_process_path, robots_path):
                remove_state_file(str(path))

        if suffix_extractor is None and (config.public_suffix_urls or config.extra_public_suffixes):
            suffix_extractor = build_suffix_extractor(
                config.public_suffix_urls,
                config.extra_public_suffixes,
                cache_dir=str(config.get_state_path(storage.suffix_cache_dir)),
            )
        self.canonicalizer = UrlCanonicalizer(suffix_extractor)

        self.seen = SeenUrlStore(str(seen_path), sync=storage.sync_writes)
        self.queue = FrontierQueue(
            str(frontier_path),
            max_size=config.limits.max_queue_size,
            max_depth=config.limits.max_depth,
            max_redirection_depth=config.limits.max_redirection_depth,
            sync=storage.sync_writes,
            compact_threshold=storage.compact_threshold,
        )
        self.in_process = InProcessLog(
            str(in_process_path),
            sync=storage.sync_writes,
            compact_threshold=storage.compact_threshold,
        )
        self.robots = RobotsDirectiveEngine(
            fetcher,
            user_agent=config.robots.user_agent,
            cache_ttl_sec=config.robots.cache_ttl_sec,
            failure_ttl_sec=config.robots.failure_ttl_sec,
            max_redirects=config.robots.max_redirects,
            enabled=config.robots.enabled,
            cache_path=str(robots_path),
        )
        self.scheduler = PolitenessScheduler(
            self.queue,
            robots=self.robots,
            delay_ms=config.politeness.delay_ms,
            max_crawl_delay_sec=config.politeness.max_crawl_delay_sec,
            clock=clock,
        )
        self.policy = policy if policy is not None else ScopePolicy.from_config(config.scope)

        self._counters = {
            "admitted": 0,
            "malformed": 0,
            "invalid_priority": 0,
            "policy_rejected": 0,
            "depth_exceeded": 0,
            "redirect_loops": 0,
            "duplicates": 0,
            "robots_disallowed": 0,
            "queue_full": 0,
            "redirects": 0,
            "retried": 0,
            "retries_exhausted": 0,
            "completed": 0,
            "links_beyond_depth": 0,
            "recovered": 0,
        }

        self._requeue_unfinished()

        logger.info(
            f"Crawl frontier ready: {len(self.queue)} queued, {len(self.seen)} seen, "
            f"last doc id {self.seen.last_doc_id}"
        )

    def _requeue_unfinished(self):
        """Put items that were being fetched when the last run ended back in the queue."""
        unfinished = self.in_process.unfinished()
        if not unfinished:
            return

        queued = {item.doc_id for item in self.queue.items()}
        for item in unfinished:
            if item.doc_id not in queued:
                try:
                    self.queue.put(item)
                except QueueFull:
                    # Stays in the in-process log for the next start
                    logger.warning(f"Queue full, cannot recover {item.url} yet")
                    continue
                except (DepthExceeded, RedirectionLoopSuspected) as e:
                    logger.warning(f"Dropping unfinished item: {e}")
                    self.in_process.record_done(item.doc_id)
                    continue
                self._counters["recovered"] += 1
            self.in_process.record_done(item.doc_id)

        logger.info(f"Re-queued {self._counters['recovered']} unfinished items")

    # =========================================================================
    # Admission
    # =========================================================================

    async def _admit(
        self,
        raw_url: str,
        context: Discovery,
        depth: int,
        redirection_depth: int = 0,
        parent_doc_id: int = -1,
        parent_url: Optional[str] = None,
        check_policy: bool = True,
        doc_id: Optional[int] = None,
    ) -> Optional[WorkItem]:
        try:
            candidate = self.canonicalizer.canonicalize(raw_url)
        except MalformedURL as e:
            self._counters["malformed"] += 1
            logger.warning(str(e))
            return None

        if not PRIORITY_MIN <= context.priority <= PRIORITY_MAX:
            self._counters["invalid_priority"] += 1
            logger.warning(
                f"Dropping {candidate}: priority {context.priority} outside "
                f"[{PRIORITY_MIN}, {PRIORITY_MAX}]"
            )
            return None

        if check_policy and not self.policy.should_admit(candidate, context):
            self._counters["policy_rejected"] += 1
            return None

        item = WorkItem(
            url=str(candidate),
            parent_doc_id=parent_doc_id,
            parent_url=parent_url,
            depth=depth,
            redirection_depth=redirection_depth,
            priority=context.priority,
            tag=context.tag,
            label=context.label,
            attributes=dict(context.attributes),
            host=candidate.host,
        )

        try:
            self.queue.check_bounds(item)
        except DepthExceeded as e:
            self._counters["depth_exceeded"] += 1
            logger.debug(str(e))
            return None
        except RedirectionLoopSuspected as e:
            self._counters["redirect_loops"] += 1
            logger.warning(str(e))
            return None

        if self.seen.is_seen(item.url):
            self._counters["duplicates"] += 1
            return None

        if not await self.robots.is_url_allowed(candidate):
            self._counters["robots_disallowed"] += 1
            logger.debug(f"Disallowed by robots.txt: {item.url}")
            return None

        try:
            self.queue.ensure_capacity()
        except QueueFull:
            self._counters["queue_full"] += 1
            raise

        if doc_id is not None:
            self.seen.add_url_and_doc_id(item.url, doc_id)
        else:
            doc_id, is_new = self.seen.get_or_assign(item.url)
            if not is_new:
                self._counters["duplicates"] += 1
                return None

        item.doc_id = doc_id
        self.queue.put(item)
        self._counters["admitted"] += 1
        logger.debug(f"Admitted {item.url} as doc {doc_id} (depth {depth})")
        return item

    async def add_seed(
        self,
        url: str,
        doc_id: Optional[int] = None,
        priority: int = 0,
        label: Optional[str] = None,
    ) -> Optional[WorkItem]:
        """Admit a seed at depth 0, bypassing the policy hook.

        Returns:
            The queued item, or None if the seed was rejected or already seen

        Raises:
            QueueFull: the queue is at capacity
            ValueError: ``doc_id`` is not above the last assigned id
        """
        context = Discovery(url=url, priority=priority, label=label)
        item = await self._admit(url, context, depth=0, check_policy=False, doc_id=doc_id)
        if item is not None:
            logger.info(f"Seed {item.url} queued as doc {item.doc_id}")
        return item

    async def admit(self, discovery: Discovery) -> Optional[WorkItem]:
        """Run a discovered URL through the full admission pipeline.

        The item depth is one more than its parent's, or 0 without a parent.

        Raises:
            QueueFull: the queue is at capacity
        """
        parent = discovery.parent if isinstance(discovery.parent, WorkItem) else None
        if parent is None:
            return await self._admit(discovery.url, discovery, depth=0)
        return await self._admit(
            discovery.url,
            discovery,
            depth=parent.depth + 1,
            parent_doc_id=parent.doc_id,
            parent_url=parent.url,
        )

    async def admit_all(self, discoveries: Iterable[Discovery]) -> List[WorkItem]:
        admitted = []
        for discovery in discoveries:
            item = await self.admit(discovery)
            if item is not None:
                admitted.append(item)
        return admitted

    async def report_redirect(self, item: WorkItem, target: str) -> Optional[WorkItem]:
        """Re-admit the target of a redirect with the original lineage.

        The new item keeps depth and parent of ``item`` and one more redirect.
        """
        self._counters["redirects"] += 1
        context = Discovery(
            url=target,
            parent=item,
            tag=item.tag,
            label=item.label,
            priority=item.priority,
            attributes=dict(item.attributes),
        )
        redirected = await self._admit(
            target,
            context,
            depth=item.depth,
            redirection_depth=item.redirection_depth + 1,
            parent_doc_id=item.parent_doc_id,
            parent_url=item.parent_url,
        )
        if redirected is not None:
            logger.debug(f"Redirect {item.url} -> {redirected.url}")
        return redirected

    # =========================================================================
    # Dispatch lifecycle
    # =========================================================================

    async def next_ready(self) -> Optional[WorkItem]:
        """Next item whose host may be fetched now; None once stopped."""
        item = await self.scheduler.next_ready()
        if item is not None:
            self.in_process.record_dispatch(item)
        return item

    def complete(self, item: WorkItem):
        """Mark a dispatched item as done."""
        if self.in_process.record_done(item.doc_id):
            self._counters["completed"] += 1

    def retry(self, item: WorkItem) -> bool:
        """Re-queue a failed item unless it is out of retries.

        Returns:
            True if the item was re-queued
        """
        if item.retries >= self.config.limits.max_retries:
            self._counters["retries_exhausted"] += 1
            logger.warning(f"Giving up on {item.url} after {item.retries} retries")
            self.in_process.record_done(item.doc_id)
            return False

        try:
            self.queue.put(replace(item, retries=item.retries + 1))
        except QueueFull as e:
            self._counters["queue_full"] += 1
            logger.warning(f"{e} - cannot retry {item.url}")
            self.in_process.record_done(item.doc_id)
            return False
        self.in_process.record_done(item.doc_id)
        self._counters["retried"] += 1
        logger.info(f"Retrying {item.url} (attempt {item.retries + 2})")
        return True

    async def on_fetched(self, item: WorkItem, result: FetchResult) -> List[WorkItem]:
        """Feed a fetch result back: follow its redirect or admit its links.

        Returns:
            Newly queued items
        """
        if result.redirect_target:
            redirected = await self.report_redirect(item, result.redirect_target)
            return [redirected] if redirected is not None else []

        discoveries = list(self.policy.on_dequeue(item, result))
        max_depth = self.config.limits.max_depth
        if max_depth >= 0 and item.depth + 1 > max_depth:
            if discoveries:
                self._counters["links_beyond_depth"] += len(discoveries)
                logger.debug(f"Skipping {len(discoveries)} links of {item.url}: depth limit")
            return []

        admitted = []
        for discovery in discoveries:
            if discovery.parent is None:
                discovery.parent = item
            try:
                queued = await self.admit(discovery)
            except QueueFull as e:
                logger.warning(f"{e} - dropping remaining links of {item.url}")
                break
            if queued is not None:
                admitted.append(queued)
        return admitted

    def in_flight(self) -> int:
        return len(self.in_process)

    def is_finished(self) -> bool:
        """True when nothing is queued and nothing is being fetched."""
        return self.queue.is_empty() and len(self.in_process) == 0

    @property
    def stats(self) -> Dict:
        return {
            **self._counters,
            "queued": len(self.queue),
            "seen": len(self.seen),
            "in_flight": len(self.in_process),
            "last_doc_id": self.seen.last_doc_id,
            "scheduler": dict(self.scheduler.stats),
            "robots": self.robots.get_cache_stats(),
        }

    def stop(self):
        """Release every waiting ``next_ready``."""
        self.scheduler.stop()

    def close(self):
        """Persist and release all state files."""
        self.stop()
        try:
            self.queue.close()
            self.in_process.close()
            self.seen.close()
        finally:
            self.robots.close()
        logger.info(f"Crawl frontier closed: {self._counters}")
