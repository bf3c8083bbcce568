"""Durable priority queue of pending work items.

Items are ordered by (priority, depth, insertion sequence): lower priority
values first, shallower items next, FIFO among equals. Every put and take is
journaled before the call returns, and replaying the journal on start
rebuilds the same relative order among surviving items.

Items are grouped into per-host heaps so the politeness scheduler can skip
hosts that are cooling down without reshuffling the rest of the queue.
"""

import asyncio
import heapq
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import DepthExceeded, QueueFull, RedirectionLoopSuspected, StorageError
from ..io.journal import JsonlJournal
from .work_item import WorkItem

logger = logging.getLogger(__name__)

HeapEntry = Tuple[int, int, int, WorkItem]


class FrontierQueue:
    """Crash-recoverable frontier queue with blocking async withdrawal."""

    def __init__(
        self,
        path: str,
        max_size: int = 0,
        max_depth: int = -1,
        max_redirection_depth: int = 5,
        sync: bool = True,
        compact_threshold: int = 1000,
    ):
        """Open the queue, replaying any existing journal.

        Args:
            path: Path to frontier.jsonl
            max_size: Capacity bound (0 = unbounded)
            max_depth: Maximum item depth (-1 = unlimited)
            max_redirection_depth: Maximum redirects before an item is refused
            sync: fsync after every journal record
            compact_threshold: Dead journal records tolerated before compaction
        """
        self.max_size = max_size
        self.max_depth = max_depth
        self.max_redirection_depth = max_redirection_depth
        self.compact_threshold = compact_threshold

        self._journal = JsonlJournal(path, sync=sync)
        self._lock = threading.Lock()
        self._heaps: Dict[str, List[HeapEntry]] = {}
        self._size = 0
        self._next_seq = 1
        self._dead_records = 0

        self._wakeup = asyncio.Event()
        self._stopped = False

        self.urls_added = 0
        self.urls_taken = 0

        self._load()
        self.compact()

        logger.info(f"Frontier queue initialized with {self._size} items")

    # =========================================================================
    # Recovery
    # =========================================================================

    def _load(self):
        pending: Dict[int, WorkItem] = {}
        max_seq = 0

        for record in self._journal.read():
            op = record.get("op")
            seq = record.get("seq")
            if not isinstance(seq, int):
                logger.error(f"Ignoring frontier record without sequence: {record}")
                continue
            max_seq = max(max_seq, seq)

            if op == "put":
                try:
                    pending[seq] = WorkItem.from_dict(record["item"])
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Ignoring invalid frontier item {seq}: {e}")
            elif op == "take":
                pending.pop(seq, None)
            else:
                logger.error(f"Ignoring unknown frontier op {op!r}")

        for seq, item in pending.items():
            self._push(seq, item)
        self._next_seq = max_seq + 1

        if pending:
            logger.info(f"Recovered {len(pending)} items from {self._journal.path}")

    # =========================================================================
    # Admission
    # =========================================================================

    def check_bounds(self, item: WorkItem):
        """Raise if ``item`` is deeper or more redirected than allowed."""
        if self.max_depth >= 0 and item.depth > self.max_depth:
            raise DepthExceeded(f"{item.url} depth {item.depth} > {self.max_depth}")
        if item.redirection_depth > self.max_redirection_depth:
            raise RedirectionLoopSuspected(
                f"{item.url} followed {item.redirection_depth} redirects "
                f"(max {self.max_redirection_depth})"
            )

    def ensure_capacity(self):
        """Raise QueueFull if a put would exceed capacity."""
        if self.max_size and self._size >= self.max_size:
            raise QueueFull(f"Frontier queue is full ({self._size}/{self.max_size})")

    def put(self, item: WorkItem):
        """Durably enqueue ``item``.

        Raises:
            DepthExceeded, RedirectionLoopSuspected: item is out of bounds
            QueueFull: capacity reached
            StorageError: journal write failed (nothing was enqueued)
        """
        self.check_bounds(item)
        with self._lock:
            self.ensure_capacity()
            seq = self._next_seq
            self._journal.append({"op": "put", "seq": seq, "item": item.to_dict()})
            self._next_seq += 1
            self._push(seq, item)
            self.urls_added += 1

        self._wakeup.set()

    def _push(self, seq: int, item: WorkItem):
        heap = self._heaps.setdefault(item.host, [])
        heapq.heappush(heap, (item.priority, item.depth, seq, item))
        self._size += 1

    # =========================================================================
    # Withdrawal
    # =========================================================================

    def take_best(self, is_ready: Optional[Callable[[str], bool]] = None) -> Optional[WorkItem]:
        """Remove and return the best item among hosts accepted by ``is_ready``.

        Returns:
            The item, or None if no eligible host has pending items
        """
        with self._lock:
            best_host = None
            best_key = None
            for host, heap in self._heaps.items():
                if is_ready is not None and not is_ready(host):
                    continue
                key = heap[0][:3]
                if best_key is None or key < best_key:
                    best_host, best_key = host, key

            if best_host is None:
                return None
            return self._pop_host(best_host)

    def take(self, host: Optional[str] = None) -> Optional[WorkItem]:
        """Remove the best item overall, or the best item of ``host``."""
        if host is None:
            return self.take_best()
        with self._lock:
            if host not in self._heaps:
                return None
            return self._pop_host(host)

    def _pop_host(self, host: str) -> WorkItem:
        heap = self._heaps[host]
        seq = heap[0][2]
        self._journal.append({"op": "take", "seq": seq})
        _, _, _, item = heapq.heappop(heap)
        if not heap:
            del self._heaps[host]
        self._size -= 1
        self._dead_records += 2
        self.urls_taken += 1

        if self._dead_records >= self.compact_threshold:
            self._compact_locked()
        return item

    def peek(self) -> Optional[WorkItem]:
        """Best item overall without removing it."""
        with self._lock:
            heads = [heap[0] for heap in self._heaps.values()]
        if not heads:
            return None
        return min(heads, key=lambda entry: entry[:3])[3]

    def pending_hosts(self) -> List[str]:
        with self._lock:
            return list(self._heaps)

    async def get(self) -> Optional[WorkItem]:
        """Block until an item is available and remove it.

        Returns:
            The next item, or None once the queue is stopped
        """
        while True:
            if self._stopped:
                return None
            item = self.take_best()
            if item is not None:
                return item
            await self.wait_for_change()

    async def wait_for_change(self, timeout: Optional[float] = None):
        """Wait until an item is added, the queue is stopped, or ``timeout`` passes."""
        if self._stopped:
            return
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    def stop(self):
        """Release every blocked ``get``/``wait_for_change`` with a stop indication."""
        self._stopped = True
        self._wakeup.set()

    @property
    def stopped(self) -> bool:
        return self._stopped

    # =========================================================================
    # Persistence and inspection
    # =========================================================================

    def _entries(self) -> List[HeapEntry]:
        entries = [entry for heap in self._heaps.values() for entry in heap]
        entries.sort(key=lambda entry: entry[:3])
        return entries

    def items(self) -> List[WorkItem]:
        """Snapshot of pending items in dispatch order."""
        with self._lock:
            return [entry[3] for entry in self._entries()]

    def _compact_locked(self):
        records = [
            {"op": "put", "seq": seq, "item": item.to_dict()}
            for _, _, seq, item in self._entries()
        ]
        self._journal.rewrite(records)
        self._dead_records = 0
        logger.debug(f"Compacted frontier journal to {len(records)} records")

    def compact(self):
        """Rewrite the journal with only the surviving items."""
        with self._lock:
            self._compact_locked()

    def __len__(self) -> int:
        return self._size

    def is_empty(self) -> bool:
        return self._size == 0

    def close(self):
        """Compact and release the journal."""
        logger.info("Closing frontier queue...")
        self.stop()
        try:
            self.compact()
        finally:
            try:
                self._journal.close()
            except StorageError as e:
                logger.error(f"Error closing frontier journal: {e}")
                raise
        logger.info(
            f"Frontier queue stats - Added: {self.urls_added}, "
            f"Taken: {self.urls_taken}, Remaining: {self._size}"
        )
