"""Durable record of items handed to workers but not yet finished.

The frontier queue journals a take as soon as an item is dispatched. This log
keeps the dispatched item until the worker reports it done, so a crash during
a fetch leaves the item here and it is re-queued on the next start.
"""

import logging
import threading
from typing import Dict, List

from ..io.journal import JsonlJournal
from .work_item import WorkItem

logger = logging.getLogger(__name__)


class InProcessLog:
    """Journal of dispatched items keyed by doc id."""

    def __init__(self, path: str, sync: bool = True, compact_threshold: int = 1000):
        self.compact_threshold = compact_threshold
        self._journal = JsonlJournal(path, sync=sync)
        self._lock = threading.Lock()
        self._items: Dict[int, WorkItem] = {}
        self._dead_records = 0

        self._load()
        self.compact()

    def _load(self):
        for record in self._journal.read():
            op = record.get("op")
            if op == "dispatch":
                try:
                    item = WorkItem.from_dict(record["item"])
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Ignoring invalid in-process item: {e}")
                    continue
                self._items[item.doc_id] = item
            elif op == "done":
                self._items.pop(record.get("doc_id"), None)
            else:
                logger.error(f"Ignoring unknown in-process op {op!r}")

        if self._items:
            logger.info(f"{len(self._items)} items were in flight when the last run ended")

    def record_dispatch(self, item: WorkItem):
        """Durably remember ``item`` as being fetched."""
        with self._lock:
            self._journal.append({"op": "dispatch", "item": item.to_dict()})
            self._items[item.doc_id] = item

    def record_done(self, doc_id: int) -> bool:
        """Forget ``doc_id``; returns False if it was not in flight."""
        with self._lock:
            if doc_id not in self._items:
                return False
            self._journal.append({"op": "done", "doc_id": doc_id})
            del self._items[doc_id]
            self._dead_records += 2
            if self._dead_records >= self.compact_threshold:
                self._compact_locked()
        return True

    def unfinished(self) -> List[WorkItem]:
        """Items dispatched but never reported done, in doc id order."""
        with self._lock:
            return [self._items[doc_id] for doc_id in sorted(self._items)]

    def _compact_locked(self):
        self._journal.rewrite(
            {"op": "dispatch", "item": item.to_dict()} for item in self._items.values()
        )
        self._dead_records = 0

    def compact(self):
        with self._lock:
            self._compact_locked()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, doc_id: int) -> bool:
        return doc_id in self._items

    def close(self):
        with self._lock:
            self._compact_locked()
            self._journal.close()
