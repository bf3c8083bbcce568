"""Durable seen-URL store assigning monotonically increasing document ids.

Keeps the canonical URL -> doc id mapping in memory for O(1) lookups and
appends every new assignment to a JSONL journal before acknowledging it, so a
restarted crawl resumes numbering without collisions or reuse.
"""

import logging
import threading
from typing import Dict, Iterator, Tuple

from ..errors import StorageError
from ..io.journal import JsonlJournal

logger = logging.getLogger(__name__)

NOT_SEEN = -1


class SeenUrlStore:
    """Thread-safe canonical URL -> doc id mapping backed by a journal."""

    def __init__(self, path: str, sync: bool = True):
        """Initialize the store.

        Args:
            path: Path to seen.jsonl
            sync: fsync after every assignment
        """
        self._journal = JsonlJournal(path, sync=sync)
        self._lock = threading.Lock()
        self._doc_ids: Dict[str, int] = {}
        self._last_doc_id = 0

        self._load()

        logger.info(
            f"Seen-URL store initialized with {len(self._doc_ids)} URLs, "
            f"last doc id {self._last_doc_id}"
        )

    def _load(self):
        for record in self._journal.read():
            url = record.get("url")
            doc_id = record.get("doc_id")
            if not url or not isinstance(doc_id, int):
                logger.error(f"Ignoring invalid seen record: {record}")
                continue
            self._doc_ids[url] = doc_id
            self._last_doc_id = max(self._last_doc_id, doc_id)

    @property
    def last_doc_id(self) -> int:
        return self._last_doc_id

    def get_or_assign(self, url: str) -> Tuple[int, bool]:
        """Return the doc id of ``url``, assigning a new one if unseen.

        Exactly one caller observes ``is_new=True`` for a given URL, and all
        callers receive the same doc id.

        Returns:
            Tuple of (doc_id, is_new)

        Raises:
            StorageError: if the assignment cannot be persisted
        """
        with self._lock:
            doc_id = self._doc_ids.get(url)
            if doc_id is not None:
                return doc_id, False

            doc_id = self._last_doc_id + 1
            self._journal.append({"url": url, "doc_id": doc_id})
            self._doc_ids[url] = doc_id
            self._last_doc_id = doc_id
            return doc_id, True

    def add_url_and_doc_id(self, url: str, doc_id: int):
        """Register ``url`` under a caller-chosen doc id (seeds).

        Raises:
            ValueError: if ``doc_id`` is not above the last assigned id, or the
                URL already holds a different id
        """
        with self._lock:
            previous = self._doc_ids.get(url)
            if previous is not None:
                if previous == doc_id:
                    return
                raise ValueError(f"Doc id {previous} is already assigned to URL: {url}")
            if doc_id <= self._last_doc_id:
                raise ValueError(
                    f"Requested doc id {doc_id} is not larger than {self._last_doc_id}"
                )

            self._journal.append({"url": url, "doc_id": doc_id})
            self._doc_ids[url] = doc_id
            self._last_doc_id = doc_id

    def get_doc_id(self, url: str) -> int:
        """Doc id of ``url`` or -1 if it was never seen."""
        return self._doc_ids.get(url, NOT_SEEN)

    def is_seen(self, url: str) -> bool:
        return url in self._doc_ids

    def entries(self) -> Iterator[Tuple[str, int]]:
        """Snapshot of (url, doc_id) pairs in assignment order."""
        with self._lock:
            items = sorted(self._doc_ids.items(), key=lambda kv: kv[1])
        return iter(items)

    def __len__(self) -> int:
        return len(self._doc_ids)

    def close(self):
        try:
            self._journal.close()
        except StorageError as e:
            logger.error(f"Error closing seen-URL store: {e}")
            raise
        logger.info(f"Seen-URL store closed - total URLs: {len(self._doc_ids)}")
