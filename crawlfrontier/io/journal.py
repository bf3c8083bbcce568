"""Append-only JSONL journal used for durable frontier state.

Each record is one JSON object per line. Appends are flushed (and fsynced when
``sync`` is set) before returning, so a record that was acknowledged survives a
crash. A torn final line left by a crash mid-write is cut off on open.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from ..errors import StorageError

logger = logging.getLogger(__name__)


class JsonlJournal:
    """Durable JSONL append log with atomic rewrite."""

    def __init__(self, path: str, sync: bool = True):
        """Open (or create) the journal.

        Args:
            path: Path to the ``.jsonl`` file
            sync: fsync after every append
        """
        self.path = Path(path)
        self.sync = sync
        self._handle = None
        self.records_written = 0

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self.path.touch()
            self._repair_tail()
        except OSError as e:
            raise StorageError(f"Cannot prepare journal {self.path}: {e}") from e

    def _repair_tail(self):
        """Truncate an unterminated last line."""
        with open(self.path, "rb+") as f:
            data = f.read()
            if not data or data.endswith(b"\n"):
                return
            keep = data.rfind(b"\n") + 1
            f.truncate(keep)
        logger.warning(f"Truncated torn record at end of {self.path} ({len(data) - keep} bytes)")

    def read(self) -> Iterator[Dict[str, Any]]:
        """Yield every record in file order. Undecodable lines are skipped."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.error(f"Skipping corrupt record {self.path}:{lineno}: {e}")
        except OSError as e:
            raise StorageError(f"Cannot read journal {self.path}: {e}") from e

    def _open_for_append(self):
        if self._handle is None:
            self._handle = open(self.path, "a", encoding="utf-8")

    def append(self, record: Dict[str, Any]):
        """Durably append one record.

        Raises:
            StorageError: if the write or sync fails
        """
        try:
            self._open_for_append()
            self._handle.write(json.dumps(record, ensure_ascii=False) + "\n")
            self._handle.flush()
            if self.sync:
                os.fsync(self._handle.fileno())
        except OSError as e:
            raise StorageError(f"Cannot append to journal {self.path}: {e}") from e
        self.records_written += 1

    def rewrite(self, records: Iterable[Dict[str, Any]]):
        """Replace the journal contents atomically (temp file + rename)."""
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.close()
            with open(tmp_path, "w", encoding="utf-8") as f:
                for record in records:
                    f.write(json.dumps(record, ensure_ascii=False) + "\n")
                f.flush()
                if self.sync:
                    os.fsync(f.fileno())
            tmp_path.replace(self.path)
        except OSError as e:
            raise StorageError(f"Cannot rewrite journal {self.path}: {e}") from e

    def close(self):
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError as e:
                raise StorageError(f"Cannot close journal {self.path}: {e}") from e
            finally:
                self._handle = None


def remove_state_file(path: Optional[str]):
    """Delete a state file if present (used for non-resumable crawls)."""
    if not path:
        return
    p = Path(path)
    if p.exists():
        p.unlink()
        logger.info(f"Removed previous state file {p}")
