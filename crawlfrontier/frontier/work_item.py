"""Work item stored in the frontier queue."""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

PRIORITY_MIN = -128
PRIORITY_MAX = 127


@dataclass
class WorkItem:
    """A canonical URL admitted to the frontier, with its crawl lineage.

    Lower ``priority`` values are dispatched first. Seeds have ``depth`` 0 and
    ``parent_doc_id`` -1.
    """
    url: str
    doc_id: int = -1
    parent_doc_id: int = -1
    parent_url: Optional[str] = None
    depth: int = 0
    redirection_depth: int = 0
    priority: int = 0
    tag: Optional[str] = None
    label: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    retries: int = 0
    host: str = ""

    def __post_init__(self):
        if not PRIORITY_MIN <= self.priority <= PRIORITY_MAX:
            raise ValueError(
                f"priority must be within [{PRIORITY_MIN}, {PRIORITY_MAX}], got {self.priority}"
            )
        if self.depth < 0:
            raise ValueError("depth must be >= 0")
        if not self.host:
            self.host = (urlsplit(self.url).hostname or "").lower()

    def attribute(self, name: str) -> str:
        return self.attributes.get(name, "")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        return cls(**data)
