"""Admission policy hook and the default scope policy.

The frontier asks the policy two things: whether a canonicalized candidate
should be admitted at all, and which links to follow from a fetched page.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from .net.fetcher import FetchResult
from .parse.extractor import LinkExtractor
from .url_tools import CanonicalURL

logger = logging.getLogger(__name__)

DEFAULT_DENY_EXTENSIONS = [
    "css", "js", "bmp", "gif", "jpg", "jpeg", "png", "tif", "tiff", "mid",
    "mp2", "mp3", "mp4", "wav", "avi", "mov", "mpeg", "ram", "m4v", "pdf",
    "rm", "smil", "wmv", "swf", "wma", "zip", "rar", "gz",
]

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


@dataclass
class Discovery:
    """Candidate URL found by a seed list or an extractor."""
    url: str
    parent: Optional[object] = None
    tag: Optional[str] = None
    label: Optional[str] = None
    priority: int = 0
    attributes: Dict[str, str] = field(default_factory=dict)


class PolicyHook(Protocol):
    """Caller-supplied admission and link-following rules."""

    def should_admit(self, candidate: CanonicalURL, context: Discovery) -> bool:
        ...

    def on_dequeue(self, item, result: FetchResult) -> Iterable[Discovery]:
        ...


class ScopePolicy:
    """Domain allowlist plus extension and pattern filters."""

    def __init__(
        self,
        allowed_domains: Optional[List[str]] = None,
        allow_patterns: Optional[List[str]] = None,
        deny_patterns: Optional[List[str]] = None,
        deny_extensions: Optional[List[str]] = None,
        extractor: Optional[LinkExtractor] = None,
    ):
        """Initialize scope policy.

        Args:
            allowed_domains: Hosts (and their subdomains) to stay within;
                empty means any host
            allow_patterns: If given, a URL must match at least one
            deny_patterns: A URL matching any of these is rejected
            deny_extensions: Path extensions never admitted
            extractor: Link extractor for fetched pages
        """
        self.allowed_domains = [d.lower().strip(".") for d in (allowed_domains or [])]
        self.allow_patterns = [re.compile(p) for p in (allow_patterns or [])]
        self.deny_patterns = [re.compile(p) for p in (deny_patterns or [])]
        extensions = DEFAULT_DENY_EXTENSIONS if deny_extensions is None else deny_extensions
        self.deny_extensions = {ext.lower().lstrip(".") for ext in extensions}
        self.extractor = extractor or LinkExtractor()

        self.stats = {
            "domain_rejected": 0,
            "extension_rejected": 0,
            "pattern_rejected": 0,
        }

        logger.info(
            f"Scope policy initialized with {len(self.allowed_domains)} domains, "
            f"{len(self.allow_patterns)} allow patterns, {len(self.deny_patterns)} deny patterns"
        )

    @classmethod
    def from_config(cls, scope) -> "ScopePolicy":
        return cls(
            allowed_domains=scope.allowed_domains,
            allow_patterns=scope.allow_patterns,
            deny_patterns=scope.deny_patterns,
            deny_extensions=scope.deny_extensions,
        )

    def _in_domain(self, candidate: CanonicalURL) -> bool:
        if not self.allowed_domains:
            return True
        host = candidate.host
        return any(host == domain or host.endswith("." + domain) for domain in self.allowed_domains)

    def _extension(self, path: str) -> str:
        last_segment = path.rsplit("/", 1)[-1]
        if "." not in last_segment:
            return ""
        return last_segment.rsplit(".", 1)[-1].lower()

    def should_admit(self, candidate: CanonicalURL, context: Discovery) -> bool:
        if not self._in_domain(candidate):
            self.stats["domain_rejected"] += 1
            logger.debug(f"Out of scope: {candidate}")
            return False

        if self._extension(candidate.path) in self.deny_extensions:
            self.stats["extension_rejected"] += 1
            logger.debug(f"Denied extension: {candidate}")
            return False

        url = str(candidate)
        for pattern in self.deny_patterns:
            if pattern.search(url):
                self.stats["pattern_rejected"] += 1
                logger.debug(f"Denied by pattern {pattern.pattern}: {url}")
                return False

        if self.allow_patterns and not any(p.search(url) for p in self.allow_patterns):
            self.stats["pattern_rejected"] += 1
            logger.debug(f"No allow pattern matched: {url}")
            return False

        return True

    def on_dequeue(self, item, result: FetchResult) -> Iterable[Discovery]:
        """Outgoing links of a successfully fetched HTML page."""
        if not result.ok:
            return []
        content_type = result.content_type.lower()
        if content_type and not content_type.startswith(HTML_CONTENT_TYPES):
            return []

        return [
            Discovery(url=url, parent=item, tag="a", attributes={"anchor": anchor} if anchor else {})
            for url, anchor in self.extractor.extract(result.text, item.url)
        ]
