"""General-purpose HTML link extractor.

Finds anchor tags in HTML content, resolves relative links against the page
URL, removes fragments, and deduplicates results. Scope decisions are left to
the policy hook.
"""

import html
import logging
import re
from typing import List, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

# href may be double-quoted, single-quoted or bare; the anchor body is optional
ANCHOR_PATTERN = re.compile(
    r"""<a\s+[^>]*?href\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))[^>]*>(.*?)(?:</a\s*>|(?=<a[\s>])|$)""",
    re.IGNORECASE | re.DOTALL,
)
TAG_PATTERN = re.compile(r"<[^>]+>")
SPACE_PATTERN = re.compile(r"\s+")
BASE_PATTERN = re.compile(r"""<base\s+[^>]*?href\s*=\s*["']([^"']+)["']""", re.IGNORECASE)

SKIPPED_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")


class LinkExtractor:
    """Extract (url, anchor text) pairs from HTML pages."""

    def __init__(self, max_anchor_length: int = 256):
        self.max_anchor_length = max_anchor_length

    def extract(self, html_content: str, base_url: str) -> List[Tuple[str, str]]:
        """Extract HTTP(S) links from HTML content.

        Args:
            html_content: HTML content as string
            base_url: URL of the page, used to resolve relative links

        Returns:
            List of (absolute URL, anchor text), deduplicated by URL and in
            order of first appearance
        """
        if not html_content or not base_url:
            return []

        base_match = BASE_PATTERN.search(html_content)
        if base_match:
            base_url = urljoin(base_url, html.unescape(base_match.group(1)).strip())

        seen = set()
        results = []
        for match in ANCHOR_PATTERN.finditer(html_content):
            href = match.group(1) or match.group(2) or match.group(3) or ""
            href = html.unescape(href).strip()
            if not href or href.lower().startswith(SKIPPED_PREFIXES):
                continue

            url = self._remove_fragment(urljoin(base_url, href))
            if not self._is_supported_scheme(url) or url in seen:
                continue

            seen.add(url)
            results.append((url, self._anchor_text(match.group(4) or "")))

        logger.debug(f"Extracted {len(results)} links from {base_url}")
        return results

    def _anchor_text(self, body: str) -> str:
        text = html.unescape(TAG_PATTERN.sub(" ", body))
        text = SPACE_PATTERN.sub(" ", text).strip()
        return text[: self.max_anchor_length]

    @staticmethod
    def _is_supported_scheme(url: str) -> bool:
        try:
            parts = urlsplit(url)
        except ValueError:
            return False
        return parts.scheme in ("http", "https") and bool(parts.netloc)

    @staticmethod
    def _remove_fragment(url: str) -> str:
        try:
            parts = urlsplit(url)
        except ValueError:
            return url
        return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
