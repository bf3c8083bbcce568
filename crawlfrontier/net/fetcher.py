"""Fetcher interface and the default httpx implementation.

The frontier only fetches robots.txt bodies itself; page fetching belongs to
the crawl loop, which hands results back so redirects can be re-admitted.
Redirects are therefore never followed here: a 3xx with a Location header is
reported through ``FetchResult.redirect_target``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol
from urllib.parse import urljoin

import httpx

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


@dataclass
class FetchResult:
    """Outcome of one HTTP fetch. ``status_code`` is 0 on transport errors."""
    url: str
    status_code: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    redirect_target: Optional[str] = None
    error: Optional[str] = None
    encoding: Optional[str] = None
    fetch_latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    @property
    def text(self) -> str:
        return self.body.decode(self.encoding or "utf-8", errors="replace")


class Fetcher(Protocol):
    """Anything that can retrieve a URL."""

    async def fetch(self, url: str) -> FetchResult:
        ...


class HttpxFetcher:
    """Single-attempt HTTP fetcher on a shared httpx.AsyncClient."""

    def __init__(
        self,
        user_agent: str,
        connect_timeout_ms: int = 4000,
        read_timeout_ms: int = 15000,
        accept_language: str = "en",
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize fetcher.

        Args:
            user_agent: User-Agent header sent with every request
            connect_timeout_ms: Connection timeout in milliseconds
            read_timeout_ms: Read timeout in milliseconds
            accept_language: Accept-Language header
            client: Pre-built client (tests); one is created otherwise
        """
        self.user_agent = user_agent
        self.accept_language = accept_language

        timeout = httpx.Timeout(
            connect=connect_timeout_ms / 1000,
            read=read_timeout_ms / 1000,
            write=read_timeout_ms / 1000,
            pool=None
        )
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(
                max_keepalive_connections=10,
                max_connections=20,
                keepalive_expiry=30
            ),
            follow_redirects=False,
        )

        self.total_fetches = 0
        self.failed_fetches = 0
        self.bytes_downloaded = 0

    async def fetch(self, url: str) -> FetchResult:
        self.total_fetches += 1
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.8",
            "Accept-Language": self.accept_language,
        }

        start_time = time.time()
        try:
            response = await self.client.get(url, headers=headers)
        except httpx.HTTPError as e:
            self.failed_fetches += 1
            logger.warning(f"Request error for {url}: {e}")
            return FetchResult(
                url=url,
                error=f"{type(e).__name__}: {e}",
                fetch_latency_ms=(time.time() - start_time) * 1000,
            )

        latency_ms = (time.time() - start_time) * 1000
        body = response.content
        self.bytes_downloaded += len(body)

        redirect_target = None
        location = response.headers.get("location")
        if response.status_code in REDIRECT_STATUSES and location:
            redirect_target = urljoin(str(response.url), location)
            logger.debug(f"Redirect {response.status_code}: {url} -> {redirect_target}")

        return FetchResult(
            url=url,
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
            redirect_target=redirect_target,
            encoding=response.encoding,
            fetch_latency_ms=latency_ms,
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
        logger.info(
            f"Fetcher closed - fetches: {self.total_fetches}, failures: {self.failed_fetches}, "
            f"bytes: {self.bytes_downloaded}"
        )
