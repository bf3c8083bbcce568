"""Robots.txt directive engine with a per-host cache.

Fetches robots.txt through the Fetcher on the first query for a host (or when
the cached entry is stale), caches the parsed directives, and answers
permission and crawl-delay queries. Any failure to retrieve or parse
robots.txt is fail-open: the host is treated as fully allowed.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from .errors import RobotsFetchFailed, RobotsParseFailed, StorageError
from .io.journal import JsonlJournal
from .net.fetcher import Fetcher, FetchResult
from .robots import (
    SOURCE_DISABLED,
    SOURCE_FAILED,
    SOURCE_MISSING,
    SOURCE_PARSED,
    HostDirectives,
    parse_robots_txt,
)
from .url_tools import CanonicalURL

logger = logging.getLogger(__name__)


class RobotsDirectiveEngine:
    """Cache and evaluate robots.txt directives per host."""

    def __init__(
        self,
        fetcher: Optional[Fetcher],
        user_agent: str,
        cache_ttl_sec: int = 86400,
        failure_ttl_sec: int = 3600,
        max_redirects: int = 5,
        enabled: bool = True,
        cache_path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize robots engine.

        Args:
            fetcher: Used to retrieve ``/robots.txt``
            user_agent: Default agent for permission queries
            cache_ttl_sec: Lifetime of a parsed or missing robots.txt entry
            failure_ttl_sec: Lifetime of an entry whose fetch failed
            max_redirects: Redirects followed when fetching robots.txt
            enabled: When False every query is allowed with no crawl delay
            cache_path: Optional robots_cache.jsonl for persistence across runs
            clock: Wall clock used for entry timestamps
        """
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.cache_ttl_sec = cache_ttl_sec
        self.failure_ttl_sec = failure_ttl_sec
        self.max_redirects = max_redirects
        self.enabled = enabled
        self._clock = clock

        self._cache: Dict[str, HostDirectives] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._journal = JsonlJournal(cache_path, sync=False) if cache_path else None

        self.stats = {
            "robots_fetched": 0,
            "robots_missing": 0,
            "robots_failed": 0,
            "cache_hits": 0,
            "disallowed": 0,
        }

        if self._journal is not None:
            self._load()

        logger.info(
            f"Robots engine initialized: enabled={enabled}, "
            f"user_agent={user_agent!r}, {len(self._cache)} cached hosts"
        )

    # =========================================================================
    # Cache management
    # =========================================================================

    def _load(self):
        for record in self._journal.read():
            host = record.get("host")
            if not host:
                continue
            source = record.get("source", SOURCE_PARSED)
            content = record.get("content", "")
            self._cache[host] = HostDirectives(
                host=host,
                robots=parse_robots_txt(content),
                source=source,
                fetched_at=float(record.get("fetched_at", 0.0)),
                content=content,
            )
        logger.info(f"Loaded {len(self._cache)} robots.txt entries")

    @staticmethod
    def _to_record(entry: HostDirectives) -> Dict:
        return {
            "host": entry.host,
            "content": entry.content,
            "source": entry.source,
            "fetched_at": entry.fetched_at,
        }

    def _persist_entry(self, entry: HostDirectives):
        if self._journal is None:
            return
        try:
            self._journal.append(self._to_record(entry))
        except StorageError as e:
            logger.error(f"Failed to persist robots cache entry for {entry.host}: {e}")

    def _ttl(self, entry: HostDirectives) -> float:
        return self.failure_ttl_sec if entry.source == SOURCE_FAILED else self.cache_ttl_sec

    def _fresh_entry(self, host: str) -> Optional[HostDirectives]:
        entry = self._cache.get(host)
        if entry is None:
            return None
        if entry.is_stale(self._clock(), self._ttl(entry)):
            logger.debug(f"Robots cache expired for {host}")
            return None
        return entry

    # =========================================================================
    # Fetching
    # =========================================================================

    async def directives(
        self, host: str, scheme: str = "http", authority: Optional[str] = None
    ) -> HostDirectives:
        """Return current directives for ``host``, fetching them if absent or stale."""
        host = host.lower()
        if not self.enabled:
            return HostDirectives(host=host, source=SOURCE_DISABLED, fetched_at=self._clock())

        entry = self._fresh_entry(host)
        if entry is not None:
            self.stats["cache_hits"] += 1
            return entry

        lock = self._locks.setdefault(host, asyncio.Lock())
        async with lock:
            # Another task may have refreshed while we waited
            entry = self._fresh_entry(host)
            if entry is None:
                entry = await self._refresh(host, scheme, authority or host)
                self._cache[host] = entry
                self._persist_entry(entry)
        return entry

    async def _refresh(self, host: str, scheme: str, authority: str) -> HostDirectives:
        now = self._clock()
        try:
            content = await self._fetch_robots(scheme, authority)
            if content is None:
                self.stats["robots_missing"] += 1
                logger.info(f"No robots.txt for {host}, allowing all")
                return HostDirectives(host=host, source=SOURCE_MISSING, fetched_at=now)
            robots = parse_robots_txt(content)
        except (RobotsFetchFailed, RobotsParseFailed) as e:
            self.stats["robots_failed"] += 1
            logger.warning(f"{e} - treating {host} as fully allowed")
            return HostDirectives(host=host, source=SOURCE_FAILED, fetched_at=now)

        self.stats["robots_fetched"] += 1
        logger.info(f"Fetched robots.txt for {host}: {len(robots.records)} records")
        return HostDirectives(
            host=host, robots=robots, source=SOURCE_PARSED, fetched_at=now, content=content
        )

    async def _fetch_robots(self, scheme: str, authority: str) -> Optional[str]:
        """Fetch robots.txt text.

        Returns:
            Body text, or None when the server has no robots.txt (4xx)

        Raises:
            RobotsFetchFailed: transport error, 5xx or too many redirects
            RobotsParseFailed: body cannot be decoded
        """
        if self.fetcher is None:
            raise RobotsFetchFailed(f"No fetcher configured for {authority}")

        url = f"{scheme}://{authority}/robots.txt"
        for _ in range(self.max_redirects + 1):
            try:
                result = await self.fetcher.fetch(url)
            except Exception as e:
                raise RobotsFetchFailed(f"Error fetching {url}: {e}") from e

            if result.error:
                raise RobotsFetchFailed(f"Error fetching {url}: {result.error}")
            if result.redirect_target:
                url = result.redirect_target
                continue
            if 200 <= result.status_code < 300:
                return self._decode(result)
            if 400 <= result.status_code < 500:
                return None
            raise RobotsFetchFailed(f"robots.txt returned {result.status_code} for {url}")

        raise RobotsFetchFailed(f"Too many redirects fetching robots.txt for {authority}")

    @staticmethod
    def _decode(result: FetchResult) -> str:
        try:
            return result.body.decode(result.encoding or "utf-8")
        except (UnicodeDecodeError, LookupError) as e:
            raise RobotsParseFailed(f"Cannot decode robots.txt from {result.url}: {e}") from e

    # =========================================================================
    # Queries
    # =========================================================================

    async def is_allowed(
        self,
        host: str,
        path: str,
        user_agent: Optional[str] = None,
        scheme: str = "http",
        authority: Optional[str] = None,
    ) -> bool:
        """Check whether ``path`` on ``host`` may be fetched by ``user_agent``."""
        entry = await self.directives(host, scheme, authority)
        allowed = entry.allows(path, user_agent or self.user_agent)
        if not allowed:
            self.stats["disallowed"] += 1
            logger.debug(f"Robots.txt disallows {host}{path} for user-agent {user_agent or self.user_agent}")
        return allowed

    async def is_url_allowed(self, url: CanonicalURL, user_agent: Optional[str] = None) -> bool:
        """Check ``url`` using its path and the query as it was discovered."""
        return await self.is_allowed(
            url.host, url.request_target, user_agent, url.scheme, url.authority
        )

    async def crawl_delay(self, host: str, scheme: str = "http") -> Optional[float]:
        """Crawl delay (seconds) declared for our agent, fetching robots.txt if needed."""
        entry = await self.directives(host, scheme)
        return entry.crawl_delay(self.user_agent)

    def cached_crawl_delay(self, host: str) -> Optional[float]:
        """Crawl delay from whatever entry is cached, without any I/O."""
        entry = self._cache.get(host.lower())
        if entry is None:
            return None
        return entry.crawl_delay(self.user_agent)

    async def sitemaps(self, host: str, scheme: str = "http") -> Tuple[str, ...]:
        entry = await self.directives(host, scheme)
        return entry.sitemaps

    def invalidate(self, host: str):
        self._cache.pop(host.lower(), None)

    def clear_cache(self):
        """Clear the robots.txt cache."""
        self._cache.clear()
        logger.info("Cleared robots.txt cache")

    def get_cache_stats(self) -> Dict:
        now = self._clock()
        valid = sum(
            1 for entry in self._cache.values() if not entry.is_stale(now, self._ttl(entry))
        )
        return {
            "total_entries": len(self._cache),
            "valid_entries": valid,
            "expired_entries": len(self._cache) - valid,
            "cache_ttl_sec": self.cache_ttl_sec,
            "user_agent": self.user_agent,
            **self.stats,
        }

    def persist(self):
        """Rewrite the cache file with one record per host."""
        if self._journal is None:
            return
        try:
            self._journal.rewrite(self._to_record(entry) for entry in self._cache.values())
            logger.info(f"Persisted robots cache with {len(self._cache)} entries")
        except StorageError as e:
            logger.error(f"Failed to persist robots cache: {e}")

    def close(self):
        logger.info("Closing robots engine...")
        self.persist()
        if self._journal is not None:
            try:
                self._journal.close()
            except StorageError as e:
                logger.error(f"Error closing robots cache: {e}")
