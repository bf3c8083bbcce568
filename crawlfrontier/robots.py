"""robots.txt parsing and path permission evaluation.

Parses a robots.txt body into user-agent records, selects the record that
applies to a crawler (case-insensitive agent match, falling back to ``*``) and
answers path queries with longest-match semantics: the longest matching rule
wins and an Allow beats a Disallow of the same length.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

WILDCARD_AGENT = "*"

SOURCE_PARSED = "parsed"
SOURCE_MISSING = "missing"
SOURCE_FAILED = "failed"
SOURCE_DISABLED = "disabled"


@dataclass(frozen=True)
class RobotsRule:
    """Single Allow/Disallow line.

    ``pattern`` may contain ``*`` (any run of characters) and end with ``$``
    (anchor at end of path); otherwise it is a plain prefix.
    """
    allow: bool
    pattern: str

    @property
    def length(self) -> int:
        return len(self.pattern)

    def matches(self, path: str) -> bool:
        if "*" not in self.pattern and not self.pattern.endswith("$"):
            return path.startswith(self.pattern)
        return _compile_pattern(self.pattern).match(path) is not None


_PATTERN_CACHE = {}


def _compile_pattern(pattern: str):
    regex = _PATTERN_CACHE.get(pattern)
    if regex is None:
        anchored = pattern.endswith("$")
        body = pattern[:-1] if anchored else pattern
        expr = ".*".join(re.escape(part) for part in body.split("*"))
        regex = re.compile(expr + ("$" if anchored else ""), re.DOTALL)
        _PATTERN_CACHE[pattern] = regex
    return regex


@dataclass
class RobotsRecord:
    """One user-agent group with its rules and crawl delay."""
    agents: List[str] = field(default_factory=list)
    rules: List[RobotsRule] = field(default_factory=list)
    crawl_delay: Optional[float] = None


@dataclass(frozen=True)
class AgentDirectives:
    """Rules of the record selected for one user agent."""
    rules: Tuple[RobotsRule, ...] = ()
    crawl_delay: Optional[float] = None

    def allows(self, path: str) -> bool:
        if not path:
            path = "/"
        best: Optional[RobotsRule] = None
        for rule in self.rules:
            if not rule.matches(path):
                continue
            if (
                best is None
                or rule.length > best.length
                or (rule.length == best.length and rule.allow and not best.allow)
            ):
                best = rule
        return best is None or best.allow


ALLOW_ALL = AgentDirectives()


@dataclass(frozen=True)
class RobotsTxt:
    """Parsed robots.txt body."""
    records: Tuple[RobotsRecord, ...] = ()
    sitemaps: Tuple[str, ...] = ()

    def select(self, user_agent: str) -> AgentDirectives:
        """Pick the directives that apply to ``user_agent``.

        The record naming the longest agent that matches (case-insensitively)
        the caller's product token or full agent string wins; records naming
        the same agent are merged. Without a match the ``*`` records apply.
        """
        ua = (user_agent or "").strip().lower()
        token = re.split(r"[/\s]", ua, maxsplit=1)[0] if ua else ""

        best_agent = None
        for record in self.records:
            for agent in record.agents:
                if agent == WILDCARD_AGENT or not agent:
                    continue
                if agent == token or (ua and agent in ua):
                    if best_agent is None or len(agent) > len(best_agent):
                        best_agent = agent

        target = best_agent if best_agent is not None else WILDCARD_AGENT
        matched = [record for record in self.records if target in record.agents]
        if not matched:
            return ALLOW_ALL

        rules: List[RobotsRule] = []
        delays = []
        for record in matched:
            rules.extend(record.rules)
            if record.crawl_delay is not None:
                delays.append(record.crawl_delay)
        return AgentDirectives(rules=tuple(rules), crawl_delay=max(delays) if delays else None)


EMPTY_ROBOTS = RobotsTxt()


def parse_robots_txt(content: str) -> RobotsTxt:
    """Parse a robots.txt body.

    Unknown directives are ignored, invalid crawl delays are logged and
    dropped. An empty body yields no records (everything allowed).
    """
    records: List[RobotsRecord] = []
    sitemaps: List[str] = []
    current: Optional[RobotsRecord] = None
    has_rules = False

    for raw_line in (content or "").splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            # A blank line ends a record once it has rules
            if current is not None and has_rules:
                current = None
            continue
        if ":" not in line:
            continue

        key, value = line.split(":", 1)
        key = key.strip().lower().replace(" ", "")
        value = value.strip()

        if key in ("user-agent", "useragent"):
            if current is None or has_rules:
                current = RobotsRecord()
                records.append(current)
                has_rules = False
            current.agents.append(value.lower())
        elif key in ("allow", "disallow"):
            if current is None:
                continue
            has_rules = True
            if value:
                current.rules.append(RobotsRule(allow=(key == "allow"), pattern=value))
        elif key == "crawl-delay":
            if current is None:
                continue
            has_rules = True
            try:
                delay = float(value)
            except ValueError:
                logger.warning(f"Invalid crawl-delay value {value!r}")
                continue
            if delay < 0:
                logger.warning(f"Negative crawl-delay value {value!r}")
                continue
            current.crawl_delay = delay
        elif key == "sitemap":
            if value:
                sitemaps.append(value)

    return RobotsTxt(records=tuple(records), sitemaps=tuple(sitemaps))


@dataclass(frozen=True)
class HostDirectives:
    """Cached robots.txt state of one host; replaced whole on refresh."""
    host: str
    robots: RobotsTxt = EMPTY_ROBOTS
    source: str = SOURCE_PARSED
    fetched_at: float = field(default_factory=time.time)
    content: str = ""

    def for_agent(self, user_agent: str) -> AgentDirectives:
        return self.robots.select(user_agent)

    def allows(self, path: str, user_agent: str) -> bool:
        return self.for_agent(user_agent).allows(path)

    def crawl_delay(self, user_agent: str) -> Optional[float]:
        return self.for_agent(user_agent).crawl_delay

    @property
    def sitemaps(self) -> Tuple[str, ...]:
        return self.robots.sitemaps

    def is_stale(self, now: float, ttl_sec: float) -> bool:
        return now - self.fetched_at > ttl_sec
