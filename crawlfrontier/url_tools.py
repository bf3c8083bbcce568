"""URL canonicalization for deduplication and per-host grouping.

A raw URL is split into scheme, host, registrable domain, subdomain, path and
query parameters. The canonical string derived from those parts is the single
identity used for hashing, equality and the seen-URL store.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from functools import cached_property, lru_cache
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote, unquote_plus

import tldextract

from .errors import DecodeError, MalformedURL

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443, "ftp": 21}

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*$")
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_ESCAPE_RE = re.compile(r"%[0-9a-fA-F]{2}")
_HOST_RE = re.compile(r"^[^\s/?#@\\]+$")

_PATH_SAFE = "/:@!$&'()*+,;=-._~%"
_QUERY_SAFE = "-._~!$'()*,;:@/"


def build_suffix_extractor(
    suffix_list_urls: Sequence[str] = (),
    extra_suffixes: Iterable[str] = (),
    cache_dir: Optional[str] = None,
) -> tldextract.TLDExtract:
    """Create a public-suffix lookup.

    Without ``suffix_list_urls`` only the Public Suffix List snapshot shipped
    with tldextract is used, so no network access happens. Private suffixes
    such as ``github.io`` count as public suffixes.

    Args:
        suffix_list_urls: PSL sources to fetch, tried in order
        extra_suffixes: Additional suffixes treated as public
        cache_dir: Where tldextract caches fetched lists (None disables caching)
    """
    return tldextract.TLDExtract(
        cache_dir=cache_dir,
        suffix_list_urls=tuple(suffix_list_urls),
        fallback_to_snapshot=True,
        include_psl_private_domains=True,
        extra_suffixes=tuple(s.strip().lower().strip(".") for s in extra_suffixes if s and s.strip()),
    )


@lru_cache(maxsize=1)
def default_suffix_extractor() -> tldextract.TLDExtract:
    """Process-wide offline extractor (built once)."""
    return build_suffix_extractor()


@dataclass(frozen=True, eq=False)
class CanonicalURL:
    """Normalized decomposition of a URL.

    Two instances are equal iff their ``canonical`` strings are equal; the hash
    is taken from the same string.
    """
    scheme: str
    host: str
    registrable_domain: str
    subdomain: str
    path: str
    query_params: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    port: Optional[int] = None
    # Query text as discovered; not part of the identity
    raw_query: str = ""

    @property
    def authority(self) -> str:
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def query(self) -> str:
        """Query string rebuilt from the decoded parameters, sorted by key."""
        return "&".join(
            f"{quote(key, safe=_QUERY_SAFE)}={quote(value, safe=_QUERY_SAFE)}"
            for key, value in sorted(self.query_params.items())
        )

    @property
    def path_with_query(self) -> str:
        query = self.query
        return f"{self.path}?{query}" if query else self.path

    @property
    def request_target(self) -> str:
        """Path followed by the query exactly as discovered, for robots.txt matching."""
        return f"{self.path}?{self.raw_query}" if self.raw_query else self.path

    @cached_property
    def canonical(self) -> str:
        return f"{self.scheme}://{self.authority}{self.path_with_query}"

    def __eq__(self, other):
        if not isinstance(other, CanonicalURL):
            return NotImplemented
        return self.canonical == other.canonical

    def __hash__(self) -> int:
        return hash(self.canonical)

    def __str__(self) -> str:
        return self.canonical


def decode_component(value: str) -> str:
    """Strictly percent-decode a query component (``+`` means space).

    Raises:
        DecodeError: on an incomplete escape or invalid UTF-8 sequence
    """
    if _BAD_ESCAPE_RE.search(value):
        raise DecodeError(f"Incomplete percent escape in {value!r}")
    try:
        return unquote_plus(value, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Invalid UTF-8 escape in {value!r}") from e


def parse_query(query: str) -> Dict[str, str]:
    """Split a query string into an ordered key/value mapping.

    A pair without ``=`` gets an empty value. Pairs that fail to decode are
    logged and skipped; the remaining pairs are still returned.
    """
    params: Dict[str, str] = {}
    for pair in query.split("&"):
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        try:
            key = decode_component(key)
            value = decode_component(value) if sep else ""
        except DecodeError as e:
            logger.warning(f"Dropping query parameter {pair!r}: {e}")
            continue
        params[key] = value
    return params


def normalize_path(path: str) -> str:
    """Remove dot segments and duplicate slashes, uppercase percent escapes.

    A trailing slash is preserved; an empty path becomes ``/``.
    """
    if not path:
        return "/"

    trailing = path.endswith(("/", "/.", "/.."))
    segments = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)

    result = "/" + "/".join(segments)
    if trailing and result != "/":
        result += "/"

    result = _ESCAPE_RE.sub(lambda m: m.group(0).upper(), result)
    return quote(result, safe=_PATH_SAFE)


def _is_ip_literal(host: str) -> bool:
    if host.startswith("["):
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


class UrlCanonicalizer:
    """Turns raw URL strings into :class:`CanonicalURL` records."""

    def __init__(self, suffix_extractor: Optional[tldextract.TLDExtract] = None):
        self.suffix_extractor = (
            suffix_extractor if suffix_extractor is not None else default_suffix_extractor()
        )

    def is_public_suffix(self, domain: str) -> bool:
        """True if ``domain`` as a whole is a listed public suffix (e.g. ``co.uk``)."""
        result = self.suffix_extractor(domain)
        return not result.domain and result.suffix == domain

    def split_domain(self, host: str) -> Tuple[str, str]:
        """Return ``(registrable_domain, subdomain)`` for a lowercased host."""
        if _is_ip_literal(host):
            return host, ""

        labels = host.split(".")
        if len(labels) <= 2:
            return host, ""

        limit = 2
        domain = ".".join(labels[-2:])
        if self.is_public_suffix(domain):
            limit = 3
            domain = ".".join(labels[-3:])
        return domain, ".".join(labels[:-limit])

    def canonicalize(self, raw: str) -> CanonicalURL:
        """Canonicalize a raw URL.

        Raises:
            MalformedURL: if scheme or host cannot be located
        """
        if not isinstance(raw, str) or not raw.strip():
            raise MalformedURL(str(raw), "empty URL")

        url = raw.strip().split("#", 1)[0]

        marker = url.find("//")
        if marker < 0:
            raise MalformedURL(raw, "missing '//' after scheme")
        prefix = url[:marker]
        if not prefix.endswith(":"):
            raise MalformedURL(raw, "missing scheme")
        scheme = prefix[:-1].lower()
        if not _SCHEME_RE.match(scheme):
            raise MalformedURL(raw, f"invalid scheme {scheme!r}")

        rest = url[marker + 2:]
        end = len(rest)
        for sep in ("/", "?"):
            idx = rest.find(sep)
            if 0 <= idx < end:
                end = idx
        host, port = self._split_authority(raw, rest[:end])
        if port is not None and DEFAULT_PORTS.get(scheme) == port:
            port = None

        path, has_query, query = rest[end:].partition("?")
        params = parse_query(query) if has_query else {}

        registrable_domain, subdomain = self.split_domain(host)

        return CanonicalURL(
            scheme=scheme,
            host=host,
            registrable_domain=registrable_domain,
            subdomain=subdomain,
            path=normalize_path(path),
            query_params=MappingProxyType(params),
            port=port,
            raw_query=query,
        )

    @staticmethod
    def _split_authority(raw: str, authority: str) -> Tuple[str, Optional[int]]:
        if "@" in authority:
            authority = authority.rsplit("@", 1)[1]

        port_text = ""
        if authority.startswith("["):
            end = authority.find("]")
            if end < 0:
                raise MalformedURL(raw, "unterminated IPv6 literal")
            host, rest = authority[:end + 1], authority[end + 1:]
            if rest.startswith(":"):
                port_text = rest[1:]
            elif rest:
                raise MalformedURL(raw, "garbage after IPv6 literal")
        elif ":" in authority:
            host, port_text = authority.rsplit(":", 1)
        else:
            host = authority

        port = None
        if port_text:
            if not port_text.isdigit() or int(port_text) > 65535:
                raise MalformedURL(raw, f"invalid port {port_text!r}")
            port = int(port_text)

        host = host.lower().rstrip(".")
        if not host:
            raise MalformedURL(raw, "empty host")
        if not host.startswith("[") and (
            not _HOST_RE.match(host) or any(not label for label in host.split("."))
        ):
            raise MalformedURL(raw, f"invalid host {host!r}")
        return host, port


def canonicalize(
    url: str, suffix_extractor: Optional[tldextract.TLDExtract] = None
) -> CanonicalURL:
    """Canonicalize ``url`` with the given (or the default offline) suffix lookup."""
    return UrlCanonicalizer(suffix_extractor).canonicalize(url)


def is_valid_url(url: str) -> bool:
    """Check whether ``url`` canonicalizes to an http(s) URL."""
    try:
        return canonicalize(url).scheme in ("http", "https")
    except MalformedURL:
        return False
