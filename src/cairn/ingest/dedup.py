"""Duplicate detection keys: normalized URL and content hash."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from cairn.db.base import KnowledgeStore

logger = structlog.get_logger(logger_name=__name__)

TRACKING_PARAMS: frozenset[str] = frozenset(
    [
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "fbclid",
        "igshid",
        "ref",
        "s",
        "t",
        "si",
        "feature",
    ]
)

DOMAIN_ALIASES: dict[str, str] = {
    "twitter.com": "x.com",
}


def normalize_url(url: str | None) -> str | None:
    """Return the canonical dedup key for *url*.

    Drops tracking parameters and the fragment, strips ``www.``, maps domain
    aliases (twitter.com → x.com), removes one trailing slash from the path
    and lower-cases the result. Input that does not parse as an absolute URL
    falls back to the lower-cased raw string.

    >>> normalize_url("https://www.twitter.com/a/b/?utm_source=x")
    'https://x.com/a/b'
    """
    if url is None:
        return None
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return url.lower()
    if not parts.scheme or not hostname:
        return url.lower()

    if hostname.startswith("www."):
        hostname = hostname[4:]
    hostname = DOMAIN_ALIASES.get(hostname, hostname)
    netloc = f"{hostname}:{port}" if port is not None else hostname

    path = parts.path[:-1] if parts.path.endswith("/") else parts.path
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    )
    return urlunsplit((parts.scheme, netloc, path, query, "")).lower()


def hash_content(content: str) -> str:
    """SHA-256 hex digest of *content* (UTF-8)."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class DedupCheck:
    """Both dedup keys of a candidate plus the id of a matching source, if any."""

    normalized_url: str | None
    content_hash: str
    existing_id: int | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.existing_id is not None


class Deduplicator:
    """Existence check against a knowledge store using both dedup keys.

    Args:
        store: Any KnowledgeStore implementation.
    """

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def check(self, url: str | None, content: str) -> DedupCheck:
        """Compute the keys for a candidate and look them up (URL first, then hash)."""
        result = DedupCheck(normalize_url(url), hash_content(content))
        result.existing_id = self._store.source_exists(result.normalized_url, result.content_hash)
        if result.is_duplicate:
            logger.info("duplicate_detected", source_id=result.existing_id, url=result.normalized_url)
        return result
