"""Built-in extraction collaborator: URL/file/text → ExtractedContent.

``extract(input, source_type=None)`` detects the source type when not given,
dispatches to the matching extractor, caps content length and validates
content quality. Every failure surfaces as ExtractionError.

Any callable with the same signature can replace ``extract`` in the
ingestion coordinator.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import SplitResult, parse_qs, quote, urlsplit

import structlog

from cairn.db.models import SourceType
from cairn.errors import ExtractionError
from cairn.ingest.pdf import extract_pdf_text
from cairn.ingest.web import PDF_TYPES, fetch, fetch_json, html_to_page

logger = structlog.get_logger(logger_name=__name__)

MAX_CONTENT_LENGTH = 200_000
MIN_CONTENT_LENGTH = 20
MIN_ARTICLE_LENGTH = 500
EXCERPT_LENGTH = 200
ERROR_SIGNALS: tuple[str, ...] = (
    "access denied",
    "captcha",
    "please enable javascript",
    "cloudflare",
    "404",
    "sign in",
    "blocked",
    "rate limit",
)

YOUTUBE_HOSTS = frozenset({"youtube.com", "m.youtube.com"})
YOUTU_BE_HOSTS = frozenset({"youtu.be"})
TWEET_HOSTS = frozenset({"twitter.com", "mobile.twitter.com", "x.com"})

_YOUTUBE_PATH_ID_RE = re.compile(r"^/(?:embed|v)/([^/?#]+)")
_TWEET_PATH_RE = re.compile(r"^/(\w+)/status/(\d+)")


@dataclass
class ExtractedContent:
    """Normalized extractor output. ``url`` is None for text sources."""

    title: str
    content: str
    excerpt: str
    source_type: str
    url: str | None = None


Extractor = Callable[[str, str | None], ExtractedContent]


# ------------------------------------------------------------------
# Detection and validation
# ------------------------------------------------------------------


def _split_url(value: str) -> tuple[str, SplitResult] | None:
    """Return (host without ``www.``, parts) for an http(s) URL, else None."""
    try:
        parts = urlsplit(value.strip())
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not host:
        return None
    return host.removeprefix("www."), parts


def detect_source_type(value: str) -> SourceType:
    """Classify a URL, file path or raw text.

    Video and tweet URLs are recognised by exact hostname, so lookalike
    domains (netflix.com, dropbox.com) stay articles.
    """
    lower = value.lower()
    split = _split_url(value)
    if split is not None:
        host, parts = split
        if host in YOUTU_BE_HOSTS or (host in YOUTUBE_HOSTS and parts.path == "/watch"):
            return SourceType.VIDEO
        if host in TWEET_HOSTS:
            return SourceType.TWEET
    if lower.endswith(".pdf"):
        return SourceType.PDF
    if lower.endswith((".txt", ".md")):
        return SourceType.TEXT
    if lower.startswith(("http://", "https://")):
        return SourceType.ARTICLE
    return SourceType.TEXT


def validate_content(content: str, source_type: str) -> None:
    """Reject empty, error-page or navigation-only content.

    Raises:
        ExtractionError: Describing the first failed check.
    """
    if not content or len(content) < MIN_CONTENT_LENGTH:
        raise ExtractionError(f"Content too short ({len(content or '')} chars)")

    lower = content.lower()
    if sum(1 for signal in ERROR_SIGNALS if signal in lower) >= 2:
        raise ExtractionError("Content appears to be an error page")

    if source_type != SourceType.ARTICLE:
        return
    if len(content) < MIN_ARTICLE_LENGTH:
        raise ExtractionError(f"Article content too short ({len(content)} chars)")
    lines = [line for line in content.split("\n") if line.strip()]
    long_lines = [line for line in lines if len(line) > 80]
    if len(lines) > 5 and len(long_lines) / len(lines) < 0.15:
        raise ExtractionError("Content appears to be navigation/menus rather than prose")


# ------------------------------------------------------------------
# Per-type extractors → (title, content, excerpt)
# ------------------------------------------------------------------


def _extract_article(url: str) -> tuple[str, str, str]:
    body, content_type = fetch(url)
    page = html_to_page(body, content_type)
    if not page.text:
        raise ExtractionError("Failed to extract article content")
    return page.title, page.text, page.excerpt


def _youtube_id(url: str) -> str | None:
    split = _split_url(url)
    if split is None:
        return None
    host, parts = split
    if host in YOUTU_BE_HOSTS:
        return parts.path.strip("/").split("/", 1)[0] or None
    if host not in YOUTUBE_HOSTS:
        return None
    if parts.path == "/watch":
        return (parse_qs(parts.query).get("v") or [None])[0]
    if match := _YOUTUBE_PATH_ID_RE.match(parts.path):
        return match.group(1)
    return None


def _extract_video(url: str) -> tuple[str, str, str]:
    video_id = _youtube_id(url)
    if not video_id:
        raise ExtractionError("Could not extract YouTube video ID")

    title = f"YouTube Video {video_id}"
    watch_url = f"https://www.youtube.com/watch?v={video_id}"
    try:
        meta = fetch_json(f"https://www.youtube.com/oembed?url={quote(watch_url, safe='')}&format=json")
        title = meta.get("title") or title
    except ExtractionError as exc:
        logger.info("video_title_lookup_failed", video_id=video_id, error=str(exc))

    raise ExtractionError(
        f"YouTube transcript extraction failed for '{title}': no transcript extractor "
        "is configured. Pass a custom extractor to the ingestion coordinator.",
        provider_name="youtube",
    )


def _extract_tweet(url: str) -> tuple[str, str, str]:
    split = _split_url(url)
    match = _TWEET_PATH_RE.match(split[1].path) if split and split[0] in TWEET_HOSTS else None
    if not match:
        raise ExtractionError("Could not extract tweet ID")
    username, tweet_id = match.group(1), match.group(2)

    try:
        data = fetch_json(f"https://api.fxtwitter.com/{username}/status/{tweet_id}")
    except ExtractionError as exc:
        raise ExtractionError(
            f"Could not extract tweet content: {exc.message}", provider_name="fxtwitter"
        ) from exc

    tweet = (data or {}).get("tweet") or {}
    text = tweet.get("text") or ""
    author = (tweet.get("author") or {}).get("screen_name") or username
    return f"Tweet by @{author}", text, text[:EXCERPT_LENGTH]


def _extract_pdf(value: str) -> tuple[str, str, str]:
    if value.lower().startswith(("http://", "https://")):
        body, _ = fetch(value, allowed_types=PDF_TYPES)
        text = extract_pdf_text(body)
        title = Path(value.split("?", 1)[0]).stem
    else:
        path = Path(value).expanduser().resolve()
        if not path.exists():
            raise ExtractionError(f"PDF file not found: {value}")
        text = extract_pdf_text(path)
        title = path.stem
    return title, text, text[:EXCERPT_LENGTH]


def _extract_text(value: str) -> tuple[str, str, str]:
    path = Path(value).expanduser()
    try:
        is_file = len(value) < 4096 and path.is_file()
    except OSError:
        is_file = False
    if is_file:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ExtractionError(f"Cannot read file '{value}': {exc}") from exc
        return path.name, content, content[:EXCERPT_LENGTH]

    title = value[:50] + ("..." if len(value) > 50 else "")
    return title, value, value[:EXCERPT_LENGTH]


_EXTRACTORS: dict[str, Callable[[str], tuple[str, str, str]]] = {
    SourceType.ARTICLE.value: _extract_article,
    SourceType.VIDEO.value: _extract_video,
    SourceType.TWEET.value: _extract_tweet,
    SourceType.PDF.value: _extract_pdf,
    SourceType.TEXT.value: _extract_text,
}


def extract(value: str, source_type: str | None = None) -> ExtractedContent:
    """Extract title/content/excerpt from *value* (URL, file path or raw text).

    Args:
        value: The ingest input.
        source_type: Force a source type instead of detecting it.

    Raises:
        ExtractionError: If fetching, parsing or validation fails.
    """
    try:
        kind = SourceType(source_type) if source_type else detect_source_type(value)
    except ValueError:
        raise ExtractionError(
            f"Unknown source type '{source_type}'. "
            f"Expected one of: {', '.join(t.value for t in SourceType)}"
        ) from None
    extractor = _EXTRACTORS[kind.value]
    title, content, excerpt = extractor(value)
    content = content[:MAX_CONTENT_LENGTH]
    validate_content(content, kind)

    return ExtractedContent(
        title=title,
        content=content,
        excerpt=excerpt,
        source_type=kind.value,
        url=None if kind is SourceType.TEXT else value,
    )
