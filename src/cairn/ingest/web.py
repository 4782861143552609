"""Outbound HTTP for the extractors, plus HTML to text conversion.

Every request goes through the same checks before and after connecting:
only http/https URLs are accepted, each host (including every redirect
target, at most three hops) must resolve to public addresses, the response
Content-Type must be in the caller's whitelist, and bodies are capped at
5 MB with a 30 second socket timeout.
"""

from __future__ import annotations

import ipaddress
import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse
from typing import Any

import html2text
from bs4 import BeautifulSoup

from cairn.errors import ExtractionError

_USER_AGENT = "Mozilla/5.0 (compatible; cairn/0.1)"
_BODY_LIMIT = 5 * 1024 * 1024
_SOCKET_TIMEOUT = 30.0
_REDIRECT_HOPS = 3
_SCHEMES = ("http", "https")

HTML_TYPES = frozenset({"text/html", "application/xhtml+xml", "text/plain"})
JSON_TYPES = frozenset({"application/json"})
PDF_TYPES = frozenset({"application/pdf", "application/octet-stream"})


def _make_converter() -> html2text.HTML2Text:
    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.ignore_emphasis = True
    converter.body_width = 0
    return converter


_converter = _make_converter()


class SsrfError(ExtractionError):
    """The URL's host resolves to a non-public address."""


@dataclass
class Page:
    """Readable text of a fetched HTML page."""

    title: str
    text: str
    excerpt: str


# ------------------------------------------------------------------
# Fetch pipeline
# ------------------------------------------------------------------


def fetch(url: str, allowed_types: frozenset[str] = HTML_TYPES) -> tuple[bytes, str]:
    """Download *url* through the guards.

    Returns the body and its bare media type (parameters such as charset
    removed).

    Raises:
        ExtractionError: The URL is rejected by a guard, the server answers
            with an error or an unlisted media type, or the body is over 5 MB.
    """
    _validate_scheme(url)
    _check_ssrf(url)

    opener = urllib.request.build_opener(_GuardedRedirects(_REDIRECT_HOPS))
    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        response: HTTPResponse = opener.open(request, timeout=_SOCKET_TIMEOUT)
    except urllib.error.HTTPError as exc:
        raise ExtractionError(f"'{url}' answered HTTP {exc.code} ({exc.reason}).") from exc
    except (urllib.error.URLError, TimeoutError) as exc:
        raise ExtractionError(f"Failed to fetch URL '{url}': {exc}") from exc

    with response:
        media_type = response.headers.get_content_type()
        if media_type not in allowed_types:
            raise ExtractionError(
                f"Unsupported Content-Type '{media_type}' from '{url}' "
                f"(expected one of: {', '.join(sorted(allowed_types))})."
            )
        body = response.read(_BODY_LIMIT + 1)

    if len(body) > _BODY_LIMIT:
        raise ExtractionError(f"Response from '{url}' exceeds the {_BODY_LIMIT >> 20} MB limit.")
    return body, media_type


def fetch_json(url: str) -> Any:
    body, _ = fetch(url, allowed_types=JSON_TYPES)
    try:
        return json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Invalid JSON from '{url}': {exc}") from exc


def html_to_page(body: bytes, content_type: str = "text/html") -> Page:
    """Convert an HTML (or plain text) body to a readable Page."""
    text = body.decode("utf-8", errors="replace")
    if content_type == "text/plain":
        return Page(title="", text=text.strip(), excerpt=text.strip()[:200])

    soup = BeautifulSoup(text, "html.parser")
    title = _meta(soup, "og:title") or (soup.title.get_text(strip=True) if soup.title else "")
    excerpt = _meta(soup, "og:description") or _meta(soup, "description")

    for tag in soup.find_all(["script", "style", "nav", "footer", "header", "aside", "form", "head"]):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    body_text = _converter.handle(str(root)).strip()
    return Page(title=title, text=body_text, excerpt=excerpt or body_text[:200])


def _meta(soup: BeautifulSoup, name: str) -> str:
    tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
    if tag and tag.get("content"):
        return str(tag["content"]).strip()
    return ""


# ------------------------------------------------------------------
# Guards
# ------------------------------------------------------------------


def _validate_scheme(url: str) -> None:
    scheme = urllib.parse.urlsplit(url).scheme
    if scheme not in _SCHEMES:
        raise ExtractionError(
            f"Unsupported URL scheme '{scheme}'. Use an http:// or https:// URL."
        )


def _is_public(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def _check_ssrf(url: str) -> None:
    """Raise SsrfError unless every address *url*'s host resolves to is public."""
    host = urllib.parse.urlsplit(url).hostname
    if not host:
        raise ExtractionError(f"URL has no hostname: {url}")

    try:
        resolved = {info[4][0] for info in socket.getaddrinfo(host, None)}
    except socket.gaierror as exc:
        raise ExtractionError(f"Could not resolve '{host}': {exc}") from exc

    for address in sorted(resolved):
        try:
            ip = ipaddress.ip_address(address.split("%", 1)[0])
        except ValueError:
            continue
        if not _is_public(ip):
            raise SsrfError(f"URL resolves to private address ({ip}); internal hosts cannot be fetched.")


class _GuardedRedirects(urllib.request.HTTPRedirectHandler):
    """Follow at most *hops* redirects, re-running the guards on each target."""

    def __init__(self, hops: int) -> None:
        self.hops = hops
        self.followed = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self.followed += 1
        if self.followed > self.hops:
            raise ExtractionError(f"'{req.full_url}' redirected more than {self.hops} times.")
        _validate_scheme(newurl)
        _check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
