"""Tests for the guarded fetch helpers: SSRF guard, redirects, scheme validation, HTML conversion."""

from __future__ import annotations

import urllib.request
from email.message import Message
from unittest.mock import MagicMock, patch

import pytest

from cairn.errors import ExtractionError
from cairn.ingest.web import (
    JSON_TYPES,
    SsrfError,
    _check_ssrf,
    _GuardedRedirects,
    _validate_scheme,
    fetch,
    fetch_json,
    html_to_page,
)


def _patch_getaddrinfo(ip: str):
    """Return a context manager that makes getaddrinfo resolve to *ip*."""
    addr_info = [(None, None, None, None, (ip, 0))]
    return patch("cairn.ingest.web.socket.getaddrinfo", return_value=addr_info)


def _patch_opener(body: bytes, content_type: str):
    """Patch build_opener so open() returns a canned response."""
    headers = Message()
    headers["Content-Type"] = content_type
    response = MagicMock()
    response.headers = headers
    response.read.return_value = body
    response.__enter__.return_value = response
    opener = MagicMock()
    opener.open.return_value = response
    return patch("cairn.ingest.web.urllib.request.build_opener", return_value=opener)


# ------------------------------------------------------------------
# Scheme validation
# ------------------------------------------------------------------


@pytest.mark.parametrize("url", ["https://example.com/page", "http://example.com/page"])
def test_scheme_ok(url):
    _validate_scheme(url)


@pytest.mark.parametrize("url", ["ftp://example.com", "file:///etc/passwd"])
def test_scheme_rejected(url):
    with pytest.raises(ExtractionError, match="scheme"):
        _validate_scheme(url)


def test_check_ssrf_no_hostname_raises():
    with pytest.raises(ExtractionError, match="hostname"):
        _check_ssrf("https://")


# ------------------------------------------------------------------
# SSRF guard
# ------------------------------------------------------------------


def test_ssrf_public_ip_ok():
    with _patch_getaddrinfo("1.2.3.4"):
        _check_ssrf("https://example.com")


@pytest.mark.parametrize("ip", ["127.0.0.1", "10.0.0.1", "172.16.0.1", "192.168.1.1", "169.254.169.254", "::1"])
def test_ssrf_private_ranges_blocked(ip):
    with _patch_getaddrinfo(ip):
        with pytest.raises(SsrfError, match="private address"):
            _check_ssrf("http://internal.example/")


def test_ssrf_error_is_an_extraction_error():
    assert issubclass(SsrfError, ExtractionError)


# ------------------------------------------------------------------
# fetch() / fetch_json()
# ------------------------------------------------------------------


def test_fetch_strips_content_type_params():
    with _patch_getaddrinfo("1.2.3.4"), _patch_opener(b"<p>hi</p>", "text/html; charset=utf-8"):
        body, ct = fetch("https://example.com")
    assert body == b"<p>hi</p>"
    assert ct == "text/html"


def test_fetch_rejects_disallowed_content_type():
    with _patch_getaddrinfo("1.2.3.4"), _patch_opener(b"{}", "application/json"):
        with pytest.raises(ExtractionError, match="Unsupported Content-Type"):
            fetch("https://example.com")


def test_fetch_rejects_oversized_body():
    big = b"x" * (5 * 1024 * 1024 + 1)
    with _patch_getaddrinfo("1.2.3.4"), _patch_opener(big, "text/plain"):
        with pytest.raises(ExtractionError, match="exceeds"):
            fetch("https://example.com")


def test_fetch_blocked_before_connecting():
    with _patch_getaddrinfo("127.0.0.1"), _patch_opener(b"", "text/html") as build:
        with pytest.raises(SsrfError):
            fetch("http://localhost/")
    build.assert_not_called()


def test_fetch_json_parses_body():
    with _patch_getaddrinfo("1.2.3.4"), _patch_opener(b'{"tweet": {"text": "hi"}}', "application/json"):
        assert fetch_json("https://api.example.com/x") == {"tweet": {"text": "hi"}}


def test_fetch_json_invalid_body():
    with _patch_getaddrinfo("1.2.3.4"), _patch_opener(b"not json", "application/json"):
        with pytest.raises(ExtractionError, match="Invalid JSON"):
            fetch_json("https://api.example.com/x")


def test_json_types_accept_application_json():
    assert "application/json" in JSON_TYPES


# ------------------------------------------------------------------
# html_to_page()
# ------------------------------------------------------------------


def test_plain_text_passthrough():
    page = html_to_page(b"  Hello world.  ", "text/plain")
    assert page.text == "Hello world."
    assert page.title == ""


def test_html_title_and_text():
    html = b"<html><head><title>Stage Lighting</title></head><body><p>DMX512 protocol.</p></body></html>"
    page = html_to_page(html)
    assert page.title == "Stage Lighting"
    assert "DMX512" in page.text
    assert "<" not in page.text


def test_og_title_preferred_and_description_used_as_excerpt():
    html = (
        b'<html><head><title>Fallback</title><meta property="og:title" content="OG Title">'
        b'<meta name="description" content="Short summary"></head><body><p>Body.</p></body></html>'
    )
    page = html_to_page(html)
    assert page.title == "OG Title"
    assert page.excerpt == "Short summary"


def test_article_element_preferred_and_chrome_removed():
    html = (
        b"<html><body><nav>Menu Home About</nav><script>alert('xss')</script>"
        b"<article><p>The real story.</p></article><footer>Copyright</footer></body></html>"
    )
    page = html_to_page(html)
    assert "The real story." in page.text
    assert "Menu" not in page.text
    assert "alert" not in page.text
    assert "Copyright" not in page.text


# ------------------------------------------------------------------
# Redirects
# ------------------------------------------------------------------


def _redirect(handler: _GuardedRedirects, target: str):
    req = urllib.request.Request("https://example.com/start")
    return handler.redirect_request(req, None, 302, "Found", {}, target)


def test_redirect_to_public_host_followed():
    handler = _GuardedRedirects(3)
    with _patch_getaddrinfo("1.2.3.4"):
        new_req = _redirect(handler, "https://example.org/next")
    assert new_req.full_url == "https://example.org/next"
    assert handler.followed == 1


def test_redirect_to_private_host_blocked():
    with _patch_getaddrinfo("10.0.0.5"):
        with pytest.raises(SsrfError):
            _redirect(_GuardedRedirects(3), "http://intranet.local/")


def test_redirect_to_other_scheme_blocked():
    with pytest.raises(ExtractionError, match="scheme"):
        _redirect(_GuardedRedirects(3), "file:///etc/passwd")


def test_redirect_hop_limit():
    handler = _GuardedRedirects(1)
    with _patch_getaddrinfo("1.2.3.4"):
        _redirect(handler, "https://example.org/1")
        with pytest.raises(ExtractionError, match="more than 1 times"):
            _redirect(handler, "https://example.org/2")
