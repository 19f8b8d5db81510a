"""URL fetching and HTML text extraction with SSRF protection.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established, and again for every redirect target.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html, text/plain and application/json.
- Max response body: 5 MB.
- Timeout: 30 seconds (connect + read).
- Max redirects: 3.
"""

from __future__ import annotations

import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

from bs4 import BeautifulSoup

from quarry.errors import ProviderError, SsrfError, ValidationError

_USER_AGENT = "quarry/0.1"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain", "application/json"}
_STRIP_TAGS = ["script", "style", "nav", "footer", "header", "noscript", "head"]
_WS_RE = re.compile(r"\s+")


@dataclass
class FetchedPage:
    url: str
    text: str
    content_type: str


def fetch_url(url: str) -> FetchedPage:
    """Validate, fetch, and convert *url* to plain text.

    Blocking; callers on an event loop run it via ``asyncio.to_thread``.

    Raises:
        ValidationError: Bad scheme, missing host, disallowed content type or
            oversized body.
        SsrfError: The host resolves to a private or reserved address.
        ProviderError: The request itself failed.
    """
    validate_scheme(url)
    check_ssrf(url)
    raw, content_type = _fetch(url)
    text = raw.decode("utf-8", errors="replace")
    if content_type == "text/html":
        text = html_to_text(text)
    return FetchedPage(url=url, text=text, content_type=content_type)


def html_to_text(html: str) -> str:
    """Drop non-content blocks, strip tags, decode entities, collapse whitespace."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()
    return _WS_RE.sub(" ", soup.get_text(" ")).strip()


def validate_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ValidationError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )


def check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges.

    Raises SsrfError if any resolved address is private, loopback,
    link-local, or otherwise reserved.
    """
    parsed = urllib.parse.urlparse(url)
    hostname = parsed.hostname
    if not hostname:
        raise ValidationError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise ProviderError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        addr_str = addrinfo[4][0]
        try:
            ip = ipaddress.ip_address(addr_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


def _fetch(url: str) -> tuple[bytes, str]:
    """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

    Returns (body_bytes, content_type_without_params).
    """
    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

    try:
        response: HTTPResponse = opener.open(request, timeout=_TIMEOUT)
    except (urllib.error.URLError, TimeoutError) as exc:
        raise ProviderError(f"Failed to fetch URL '{url}': {exc}") from exc

    with response:
        raw_ct = response.headers.get("Content-Type", "text/html")
        ct = raw_ct.split(";")[0].strip().lower()
        if ct not in _ALLOWED_CONTENT_TYPES:
            raise ValidationError(
                f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
            )

        body = response.read(_MAX_BYTES + 1)
        if len(body) > _MAX_BYTES:
            raise ValidationError(
                f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
            )

    return body, ct


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Re-check SSRF on every hop and fail after *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise ProviderError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        validate_scheme(newurl)
        check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
