"""Shared HTTP client factory and request helpers for relay attempts."""

from __future__ import annotations

import time
from typing import Optional

import httpx

from feedrelay.config import settings

# Transport errors that make a single attempt fail
TRANSPORT_EXC = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.ProxyError,
    httpx.UnsupportedProtocol,
    httpx.TooManyRedirects,
    httpx.DecodingError,
)

CACHE_BUST_PARAM = "_t"


def default_headers() -> dict[str, str]:
    """Get default browser-like headers for feed requests."""
    return {
        "User-Agent": settings.user_agent,
        "Accept": "application/xml, text/xml, application/rss+xml, "
        "application/atom+xml; q=0.9, application/json; q=0.8, */*; q=0.5",
        "Accept-Language": "en-US, en; q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }


def default_timeout() -> httpx.Timeout:
    """Per-request transport timeout; the race adds an overall per-attempt budget."""
    return httpx.Timeout(
        connect=settings.connect_timeout_seconds,
        read=settings.relay_timeout_seconds,
        write=settings.connect_timeout_seconds,
        pool=settings.connect_timeout_seconds,
    )


def create_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Create the AsyncClient used for relay attempts.

    Args:
        transport: Optional transport override (tests pass httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    return httpx.AsyncClient(
        timeout=default_timeout(),
        follow_redirects=True,
        headers=default_headers(),
        transport=transport,
    )


def add_cache_buster(url: str, timestamp_ms: Optional[int] = None) -> str:
    """
    Append a timestamp query parameter so relay caches cannot serve stale bodies.

    Args:
        url: Target URL
        timestamp_ms: Fixed timestamp (defaults to now, in milliseconds)

    Returns:
        URL with ``_t=<timestamp>`` appended
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{CACHE_BUST_PARAM}={timestamp_ms}"
