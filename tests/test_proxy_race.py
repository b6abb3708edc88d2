"""Tests for the relay race downloader."""

import asyncio

import httpx
import pytest

from feedrelay.ingest.errors import AggregateFetchError, TransportError
from feedrelay.ingest.models import FeedKind
from feedrelay.ingest.proxy_race import (
    AllAttemptsFailed,
    ProxyRaceDownloader,
    first_success,
)
from feedrelay.ingest.relays import DIRECT, get_relays
from feedrelay.ingest.stream_reader import StreamProgressReader

TARGET = "https://shop.example/yml.xml"


def _relay_name(request: httpx.Request) -> str:
    return request.url.host.split(".")[0]


async def _hang(cancelled: list, name: str):
    try:
        await asyncio.sleep(30)
    except asyncio.CancelledError:
        cancelled.append(name)
        raise


@pytest.mark.asyncio
async def test_first_valid_response_wins_and_losers_are_cancelled(make_relays, catalog_xml):
    cancelled = []

    async def handler(request: httpx.Request) -> httpx.Response:
        name = _relay_name(request)
        if name == "fast":
            return httpx.Response(200, text=catalog_xml)
        await _hang(cancelled, name)
        return httpx.Response(200, text=catalog_xml)

    downloader = ProxyRaceDownloader(
        relays=make_relays("slow1", "fast", "slow2"),
        transport=httpx.MockTransport(handler),
    )
    try:
        text = await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    assert text == catalog_xml
    assert sorted(cancelled) == ["slow1", "slow2"]
    stats = downloader.get_relay_stats()
    assert stats["fast"]["success"] == 1


@pytest.mark.asyncio
async def test_invalid_fast_response_does_not_win(make_relays, catalog_xml):
    async def handler(request: httpx.Request) -> httpx.Response:
        if _relay_name(request) == "blocked":
            return httpx.Response(200, text="<html><body>403 Forbidden</body></html>")
        await asyncio.sleep(0.05)
        return httpx.Response(200, text=catalog_xml)

    downloader = ProxyRaceDownloader(
        relays=make_relays("blocked", "slow"),
        transport=httpx.MockTransport(handler),
    )
    try:
        text = await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    assert text == catalog_xml


@pytest.mark.asyncio
async def test_all_relays_failing_gives_one_reason_per_relay_in_order(make_relays):
    async def handler(request: httpx.Request) -> httpx.Response:
        name = _relay_name(request)
        if name == "server":
            return httpx.Response(502, text="Bad gateway")
        if name == "html":
            return httpx.Response(200, text="<!DOCTYPE html><html><body>Hi</body></html>")
        if name == "empty":
            return httpx.Response(200, content=b"")
        raise httpx.ConnectError("connection refused", request=request)

    downloader = ProxyRaceDownloader(
        relays=make_relays("server", "html", "empty", "down"),
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(AggregateFetchError) as exc_info:
            await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    error = exc_info.value
    assert [relay for relay, _ in error.failures] == ["server", "html", "empty", "down"]
    reasons = dict(error.failures)
    assert reasons["server"] == "HTTP 502"
    assert reasons["html"] == "html page instead of feed"
    assert reasons["empty"] == "empty content"
    assert "ConnectError" in reasons["down"]
    assert "manually" in error.message
    assert "server: HTTP 502" in error.details


@pytest.mark.asyncio
async def test_timeout_fails_only_that_attempt(make_relays, catalog_xml):
    cancelled = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if _relay_name(request) == "stuck":
            await _hang(cancelled, "stuck")
        await asyncio.sleep(0.01)
        return httpx.Response(200, text=catalog_xml)

    downloader = ProxyRaceDownloader(
        relays=make_relays("stuck", "ok"),
        timeout=0.5,
        transport=httpx.MockTransport(handler),
    )
    try:
        assert await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG) == catalog_xml
    finally:
        await downloader.close()

    # The stuck attempt was cancelled by the race, not by its own timeout
    assert cancelled == ["stuck"]


@pytest.mark.asyncio
async def test_timeouts_everywhere_produce_aggregate_failure(make_relays):
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(30)
        return httpx.Response(200, text="never")

    downloader = ProxyRaceDownloader(
        relays=make_relays("a", "b"),
        timeout=0.05,
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(AggregateFetchError) as exc_info:
            await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    assert all("timed out" in reason for _, reason in exc_info.value.failures)


@pytest.mark.asyncio
async def test_json_envelope_relay(make_relays, rss_page):
    progress = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if _relay_name(request) == "wrapped":
            return httpx.Response(200, json={"contents": rss_page, "status": {"http_code": 200}})
        return httpx.Response(404)

    downloader = ProxyRaceDownloader(
        relays=make_relays("plain", "wrapped", json_names=("wrapped",)),
        transport=httpx.MockTransport(handler),
    )
    try:
        text = await downloader.fetch_feed(
            "https://blog.example/feed/", FeedKind.SYNDICATION_FEED, lambda *a: progress.append(a)
        )
    finally:
        await downloader.close()

    assert text == rss_page
    assert progress[-1][0] == 100.0


@pytest.mark.asyncio
async def test_json_envelope_without_contents_fails(make_relays):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"contents": None})

    downloader = ProxyRaceDownloader(
        relays=make_relays("wrapped", json_names=("wrapped",)),
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(AggregateFetchError) as exc_info:
            await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    assert "contents" in exc_info.value.failures[0][1]


@pytest.mark.asyncio
async def test_target_url_is_cache_busted(catalog_xml):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, text=catalog_xml)

    downloader = ProxyRaceDownloader(relays=[DIRECT], transport=httpx.MockTransport(handler))
    try:
        await downloader.fetch_feed(TARGET + "?region=1", FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    assert seen[0].host == "shop.example"
    assert seen[0].params["region"] == "1"
    assert seen[0].params["_t"].isdigit()


@pytest.mark.asyncio
async def test_progress_never_goes_backwards_across_relays(make_relays):
    body = (b'<?xml version="1.0"?><yml_catalog><shop>' + b"x" * 4000 + b"</shop></yml_catalog>")

    def chunks(size: int, delay: float):
        async def gen():
            for i in range(0, len(body), size):
                await asyncio.sleep(delay)
                yield body[i:i + size]
        return gen()

    async def handler(request: httpx.Request) -> httpx.Response:
        size = 500 if _relay_name(request) == "big" else 200
        return httpx.Response(
            200,
            content=chunks(size, 0.001),
            headers={"Content-Length": str(len(body))},
        )

    progress = []
    downloader = ProxyRaceDownloader(
        relays=make_relays("big", "small"),
        transport=httpx.MockTransport(handler),
    )
    try:
        await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG, lambda *a: progress.append(a))
    finally:
        await downloader.close()

    loaded = [p[1] for p in progress]
    assert loaded == sorted(set(loaded))
    assert progress[-1][1] == len(body)


@pytest.mark.asyncio
async def test_first_success_returns_winner_index():
    async def fail(delay):
        await asyncio.sleep(delay)
        raise TransportError("boom")

    async def ok(delay, value):
        await asyncio.sleep(delay)
        return value

    index, value = await first_success([fail(0), ok(0.01, "b"), ok(0.2, "c")])

    assert (index, value) == (1, "b")


@pytest.mark.asyncio
async def test_first_success_collects_errors_in_input_order():
    async def fail(delay, message):
        await asyncio.sleep(delay)
        raise TransportError(message)

    with pytest.raises(AllAttemptsFailed) as exc_info:
        await first_success([fail(0.02, "first"), fail(0, "second")])

    assert [e.message for e in exc_info.value.errors] == ["first", "second"]


def test_direct_relay_is_always_kept_alongside_intermediaries():
    relays = get_relays(["corsproxy.io"])

    assert [r.name for r in relays] == ["CorsProxy.io", "Direct"]
    assert get_relays(["direct"]) == get_relays()
    assert get_relays()[-1].direct


@pytest.mark.asyncio
async def test_json_envelope_over_ceiling_fails(make_relays, catalog_xml):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"contents": catalog_xml})

    downloader = ProxyRaceDownloader(
        relays=make_relays("wrapped", json_names=("wrapped",)),
        reader=StreamProgressReader(max_bytes=200),
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(AggregateFetchError) as exc_info:
            await downloader.fetch_feed(TARGET, FeedKind.XML_CATALOG)
    finally:
        await downloader.close()

    assert exc_info.value.failures == [("wrapped", "response exceeds 200 bytes")]
