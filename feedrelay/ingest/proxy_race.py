"""Relay race downloader for CORS-restricted feed URLs.

Issues one request per configured relay concurrently and keeps the first
response that passes content validation. Every other in-flight attempt is
cancelled as soon as a winner is known. Tracks per-relay success counts for
diagnostics.
"""

import asyncio
import json
import logging
import time
from collections import defaultdict
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

import httpx

from feedrelay import metrics
from feedrelay.config import settings
from feedrelay.ingest.content_validator import ContentValidator, content_validator
from feedrelay.ingest.errors import (
    AggregateFetchError,
    ContentValidationError,
    FeedError,
    TransportError,
)
from feedrelay.ingest.http_client import TRANSPORT_EXC, add_cache_buster, create_client
from feedrelay.ingest.models import FeedKind, ProgressCallback, RetrievalAttempt
from feedrelay.ingest.relays import RelayStrategy, ResponseShape, get_relays
from feedrelay.ingest.stream_reader import StreamProgressReader, stream_reader
from feedrelay.logging_config import get_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AllAttemptsFailed(Exception):
    """Raised by first_success when no awaitable succeeded."""

    def __init__(self, errors: List[Optional[BaseException]]):
        super().__init__(f"all {len(errors)} attempts failed")
        self.errors = errors


async def first_success(aws: Sequence[Awaitable[T]]) -> Tuple[int, T]:
    """
    Run awaitables concurrently and return the first successful result.

    Losers still in flight are cancelled exactly once and awaited, so nothing
    outlives the call. Cancelling the caller cancels every attempt.

    Args:
        aws: Awaitables to race

    Returns:
        (index, result) of the winner

    Raises:
        AllAttemptsFailed: With one exception per awaitable, in input order
    """
    if not aws:
        raise ValueError("first_success needs at least one awaitable")

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    index_of = {task: i for i, task in enumerate(tasks)}
    errors: List[Optional[BaseException]] = [None] * len(tasks)
    pending = set(tasks)

    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=index_of.__getitem__):
                if task.cancelled():
                    errors[index_of[task]] = asyncio.CancelledError()
                    continue
                exc = task.exception()
                if exc is None:
                    return index_of[task], task.result()
                errors[index_of[task]] = exc
        raise AllAttemptsFailed(errors)
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class _ProgressWatermark:
    """Forwards progress only when an attempt has read further than any before.

    Several relays stream the same body at once; the caller sees a single
    monotonic progress line.
    """

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._max_loaded = 0

    def report(self, percent: Optional[float], loaded: int, total: Optional[int]) -> None:
        if self._callback is None or loaded <= self._max_loaded:
            return
        self._max_loaded = loaded
        self._callback(percent, loaded, total)


class ProxyRaceDownloader:
    """
    Downloads a feed by racing every configured relay.

    Either one fully validated body is returned, or an AggregateFetchError
    listing one failure per relay. Partial bodies are never returned.
    """

    def __init__(
        self,
        relays: Optional[List[RelayStrategy]] = None,
        validator: Optional[ContentValidator] = None,
        reader: Optional[StreamProgressReader] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._relays = relays
        self.validator = validator or content_validator
        self.reader = reader or stream_reader
        self.timeout = timeout or settings.relay_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        # Relay success/failure counts
        self._relay_success: Dict[str, int] = defaultdict(int)
        self._relay_failure: Dict[str, int] = defaultdict(int)

    @property
    def relays(self) -> List[RelayStrategy]:
        if self._relays is not None:
            return self._relays
        return get_relays(settings.enabled_relays)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = create_client(self._transport)
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_feed(
        self,
        target_url: str,
        kind: FeedKind,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Fetch the target through every relay at once.

        Args:
            target_url: Feed URL
            kind: Expected document kind, used by content validation
            on_progress: Optional (percent or None, loaded, total or None) callback

        Returns:
            Validated body text from the first successful relay

        Raises:
            AggregateFetchError: If every relay failed
        """
        relays = self.relays
        client = await self._get_client()
        busted_url = add_cache_buster(target_url)
        progress = _ProgressWatermark(on_progress)

        attempts = [
            RetrievalAttempt(relay=relay.name, url=relay.build_url(busted_url))
            for relay in relays
        ]
        coros = [
            self._run_attempt(client, relay, attempt, kind, progress)
            for relay, attempt in zip(relays, attempts)
        ]

        logger.info(f"Racing {len(relays)} relays for {target_url}")
        start_time = time.monotonic()

        try:
            index, text = await first_success(coros)
        except AllAttemptsFailed:
            duration = time.monotonic() - start_time
            failures = [(a.relay, a.error or "unknown error") for a in attempts]
            error = AggregateFetchError(target_url, failures)
            logger.error(f"All relays failed for {target_url}:\n{error.details}")
            metrics.record_race(kind.value, success=False, duration=duration)
            raise error from None

        duration = time.monotonic() - start_time
        winner = attempts[index]
        logger.info(
            f"[{winner.relay}] won the race for {target_url}: "
            f"{winner.bytes_received} bytes in {duration * 1000:.0f}ms"
        )
        metrics.record_race(
            kind.value, success=True, duration=duration, num_bytes=winner.bytes_received
        )
        return text

    async def _run_attempt(
        self,
        client: httpx.AsyncClient,
        relay: RelayStrategy,
        attempt: RetrievalAttempt,
        kind: FeedKind,
        progress: _ProgressWatermark,
    ) -> str:
        """Execute one relay attempt; any failure is recorded on the attempt and re-raised."""
        log = get_logger(__name__, relay=relay.name)
        start_time = time.monotonic()
        attempt.task = asyncio.current_task()
        log.debug(f"[{relay.name}] starting download")

        try:
            text = await asyncio.wait_for(
                self._download(client, relay, attempt, progress),
                timeout=self.timeout,
            )
            result = self.validator.validate(text, kind)
            if not result.accepted:
                raise ContentValidationError(result.reason, relay=relay.name)

        except asyncio.CancelledError:
            attempt.cancelled = True
            attempt.error = "cancelled"
            metrics.record_relay_attempt(relay.name, "cancelled")
            raise

        except asyncio.TimeoutError as e:
            attempt.error = f"timed out after {self.timeout:g}s"
            self._record_failure(relay, attempt, "timeout", log)
            raise TransportError(attempt.error, relay=relay.name) from e

        except ContentValidationError as e:
            attempt.error = e.message
            self._record_failure(relay, attempt, "rejected", log)
            raise

        except FeedError as e:
            attempt.error = e.message
            self._record_failure(relay, attempt, "failed", log)
            raise

        except TRANSPORT_EXC as e:
            attempt.error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            self._record_failure(relay, attempt, "failed", log)
            raise TransportError(attempt.error, relay=relay.name) from e

        except Exception as e:
            log.exception(f"[{relay.name}] unexpected error")
            attempt.error = f"unexpected error: {e}"
            self._record_failure(relay, attempt, "failed", log)
            raise TransportError(attempt.error, relay=relay.name) from e

        finally:
            attempt.duration_ms = (time.monotonic() - start_time) * 1000

        attempt.text = text
        self._relay_success[relay.name] += 1
        metrics.record_relay_attempt(relay.name, "success")
        log.debug(f"[{relay.name}] downloaded {len(text)} chars")
        return text

    async def _download(
        self,
        client: httpx.AsyncClient,
        relay: RelayStrategy,
        attempt: RetrievalAttempt,
        progress: _ProgressWatermark,
    ) -> str:
        """Issue the GET and turn the response into text according to the relay shape."""
        async with client.stream("GET", attempt.url) as response:
            if not response.is_success:
                raise TransportError(
                    f"HTTP {response.status_code}",
                    relay=relay.name,
                    status_code=response.status_code,
                )

            if relay.shape is ResponseShape.JSON:
                return await self._read_json_envelope(response, relay, attempt, progress)

            def on_chunk(percent: Optional[float], loaded: int, total: Optional[int]) -> None:
                attempt.bytes_received = loaded
                attempt.total_bytes = total
                progress.report(percent, loaded, total)

            result = await self.reader.read_text(response, on_chunk, relay=relay.name)
            return result.text

    async def _read_json_envelope(
        self,
        response: httpx.Response,
        relay: RelayStrategy,
        attempt: RetrievalAttempt,
        progress: _ProgressWatermark,
    ) -> str:
        """Unwrap a ``{"contents": "..."}`` relay envelope."""
        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            size += len(chunk)
            if size > self.reader.max_bytes:
                raise TransportError(
                    f"response exceeds {self.reader.max_bytes} bytes", relay=relay.name
                )
            chunks.append(chunk)
        body = b"".join(chunks)

        try:
            data: Any = json.loads(body)
        except ValueError as e:
            raise ContentValidationError(
                f"JSON envelope is not valid JSON: {e}", relay=relay.name
            ) from e

        contents = data.get("contents") if isinstance(data, dict) else None
        if not isinstance(contents, str):
            raise ContentValidationError(
                "JSON envelope has no valid 'contents' field", relay=relay.name
            )

        attempt.bytes_received = len(body)
        attempt.total_bytes = len(body)
        # Envelope arrives whole, report it as complete
        progress.report(100.0, len(contents), len(contents))
        return contents

    def _record_failure(self, relay: RelayStrategy, attempt: RetrievalAttempt, outcome: str, log):
        self._relay_failure[relay.name] += 1
        metrics.record_relay_attempt(relay.name, outcome)
        log.warning(f"[{relay.name}] attempt failed: {attempt.error}")

    def get_relay_stats(self) -> Dict[str, Any]:
        """
        Get per-relay success statistics.

        Returns:
            Dict mapping relay name to success/failure/total/rate
        """
        stats = {}
        for relay in self.relays:
            s = self._relay_success.get(relay.name, 0)
            f = self._relay_failure.get(relay.name, 0)
            total = s + f
            stats[relay.name] = {
                "success": s,
                "failure": f,
                "total": total,
                "rate": s / total if total > 0 else 0.0,
            }
        return stats


# Global instance
proxy_race_downloader = ProxyRaceDownloader()
