"""Error taxonomy for feed acquisition.

Transport and validation errors are recovered inside a relay race. Everything
else is a terminal outcome for the top-level call that raised it.
"""

from __future__ import annotations

from typing import Optional

MANUAL_UPLOAD_HINT = (
    "Please download the file manually and use the local file upload instead."
)


class FeedError(RuntimeError):
    """Base class for every failure surfaced by the engine."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        relay: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.relay = relay

    def __str__(self) -> str:
        prefix = []
        if self.relay:
            prefix.append(self.relay)
        if self.stage:
            prefix.append(self.stage)
        if prefix:
            return f"[{'/'.join(prefix)}] {self.message}"
        return self.message


class TransportError(FeedError):
    """A single relay attempt failed (network error, timeout, non-2xx status)."""

    def __init__(self, message: str, relay: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, stage="transport", relay=relay)
        self.status_code = status_code


class ContentValidationError(FeedError):
    """Retrieved text was rejected by the content validator."""

    def __init__(self, message: str, relay: Optional[str] = None):
        super().__init__(message, stage="validation", relay=relay)


class AggregateFetchError(FeedError):
    """Every relay attempt failed.

    ``failures`` holds one ``(relay, reason)`` pair per configured relay, in
    relay order.
    """

    def __init__(self, target_url: str, failures: list[tuple[str, str]]):
        self.target_url = target_url
        self.failures = failures
        message = (
            "Could not download the feed through any relay "
            "(most likely CORS restrictions or site protection).\n\n"
            f"{MANUAL_UPLOAD_HINT}"
        )
        super().__init__(message, stage="fetch")

    @property
    def details(self) -> str:
        """Human-readable per-relay failure list."""
        return "\n".join(f"{relay}: {reason}" for relay, reason in self.failures)


class StructuralParseError(FeedError):
    """Document is malformed or lacks required root/shop/offers structure."""

    def __init__(self, message: str):
        super().__init__(message, stage="parse")


class EmptyFeedError(FeedError):
    """Document is structurally valid but holds zero usable records."""

    def __init__(self, message: str):
        super().__init__(message, stage="parse")


class CycleGuardTermination(EmptyFeedError):
    """Pagination guard stopped a crawl before any item was collected."""

    def __init__(self, message: str, pages_fetched: int = 0):
        super().__init__(message)
        self.stage = "crawl"
        self.pages_fetched = pages_fetched
