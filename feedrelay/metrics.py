"""Prometheus metrics for the feed acquisition engine."""

from prometheus_client import Counter, Histogram, Info

from feedrelay.config import settings

# Application info
app_info = Info("feedrelay", "Feed acquisition engine info")
app_info.info({"version": "0.1.0", "name": "feedrelay"})

# Relay race metrics
relay_attempts_total = Counter(
    "feedrelay_relay_attempts_total",
    "Relay attempts by outcome",
    ["relay", "outcome"],
)

race_duration_seconds = Histogram(
    "feedrelay_race_duration_seconds",
    "Time from race start to winner or aggregate failure",
    ["kind", "status"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

bytes_downloaded_total = Counter(
    "feedrelay_bytes_downloaded_total",
    "Bytes read from winning relay responses",
    ["kind"],
)

# Crawl metrics
feed_pages_total = Counter(
    "feedrelay_feed_pages_total",
    "Syndication pages retrieved",
    ["status"],
)

crawl_terminations_total = Counter(
    "feedrelay_crawl_terminations_total",
    "Syndication crawls by stop reason",
    ["reason"],
)

# Parse metrics
parsed_records_total = Counter(
    "feedrelay_parsed_records_total",
    "Records produced by the parsers",
    ["kind"],
)

parse_errors_total = Counter(
    "feedrelay_parse_errors_total",
    "Fatal parse errors",
    ["kind", "error_type"],
)


def record_relay_attempt(relay: str, outcome: str):
    """Record a relay attempt outcome (success, failed, timeout, rejected, cancelled)."""
    if settings.metrics_enabled:
        relay_attempts_total.labels(relay=relay, outcome=outcome).inc()


def record_race(kind: str, success: bool, duration: float, num_bytes: int = 0):
    """Record a finished relay race."""
    if not settings.metrics_enabled:
        return
    status = "success" if success else "error"
    race_duration_seconds.labels(kind=kind, status=status).observe(duration)
    if success and num_bytes:
        bytes_downloaded_total.labels(kind=kind).inc(num_bytes)


def record_feed_page(success: bool):
    """Record a retrieved (or failed) syndication page."""
    if settings.metrics_enabled:
        feed_pages_total.labels(status="success" if success else "error").inc()


def record_crawl_termination(reason: str):
    """Record why a crawl stopped (no_next, cycle, page_limit, page_error)."""
    if settings.metrics_enabled:
        crawl_terminations_total.labels(reason=reason).inc()


def record_parsed(kind: str, count: int):
    """Record parsed record counts (offers, categories, items)."""
    if settings.metrics_enabled:
        parsed_records_total.labels(kind=kind).inc(count)


def record_parse_error(kind: str, error_type: str):
    """Record a fatal parse error."""
    if settings.metrics_enabled:
        parse_errors_total.labels(kind=kind, error_type=error_type).inc()
