"""Paginated syndication feed crawler.

Follows ``rel="next"`` links page by page, fetching every page through the
relay race, and merges the items into a single deduplicated feed. Termination
is guaranteed by a visited-URL set and a hard page ceiling.
"""

import logging
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from feedrelay import metrics
from feedrelay.config import settings
from feedrelay.ingest.errors import CycleGuardTermination, EmptyFeedError, FeedError
from feedrelay.ingest.feed_parser import FeedParser, feed_parser
from feedrelay.ingest.models import FeedKind, PaginationState, RssFeedData, RssItem
from feedrelay.ingest.proxy_race import ProxyRaceDownloader, proxy_race_downloader

logger = logging.getLogger(__name__)

# Stop reasons
STOP_NO_NEXT = "no_next"
STOP_CYCLE = "cycle"
STOP_PAGE_LIMIT = "page_limit"
STOP_PAGE_ERROR = "page_error"


def normalize_url(url: str) -> str:
    """
    Canonical form of a URL for visited-page bookkeeping.

    Query parameters are sorted by name (stable for repeated names), so URLs
    differing only in parameter order compare equal. Unparsable input is
    returned unchanged.
    """
    try:
        parts = urlsplit(url)
        params = parse_qsl(parts.query, keep_blank_values=True)
    except ValueError:
        return url
    query = urlencode(sorted(params, key=lambda kv: kv[0]))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def dedupe_by_link(items: List[RssItem]) -> List[RssItem]:
    """Drop items whose link was already seen; first occurrence wins, order kept."""
    seen = set()
    unique = []
    for item in items:
        if item.link in seen:
            continue
        seen.add(item.link)
        unique.append(item)
    return unique


class FeedPaginationCrawler:
    """Assembles a complete RSS/Atom feed by following next-page links."""

    def __init__(
        self,
        downloader: Optional[ProxyRaceDownloader] = None,
        parser: Optional[FeedParser] = None,
        max_pages: Optional[int] = None,
    ):
        self.downloader = downloader or proxy_race_downloader
        self.parser = parser or feed_parser
        self.max_pages = max_pages or settings.max_feed_pages

    async def crawl(self, seed_url: str) -> RssFeedData:
        """
        Crawl a feed starting at its first page.

        Args:
            seed_url: URL of the first page

        Returns:
            RssFeedData with items from every reachable page, deduplicated by link

        Raises:
            FeedError: If the first page cannot be fetched or parsed
            EmptyFeedError: If no items were collected
            CycleGuardTermination: If the page guard stopped a crawl with no items
        """
        state = PaginationState(current_url=seed_url)
        title = ""
        description = ""

        while state.current_url:
            current = state.current_url
            marker = normalize_url(current)

            if marker in state.visited:
                logger.info(f"Pagination cycle detected at {current}, stopping")
                state.stop_reason = STOP_CYCLE
                break
            if state.pages_fetched >= self.max_pages:
                logger.warning(f"Page limit {self.max_pages} reached at {current}, stopping")
                state.stop_reason = STOP_PAGE_LIMIT
                break

            state.visited.add(marker)
            state.pages_fetched += 1
            logger.info(f"Loading feed page {state.pages_fetched}: {current}")

            try:
                text = await self.downloader.fetch_feed(current, FeedKind.SYNDICATION_FEED)
                page = self.parser.parse_page(text)
            except FeedError as e:
                metrics.record_feed_page(success=False)
                if state.pages_fetched == 1:
                    logger.error(f"First feed page failed ({current}): {e}")
                    metrics.record_crawl_termination(STOP_PAGE_ERROR)
                    raise
                logger.warning(
                    f"Feed page {state.pages_fetched} failed ({current}), "
                    f"keeping {len(state.items)} items collected so far: {e}"
                )
                state.stop_reason = STOP_PAGE_ERROR
                break

            metrics.record_feed_page(success=True)
            if state.pages_fetched == 1:
                title = page.title
                description = page.description

            state.items.extend(page.items)

            if page.next_url:
                # Relative links resolve against the page they appear on
                state.current_url = urljoin(current, page.next_url)
            else:
                state.current_url = None
                state.stop_reason = STOP_NO_NEXT

        metrics.record_crawl_termination(state.stop_reason or STOP_NO_NEXT)

        if not state.items:
            if state.stop_reason in (STOP_CYCLE, STOP_PAGE_LIMIT):
                raise CycleGuardTermination(
                    f"pagination guard stopped the crawl ({state.stop_reason}) "
                    f"before any item was collected",
                    pages_fetched=state.pages_fetched,
                )
            raise EmptyFeedError("feed is empty: no items could be loaded")

        items = dedupe_by_link(state.items)
        metrics.record_parsed("rss_items", len(items))
        logger.info(
            f"Crawl finished ({state.stop_reason}): {state.pages_fetched} pages, "
            f"{len(items)} unique items of {len(state.items)}"
        )

        return RssFeedData(
            title=title,
            description=description,
            url=seed_url,
            items=items,
            pages_fetched=state.pages_fetched,
        )


# Global crawler instance
feed_crawler = FeedPaginationCrawler()
