"""Entry points for callers: catalogs by URL or file, syndication feeds by URL."""

import logging
from pathlib import Path
from typing import Optional

from feedrelay.ingest.catalog_parser import XmlFeedParser, xml_feed_parser
from feedrelay.ingest.models import FeedKind, ProductFeedData, ProgressCallback, RssFeedData
from feedrelay.ingest.pagination_crawler import FeedPaginationCrawler
from feedrelay.ingest.proxy_race import ProxyRaceDownloader
from feedrelay.ingest.stream_reader import SNIFF_BYTES, resolve_encoding

logger = logging.getLogger(__name__)


class FeedService:
    """
    Facade over the relay race, the parsers and the pagination crawler.

    Every public call has a single terminal outcome: a domain object, or a
    FeedError subclass describing the failing relay/stage.
    """

    def __init__(
        self,
        downloader: Optional[ProxyRaceDownloader] = None,
        catalog_parser: Optional[XmlFeedParser] = None,
        crawler: Optional[FeedPaginationCrawler] = None,
    ):
        self.downloader = downloader or ProxyRaceDownloader()
        self.catalog_parser = catalog_parser or xml_feed_parser
        self.crawler = crawler or FeedPaginationCrawler(downloader=self.downloader)

    async def load_catalog(
        self,
        url: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProductFeedData:
        """
        Download and parse a YML catalog.

        Args:
            url: Catalog URL
            on_progress: Optional (percent or None, loaded, total or None) callback

        Returns:
            ProductFeedData
        """
        text = await self.downloader.fetch_feed(url, FeedKind.XML_CATALOG, on_progress)
        return self.catalog_parser.parse(text)

    def load_catalog_text(self, xml_text: str) -> ProductFeedData:
        """Parse catalog contents supplied by the caller (local upload fallback)."""
        return self.catalog_parser.parse(xml_text)

    def load_catalog_file(self, path: str | Path, encoding: Optional[str] = None) -> ProductFeedData:
        """
        Read and parse a catalog file from disk.

        Without an explicit encoding the BOM or XML prolog decides, as for
        downloaded bodies.
        """
        path = Path(path)
        raw = path.read_bytes()
        encoding = encoding or resolve_encoding(None, raw[:SNIFF_BYTES])
        logger.info(f"Parsing catalog from local file {path} ({encoding})")
        return self.load_catalog_text(raw.decode(encoding, errors="replace"))

    async def load_syndication_feed(self, url: str) -> RssFeedData:
        """Crawl every page of an RSS/Atom feed."""
        return await self.crawler.crawl(url)

    async def close(self):
        """Release the HTTP client."""
        await self.downloader.close()
