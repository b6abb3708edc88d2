#!/usr/bin/env python3
"""
Fetch a catalog or syndication feed and print a summary.

Usage:
    python scripts/fetch_feed.py catalog https://shop.example/yml.xml
    python scripts/fetch_feed.py rss https://blog.example/feed/
    python scripts/fetch_feed.py file ./downloads/catalog.xml
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from feedrelay.ingest.errors import AggregateFetchError, FeedError
from feedrelay.ingest.feed_service import FeedService
from feedrelay.ingest.models import ProductFeedData, RssFeedData
from feedrelay.logging_config import setup_logging


def print_catalog(feed: ProductFeedData, limit: int):
    print(f"\nShop: {feed.shop_name} ({feed.company}) {feed.url}")
    print(f"Catalog date: {feed.date}")
    print(f"Currencies: {', '.join(feed.currencies)}")
    print(f"Categories: {len(feed.categories)}")
    print(f"Offers: {len(feed.offers)}")
    for offer in feed.offers[:limit]:
        status = "in stock" if offer.available else "out of stock"
        print(f"  - [{offer.id}] {offer.name}: {offer.price} {offer.currency_id} ({status})")


def print_feed(feed: RssFeedData, limit: int):
    print(f"\nFeed: {feed.title}")
    if feed.description:
        print(f"  {feed.description}")
    print(f"Pages: {feed.pages_fetched}, items: {len(feed.items)}")
    for item in feed.items[:limit]:
        print(f"  - {item.title}\n    {item.link}")


def print_progress(percent, loaded, total):
    if percent is None:
        print(f"\r  downloaded {loaded / 1024:.0f} KB", end="", flush=True)
    else:
        print(f"\r  downloaded {loaded / 1024:.0f} of {total / 1024:.0f} KB ({percent:.0f}%)", end="", flush=True)


async def main(mode: str, target: str, limit: int) -> int:
    service = FeedService()
    try:
        if mode == "catalog":
            print_catalog(await service.load_catalog(target, print_progress), limit)
        elif mode == "rss":
            print_feed(await service.load_syndication_feed(target), limit)
        else:
            print_catalog(service.load_catalog_file(target), limit)
    except AggregateFetchError as e:
        print(f"\n[FAIL] {e.message}\n\n{e.details}", file=sys.stderr)
        return 2
    except FeedError as e:
        print(f"\n[FAIL] {e}", file=sys.stderr)
        return 1
    finally:
        await service.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Fetch a YML catalog or RSS/Atom feed")
    parser.add_argument("mode", choices=["catalog", "rss", "file"], help="What to load")
    parser.add_argument("target", help="URL (catalog, rss) or path (file)")
    parser.add_argument("--limit", type=int, default=10, help="Records to print")
    parser.add_argument("--log-dir", default=None, help="Directory for logs/ (default: cwd)")
    args = parser.parse_args()

    setup_logging(args.log_dir)
    sys.exit(asyncio.run(main(args.mode, args.target, args.limit)))
