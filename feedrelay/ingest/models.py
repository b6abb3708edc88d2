"""Domain records produced by feed acquisition."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Set


class FeedKind(Enum):
    """Logical kind of document a caller expects."""
    XML_CATALOG = "xml_catalog"
    SYNDICATION_FEED = "syndication_feed"


# (percent or None, bytes loaded, bytes total or None)
ProgressCallback = Callable[[Optional[float], int, Optional[int]], None]


@dataclass
class RetrievalAttempt:
    """One relay's in-flight request, owned by a single race."""

    relay: str
    url: str
    task: Optional[asyncio.Task] = None
    bytes_received: int = 0
    total_bytes: Optional[int] = None
    text: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False
    duration_ms: float = 0.0


@dataclass
class ProductOffer:
    """Single offer from a YML catalog. ``id`` is the identity key."""

    id: str
    name: str
    url: str
    price: str  # Decimal string, never float
    currency_id: str
    category_id: str
    available: bool = False
    picture: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None


@dataclass
class ProductCategory:
    id: str
    name: str
    parent_id: Optional[str] = None


@dataclass
class ProductFeedData:
    """Parsed merchant catalog."""

    shop_name: str
    company: str
    url: str
    date: str
    currencies: List[str] = field(default_factory=list)
    categories: List[ProductCategory] = field(default_factory=list)
    offers: List[ProductOffer] = field(default_factory=list)


@dataclass
class RssItem:
    title: str
    link: str  # Dedup key
    description: str
    pub_date: Optional[str] = None


@dataclass
class RssFeedData:
    """Syndication feed assembled from one or more pages."""

    title: str
    description: str
    url: str
    items: List[RssItem] = field(default_factory=list)
    pages_fetched: int = 0


@dataclass
class PaginationState:
    """Per-crawl bookkeeping for the pagination loop."""

    current_url: Optional[str]
    visited: Set[str] = field(default_factory=set)
    items: List[RssItem] = field(default_factory=list)
    pages_fetched: int = 0
    stop_reason: Optional[str] = None
