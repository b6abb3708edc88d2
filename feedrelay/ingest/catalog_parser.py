"""YML (Yandex Market Language) catalog parser.

Converts a ``<yml_catalog>`` document into ProductFeedData. Parsing is
fail-fast: a structural problem or an empty offer list raises, and no partial
catalog is ever returned.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree as ET

from feedrelay import metrics
from feedrelay.ingest.errors import EmptyFeedError, FeedError, StructuralParseError
from feedrelay.ingest.feed_parser import local_name
from feedrelay.ingest.models import ProductCategory, ProductFeedData, ProductOffer

logger = logging.getLogger(__name__)

ROOT_TAG = "yml_catalog"

# Tags that are always lists in the generic tree, even with a single instance
FORCE_LIST = frozenset({"offer", "category", "currency"})

DEFAULT_CURRENCY = "RUB"
DEFAULT_PRICE = "0"
UNTITLED_OFFER = "untitled"


def _attr_value(value: str) -> Any:
    """Attribute literal with ``true``/``false`` turned into booleans."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def element_to_tree(elem: ET.Element, force_list=FORCE_LIST) -> Any:
    """
    Convert an element into a generic dict tree.

    Attributes become ``@name`` keys, text becomes ``#text`` (or the node
    itself when the element has neither attributes nor children). Repeated
    children become lists; tags in ``force_list`` are lists even when single.

    The walk uses an explicit stack, so nesting depth is not bounded by the
    interpreter recursion limit.
    """
    converted: Dict[int, Any] = {}
    stack = [(elem, False)]
    while stack:
        current, expanded = stack.pop()
        if expanded:
            converted[id(current)] = _convert_node(current, converted, force_list)
            continue
        stack.append((current, True))
        stack.extend((child, False) for child in current if local_name(child.tag))
    return converted[id(elem)]


def _convert_node(elem: ET.Element, converted: Dict[int, Any], force_list) -> Any:
    """Build one tree node from its already converted children."""
    node: Dict[str, Any] = {}
    for key, value in elem.attrib.items():
        node[f"@{local_name(key)}"] = _attr_value(value)

    text_parts = [elem.text or ""]
    for child in elem:
        text_parts.append(child.tail or "")
        name = local_name(child.tag)
        if not name:
            continue
        value = converted.pop(id(child))
        if name in force_list:
            node.setdefault(name, []).append(value)
        elif name in node:
            existing = node[name]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[name] = [existing, value]
        else:
            node[name] = value

    text = "".join(text_parts).strip()
    if not node:
        return text
    if text:
        node["#text"] = text
    return node


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _as_text(value: Any) -> str:
    """String form of a tree value (first of a list, ``#text`` of a dict)."""
    value = _first(value)
    if value is None:
        return ""
    if isinstance(value, dict):
        value = value.get("#text", "")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    return _as_text(value) or None


def coerce_available(value: Any) -> bool:
    """
    Strict boolean for an offer's ``available`` attribute.

    Accepts a boolean or its string form (``"true"``, any case). Anything
    else, including a missing attribute, is False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


class XmlFeedParser:
    """Parses YML merchant catalogs."""

    def parse(self, xml_text: str) -> ProductFeedData:
        """
        Parse a YML catalog.

        Args:
            xml_text: Catalog document

        Returns:
            ProductFeedData with at least one offer

        Raises:
            StructuralParseError: If the XML is malformed or lacks yml_catalog/shop/offers
            EmptyFeedError: If the catalog is valid but holds no usable offers
        """
        start_time = time.monotonic()
        try:
            feed = self._parse(xml_text)
        except FeedError as e:
            metrics.record_parse_error("catalog", type(e).__name__)
            logger.error(f"Catalog parse failed: {e}")
            raise

        metrics.record_parsed("offers", len(feed.offers))
        metrics.record_parsed("categories", len(feed.categories))
        logger.info(
            f"Parsed catalog '{feed.shop_name}': {len(feed.offers)} offers, "
            f"{len(feed.categories)} categories in "
            f"{(time.monotonic() - start_time) * 1000:.0f}ms"
        )
        return feed

    def _parse(self, xml_text: str) -> ProductFeedData:
        text = (xml_text or "").lstrip("\ufeff \t\r\n")
        if not text:
            raise StructuralParseError("file content is empty")

        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise StructuralParseError(f"XML syntax error: {e}") from e

        root_name = local_name(root.tag)
        tree = {root_name: element_to_tree(root)}

        catalog = tree.get(ROOT_TAG)
        if catalog is None:
            raise StructuralParseError(
                f"invalid YML format: no root element <{ROOT_TAG}> (found <{root_name}>). "
                f"Make sure the URL points to a YML catalog."
            )
        if not isinstance(catalog, dict):
            catalog = {}

        shop = _first(catalog.get("shop"))
        if not isinstance(shop, dict):
            raise StructuralParseError("invalid YML format: no <shop> element")
        if "offers" not in shop:
            raise StructuralParseError("invalid YML format: no <offers> element")

        offers = self._map_offers(shop["offers"])
        if not offers:
            raise EmptyFeedError("valid file, but no products found (the <offers> element is empty)")

        return ProductFeedData(
            shop_name=_as_text(shop.get("name")),
            company=_as_text(shop.get("company")),
            url=_as_text(shop.get("url")),
            date=_as_text(catalog.get("@date")) or datetime.now(timezone.utc).isoformat(),
            currencies=self._map_currencies(shop.get("currencies")),
            categories=self._map_categories(shop.get("categories")),
            offers=offers,
        )

    @staticmethod
    def _map_currencies(node: Any) -> List[str]:
        node = _first(node)
        raw = node.get("currency", []) if isinstance(node, dict) else []
        currencies = []
        for currency in raw:
            code = _as_text(currency.get("@id")) if isinstance(currency, dict) else _as_text(currency)
            if code and code not in currencies:
                currencies.append(code)
        return currencies or [DEFAULT_CURRENCY]

    @staticmethod
    def _map_categories(node: Any) -> List[ProductCategory]:
        # Flat list only; parentId references are not checked for cycles
        node = _first(node)
        raw = node.get("category", []) if isinstance(node, dict) else []
        categories = []
        skipped = 0
        for cat in raw:
            if not isinstance(cat, dict) or not _as_text(cat.get("@id")):
                skipped += 1
                continue
            categories.append(ProductCategory(
                id=_as_text(cat.get("@id")),
                parent_id=_optional_text(cat.get("@parentId")),
                name=_as_text(cat),
            ))
        if skipped:
            logger.warning(f"Skipped {skipped} categories without id")
        return categories

    @staticmethod
    def _map_offers(node: Any) -> List[ProductOffer]:
        node = _first(node)
        raw = node.get("offer", []) if isinstance(node, dict) else []

        offers = []
        seen_ids = set()
        missing_id = 0
        duplicates = 0

        for off in raw:
            if not isinstance(off, dict):
                missing_id += 1
                continue

            offer_id = _as_text(off.get("@id"))
            if not offer_id:
                missing_id += 1
                continue
            if offer_id in seen_ids:
                duplicates += 1
                continue
            seen_ids.add(offer_id)

            offers.append(ProductOffer(
                id=offer_id,
                name=_as_text(off.get("name")) or _as_text(off.get("model")) or UNTITLED_OFFER,
                url=_as_text(off.get("url")),
                price=_as_text(off.get("price")) or DEFAULT_PRICE,
                currency_id=_as_text(off.get("currencyId")) or DEFAULT_CURRENCY,
                category_id=_as_text(off.get("categoryId")),
                available=coerce_available(off.get("@available")),
                picture=_optional_text(off.get("picture")),
                description=_optional_text(off.get("description")),
                vendor=_optional_text(off.get("vendor")),
            ))

        if missing_id:
            logger.warning(f"Dropped {missing_id} offers without id")
        if duplicates:
            logger.warning(f"Dropped {duplicates} offers with duplicate id")
        return offers


# Global instance
xml_feed_parser = XmlFeedParser()
