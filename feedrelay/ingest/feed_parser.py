"""Syndication feed page parser for RSS and Atom.

Parses one page of an RSS 2.0 / RSS 1.0 / Atom document into RssItem records
and finds the page's ``rel="next"`` pagination link. Atom and RSS are told
apart by structure, never by MIME type. Tags are matched by local name so
namespaced and prefixed variants (``atom:link``) behave alike.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from xml.etree import ElementTree as ET

from selectolax.lexbor import LexborHTMLParser

from feedrelay.config import settings
from feedrelay.ingest.errors import StructuralParseError
from feedrelay.ingest.models import RssItem

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
ELLIPSIS = "..."


@dataclass
class SyndicationPage:
    """One parsed page of a syndication feed."""
    title: str
    description: str
    items: List[RssItem] = field(default_factory=list)
    next_url: Optional[str] = None
    is_atom: bool = False


def local_name(tag) -> str:
    """Tag name without ``{namespace}`` or ``prefix:`` qualification."""
    if not isinstance(tag, str):
        # Comments and processing instructions
        return ""
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    if ":" in tag:
        tag = tag.rsplit(":", 1)[1]
    return tag


def _children(elem: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in elem if local_name(child.tag) == name]


def _first_child(elem: Optional[ET.Element], *names: str) -> Optional[ET.Element]:
    """First direct child matching any of the names, tried in order."""
    if elem is None:
        return None
    for name in names:
        for child in elem:
            if local_name(child.tag) == name:
                return child
    return None


def _descendants(elem: ET.Element, name: str) -> List[ET.Element]:
    return [e for e in elem.iter() if local_name(e.tag) == name]


def _text(elem: Optional[ET.Element]) -> str:
    if elem is None:
        return ""
    return "".join(elem.itertext()).strip()


def strip_markup(text: str, max_length: int) -> str:
    """
    Plain-text rendition of an HTML fragment, truncated for display.

    Args:
        text: Description that may contain markup or entities
        max_length: Maximum characters kept before the ellipsis

    Returns:
        Whitespace-collapsed text, with ``...`` appended when truncated
    """
    if not text:
        return ""

    if "<" in text or "&" in text:
        tree = LexborHTMLParser(text)
        tree.strip_tags(["script", "style"])
        body = tree.body
        text = body.text(separator=" ") if body is not None else ""

    text = " ".join(text.split())
    if len(text) > max_length:
        return text[:max_length] + ELLIPSIS
    return text


def find_next_link(root: ET.Element) -> Optional[str]:
    """
    Find the pagination link of a page.

    Scans every element whose local tag name contains ``link`` (``link``,
    ``atom:link``, ``atom10:link``) for ``rel="next"`` with an ``href``.

    Returns:
        Raw href (possibly relative), or None
    """
    for elem in root.iter():
        if "link" not in local_name(elem.tag).lower():
            continue
        rel = (elem.get("rel") or "").strip().lower()
        href = (elem.get("href") or "").strip()
        if rel == "next" and href:
            return href
    return None


class FeedParser:
    """Parses RSS/Atom pages into RssItem records."""

    def __init__(self, description_max_length: Optional[int] = None):
        self.description_max_length = description_max_length or settings.description_max_length

    def parse_page(self, xml_text: str) -> SyndicationPage:
        """
        Parse one syndication page.

        Args:
            xml_text: Page body

        Returns:
            SyndicationPage with feed title/description, items and next link

        Raises:
            StructuralParseError: If the text is empty or not well-formed XML
        """
        root = self._parse_xml(xml_text)
        next_url = find_next_link(root)

        feed = root if local_name(root.tag) == "feed" else None
        if feed is None:
            found = _descendants(root, "feed")
            feed = found[0] if found else None

        if feed is not None:
            page = self._parse_atom(feed)
        else:
            page = self._parse_rss(root)

        page.next_url = next_url
        logger.debug(
            f"Parsed {'Atom' if page.is_atom else 'RSS'} page: "
            f"{len(page.items)} items, next={next_url}"
        )
        return page

    def _parse_xml(self, xml_text: str) -> ET.Element:
        text = (xml_text or "").lstrip("\ufeff \t\r\n")
        if not text:
            raise StructuralParseError("feed content is empty")
        try:
            return ET.fromstring(text)
        except ET.ParseError as e:
            raise StructuralParseError(f"malformed XML: {e}") from e

    def _parse_atom(self, feed: ET.Element) -> SyndicationPage:
        items = []
        for entry in _descendants(feed, "entry"):
            body = _first_child(entry, "summary", "content")
            date = _text(_first_child(entry, "updated", "published"))
            items.append(RssItem(
                title=_text(_first_child(entry, "title")) or UNTITLED,
                link=self._atom_link(entry),
                description=strip_markup(_text(body), self.description_max_length),
                pub_date=date or None,
            ))

        return SyndicationPage(
            title=_text(_first_child(feed, "title")) or UNTITLED,
            description=_text(_first_child(feed, "subtitle")),
            items=items,
            is_atom=True,
        )

    @staticmethod
    def _atom_link(entry: ET.Element) -> str:
        """Prefer rel="alternate" (or no rel), else the first link present."""
        links = _children(entry, "link")
        for link in links:
            rel = (link.get("rel") or "").strip()
            if rel in ("", "alternate") and link.get("href"):
                return link.get("href").strip()
        if links:
            return (links[0].get("href") or "").strip()
        return ""

    def _parse_rss(self, root: ET.Element) -> SyndicationPage:
        if local_name(root.tag) == "channel":
            channel = root
        else:
            found = _descendants(root, "channel")
            channel = found[0] if found else None

        items = []
        # RSS 1.0 places items beside the channel, not inside it
        for item in _descendants(root, "item"):
            body = _first_child(item, "description", "encoded")
            date = _text(_first_child(item, "pubDate", "date"))
            items.append(RssItem(
                title=_text(_first_child(item, "title")) or UNTITLED,
                link=self._rss_link(item),
                description=strip_markup(_text(body), self.description_max_length),
                pub_date=date or None,
            ))

        return SyndicationPage(
            title=_text(_first_child(channel, "title")) or UNTITLED,
            description=_text(_first_child(channel, "description")),
            items=items,
        )

    @staticmethod
    def _rss_link(item: ET.Element) -> str:
        for link in _children(item, "link"):
            value = _text(link) or (link.get("href") or "").strip()
            if value:
                return value
        return ""


# Global feed parser instance
feed_parser = FeedParser()
