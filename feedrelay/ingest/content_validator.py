"""Content validator for relay responses.

Triage of retrieved text before it reaches the XML parsers:
- Empty bodies
- Relay/proxy error pages (Cloudflare, 403, access denied)
- HTML pages served instead of a feed

Only a bounded prefix is inspected, so validation cost does not grow with
catalog size. Structural validation stays with the parsers.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from feedrelay.config import settings
from feedrelay.ingest.models import FeedKind

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of content validation."""

    accepted: bool
    reason: Optional[str] = None      # Rejection reason, None when accepted
    block_type: Optional[str] = None  # empty, proxy_error, html_page
    warning: Optional[str] = None     # Soft warning for accepted content


# Markers of any XML feed root we know how to parse
ROOT_MARKERS = ("<?xml", "<yml_catalog", "<rss", "<feed")

# Root markers expected per kind (missing ones only produce a warning)
KIND_MARKERS = {
    FeedKind.XML_CATALOG: ("<yml_catalog",),
    FeedKind.SYNDICATION_FEED: ("<rss", "<feed", "<rdf:rdf"),
}

# Relay failure indicators
RELAY_ERROR_PATTERNS = [
    (r'access denied', 'access_denied'),
    (r'403 forbidden', 'forbidden'),
    (r'cloudflare', 'cloudflare'),
    (r'error', 'error_page'),
]

HTML_DOCUMENT_PATTERN = re.compile(r'^(<!doctype html|<html)')


class ContentValidator:
    """Classifies retrieved text as feed, relay error page, or empty."""

    def __init__(self, prefix_length: Optional[int] = None):
        self.prefix_length = prefix_length or settings.validator_prefix_length
        self._error_patterns = [
            (re.compile(pattern), block_type)
            for pattern, block_type in RELAY_ERROR_PATTERNS
        ]

    def validate(self, text: Optional[str], kind: FeedKind) -> ValidationResult:
        """
        Validate retrieved text against the expected feed kind.

        Args:
            text: Decoded response body
            kind: Kind of document the caller expects

        Returns:
            ValidationResult with accept/reject and reason
        """
        if not text or not text.strip():
            return ValidationResult(accepted=False, reason="empty content", block_type="empty")

        prefix = self._prefix(text)
        has_root = any(marker in prefix for marker in ROOT_MARKERS)

        if not has_root:
            block_type = self._detect_relay_error(prefix)
            if block_type:
                excerpt = prefix[:50]
                return ValidationResult(
                    accepted=False,
                    reason=f'proxy error page: "{excerpt}..."',
                    block_type=block_type,
                )

            if HTML_DOCUMENT_PATTERN.match(prefix):
                return ValidationResult(
                    accepted=False,
                    reason="html page instead of feed",
                    block_type="html_page",
                )

        warning = None
        if not any(marker in prefix for marker in KIND_MARKERS[kind]):
            # Some relays rewrite the leading bytes; leave the verdict to the parser
            warning = f"response does not look like a standard {kind.value} document"
            logger.warning(warning)

        return ValidationResult(accepted=True, warning=warning)

    def _prefix(self, text: str) -> str:
        """Case-folded leading slice with whitespace and BOM removed."""
        return text.lstrip("\ufeff \t\r\n")[:self.prefix_length].lower()

    def _detect_relay_error(self, prefix: str) -> Optional[str]:
        for pattern, block_type in self._error_patterns:
            if pattern.search(prefix):
                logger.debug(f"Detected relay error marker: {block_type}")
                return block_type
        return None


# Global instance
content_validator = ContentValidator()
