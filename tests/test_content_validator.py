"""Tests for relay content validation."""

from feedrelay.ingest.content_validator import ContentValidator, content_validator
from feedrelay.ingest.models import FeedKind


def test_rejects_empty_and_whitespace():
    for text in ("", "   \n\t  ", None):
        result = content_validator.validate(text, FeedKind.XML_CATALOG)
        assert result.accepted is False
        assert result.reason == "empty content"


def test_rejects_forbidden_html_page():
    result = content_validator.validate(
        "<html><body>403 Forbidden</body></html>", FeedKind.XML_CATALOG
    )

    assert result.accepted is False
    assert "html" in result.reason or "forbidden" in result.reason
    assert result.reason.startswith("proxy error page")


def test_rejects_cloudflare_challenge():
    text = "<!DOCTYPE html><html><head><title>Just a moment...</title></head>" \
           "<body>Checking your browser - Cloudflare</body></html>"
    result = content_validator.validate(text, FeedKind.SYNDICATION_FEED)

    assert result.accepted is False
    assert result.block_type == "cloudflare"


def test_rejects_html_document_without_error_markers():
    text = "<!DOCTYPE html><html><body><h1>Welcome to our shop</h1></body></html>"
    result = content_validator.validate(text, FeedKind.XML_CATALOG)

    assert result.accepted is False
    assert result.reason == "html page instead of feed"


def test_error_word_inside_real_feed_is_accepted():
    text = '<?xml version="1.0"?><rss><channel><title>Error handling tips</title></channel></rss>'
    result = content_validator.validate(text, FeedKind.SYNDICATION_FEED)

    assert result.accepted is True
    assert result.warning is None


def test_accepts_catalog_with_leading_bom_and_whitespace(catalog_xml):
    result = content_validator.validate("\ufeff\n\n  " + catalog_xml, FeedKind.XML_CATALOG)

    assert result.accepted is True


def test_missing_kind_marker_is_only_a_warning(rss_page):
    # An RSS body where a catalog was expected passes triage; the parser decides
    result = content_validator.validate(rss_page, FeedKind.XML_CATALOG)

    assert result.accepted is True
    assert result.warning is not None


def test_markers_beyond_prefix_are_ignored():
    text = "<data>" + "x" * 50 + " access denied</data>"

    assert ContentValidator(prefix_length=20).validate(text, FeedKind.XML_CATALOG).accepted is True
    assert ContentValidator(prefix_length=300).validate(text, FeedKind.XML_CATALOG).accepted is False
