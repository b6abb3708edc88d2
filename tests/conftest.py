"""Shared fixtures for feed acquisition tests."""

import pytest

from feedrelay.ingest.relays import RelayStrategy, ResponseShape

CATALOG_XML = """<?xml version="1.0" encoding="UTF-8"?>
<yml_catalog date="2025-01-01 10:00">
  <shop>
    <name>Brick Shop</name>
    <company>Brick LLC</company>
    <url>https://bricks.example</url>
    <currencies>
      <currency id="RUB" rate="1"/>
      <currency id="USD" rate="CBRF"/>
    </currencies>
    <categories>
      <category id="1">Building</category>
      <category id="5" parentId="1">Bricks</category>
    </categories>
    <offers>
      <offer id="101" available="true">
        <url>https://bricks.example/101</url>
        <price>1999.90</price>
        <currencyId>RUB</currencyId>
        <categoryId>5</categoryId>
        <picture>https://bricks.example/101.jpg</picture>
        <picture>https://bricks.example/101-2.jpg</picture>
        <name>Red brick</name>
        <vendor>Kiln</vendor>
        <description><![CDATA[<p>Solid <b>red</b> brick</p>]]></description>
      </offer>
      <offer id="102" available="false">
        <url>https://bricks.example/102</url>
        <price>15</price>
        <currencyId>USD</currencyId>
        <categoryId>5</categoryId>
        <model>Grey brick M2</model>
      </offer>
    </offers>
  </shop>
</yml_catalog>
"""

RSS_PAGE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
  <channel>
    <title>Builder Blog</title>
    <link>https://blog.example/</link>
    <description>Notes about bricks</description>
    <atom:link rel="self" href="https://blog.example/feed/"/>
    <item>
      <title>First post</title>
      <link>https://blog.example/first</link>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
      <pubDate>Wed, 01 Jan 2025 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Second post</title>
      <link>https://blog.example/second</link>
      <description>Plain text</description>
    </item>
  </channel>
</rss>
"""


@pytest.fixture
def catalog_xml() -> str:
    return CATALOG_XML


@pytest.fixture
def rss_page() -> str:
    return RSS_PAGE


@pytest.fixture
def make_relays():
    """Build stream relays whose host is ``<name>.relay``."""

    def _make(*names: str, json_names: tuple = ()) -> list[RelayStrategy]:
        return [
            RelayStrategy(
                name=name,
                url_template=f"https://{name}.relay/?u={{encoded}}",
                shape=ResponseShape.JSON if name in json_names else ResponseShape.STREAM,
            )
            for name in names
        ]

    return _make
