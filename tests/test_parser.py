# -*- coding: utf-8 -*-
import os
import sys

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import pytest

from feedhub.parsers.rss_default import ParseFailed, parse_rss
from sample_feeds import RSS_MALFORMED, RSS_THREE_ITEMS


def test_parse_channel_and_items_in_order():
    feed = parse_rss(RSS_THREE_ITEMS)
    assert feed.title == "Example Blog"
    assert feed.link == "https://example.com/"
    assert feed.description == "Posts from example.com"
    assert [i.title for i in feed.items] == ["First post", "Second post", "Third post"]
    assert feed.items[0].link == "https://example.com/posts/1"
    assert feed.items[0].description == "Hello world"
    assert feed.items[0].pub_date == "Mon, 02 Jan 2006 15:04:05 +0000"


def test_missing_fields_are_empty_strings():
    feed = parse_rss(RSS_THREE_ITEMS)
    assert feed.items[1].description == ""
    assert feed.items[2].pub_date == ""


def test_malformed_document_raises():
    with pytest.raises(ParseFailed):
        parse_rss(RSS_MALFORMED)


def test_empty_document_raises():
    with pytest.raises(ParseFailed):
        parse_rss(b"")


def test_channel_without_items():
    feed = parse_rss(b"<rss version='2.0'><channel><title>Quiet</title></channel></rss>")
    assert feed.title == "Quiet"
    assert feed.items == []


# 描述里是转义过的 HTML；没有 <link>，只有 permalink guid
RSS_RAW_FIELDS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Raw</title><link>https://g.test/</link>
<item>
  <title>Markup</title>
  <description>&lt;script&gt;x()&lt;/script&gt;&lt;a href="/rel"&gt;hi&lt;/a&gt;</description>
  <guid isPermaLink="true">https://g.test/1</guid>
</item>
<item>
  <title>Linked</title>
  <link>https://g.test/2?a=1&amp;b=2</link>
  <guid isPermaLink="true">https://g.test/guid-2</guid>
</item>
</channel></rss>
"""


def test_description_markup_kept_verbatim():
    item = parse_rss(RSS_RAW_FIELDS).items[0]
    assert item.description == '<script>x()</script><a href="/rel">hi</a>'


def test_link_only_from_item_link_element():
    first, second = parse_rss(RSS_RAW_FIELDS).items
    # guid 不顶替 link
    assert first.link == ""
    assert second.link == "https://g.test/2?a=1&b=2"


def test_body_that_looks_like_a_path_is_not_opened(tmp_path):
    local = tmp_path / "local.xml"
    local.write_bytes(RSS_THREE_ITEMS)
    # 响应体恰好是本机文件路径：只能当文档内容解析，不能去读那个文件
    try:
        feed = parse_rss(str(local).encode())
    except ParseFailed:
        return
    assert feed.items == []
