# -*- coding: utf-8 -*-
import asyncio
import os
import sys

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import httpx
import pytest

from feedhub.collector import FetchFailed, fetch_feed
from sample_feeds import RSS_THREE_ITEMS, XML, make_client

URL = "https://example.com/feed.xml"


def _fetch(routes, url=URL, **kwargs):
    async def run():
        async with make_client(routes) as client:
            return await fetch_feed(url, client, **kwargs)
    return asyncio.run(run())


def test_ok_returns_bytes():
    body = _fetch({URL: (200, XML, RSS_THREE_ITEMS)})
    assert body == RSS_THREE_ITEMS


def test_charset_parameter_is_ignored():
    body = _fetch({URL: (200, "Application/XML; charset=utf-8", RSS_THREE_ITEMS)})
    assert body == RSS_THREE_ITEMS


def test_404_fails():
    with pytest.raises(FetchFailed, match="status error: 404"):
        _fetch({})


def test_wrong_content_type_fails():
    with pytest.raises(FetchFailed, match="content-type"):
        _fetch({URL: (200, "text/html", b"<html></html>")})


def test_configured_content_type():
    body = _fetch({URL: (200, "application/rss+xml", RSS_THREE_ITEMS)},
                  accept_content_type="application/rss+xml")
    assert body == RSS_THREE_ITEMS


def test_network_error_fails():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await fetch_feed(URL, client)

    with pytest.raises(FetchFailed, match="GET error"):
        asyncio.run(run())


def test_invalid_url_fails():
    with pytest.raises(FetchFailed):
        _fetch({}, url="not a url")
