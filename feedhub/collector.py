from __future__ import annotations

from typing import Optional, Sequence

import aiosqlite
import httpx

from feedhub.models import Feed, IngestResult
from feedhub.normalizer import normalize_item
from feedhub.parsers.rss_default import ParseFailed, parse_rss
from feedhub.storage import DuplicatePost, StorageWriteFailed, add_post, mark_feed_fetched

DEFAULT_CONTENT_TYPE = "application/xml"
DEFAULT_TIMEOUT_SEC = 15.0
DEFAULT_USER_AGENT = "feedhub/1.0"


class FetchFailed(Exception):
    """网络错误 / 非 200 / content-type 不对 / 读 body 失败，统一走这里"""


# -------------------- 工具函数 --------------------

_CLIENT: Optional[httpx.AsyncClient] = None


def _ensure_client(timeout: float = DEFAULT_TIMEOUT_SEC, user_agent: str = DEFAULT_USER_AGENT) -> httpx.AsyncClient:
    """全局复用一个 httpx AsyncClient，避免频繁建连。"""
    global _CLIENT
    if _CLIENT is None or _CLIENT.is_closed:
        _CLIENT = httpx.AsyncClient(timeout=timeout, headers={"User-Agent": user_agent})
    return _CLIENT


async def close_client() -> None:
    global _CLIENT
    if _CLIENT is not None:
        await _CLIENT.aclose()
        _CLIENT = None


def _media_type(content_type: str) -> str:
    # "application/xml; charset=utf-8" -> "application/xml"
    return content_type.split(";", 1)[0].strip().lower()


# -------------------- 抓取 --------------------

async def fetch_feed(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    *,
    accept_content_type: str = DEFAULT_CONTENT_TYPE,
    timeout: Optional[float] = None,
) -> bytes:
    """
    GET 一个源，校验状态码和 content-type，返回原始字节。不重试：
    失败的源会在下一轮调度重新被选中。

    异常:
        FetchFailed: 任意一步失败，消息里带原因
    """
    client = client or _ensure_client()
    kwargs = {"timeout": timeout} if timeout else {}
    try:
        async with client.stream("GET", url, **kwargs) as resp:
            if resp.status_code != 200:
                raise FetchFailed(f"status error: {resp.status_code}")
            content_type = resp.headers.get("content-type", "")
            if _media_type(content_type) != accept_content_type.lower():
                raise FetchFailed(f"invalid response 'content-type': {content_type!r}")
            try:
                return await resp.aread()
            except httpx.HTTPError as e:
                raise FetchFailed(f"read body: {e!r}") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise FetchFailed(f"GET error: {e!r}") from e


# -------------------- 单源：抓取 -> 解析 -> 入库 -> 标记 --------------------

async def ingest_feed(
    db: aiosqlite.Connection,
    feed: Feed,
    client: Optional[httpx.AsyncClient] = None,
    *,
    accept_content_type: str = DEFAULT_CONTENT_TYPE,
    timeout: Optional[float] = None,
    date_layouts: Optional[Sequence[str]] = None,
) -> IngestResult:
    """
    处理一个源。无论哪一步失败，返回前都恰好写一次 last_fetched_at，
    保证调度能往前推进；失败只打日志，不向调度器抛出。
    """
    result = IngestResult(feed_id=feed.id, url=feed.url)
    try:
        content = await fetch_feed(feed.url, client, accept_content_type=accept_content_type, timeout=timeout)
        parsed = parse_rss(content)
        result.items = len(parsed.items)
        print(f"[collector] 抓取 {parsed.title or feed.name}，共 {len(parsed.items)} 条")

        # 单条失败互不影响
        for item in parsed.items:
            post = normalize_item(item, feed.id, date_layouts)
            try:
                await add_post(db, post)
                result.created += 1
            except DuplicatePost:
                result.duplicates += 1
            except StorageWriteFailed as e:
                result.failed += 1
                print(f"[collector] 入库失败 {post.url}: {e}")
        result.ok = True

    except FetchFailed as e:
        result.error = str(e)
        print(f"[collector] 抓取失败 {feed.url}: {e}")
    except ParseFailed as e:
        result.error = str(e)
        print(f"[collector] 解析失败 {feed.url}: {e}")
    finally:
        try:
            await mark_feed_fetched(db, feed.id)
            result.marked = True
        except StorageWriteFailed as e:
            print(f"[collector] 标记抓取时间失败 {feed.url}: {e}")

    return result
