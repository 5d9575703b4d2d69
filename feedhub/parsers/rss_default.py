# RSS 默认解析器：只做结构化反序列化，字段一律按原样字符串保留

import io

import feedparser
from feedparser.exceptions import CharacterEncodingOverride, NonXMLContentType

from feedhub.models import ParsedFeed, ParsedItem

# 这两类 bozo 只是编码/类型提示，文档本身仍然合法
_TOLERATED = (CharacterEncodingOverride, NonXMLContentType)


class ParseFailed(Exception):
    """抓到的内容不是合法的 XML 文档"""


def _item_link(entry) -> str:
    # 只认条目自己的 <link>；entry.link 会在缺 <link> 时拿 guid 顶上
    for link in entry.get("links", []):
        if link.get("rel") == "alternate" and link.get("href"):
            return link["href"]
    return ""


def parse_rss(content: bytes) -> ParsedFeed:
    """
    解析RSS内容，返回频道信息 + 按文档顺序排列的条目

    参数:
        content: 抓取到的原始字节

    返回:
        ParsedFeed；缺失字段统一为空串

    异常:
        ParseFailed: 文档格式不合法
    """
    if not content:
        raise ParseFailed("XML decode error: empty document")

    # 包成流再交给 feedparser：直接传 bytes 时它会先把内容当本地路径/URL 去打开
    # 关掉 HTML 清洗和相对链接改写，描述里的标记原样保留
    feed = feedparser.parse(io.BytesIO(content), sanitize_html=False, resolve_relative_uris=False)

    if feed.get("bozo"):
        exc = feed.get("bozo_exception")
        if not isinstance(exc, _TOLERATED):
            raise ParseFailed(f"XML decode error: {exc}")

    channel = feed.get("feed", {})
    out = ParsedFeed(
        title=channel.get("title", ""),
        link=channel.get("link", ""),
        description=channel.get("description", ""),
    )

    for entry in feed.get("entries", []):
        out.items.append(ParsedItem(
            title=entry.get("title", ""),
            link=_item_link(entry),
            description=entry.get("description", ""),
            # published 是 pubDate 的原始字符串；published_parsed 不用，时间格式由 normalizer 决定
            pub_date=entry.get("published", ""),
        ))

    return out
