# -*- coding: utf-8 -*-
"""
normalizer.py
把解析出的 ParsedItem 转成可入库的 Post：
- 标题/链接原样复制（空串也接受）
- 描述为空串 -> None
- 发布时间按 DATE_LAYOUTS 顺序逐个尝试，第一个成功的为准；
  都不行再按 RFC-822 带时区缩写（EST/PDT/MST/UT…）兜底一次；全部失败 -> None
单条时间解析失败不影响同一个源的其它条目。
"""

from __future__ import annotations

from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional, Sequence

from feedhub.models import ParsedItem, Post
from feedhub.utils import dt_to_ms, new_id, now_ms

# 顺序即优先级
DATE_LAYOUTS = [
    "%a, %d %b %Y %H:%M:%S %Z",     # RFC1123:  Mon, 02 Jan 2006 15:04:05 GMT
    "%a, %d %b %Y %H:%M:%S %z",     # RFC1123Z: Mon, 02 Jan 2006 15:04:05 -0700
    "%a, %d %b %Y %H:%M %z",
    "%d %b %Y %H:%M:%S %z",
    "%Y-%m-%dT%H:%M:%S%z",          # ISO-8601 / Atom
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S",
]


class DateParseFailed(ValueError):
    """没有任何一个 layout 能解析该时间字符串"""


def parse_date(value: str, layouts: Optional[Sequence[str]] = None) -> int:
    """
    按 layouts 顺序尝试解析，返回 UTC 毫秒。

    异常:
        DateParseFailed: 全部 layout 都失败
    """
    text = (value or "").strip()
    last_err: Optional[Exception] = None
    for layout in layouts or DATE_LAYOUTS:
        try:
            return dt_to_ms(datetime.strptime(text, layout))
        except ValueError as e:
            last_err = e

    # %Z 只认 UTC/GMT 和本机时区名，其余时区缩写走 RFC-822 解析
    try:
        return dt_to_ms(parsedate_to_datetime(text))
    except (TypeError, ValueError) as e:
        last_err = last_err or e
    raise DateParseFailed(f"unparseable date {value!r}: {last_err}")


def normalize_item(item: ParsedItem, feed_id: str, layouts: Optional[Sequence[str]] = None) -> Post:
    published_at = None
    if item.pub_date:
        try:
            published_at = parse_date(item.pub_date, layouts)
        except DateParseFailed:
            published_at = None

    now = now_ms()
    return Post(
        id=new_id(),
        created_at=now,
        updated_at=now,
        title=item.title,
        url=item.link,
        feed_id=feed_id,
        description=item.description or None,
        published_at=published_at,
    )
