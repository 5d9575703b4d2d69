# -*- coding: utf-8 -*-
"""
models.py
数据模型。时间字段统一为 UTC 毫秒（int），可空字段用 Optional 表示“缺失”。
字段名与 feedhub/storage.py 的表结构一一对应。
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class User:
    id: str
    created_at: int
    updated_at: int
    name: str
    # 64 位十六进制，CLI/看板用它识别用户
    api_key: str


@dataclass
class Feed:
    id: str
    created_at: int
    updated_at: int
    name: str
    url: str          # 唯一
    user_id: str      # 创建者
    # None 表示从未抓取过；调度时排在最前
    last_fetched_at: Optional[int] = None


@dataclass
class FeedFollow:
    id: str
    created_at: int
    updated_at: int
    user_id: str
    feed_id: str


@dataclass
class Post:
    id: str
    created_at: int
    updated_at: int
    title: str
    url: str
    feed_id: str
    # 空描述存 None，区分“没有描述”和“描述为空串”
    description: Optional[str] = None
    published_at: Optional[int] = None


# --------- 解析结果（只在一次抓取期间存在，不入库） ---------

@dataclass
class ParsedItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""   # 原样字符串，交给 normalizer 解析


@dataclass
class ParsedFeed:
    title: str = ""
    link: str = ""
    description: str = ""
    items: List[ParsedItem] = field(default_factory=list)


@dataclass
class IngestResult:
    """单个源一次抓取的结果摘要，只用于日志/统计。"""
    feed_id: str
    url: str
    ok: bool = False
    error: Optional[str] = None
    items: int = 0
    created: int = 0
    duplicates: int = 0
    failed: int = 0
    marked: bool = False
