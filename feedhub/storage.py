# -*- coding: utf-8 -*-
"""
feedhub/storage.py
SQLite（aiosqlite）持久化：
- 初始化/建表（users / feeds / feed_follows / posts）
- 调度用：取最久未抓取的源、标记已抓取
- 采集用：写入 post（重复链接抛 DuplicatePost）
- CLI/看板用：用户、源、关注、按用户读取帖子流
字段与 feedhub.models 一一对应；时间均为 UTC 毫秒。
"""

from __future__ import annotations
import secrets
import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Union

import aiosqlite

from feedhub.models import Feed, FeedFollow, Post, User
from feedhub.utils import new_id, now_ms


class StorageWriteFailed(Exception):
    """写库失败。duplicate=True 表示唯一约束冲突，调用方可以当作跳过处理。"""

    def __init__(self, message: str, duplicate: bool = False):
        super().__init__(message)
        self.duplicate = duplicate


class DuplicatePost(StorageWriteFailed):
    def __init__(self, message: str):
        super().__init__(message, duplicate=True)


# --------- 建表 SQL ---------
SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    created_at  INTEGER NOT NULL,
    updated_at  INTEGER NOT NULL,
    name        TEXT NOT NULL,
    api_key     TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id               TEXT PRIMARY KEY,
    created_at       INTEGER NOT NULL,
    updated_at       INTEGER NOT NULL,
    name             TEXT NOT NULL,
    url              TEXT NOT NULL UNIQUE,
    user_id          TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_fetched_at  INTEGER
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id          TEXT PRIMARY KEY,
    created_at  INTEGER NOT NULL,
    updated_at  INTEGER NOT NULL,
    user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id     TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id            TEXT PRIMARY KEY,
    created_at    INTEGER NOT NULL,
    updated_at    INTEGER NOT NULL,
    title         TEXT NOT NULL,
    url           TEXT NOT NULL,
    description   TEXT,
    published_at  INTEGER,
    feed_id       TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (feed_id, url)
);
CREATE INDEX IF NOT EXISTS idx_feeds_last_fetched ON feeds(last_fetched_at);
CREATE INDEX IF NOT EXISTS idx_posts_feed         ON posts(feed_id);
CREATE INDEX IF NOT EXISTS idx_posts_published    ON posts(published_at DESC);
"""


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """
    初始化数据库并返回连接。所有并发 worker 共用这一个连接，
    aiosqlite 在自己的线程里串行执行语句。
    """
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(p))
    db.row_factory = aiosqlite.Row
    # 性能相关 pragma
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute("PRAGMA foreign_keys=ON;")
    for stmt in filter(None, SCHEMA.split(";")):
        s = stmt.strip()
        if s:
            await db.execute(s + ";")
    await db.commit()
    return db


# --------- 小工具 ---------
async def _write(db: aiosqlite.Connection, sql: str, params: tuple, what: str) -> None:
    """执行一条写语句并提交；sqlite 异常统一转成 StorageWriteFailed。"""
    try:
        await db.execute(sql, params)
        await db.commit()
    except sqlite3.IntegrityError as e:
        dup = "UNIQUE" in str(e).upper()
        raise StorageWriteFailed(f"{what}: {e}", duplicate=dup) from e
    except sqlite3.Error as e:
        raise StorageWriteFailed(f"{what}: {e}") from e


async def _fetch_all(db: aiosqlite.Connection, sql: str, params: tuple = ()) -> List[Any]:
    async with db.execute(sql, params) as cur:
        return list(await cur.fetchall())


async def _fetch_one(db: aiosqlite.Connection, sql: str, params: tuple = ()) -> Optional[Any]:
    async with db.execute(sql, params) as cur:
        return await cur.fetchone()


def _row_to_user(row) -> User:
    return User(id=row["id"], created_at=row["created_at"], updated_at=row["updated_at"],
                name=row["name"], api_key=row["api_key"])


def _row_to_feed(row) -> Feed:
    return Feed(id=row["id"], created_at=row["created_at"], updated_at=row["updated_at"],
                name=row["name"], url=row["url"], user_id=row["user_id"],
                last_fetched_at=row["last_fetched_at"])


def _row_to_follow(row) -> FeedFollow:
    return FeedFollow(id=row["id"], created_at=row["created_at"], updated_at=row["updated_at"],
                      user_id=row["user_id"], feed_id=row["feed_id"])


def _row_to_post(row) -> Post:
    return Post(id=row["id"], created_at=row["created_at"], updated_at=row["updated_at"],
                title=row["title"], url=row["url"], feed_id=row["feed_id"],
                description=row["description"], published_at=row["published_at"])


# --------- 用户 ---------
async def create_user(db: aiosqlite.Connection, name: str) -> User:
    now = now_ms()
    user = User(id=new_id(), created_at=now, updated_at=now, name=name,
                api_key=secrets.token_hex(32))
    await _write(db, "INSERT INTO users(id, created_at, updated_at, name, api_key) VALUES(?,?,?,?,?);",
                 (user.id, user.created_at, user.updated_at, user.name, user.api_key), "create user")
    return user


async def get_user_by_api_key(db: aiosqlite.Connection, api_key: str) -> Optional[User]:
    row = await _fetch_one(db, "SELECT * FROM users WHERE api_key=?;", (api_key,))
    return _row_to_user(row) if row else None


# --------- 源 ---------
async def create_feed(db: aiosqlite.Connection, user_id: str, name: str, url: str) -> Feed:
    """新建源，创建者自动关注（与原服务行为一致）。"""
    now = now_ms()
    feed = Feed(id=new_id(), created_at=now, updated_at=now, name=name, url=url, user_id=user_id)
    await _write(db, "INSERT INTO feeds(id, created_at, updated_at, name, url, user_id) VALUES(?,?,?,?,?,?);",
                 (feed.id, feed.created_at, feed.updated_at, feed.name, feed.url, feed.user_id),
                 "create feed")
    await follow_feed(db, user_id, feed.id)
    return feed


async def get_feed(db: aiosqlite.Connection, feed_id: str) -> Optional[Feed]:
    row = await _fetch_one(db, "SELECT * FROM feeds WHERE id=?;", (feed_id,))
    return _row_to_feed(row) if row else None


async def get_all_feeds(db: aiosqlite.Connection) -> List[Feed]:
    rows = await _fetch_all(db, "SELECT * FROM feeds ORDER BY created_at;")
    return [_row_to_feed(r) for r in rows]


async def get_next_feeds_to_fetch(db: aiosqlite.Connection, limit: int) -> List[Feed]:
    """
    取最久未抓取的 limit 个源：从未抓取（NULL）的排最前，其余按时间升序。
    """
    sql = """
    SELECT * FROM feeds
     ORDER BY (last_fetched_at IS NOT NULL), last_fetched_at ASC, created_at ASC
     LIMIT ?;
    """
    rows = await _fetch_all(db, sql, (int(limit),))
    return [_row_to_feed(r) for r in rows]


async def mark_feed_fetched(db: aiosqlite.Connection, feed_id: str, ts: Optional[int] = None) -> Optional[Feed]:
    """
    标记已抓取。时间只前进不后退；源不存在返回 None。
    写入或回读失败都抛 StorageWriteFailed。
    """
    ts = now_ms() if ts is None else int(ts)
    sql = """
    UPDATE feeds
       SET last_fetched_at = MAX(IFNULL(last_fetched_at, 0), ?),
           updated_at      = MAX(updated_at, ?)
     WHERE id = ?;
    """
    await _write(db, sql, (ts, ts, feed_id), "mark feed fetched")
    try:
        return await get_feed(db, feed_id)
    except sqlite3.Error as e:
        raise StorageWriteFailed(f"mark feed fetched: read back: {e}") from e


# --------- 关注 ---------
async def follow_feed(db: aiosqlite.Connection, user_id: str, feed_id: str) -> FeedFollow:
    now = now_ms()
    follow = FeedFollow(id=new_id(), created_at=now, updated_at=now, user_id=user_id, feed_id=feed_id)
    await _write(db, "INSERT INTO feed_follows(id, created_at, updated_at, user_id, feed_id) VALUES(?,?,?,?,?);",
                 (follow.id, follow.created_at, follow.updated_at, follow.user_id, follow.feed_id),
                 "follow feed")
    return follow


async def unfollow_feed(db: aiosqlite.Connection, follow_id: str, user_id: str) -> bool:
    """只能取消自己的关注；返回是否真的删除了一条。"""
    try:
        cur = await db.execute("DELETE FROM feed_follows WHERE id=? AND user_id=?;", (follow_id, user_id))
        await db.commit()
    except sqlite3.Error as e:
        raise StorageWriteFailed(f"unfollow feed: {e}") from e
    return cur.rowcount > 0


async def get_followed_feeds(db: aiosqlite.Connection, user_id: str) -> List[FeedFollow]:
    rows = await _fetch_all(db, "SELECT * FROM feed_follows WHERE user_id=? ORDER BY created_at;", (user_id,))
    return [_row_to_follow(r) for r in rows]


# --------- 帖子 ---------
async def add_post(db: aiosqlite.Connection, post: Post) -> Post:
    """
    写入一条 post。(feed_id, url) 重复 -> DuplicatePost；其它错误 -> StorageWriteFailed。
    """
    sql = """
    INSERT INTO posts(id, created_at, updated_at, title, url, description, published_at, feed_id)
    VALUES(?,?,?,?,?,?,?,?);
    """
    try:
        await _write(db, sql, (
            post.id, post.created_at, post.updated_at, post.title, post.url,
            post.description, post.published_at, post.feed_id,
        ), "add post")
    except StorageWriteFailed as e:
        if e.duplicate:
            raise DuplicatePost(str(e)) from e
        raise
    return post


async def get_posts_by_user(db: aiosqlite.Connection, user_id: str, limit: int = 20) -> List[Post]:
    """
    用户关注的所有源的帖子，合并后按时间倒序（没有发布时间的用入库时间）。
    """
    sql = """
    SELECT p.* FROM posts p
      JOIN feed_follows f ON f.feed_id = p.feed_id
     WHERE f.user_id = ?
     ORDER BY COALESCE(p.published_at, p.created_at) DESC
     LIMIT ?;
    """
    rows = await _fetch_all(db, sql, (user_id, int(limit)))
    return [_row_to_post(r) for r in rows]


async def count_posts(db: aiosqlite.Connection, feed_id: Optional[str] = None) -> int:
    if feed_id is None:
        row = await _fetch_one(db, "SELECT COUNT(*) AS n FROM posts;")
    else:
        row = await _fetch_one(db, "SELECT COUNT(*) AS n FROM posts WHERE feed_id=?;", (feed_id,))
    return int(row["n"]) if row else 0
