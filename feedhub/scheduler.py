# -*- coding: utf-8 -*-
"""
feedhub/scheduler.py
后台调度：固定周期醒来 -> 取最久未抓取的一批源 -> 每个源并发跑一个 worker
-> 等整批结束 -> 打印汇总 -> 等下一个周期。
- 批与批之间不重叠；一批超时跑完后立刻开下一批（错过的周期合并成一次）
- 取批失败只跳过本轮
- start()/stop() 控制生命周期，stop 有宽限期，超时就取消当前批
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import List, Optional, Sequence

import aiosqlite
import httpx

from feedhub.collector import DEFAULT_CONTENT_TYPE, ingest_feed
from feedhub.models import Feed, IngestResult
from feedhub.storage import get_next_feeds_to_fetch


class FeedScheduler:
    def __init__(
        self,
        db: aiosqlite.Connection,
        *,
        interval_sec: float = 60,
        batch_size: int = 10,
        max_concurrency: Optional[int] = None,
        run_immediately: bool = True,
        client: Optional[httpx.AsyncClient] = None,
        accept_content_type: str = DEFAULT_CONTENT_TYPE,
        fetch_timeout_sec: Optional[float] = None,
        date_layouts: Optional[Sequence[str]] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.db = db
        self.interval_sec = float(interval_sec)
        self.batch_size = int(batch_size)
        self.max_concurrency = int(max_concurrency or batch_size)
        self.run_immediately = run_immediately
        self.client = client
        self.accept_content_type = accept_content_type
        self.fetch_timeout_sec = fetch_timeout_sec
        self.date_layouts = date_layouts

        self.ticks = 0
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------- 单轮 --------------------

    async def run_once(self) -> List[IngestResult]:
        """跑一轮：取批 -> 并发抓取 -> 全部结束后返回每个源的结果。"""
        try:
            feeds = await get_next_feeds_to_fetch(self.db, self.batch_size)
        except Exception as e:
            print(f"[scheduler] 取待抓取源失败，跳过本轮: {e}")
            return []

        self.ticks += 1
        if not feeds:
            print("[scheduler] 没有待抓取的源")
            return []

        print(f"[scheduler] 正在抓取 {len(feeds)} 个源…")
        sem = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._run_worker(sem, feed) for feed in feeds),
            return_exceptions=True,
        )

        results: List[IngestResult] = []
        for feed, out in zip(feeds, outcomes):
            if isinstance(out, BaseException):
                # worker 本身不抛错；走到这里说明是意料外的 bug，记下来继续
                print(f"[scheduler] worker 异常 {feed.url}: {out!r}")
                results.append(IngestResult(feed_id=feed.id, url=feed.url, error=repr(out)))
            else:
                results.append(out)

        ok = sum(1 for r in results if r.ok)
        created = sum(r.created for r in results)
        print(f"[scheduler] 本轮完成: {len(results)} 个源（成功 {ok}），新增 {created} 条")
        return results

    async def _run_worker(self, sem: asyncio.Semaphore, feed: Feed) -> IngestResult:
        async with sem:
            return await ingest_feed(
                self.db, feed, self.client,
                accept_content_type=self.accept_content_type,
                timeout=self.fetch_timeout_sec,
                date_layouts=self.date_layouts,
            )

    # -------------------- 常驻循环 --------------------

    async def run_forever(self) -> None:
        if self._stop is None:
            self._stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        next_at = loop.time() if self.run_immediately else loop.time() + self.interval_sec

        print(f"[scheduler] started，每 {self.interval_sec:g}s 一轮，每轮最多 {self.batch_size} 个源")
        try:
            while not self._stop.is_set():
                delay = next_at - loop.time()
                if delay > 0:
                    with suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(self._stop.wait(), timeout=delay)
                    if self._stop.is_set():
                        break

                await self.run_once()

                # 跑超时的话不补跑错过的周期，直接开下一批
                next_at = max(next_at + self.interval_sec, loop.time())
        except asyncio.CancelledError:
            print("[scheduler] cancelled")
            raise
        finally:
            print("[scheduler] finished")

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self, grace_sec: float = 10.0) -> None:
        """
        通知循环退出；当前批在 grace_sec 内跑完就正常结束，否则取消。
        """
        task = self._task
        if task is None:
            return
        if self._stop is not None:
            self._stop.set()
        if not task.done() and grace_sec > 0:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(asyncio.shield(task), timeout=grace_sec)
        if not task.done():
            task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        self._task = None
