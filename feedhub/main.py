# feedhub/main.py
# 串起：storage -> scheduler（collector 在 scheduler 里并发跑）
# 另外提供几个 CLI 子命令，直接操作用户/源/关注/帖子

from __future__ import annotations
import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import yaml

from .collector import close_client, _ensure_client
from .normalizer import DATE_LAYOUTS
from .scheduler import FeedScheduler
from . import storage

ROOT = Path(__file__).resolve().parents[1]  # 项目根目录，ops/ 在这里


DEFAULT_CFG = {
    "database": {
        "path": "feedhub.db",
    },
    "scheduler": {
        "interval_sec": 60,
        "batch_size": 10,
        "max_concurrency": 10,
        "run_immediately": True,
        "stop_grace_sec": 10,
    },
    "fetcher": {
        "timeout_sec": 15,
        "user_agent": "feedhub/1.0",
        "accept_content_type": "application/xml",
    },
    "normalizer": {
        "date_layouts": list(DATE_LAYOUTS),
    },
    "web": {
        "display_timezone": "UTC",
        "limit": 50,
    },
}


def _env_override(cfg: dict) -> dict:
    db_path = os.environ.get("FEEDHUB_DB_PATH")
    if db_path:
        cfg["database"]["path"] = db_path
    for env_key, key in (("FEEDHUB_INTERVAL_SEC", "interval_sec"), ("FEEDHUB_BATCH_SIZE", "batch_size")):
        raw = os.environ.get(env_key)
        if raw:
            try:
                cfg["scheduler"][key] = int(raw)
            except ValueError:
                print(f"[main] 环境变量 {env_key}={raw!r} 不是整数，忽略")
    return cfg


def load_cfg(path: Optional[Path] = None) -> dict:
    """ops/config.yml 可选；不存在就用默认。每个段落单独浅合并。"""
    cfg_path = path or ROOT / "ops" / "config.yml"
    out = {k: dict(v) for k, v in DEFAULT_CFG.items()}
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
            for section, values in data.items():
                if isinstance(values, dict) and section in out:
                    out[section].update(values)
                else:
                    out[section] = values
        except Exception as e:
            print(f"[main] 读取 {cfg_path} 失败，使用默认。err={e}")
    return _env_override(out)


def db_path_from(cfg: dict) -> Path:
    p = Path(cfg["database"]["path"])
    return p if p.is_absolute() else ROOT / p


def build_scheduler(db, cfg: dict, client=None) -> FeedScheduler:
    s = cfg["scheduler"]
    f = cfg["fetcher"]
    if client is None:
        client = _ensure_client(timeout=float(f["timeout_sec"]), user_agent=f["user_agent"])
    return FeedScheduler(
        db,
        interval_sec=s["interval_sec"],
        batch_size=s["batch_size"],
        max_concurrency=s.get("max_concurrency"),
        run_immediately=bool(s.get("run_immediately", True)),
        client=client,
        accept_content_type=f["accept_content_type"],
        fetch_timeout_sec=float(f["timeout_sec"]),
        date_layouts=cfg["normalizer"]["date_layouts"],
    )


async def main(run_seconds: int = 0, cfg: Optional[dict] = None):
    cfg = cfg or load_cfg()
    db = await storage.init_db(db_path_from(cfg))
    scheduler = build_scheduler(db, cfg)

    print("[main] starting scheduler…")
    scheduler.start()
    try:
        if run_seconds and run_seconds > 0:
            # 运行指定秒数
            await asyncio.sleep(run_seconds)
        else:
            # 0 或负数 => 永久运行
            stop = asyncio.Event()
            await stop.wait()
    except asyncio.CancelledError:
        print("[main] cancelled")
        raise
    finally:
        # 优雅退出：给当前批一个宽限期
        await scheduler.stop(grace_sec=float(cfg["scheduler"].get("stop_grace_sec", 10)))
        await close_client()
        await db.close()
        print("[main] finished")


# -------------------- CLI --------------------

def _emit(obj) -> None:
    print(json.dumps(asdict(obj), ensure_ascii=False))


async def _require_user(db, api_key: str):
    user = await storage.get_user_by_api_key(db, api_key)
    if user is None:
        raise SystemExit("Unauthorized: 无效的 api key")
    return user


async def run_command(args: argparse.Namespace, cfg: dict) -> int:
    db = await storage.init_db(db_path_from(cfg))
    try:
        if args.cmd == "add-user":
            if not args.name.strip():
                print("[main] 名字不能为空")
                return 2
            _emit(await storage.create_user(db, args.name))
        elif args.cmd == "add-feed":
            user = await _require_user(db, args.api_key)
            _emit(await storage.create_feed(db, user.id, args.name, args.url))
        elif args.cmd == "feeds":
            for feed in await storage.get_all_feeds(db):
                _emit(feed)
        elif args.cmd == "follow":
            user = await _require_user(db, args.api_key)
            _emit(await storage.follow_feed(db, user.id, args.feed_id))
        elif args.cmd == "unfollow":
            user = await _require_user(db, args.api_key)
            if not await storage.unfollow_feed(db, args.follow_id, user.id):
                print("[main] 没有这条关注")
                return 1
            print("OK")
        elif args.cmd == "follows":
            user = await _require_user(db, args.api_key)
            for follow in await storage.get_followed_feeds(db, user.id):
                _emit(follow)
        elif args.cmd == "posts":
            user = await _require_user(db, args.api_key)
            for post in await storage.get_posts_by_user(db, user.id, limit=args.limit):
                _emit(post)
        elif args.cmd == "fetch-once":
            scheduler = build_scheduler(db, cfg)
            for r in await scheduler.run_once():
                _emit(r)
            total = await storage.count_posts(db)
            print(f"[main] 库中共 {total} 条帖子")
            await close_client()
    except storage.StorageWriteFailed as e:
        print(f"[main] 写库失败: {e}")
        return 1
    finally:
        await db.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedhub")
    parser.add_argument("--config", type=Path, default=None, help="配置文件，默认 ops/config.yml")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("run", help="启动后台抓取")
    p.add_argument("--run-seconds", type=int, default=0)

    p = sub.add_parser("add-user")
    p.add_argument("name")

    p = sub.add_parser("add-feed")
    p.add_argument("--api-key", required=True)
    p.add_argument("name")
    p.add_argument("url")

    sub.add_parser("feeds")

    p = sub.add_parser("follow")
    p.add_argument("--api-key", required=True)
    p.add_argument("feed_id")

    p = sub.add_parser("unfollow")
    p.add_argument("--api-key", required=True)
    p.add_argument("follow_id")

    p = sub.add_parser("follows")
    p.add_argument("--api-key", required=True)

    p = sub.add_parser("posts")
    p.add_argument("--api-key", required=True)
    p.add_argument("--limit", type=int, default=20)

    sub.add_parser("fetch-once", help="只跑一轮抓取")
    return parser


def cli(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_cfg(args.config)
    if args.cmd in (None, "run"):
        run_seconds = getattr(args, "run_seconds", 0)
        try:
            asyncio.run(main(run_seconds=run_seconds, cfg=cfg))
        except KeyboardInterrupt:
            print("[main] interrupted")
        return 0
    return asyncio.run(run_command(args, cfg))


if __name__ == "__main__":
    sys.exit(cli())
