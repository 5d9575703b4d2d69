# -*- coding: utf-8 -*-
import asyncio
import json
import os
import sys

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from feedhub import storage
from feedhub.main import DEFAULT_CFG, build_scheduler, cli, load_cfg
from sample_feeds import make_client


def _write_cfg(tmp_path, text: str):
    p = tmp_path / "config.yml"
    p.write_text(text, encoding="utf-8")
    return p


def test_missing_config_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("FEEDHUB_DB_PATH", raising=False)
    monkeypatch.delenv("FEEDHUB_BATCH_SIZE", raising=False)
    monkeypatch.delenv("FEEDHUB_INTERVAL_SEC", raising=False)
    cfg = load_cfg(tmp_path / "nope.yml")
    assert cfg["scheduler"] == DEFAULT_CFG["scheduler"]
    assert cfg["fetcher"]["accept_content_type"] == "application/xml"


def test_sections_merge_over_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("FEEDHUB_BATCH_SIZE", raising=False)
    p = _write_cfg(tmp_path, "scheduler:\n  batch_size: 3\n")
    cfg = load_cfg(p)
    assert cfg["scheduler"]["batch_size"] == 3
    assert cfg["scheduler"]["interval_sec"] == DEFAULT_CFG["scheduler"]["interval_sec"]
    # 默认值不能被改到
    assert DEFAULT_CFG["scheduler"]["batch_size"] == 10


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("FEEDHUB_DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("FEEDHUB_BATCH_SIZE", "4")
    monkeypatch.setenv("FEEDHUB_INTERVAL_SEC", "abc")
    cfg = load_cfg(tmp_path / "nope.yml")
    assert cfg["database"]["path"] == str(tmp_path / "x.db")
    assert cfg["scheduler"]["batch_size"] == 4
    assert cfg["scheduler"]["interval_sec"] == 60


def test_broken_yaml_falls_back(tmp_path, monkeypatch):
    monkeypatch.delenv("FEEDHUB_BATCH_SIZE", raising=False)
    p = _write_cfg(tmp_path, "scheduler: [unclosed\n")
    cfg = load_cfg(p)
    assert cfg["scheduler"]["batch_size"] == 10


def test_build_scheduler_from_cfg(tmp_path, monkeypatch):
    monkeypatch.delenv("FEEDHUB_BATCH_SIZE", raising=False)
    cfg = load_cfg(_write_cfg(tmp_path, "scheduler:\n  batch_size: 3\n  max_concurrency: 2\n"))

    async def run():
        db = await storage.init_db(tmp_path / "t.db")
        try:
            async with make_client({}) as client:
                sched = build_scheduler(db, cfg, client=client)
                assert sched.batch_size == 3
                assert sched.max_concurrency == 2
                assert sched.accept_content_type == "application/xml"
                assert sched.date_layouts == cfg["normalizer"]["date_layouts"]
        finally:
            await db.close()
    asyncio.run(run())


def test_cli_user_feed_follow_flow(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("FEEDHUB_DB_PATH", str(tmp_path / "cli.db"))
    cfg_path = str(tmp_path / "nope.yml")

    assert cli(["--config", cfg_path, "add-user", "alice"]) == 0
    user = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert user["name"] == "alice" and len(user["api_key"]) == 64

    assert cli(["--config", cfg_path, "add-feed", "--api-key", user["api_key"],
                "example", "https://example.com/rss"]) == 0
    feed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert feed["last_fetched_at"] is None

    assert cli(["--config", cfg_path, "follows", "--api-key", user["api_key"]]) == 0
    follows = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
    assert [f["feed_id"] for f in follows] == [feed["id"]]

    # 同一个 url 不能重复注册
    assert cli(["--config", cfg_path, "add-feed", "--api-key", user["api_key"],
                "again", "https://example.com/rss"]) == 1


def test_cli_fetch_once_prints_post_total(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("FEEDHUB_DB_PATH", str(tmp_path / "cli.db"))
    # 没有注册任何源，不会发请求
    assert cli(["--config", str(tmp_path / "nope.yml"), "fetch-once"]) == 0
    assert "库中共 0 条帖子" in capsys.readouterr().out
