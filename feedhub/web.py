# coding: utf-8
# 只读看板：输入 api key，看自己关注的所有源合并后的帖子流 + 各源抓取状态
# 运行：streamlit run feedhub/web.py
from __future__ import annotations

import datetime
import html
import sqlite3
from pathlib import Path
from typing import Optional

import pandas as pd
import pytz
import streamlit as st
from streamlit_autorefresh import st_autorefresh

from feedhub.main import db_path_from, load_cfg

STYLE = """
<style>
.radar{position:relative;width:20px;height:20px;margin-right:8px}
.radar:before,.radar:after{content:"";position:absolute;border:2px solid rgba(0,200,0,.7);border-radius:50%;inset:0;animation:pulse 1.6s linear infinite}
.radar:after{animation-delay:.8s}
@keyframes pulse{0%{transform:scale(.3);opacity:.9}70%{transform:scale(1.4);opacity:.1}100%{transform:scale(1.6);opacity:0}}
.fh-table{width:100%;border-collapse:collapse;font-size:14px}
.fh-table th,.fh-table td{border-bottom:1px solid rgba(255,255,255,.08);padding:8px 10px;vertical-align:top}
.fh-table th{position:sticky;top:0;background:rgba(0,0,0,.25);backdrop-filter:blur(6px)}
.fh-link{color:inherit;text-decoration:none}
.fh-link:hover{text-decoration:underline}
.nowrap{white-space:nowrap}
.small{font-size:12px;color:#a0a0a0}
/* 压缩区块之间的空白 */
div[data-testid="stVerticalBlock"]{gap:0.35rem !important}
.block-container{padding-top:1rem !important;padding-bottom:0.6rem !important}
</style>
"""


# ========== DB 工具 ==========
def _utc_ms_to_local_str(ms: Optional[float], tz_name: str) -> str:
    if ms is None or pd.isna(ms):
        return ""
    tz = pytz.timezone(tz_name)
    dt = datetime.datetime.fromtimestamp(ms / 1000.0, tz=pytz.UTC)
    return dt.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S")


def _connect(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        raise FileNotFoundError(f"数据库不存在: {db_path}")
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def fetch_posts_for_user(conn: sqlite3.Connection, api_key: str, query: str = "", limit: int = 50) -> pd.DataFrame:
    """关注源的帖子合并流，按时间倒序；query 对标题/描述/源名做 LIKE 过滤。"""
    sql = """
    SELECT p.id, p.title, p.url, p.description, p.published_at, p.created_at,
           f.name AS feed_name
      FROM posts p
      JOIN feeds f         ON f.id = p.feed_id
      JOIN feed_follows ff ON ff.feed_id = p.feed_id
      JOIN users u         ON u.id = ff.user_id
     WHERE u.api_key = ?
    """
    params: list = [api_key]
    if query.strip():
        like = f"%{query.strip()}%"
        sql += " AND (p.title LIKE ? OR p.description LIKE ? OR f.name LIKE ?)"
        params += [like, like, like]
    sql += " ORDER BY COALESCE(p.published_at, p.created_at) DESC LIMIT ?"
    params.append(int(limit))
    return pd.read_sql_query(sql, conn, params=params)


def fetch_feed_status(conn: sqlite3.Connection, api_key: str) -> pd.DataFrame:
    """用户关注的源 + 上次抓取时间 + 帖子数；从未抓取的排最前。"""
    sql = """
    SELECT f.name, f.url, f.last_fetched_at,
           (SELECT COUNT(*) FROM posts p WHERE p.feed_id = f.id) AS posts
      FROM feeds f
      JOIN feed_follows ff ON ff.feed_id = f.id
      JOIN users u         ON u.id = ff.user_id
     WHERE u.api_key = ?
     ORDER BY (f.last_fetched_at IS NOT NULL), f.last_fetched_at
    """
    return pd.read_sql_query(sql, conn, params=[api_key])


# ========== HTML 表格渲染（标题为可点击文字） ==========
def render_table_html(df: pd.DataFrame, tz_name: str) -> str:
    cols = ["时间", "来源", "标题"]
    rows = []
    for _, r in df.iterrows():
        ts = r.get("published_at")
        if ts is None or pd.isna(ts):
            ts = r.get("created_at")
        time_str = _utc_ms_to_local_str(ts, tz_name)
        src = html.escape(str(r.get("feed_name", "") or ""))
        title = html.escape(str(r.get("title", "") or ""))
        link = str(r.get("url", "") or "")
        if link.startswith("http"):
            title_html = (f"<a class='fh-link' href='{html.escape(link, quote=True)}' "
                          f"target='_blank' rel='noopener noreferrer'>{title}</a>")
        else:
            title_html = title
        rows.append(
            "<tr>"
            f"<td class='nowrap small'>{time_str}</td>"
            f"<td>{src}</td>"
            f"<td>{title_html}</td>"
            "</tr>"
        )
    thead = "<tr>" + "".join(f"<th>{c}</th>" for c in cols) + "</tr>"
    return f"<table class='fh-table'><thead>{thead}</thead><tbody>{''.join(rows)}</tbody></table>"


# ========== 页面 ==========
def main() -> None:
    cfg = load_cfg()
    web_cfg = cfg.get("web", {})
    tz_name = web_cfg.get("display_timezone", "UTC")
    limit = int(web_cfg.get("limit", 50))
    db_path = db_path_from(cfg)

    st.set_page_config(page_title="feedhub", page_icon="📰", layout="wide")
    st.markdown(STYLE, unsafe_allow_html=True)

    radar_col, key_col, search_col = st.columns([0.06, 0.34, 0.60], gap="small")
    with radar_col:
        st.markdown("<div class='radar'></div>", unsafe_allow_html=True)
    with key_col:
        api_key = st.text_input("API key", key="api_key", type="password",
                                placeholder="feedhub add-user 生成的 api key",
                                label_visibility="collapsed")
    with search_col:
        query = st.text_input("关键词搜索（标题、描述、来源）", key="q",
                              placeholder="搜索关键词", label_visibility="collapsed")

    auto_refresh = st.sidebar.checkbox("自动刷新", value=True)
    interval = st.sidebar.select_slider("刷新间隔（秒）", options=[10, 20, 30, 60, 120], value=30)
    if auto_refresh:
        st_autorefresh(interval=interval * 1000, key="auto-rerun")
    st.markdown("---")

    if not api_key:
        st.info("请输入 API key。")
        st.stop()

    try:
        conn = _connect(db_path)
    except Exception as e:
        st.error(f"无法连接数据库：{db_path}\n{e}")
        st.stop()

    try:
        df_posts = fetch_posts_for_user(conn, api_key, query, limit)
        df_feeds = fetch_feed_status(conn, api_key)
    finally:
        conn.close()

    left, right = st.columns([0.68, 0.32])
    with left:
        st.subheader("📰 Posts")
        if df_posts.empty:
            st.info("暂无帖子：还没有关注源，或者源还没被抓取过。")
        else:
            st.markdown(render_table_html(df_posts, tz_name), unsafe_allow_html=True)
    with right:
        st.subheader("🛰️ 源状态")
        if df_feeds.empty:
            st.warning("没有关注任何源。")
        else:
            df_feeds = df_feeds.assign(
                last_fetched_at=df_feeds["last_fetched_at"].map(lambda v: _utc_ms_to_local_str(v, tz_name) or "从未")
            )
            st.dataframe(df_feeds, use_container_width=True, hide_index=True)


# streamlit run 时 __name__ == "__main__"；被 import 时不渲染
if __name__ == "__main__":
    main()
