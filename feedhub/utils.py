import time
import uuid
from datetime import datetime, timezone


def now_ms() -> int:
    """
    获取当前时间的UTC毫秒时间戳

    返回:
        当前时间的毫秒时间戳
    """
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def dt_to_ms(dt: datetime) -> int:
    """naive datetime 一律按 UTC 处理"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)

