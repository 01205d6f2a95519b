from __future__ import annotations

import time
from datetime import datetime, timezone

def utc_now_iso() -> str:
    """返回 UTC 时间的 ISO-8601 字符串（带 Z）。"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_ms() -> int:
    """返回 Unix 毫秒时间戳（事件 timestamp 字段使用）。"""
    return int(time.time() * 1000)
