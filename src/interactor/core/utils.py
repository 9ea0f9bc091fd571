"""共享工具函数（消除跨模块重复）。"""
from __future__ import annotations

import time
import uuid

from pydantic import ValidationError


def now_ms() -> int:
    """返回当前 Unix 时间戳（毫秒）。"""
    return int(time.time() * 1000)


def new_request_id() -> str:
    """生成一个新的请求关联 id（uuid4）。"""
    return str(uuid.uuid4())


def summarize_validation_error(exc: ValidationError) -> str:
    """把 pydantic ValidationError 压平成一行可读信息（`loc: msg; loc: msg`）。"""
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc") or ()) or "<root>"
        parts.append(f"{loc}: {err.get('msg') or 'invalid'}")
    return "; ".join(parts) or "invalid input"
