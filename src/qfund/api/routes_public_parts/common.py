from __future__ import annotations

import os
from typing import Any, Dict

from fastapi import Request

from qfund.api.errors import ApiError

Json = Dict[str, Any]


def _host(request: Request):
    host = getattr(request.app.state, "host", None)
    if host is None:
        raise ApiError.internal("not_ready", "host not attached to app.state", {})
    return host


def _mode() -> str:
    return (os.environ.get("QFUND_MODE") or "prod").strip().lower()


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    s = str(v).strip()
    if s == "":
        return int(default)
    try:
        return int(s)
    except ValueError:
        return int(default)


async def _json_object(request: Request, what: str) -> Json:
    try:
        body = await request.json()
    except ValueError as e:
        raise ApiError.bad_request("bad_request", "Body must be valid JSON", {}) from e
    if not isinstance(body, dict):
        raise ApiError.bad_request("bad_request", f"Body must be a {what} object", {})
    return body
