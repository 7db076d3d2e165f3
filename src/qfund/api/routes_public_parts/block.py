from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from qfund.api.errors import ApiError
from qfund.api.routes_public_parts.common import _host, _int_param, _json_object, _mode

router = APIRouter()

Json = Dict[str, Any]


@router.post("/block/advance")
async def block_advance(request: Request) -> Json:
    """Move a manual clock forward: {"height": dh, "time_ns": dt}.

    Only for dev/testnet hosts running the manual clock.
    """
    host = _host(request)
    if _mode() == "prod" or host.clock_mode != "manual":
        raise ApiError.forbidden("clock_locked", "block clock can only be moved on a manual dev clock", {})
    body = await _json_object(request, "block delta")
    dh = _int_param(body.get("height"), 0)
    dt = _int_param(body.get("time_ns"), 0)
    if dh < 0 or dt < 0:
        raise ApiError.bad_request("bad_request", "block deltas must be non-negative", {"height": dh, "time_ns": dt})
    blk = host.advance_block(height=dh, time_ns=dt)
    return {"ok": True, "block": blk.to_json()}
