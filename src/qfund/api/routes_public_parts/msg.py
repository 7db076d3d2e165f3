from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from qfund.api.routes_public_parts.common import _host, _int_param, _json_object

router = APIRouter()

Json = Dict[str, Any]


@router.post("/msg/submit")
async def msg_submit(request: Request) -> Json:
    """Execute a signed message envelope.

    Body: {sender, nonce, msg: {<variant>: {...}}, funds: [{denom, amount}], sig}

    Returns:
      { ok, height, attributes: [{key, value}], transfers: [{to_address, amount}] }

    Contract and host failures are rendered by the app's error handlers.
    """
    host = _host(request)
    body = await _json_object(request, "message envelope")
    return host.submit(body).to_json()


@router.get("/events")
def events(request: Request, limit: Optional[str] = None) -> Json:
    host = _host(request)
    n = max(1, min(_int_param(limit, 50), 500))
    return {"ok": True, "events": host.events(limit=n)}
