from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from qfund.api.routes_public_parts.common import _host, _json_object

router = APIRouter()

Json = Dict[str, Any]


@router.get("/proposals")
def all_proposals(request: Request) -> Json:
    host = _host(request)
    out: Json = {"ok": True}
    out.update(host.query({"all_proposals": {}}))
    return out


@router.get("/proposals/{proposal_id}")
def proposal_by_id(request: Request, proposal_id: int) -> Json:
    host = _host(request)
    return {"ok": True, "proposal": host.query({"proposal_by_id": {"id": proposal_id}})}


@router.post("/query")
async def raw_query(request: Request) -> Json:
    """Run a raw query message, e.g. {"proposal_by_id": {"id": 1}}."""
    host = _host(request)
    body = await _json_object(request, "query")
    return {"ok": True, "result": host.query(body)}


@router.get("/balances/{address}/{denom}")
def balance(request: Request, address: str, denom: str) -> Json:
    host = _host(request)
    return {"ok": True, "address": address, "denom": denom, "amount": str(host.balance(address, denom))}
