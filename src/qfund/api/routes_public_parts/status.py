from __future__ import annotations

import os
from typing import Any, Dict

from fastapi import APIRouter, Request

from qfund.api.routes_public_parts.common import _host, _mode

router = APIRouter()

Json = Dict[str, Any]


@router.get("/status")
def status(request: Request) -> Json:
    """
    Node status summary: chain, block, instantiation and round config.

    Mounted under /v1 by routes_public.py, so the full path is:
      GET /v1/status
    """
    host = _host(request)
    out: Json = {"ok": True, "node_id": os.environ.get("QFUND_NODE_ID", "local-node"), "mode": _mode()}
    out.update(host.status())
    return out
