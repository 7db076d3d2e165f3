from __future__ import annotations

import os
import time

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    # Must never fail: reports what it can.
    host = getattr(request.app.state, "host", None)
    return {
        "ok": True,
        "service": "qfund-node",
        "version": "v1",
        "ts_ms": _now_ms(),
        "chain_id": getattr(host, "chain_id", None) or os.environ.get("QFUND_CHAIN_ID") or None,
        "height": host.block.height if host is not None else None,
    }
