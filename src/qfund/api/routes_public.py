from __future__ import annotations

from fastapi import APIRouter

from qfund.api.routes_public_parts.block import router as block_router
from qfund.api.routes_public_parts.health import router as health_router
from qfund.api.routes_public_parts.msg import router as msg_router
from qfund.api.routes_public_parts.proposals import router as proposals_router
from qfund.api.routes_public_parts.status import router as status_router

public_router = APIRouter()

public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(status_router, prefix="/v1", tags=["status"])
public_router.include_router(msg_router, prefix="/v1", tags=["msg"])
public_router.include_router(proposals_router, prefix="/v1", tags=["proposals"])
public_router.include_router(block_router, prefix="/v1", tags=["block"])
