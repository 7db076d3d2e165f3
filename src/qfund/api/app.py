from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from qfund.api.errors import install_error_handlers
from qfund.api.routes_public import public_router
from qfund.api.security import RequestSizeLimitMiddleware
from qfund.api.structured_logging import RequestLogMiddleware
from qfund.runtime.host import ContractHost
from qfund.runtime.host_boot import build_host as _build_host
from qfund.runtime.node_config import apply_node_config_to_env, load_node_config
from qfund.structured_logging import configure_structured_logging, log_event

log = logging.getLogger("qfund.api")


def build_host() -> ContractHost:
    """Build the SQLite-backed host for the API runtime.

    Exists so tests can monkeypatch `qfund.api.app.build_host`.
    """
    cfg = load_node_config()
    apply_node_config_to_env(cfg)
    return _build_host(cfg)


def create_app(*, boot_runtime: bool = True, host: Optional[ContractHost] = None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load node config and attach a host via build_host()
      - False: attach `host` as given (tests pass an in-memory host)
    """
    configure_structured_logging()
    mode = os.environ.get("QFUND_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        h = getattr(app.state, "host", None)
        log_event(log, "api_started", mode=mode, chain_id=getattr(h, "chain_id", None))
        yield
        log_event(log, "api_stopped", mode=mode)

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="QFund Node API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="QFund Node API", lifespan=_lifespan)

    app.state.host = build_host() if boot_runtime else host

    install_error_handlers(app)

    # --- Middleware ---
    # Added last runs first: request logging wraps the size limiter.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    # --- Routers ---
    app.include_router(public_router)

    return app
