from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from qfund.contract.errors import PROPOSAL_NOT_FOUND, UNAUTHORIZED, ContractError
from qfund.runtime.errors import BAD_SIGNATURE, HostError


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_domain(e: Union[ContractError, HostError]) -> "ApiError":
        details = dict(e.details or {})
        if e.code in {UNAUTHORIZED, BAD_SIGNATURE}:
            return ApiError.forbidden(e.code, e.reason, details)
        if e.code == PROPOSAL_NOT_FOUND:
            return ApiError.not_found(e.code, e.reason, details)
        return ApiError.bad_request(e.code, e.reason, details)

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(_: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(ContractError)
    async def _contract_error(_: Request, exc: ContractError) -> JSONResponse:
        err = ApiError.from_domain(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    @app.exception_handler(HostError)
    async def _host_error(_: Request, exc: HostError) -> JSONResponse:
        err = ApiError.from_domain(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())
