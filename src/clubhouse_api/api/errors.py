"""Translate engine results and errors into HTTP responses."""

from __future__ import annotations

from typing import TypeVar

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from clubhouse_api.services.membership.errors import (
    MembershipLogicError,
    OperationResult,
    RejectionReason,
    TransientStoreError,
)

T = TypeVar("T")

_STATUS_BY_REASON: dict[RejectionReason, int] = {
    RejectionReason.MEMBER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.RECORD_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.MEMBER_INACTIVE: status.HTTP_403_FORBIDDEN,
}


def unwrap_or_raise(result: OperationResult[T]) -> T:
    """Return the value of a successful result or raise the matching HTTPException."""

    if result.success:
        return result.value  # type: ignore[return-value]
    reason = result.reason or RejectionReason.NOT_PENDING
    raise HTTPException(
        status_code=_STATUS_BY_REASON.get(reason, status.HTTP_409_CONFLICT),
        detail={"reason": reason.value, "message": result.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TransientStoreError)
    async def _transient_store_error(request: Request, exc: TransientStoreError) -> JSONResponse:
        logger.warning("Transient store error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": {"reason": "transient_store_error", "message": str(exc)}},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(MembershipLogicError)
    async def _logic_error(request: Request, exc: MembershipLogicError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": {"reason": "invalid_request", "message": str(exc)}},
        )


__all__ = ["register_exception_handlers", "unwrap_or_raise"]
