"""
MODULE OVERVIEW:
HTTP-facing errors. Each one logs itself when raised and renders as the same
`{"success": false, "data": {...}}` body the browser client already understands.

Everything below the HTTP boundary (storage, locks, corrupt files) degrades to an
empty/False result instead of raising; only refusals end up here.
"""
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class NotifierError(HTTPException):
    code: str = "notifier_error"

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        context = " ".join(f"{k}={v}" for k, v in log_context.items())
        getattr(logger, log_level, logger.warning)(f"event={self.code} status={status_code} {context} detail='{detail}'")
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ForbiddenError(NotifierError):
    code = "rest_forbidden"

    def __init__(self, action: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Not allowed to {action}.",
            **log_context,
        )


class InvalidNonceError(NotifierError):
    code = "invalid_nonce"

    def __init__(self, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid nonce.",
            **log_context,
        )


class OrderNotFoundError(NotifierError):
    code = "order_not_found"

    def __init__(self, order_id: int, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {order_id} not found.",
            log_level="info",
            order_id=order_id,
            **log_context,
        )


async def notifier_error_handler(request: Request, exc: NotifierError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "data": {"error": exc.code, "message": exc.detail}},
        headers=exc.headers,
    )
