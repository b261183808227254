from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from bizsuite.context import get_correlation_id


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=asdict(payload))


def http_exception_response(request: Request, exc: HTTPException, default_code: str) -> JSONResponse:
    """Render an HTTPException raised by a service as the JSON error envelope.

    Services may pass ``detail`` as a plain string or as a mapping carrying its
    own ``code``, ``message`` and ``details``.
    """
    detail = exc.detail
    if isinstance(detail, dict) and "message" in detail:
        return error_response(
            request,
            status_code=exc.status_code,
            code=str(detail.get("code") or default_code),
            message=str(detail["message"]),
            details=detail.get("details"),
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=default_code,
        message=str(detail),
        details=detail,
    )
