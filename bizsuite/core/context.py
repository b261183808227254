from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from bizsuite.context import bound_context, tenant_from_headers


@dataclass(frozen=True)
class RequestContext:
    correlation_id: str | None
    tenant_id: str | None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Exposes the request's tenant to logs, audit entries and spans.

    Runs inside CorrelationIdMiddleware, so the correlation id is already on
    ``request.state`` here.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = RequestContext(
            correlation_id=getattr(request.state, "correlation_id", None),
            tenant_id=tenant_from_headers(request.headers),
        )
        request.state.context = context
        with bound_context(tenant_id=context.tenant_id):
            response = await call_next(request)
        if context.correlation_id:
            response.headers["x-request-id"] = context.correlation_id
        return response
