from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from bizsuite.api.routes import router as api_router
from bizsuite.core.config import get_settings
from bizsuite.core.context import RequestContextMiddleware
from bizsuite.core.events import InternalEvent, event_bus
from bizsuite.logging import configure_logging, hierarchy_log_fields
from bizsuite.middleware.correlation_id import CorrelationIdMiddleware
from bizsuite.middleware.request_logging import RequestLoggingMiddleware
from bizsuite.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("bizsuite.lifecycle")

_hierarchy_event_types = [
    "crm.company.reparented",
    "pms.task.dependency_added",
    "pms.task.dependency_removed",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_hierarchy_changed(event: InternalEvent) -> None:
    payload = event.payload.get("payload") or {}
    node_id = payload.get("company_id") or payload.get("task_id")
    candidate = payload.get("parent_company_id") or payload.get("depends_on_task_id")
    logger.info("hierarchy.changed", extra=hierarchy_log_fields(event.name, node_id, candidate))


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _on_system_started)
    for event_name in _hierarchy_event_types:
        event_bus.subscribe(event_name, _on_hierarchy_changed)
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Bizsuite API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
