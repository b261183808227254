from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from bizsuite.context import get_log_context, tenant_from_headers


_state: dict[str, Any] = {"provider": None, "exporters_attached": False}


def _provider_for(service_name: str) -> TracerProvider:
    provider = _state["provider"]
    if provider is None:
        provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": f"bizsuite-{service_name}",
                    "service.version": os.getenv("APP_VERSION", "0.1.0"),
                }
            )
        )
        trace.set_tracer_provider(provider)
        _state["provider"] = provider
    return provider


def setup_otel(service_name: str, enable: bool) -> TracerProvider | None:
    """Install the SDK tracer provider and the exporters named by the environment.

    ``OTEL_EXPORTER_OTLP_ENDPOINT`` enables OTLP/HTTP export and
    ``OTEL_CONSOLE_EXPORTER=true`` prints finished spans. Calling it again only
    returns the provider.
    """
    if not enable:
        return None

    provider = _provider_for(service_name)
    if _state["exporters_attached"]:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _state["exporters_attached"] = True
    return provider


def setup_inmemory_otel(service_name: str = "api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _provider_for(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def _span_value(value: Any) -> str:
    return "" if value is None else str(value)


@contextmanager
def hierarchy_span(tracer: trace.Tracer, name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Span around a hierarchy check or mutation.

    Ids are recorded as strings, with "" for a missing parent. The request's
    correlation and tenant ids are attached when set. An escaping exception
    marks the span as failed and its class is kept in ``error.type``.
    """
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, _span_value(value))
        for key, value in get_log_context().items():
            if value:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_attribute("error.type", type(exc).__name__)
            raise


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}
        if headers.get("x-correlation-id"):
            span.set_attribute("correlation_id", headers["x-correlation-id"][:128])
        tenant = tenant_from_headers(headers)
        if tenant:
            span.set_attribute("tenant_id", tenant)

    return server_request_hook
