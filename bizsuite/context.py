from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_tenant_id: ContextVar[str | None] = ContextVar("tenant_id", default=None)

_LOG_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "correlation_id": _correlation_id,
    "tenant_id": _tenant_id,
}

TENANT_HEADERS = ("x-current-legal-entity", "x-legal-entity")


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def get_tenant_id() -> str | None:
    return _tenant_id.get()


def get_log_context() -> dict[str, str | None]:
    return {name: var.get() for name, var in _LOG_CONTEXT_VARS.items()}


@contextmanager
def bound_context(**values: str | None) -> Iterator[None]:
    """Bind ``correlation_id`` and/or ``tenant_id`` for the duration of the block."""
    unknown = set(values) - set(_LOG_CONTEXT_VARS)
    if unknown:
        raise TypeError(f"unknown context keys: {sorted(unknown)}")
    tokens = [(_LOG_CONTEXT_VARS[name], _LOG_CONTEXT_VARS[name].set(value)) for name, value in values.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def tenant_from_headers(headers: Mapping[str, str]) -> str | None:
    # Header keys are expected lower-cased, as Starlette and ASGI scopes provide them.
    for name in TENANT_HEADERS:
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return None
