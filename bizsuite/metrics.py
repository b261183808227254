from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

hierarchy_cycle_rejections_total = Counter(
    "hierarchy_cycle_rejections_total",
    "Total re-parent requests rejected because they would create a cycle",
    ["entity"],
)

hierarchy_corruption_detected_total = Counter(
    "hierarchy_corruption_detected_total",
    "Total traversals that found corrupt stored parent links",
    ["entity"],
)

hierarchy_traversal_steps = Histogram(
    "hierarchy_traversal_steps",
    "Collaborator lookups performed per hierarchy traversal",
    ["entity", "operation"],
    buckets=(1, 2, 4, 8, 16, 32, 64, 128, 256, 512, 1024),
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_hierarchy_cycle_rejection(entity: str) -> None:
    hierarchy_cycle_rejections_total.labels(entity=entity).inc()


def observe_hierarchy_corruption(entity: str) -> None:
    hierarchy_corruption_detected_total.labels(entity=entity).inc()


def observe_hierarchy_traversal(entity: str, operation: str, steps: int) -> None:
    hierarchy_traversal_steps.labels(entity=entity, operation=operation).observe(steps)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
