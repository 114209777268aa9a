"""
Prometheus Metrics

Exposes request and marketplace metrics at /metrics.
"""
import time

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from khidma.core.config import settings

APP_INFO = Info("khidma_app", "Khidma application info")
APP_INFO.info({
    "version": settings.app_version,
    "environment": settings.environment,
})

# === Request Metrics ===
REQUEST_COUNT = Counter(
    "khidma_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "khidma_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# === Marketplace Metrics ===
JOBS_CREATED = Counter(
    "khidma_jobs_created_total",
    "Jobs posted from customer chats",
)

JOB_TRANSITIONS = Counter(
    "khidma_job_transitions_total",
    "Job status transitions",
    ["status"],
)

CATEGORIZATION_OUTCOMES = Counter(
    "khidma_categorization_outcomes_total",
    "Categorization vote results",
    ["result"],
)

WORKER_NOTIFICATIONS = Counter(
    "khidma_worker_job_notifications_total",
    "Job bubbles delivered to worker chats",
    ["phase"],
)

BIDS = Counter(
    "khidma_bids_total",
    "Bid lifecycle events",
    ["status"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next) -> StarletteResponse:
        if request.url.path == "/metrics":
            return await call_next(request)

        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(duration)

        return response


router = APIRouter(tags=["Health"])


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_job_created() -> None:
    JOBS_CREATED.inc()


def record_job_transition(status: str) -> None:
    JOB_TRANSITIONS.labels(status=status).inc()


def record_categorization(result: str) -> None:
    CATEGORIZATION_OUTCOMES.labels(result=result).inc()


def record_worker_notification(phase: int) -> None:
    WORKER_NOTIFICATIONS.labels(phase=str(phase)).inc()


def record_bid(status: str) -> None:
    BIDS.labels(status=status).inc()
