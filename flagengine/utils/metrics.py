from prometheus_client import Counter
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Prometheus HTTP request counter
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status"],
)

# Feature evaluations by result source (force, experiment, defaultValue, ...)
EVALUATION_COUNT = Counter(
    "feature_evaluations_total",
    "Total feature evaluations",
    ["source"],
)

# Explicit experiment runs by enrollment outcome
EXPERIMENT_RUN_COUNT = Counter(
    "experiment_runs_total",
    "Total explicit experiment runs",
    ["in_experiment"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to count HTTP requests by path, method and status."""
    async def dispatch(self, request: Request, call_next):
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            status = getattr(response, "status_code", 500)
            REQUEST_COUNT.labels(
                path=request.url.path,
                method=request.method,
                status=status,
            ).inc()
