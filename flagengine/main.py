# flagengine/main.py
import time
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from flagengine.config import settings
from flagengine.deps import feature_store
from flagengine.routers import health as health_router
from flagengine.routers import features as features_router
from flagengine.routers import evaluate as evaluate_router
from flagengine.services.feature_store import PayloadError
from flagengine.utils.logging import setup_logging, get_request_context
from flagengine.utils import metrics

# ---------- Logging ----------
setup_logging(settings.log_level)
logger = logging.getLogger("flagengine")


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Publish the configured feature payload, if any."""
    if not settings.features_path:
        logger.info("No features_path configured, starting with an empty feature set")
    else:
        try:
            feature_store.load_file(settings.features_path)
        except PayloadError:
            logger.exception("Failed to load feature payload on startup")
    yield


# ---------- FastAPI App ----------
app = FastAPI(title="Feature Evaluation Engine", version="0.1.0", lifespan=lifespan)

# ---------- Middleware ----------
app.add_middleware(metrics.MetricsMiddleware)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Structured logging for all requests/responses."""
    start_time = time.time()
    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        # Only log errors with duration
        if response.status_code >= 400:
            ctx = get_request_context(request, duration_ms=duration_ms)
            ctx["status"] = response.status_code
            logger.info("Request completed with error", extra=ctx)
        return response
    except Exception:
        duration_ms = (time.time() - start_time) * 1000
        ctx = get_request_context(request, duration_ms=duration_ms)
        logger.exception("Unhandled exception during request", extra=ctx)
        raise


# ---------- Routers ----------
app.include_router(health_router.router)
app.include_router(features_router.router)
app.include_router(evaluate_router.router)


# ---------- Prometheus Metrics Endpoint ----------
@app.get("/metrics")
async def metrics_endpoint():
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
