# flagengine/routers/health.py
from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse

from flagengine.config import settings
from flagengine.deps import get_feature_store
from flagengine.services.feature_store import FeatureStore

router = APIRouter()


@router.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    """Liveness check"""
    return "ok"


@router.get("/readyz", response_class=PlainTextResponse)
async def readyz(store: FeatureStore = Depends(get_feature_store)):
    """Ready once the configured payload (if any) has been published"""
    if settings.features_path and not store.snapshot().features:
        return PlainTextResponse("not ready", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return "ready"
