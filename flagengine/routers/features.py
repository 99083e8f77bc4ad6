# flagengine/routers/features.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from flagengine.deps import get_feature_store
from flagengine.schemas import FeaturesOut, PayloadIn
from flagengine.services.feature_store import FeatureStore, PayloadError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/features", tags=["features"])


# -------------------------
# PUBLISH PAYLOAD
# -------------------------
@router.put("", response_model=FeaturesOut)
async def publish_features(payload: PayloadIn, store: FeatureStore = Depends(get_feature_store)):
    """Replace the current feature snapshot with a new payload."""
    try:
        snapshot = store.publish(payload.model_dump(by_alias=True))
    except PayloadError as e:
        logger.error(f"Rejected feature payload: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return FeaturesOut(features=sorted(snapshot.features), saved_groups=len(snapshot.saved_groups))


# -------------------------
# LIST FEATURES
# -------------------------
@router.get("", response_model=FeaturesOut)
async def list_features(store: FeatureStore = Depends(get_feature_store)):
    snapshot = store.snapshot()
    return FeaturesOut(features=sorted(snapshot.features), saved_groups=len(snapshot.saved_groups))
