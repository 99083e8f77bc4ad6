# deps.py
from typing import Any, Dict

from fastapi import Depends

from flagengine.config import settings
from flagengine.services.feature_store import FeatureStore
from flagengine.services.flag_eval import EvaluationOptions, Evaluator
from flagengine.services.sticky_bucket import StickyBucketService, sticky_bucket_service

# -------------------------
# Feature store (one per process)
# -------------------------
feature_store = FeatureStore(decryption_key=settings.decryption_key)


def get_feature_store() -> FeatureStore:
    return feature_store


def get_sticky_bucket_service() -> StickyBucketService:
    return sticky_bucket_service


# -------------------------
# Evaluator factory, one Evaluator per request
# -------------------------
class EvaluatorFactory:
    def __init__(self, store: FeatureStore, sticky_service: StickyBucketService):
        self.store = store
        self.sticky_service = sticky_service

    def __call__(
        self,
        attributes: Dict[str, Any],
        forced_variations: Dict[str, int],
        url: str = "",
    ) -> Evaluator:
        options = EvaluationOptions(
            enabled=settings.enabled,
            qa_mode=settings.qa_mode,
            sticky_bucketing=settings.sticky_bucketing,
            url=url,
        )
        return Evaluator(
            self.store.snapshot(),
            attributes,
            forced_variations=forced_variations,
            options=options,
            sticky_bucket_service=self.sticky_service,
        )


def get_evaluator_factory(
    store: FeatureStore = Depends(get_feature_store),
    sticky_service: StickyBucketService = Depends(get_sticky_bucket_service),
) -> EvaluatorFactory:
    return EvaluatorFactory(store, sticky_service)
