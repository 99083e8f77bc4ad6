# flagengine/routers/evaluate.py
import logging

from fastapi import APIRouter, Depends, status

from flagengine.deps import EvaluatorFactory, get_evaluator_factory
from flagengine.schemas import EvaluateRequest, ExperimentResult, FeatureResult, RunRequest
from flagengine.utils.logging import get_evaluation_context
from flagengine.utils.metrics import EVALUATION_COUNT, EXPERIMENT_RUN_COUNT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["evaluate"])


@router.post(
    "/evaluate",
    response_model=FeatureResult,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
async def evaluate(body: EvaluateRequest, make_evaluator: EvaluatorFactory = Depends(get_evaluator_factory)):
    """
    Evaluate a feature for the given attributes.
    Unknown features answer with source "unknownFeature", never 404.
    """
    evaluator = make_evaluator(body.attributes, body.forced_variations, body.url)
    result = evaluator.eval_feature(body.feature_key)

    EVALUATION_COUNT.labels(source=result.source).inc()
    experiment_key = result.experiment.key if result.experiment else None
    logger.debug(
        "Feature evaluated",
        extra=get_evaluation_context(body.feature_key, result.source, experiment_key),
    )
    return result


@router.post(
    "/run",
    response_model=ExperimentResult,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
async def run(body: RunRequest, make_evaluator: EvaluatorFactory = Depends(get_evaluator_factory)):
    """Assign the subject to an explicitly declared experiment."""
    evaluator = make_evaluator(body.attributes, body.forced_variations, body.url)
    result = evaluator.run(body.experiment)

    EXPERIMENT_RUN_COUNT.labels(in_experiment=str(result.in_experiment).lower()).inc()
    return result
