# flag_eval.py

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel

from flagengine.schemas import (
    Experiment,
    ExperimentResult,
    ExperimentRule,
    FeatureResult,
    FeatureSnapshot,
    Filter,
    ForceRule,
    ParentCondition,
)
from flagengine.services.bucketing import choose_variation, get_bucket_ranges
from flagengine.services.conditions import eval_condition
from flagengine.services.hashing import gbhash, in_namespace, in_range
from flagengine.services.sticky_bucket import (
    StickyBucketResolver,
    StickyBucketService,
    sticky_bucket_key,
)

logger = logging.getLogger(__name__)

ExperimentCallback = Callable[[Experiment, ExperimentResult], None]


class EvaluationOptions(BaseModel):
    enabled: bool = True
    qa_mode: bool = False
    url: str = ""
    sticky_bucketing: bool = True


def get_query_string_override(key: str, url: str, num_variations: int) -> Optional[int]:
    """
    Variation forced through the URL, e.g. ?my-experiment=1.
    Returns None unless the value is an integer in [0, num_variations).
    """
    if not url:
        return None
    query = urlparse(url).query
    if not query:
        return None
    values = parse_qs(query).get(key)
    if not values or not (values[0].isascii() and values[0].isdecimal()):
        return None
    variation = int(values[0])
    if variation >= num_variations:
        return None
    return variation


def _hash_string(value: Any) -> str:
    """String form of an attribute value as used for hashing and sticky keys."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class Evaluator:
    """
    Evaluates features and experiments for one subject.

    An Evaluator is bound to one evaluation session: a snapshot of features and
    saved groups, one attribute set, and its own sticky-bucket document cache.
    Create a new one per request; never share one across subjects.
    """

    def __init__(
        self,
        snapshot: FeatureSnapshot,
        attributes: Optional[Dict[str, Any]] = None,
        *,
        forced_variations: Optional[Dict[str, int]] = None,
        options: Optional[EvaluationOptions] = None,
        sticky_bucket_service: Optional[StickyBucketService] = None,
        sticky_bucket_docs: Optional[Dict[str, Dict[str, Any]]] = None,
        on_experiment_viewed: Optional[ExperimentCallback] = None,
    ):
        self.snapshot = snapshot
        self.attributes = attributes or {}
        self.forced_variations = forced_variations or {}
        self.options = options or EvaluationOptions()
        self.on_experiment_viewed = on_experiment_viewed
        self.sticky: Optional[StickyBucketResolver] = None
        if sticky_bucket_service is not None and self.options.sticky_bucketing:
            self.sticky = StickyBucketResolver(sticky_bucket_service, sticky_bucket_docs)

    # ---------- Public API ----------
    def eval_feature(self, key: str) -> FeatureResult:
        return self._eval_feature(key, [])

    def is_on(self, key: str) -> bool:
        return self.eval_feature(key).on

    def is_off(self, key: str) -> bool:
        return self.eval_feature(key).off

    def get_feature_value(self, key: str, fallback: Any = None) -> Any:
        value = self.eval_feature(key).value
        return fallback if value is None else value

    def run(self, experiment: Experiment) -> ExperimentResult:
        """Assign the subject to an explicitly declared (non-feature) experiment."""
        return self._run_experiment(experiment, stack=[])

    # ---------- Features ----------
    def _eval_feature(self, key: str, stack: List[str]) -> FeatureResult:
        """
        Walk the feature's rules top to bottom; the first rule that commits wins.
        `stack` holds the keys currently being evaluated so prerequisite cycles end
        in a cyclicPrerequisite result instead of unbounded recursion.
        """
        feature = self.snapshot.features.get(key)
        if feature is None:
            logger.warning("Unknown feature %s", key)
            return FeatureResult(key=key, source="unknownFeature")

        if key in stack:
            logger.warning("Cyclic prerequisite detected, stack: %s", stack)
            return FeatureResult(key=key, source="cyclicPrerequisite")

        stack.append(key)
        try:
            for rule in feature.rules:
                if rule.parent_conditions:
                    verdict = self._eval_prereqs(rule.parent_conditions, stack)
                    if verdict == "cyclic":
                        return FeatureResult(key=key, source="cyclicPrerequisite")
                    if verdict == "gate":
                        logger.debug("Gating prerequisite failed, feature %s", key)
                        return FeatureResult(key=key, source="prerequisite", rule_id=rule.id)
                    if verdict == "fail":
                        logger.debug("Skip rule because of failing prerequisite, feature %s", key)
                        continue

                if rule.condition and not eval_condition(
                    self.attributes, rule.condition, self.snapshot.saved_groups
                ):
                    logger.debug("Skip rule because of failed condition, feature %s", key)
                    continue

                if isinstance(rule, ForceRule):
                    if not self._is_included_in_rollout(rule, key):
                        logger.debug("Skip rule because user not included in rollout, feature %s", key)
                        continue
                    logger.debug("Force value from rule, feature %s", key)
                    return FeatureResult(key=key, value=rule.force, source="force", rule_id=rule.id)

                experiment = self._experiment_from_rule(rule, key)
                result = self._run_experiment(experiment, feature_id=key, stack=stack)
                if not result.in_experiment:
                    logger.debug("Skip rule because user not included in experiment, feature %s", key)
                    continue
                if result.passthrough:
                    logger.debug("Passthrough variation, continue to next rule, feature %s", key)
                    continue

                return FeatureResult(
                    key=key,
                    value=result.value,
                    source="experiment",
                    rule_id=rule.id,
                    variation_id=result.variation_id,
                    sticky_bucket_used=result.sticky_bucket_used,
                    experiment=experiment,
                    experiment_result=result,
                )

            logger.debug("Use default value for feature %s", key)
            return FeatureResult(key=key, value=feature.default_value, source="defaultValue")
        finally:
            stack.pop()

    def _eval_prereqs(self, parent_conditions: List[ParentCondition], stack: List[str]) -> str:
        """Returns "pass", "fail", "gate" or "cyclic"."""
        for parent in parent_conditions:
            parent_result = self._eval_feature(parent.id, stack)
            if parent_result.source == "cyclicPrerequisite":
                return "cyclic"

            if parent.condition is not None:
                passed = eval_condition(
                    {"value": parent_result.value}, parent.condition, self.snapshot.saved_groups
                )
            else:
                passed = parent_result.on
            if not passed:
                return "gate" if parent.gate else "fail"
        return "pass"

    def _is_included_in_rollout(self, rule: ForceRule, feature_key: str) -> bool:
        uses_hash = (
            rule.coverage is not None
            or rule.range is not None
            or bool(rule.filters)
            or rule.hash_version not in (None, 1)
        )
        if not uses_hash:
            return True

        _, hash_value = self._get_hash_value(rule.hash_attribute, rule.fallback_attribute)
        if hash_value == "":
            return False

        if rule.filters and self._is_filtered_out(rule.filters):
            return False
        if rule.range is None and rule.coverage is None:
            return True

        n = gbhash(rule.seed or feature_key, hash_value, rule.hash_version or 1)
        if n is None:
            return False
        if rule.range is not None:
            return in_range(n, rule.range)
        return n <= rule.coverage

    @staticmethod
    def _experiment_from_rule(rule: ExperimentRule, feature_key: str) -> Experiment:
        # condition and parent conditions were already checked by the rule loop
        return Experiment(
            key=rule.key or feature_key,
            variations=rule.variations,
            weights=rule.weights,
            coverage=rule.coverage,
            ranges=rule.ranges,
            namespace=rule.namespace,
            hash_attribute=rule.hash_attribute,
            fallback_attribute=rule.fallback_attribute,
            hash_version=rule.hash_version,
            meta=rule.meta,
            filters=rule.filters,
            seed=rule.seed,
            name=rule.name,
            phase=rule.phase,
            disable_sticky_bucketing=rule.disable_sticky_bucketing,
            bucket_version=rule.bucket_version,
            min_bucket_version=rule.min_bucket_version,
        )

    # ---------- Hashing helpers ----------
    def _get_hash_value(
        self, hash_attribute: Optional[str], fallback_attribute: Optional[str] = None
    ) -> Tuple[str, str]:
        """
        Resolve the attribute used for hashing. Falls back to `fallback_attribute`
        when the primary value is missing or empty; returns the attribute that
        actually resolved.
        """
        attr = hash_attribute or "id"
        value = _hash_string(self.attributes.get(attr))
        if value == "" and fallback_attribute:
            fallback_value = _hash_string(self.attributes.get(fallback_attribute))
            if fallback_value != "":
                return fallback_attribute, fallback_value
        return attr, value

    def _is_filtered_out(self, filters: List[Filter]) -> bool:
        # Every filter must place the subject inside one of its ranges
        for f in filters:
            _, hash_value = self._get_hash_value(f.attribute)
            if hash_value == "":
                return True
            n = gbhash(f.seed, hash_value, f.hash_version)
            if n is None:
                return True
            if not any(in_range(n, r) for r in f.ranges):
                return True
        return False

    # ---------- Experiments ----------
    def _run_experiment(
        self,
        experiment: Experiment,
        feature_id: Optional[str] = None,
        stack: Optional[List[str]] = None,
    ) -> ExperimentResult:
        key = experiment.key
        num_variations = len(experiment.variations)

        # 1. Need at least two variations
        if num_variations < 2:
            logger.warning("Experiment %s has less than 2 variations, skip", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        # 2. Forced by the caller
        forced = self.forced_variations.get(key)
        if forced is not None:
            logger.debug("Force variation %s from context, experiment %s", forced, key)
            return self._experiment_result(experiment, forced, feature_id=feature_id)

        # 3. Globally disabled
        if not self.options.enabled:
            logger.debug("Skip experiment %s because evaluation is disabled", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        # 4. Forced through the URL query string
        qs = get_query_string_override(key, self.options.url, num_variations)
        if qs is not None:
            logger.debug("Force variation %d from URL querystring, experiment %s", qs, key)
            return self._experiment_result(experiment, qs, feature_id=feature_id)

        # 5. Inactive
        if not experiment.active:
            logger.debug("Experiment %s is not active, skip", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        # 6. Hash attribute
        hash_attribute, hash_value = self._get_hash_value(
            experiment.hash_attribute, experiment.fallback_attribute
        )
        if not hash_value:
            logger.debug("Skip experiment %s because hash attribute value is empty", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        assigned = -1
        found_sticky_bucket = False
        use_sticky = self.sticky is not None and not experiment.disable_sticky_bucketing
        if use_sticky:
            primary = experiment.hash_attribute or "id"
            sticky = self.sticky.get_variation(
                key,
                num_variations,
                bucket_version=experiment.bucket_version,
                min_bucket_version=experiment.min_bucket_version,
                meta=experiment.meta,
                hash_attribute=primary,
                hash_value=_hash_string(self.attributes.get(primary)),
                fallback_attribute=experiment.fallback_attribute,
                fallback_value=_hash_string(self.attributes.get(experiment.fallback_attribute))
                if experiment.fallback_attribute
                else None,
            )
            if sticky.version_is_blocked:
                logger.debug("Skip experiment %s because sticky bucket version is blocked", key)
                return self._experiment_result(experiment, feature_id=feature_id, sticky_bucket_used=True)
            if sticky.variation >= 0:
                found_sticky_bucket = True
                assigned = sticky.variation
                logger.debug("Found sticky bucket for experiment %s, variation %s", key, assigned)

        if not found_sticky_bucket:
            # 7. Filters / namespace
            if experiment.filters:
                if self._is_filtered_out(experiment.filters):
                    logger.debug("Skip experiment %s because of filters", key)
                    return self._experiment_result(experiment, feature_id=feature_id)
            elif experiment.namespace and not in_namespace(hash_value, experiment.namespace):
                logger.debug("Skip experiment %s because of namespace", key)
                return self._experiment_result(experiment, feature_id=feature_id)

            # 8. Targeting condition
            if experiment.condition and not eval_condition(
                self.attributes, experiment.condition, self.snapshot.saved_groups
            ):
                logger.debug("Skip experiment %s because user failed the condition", key)
                return self._experiment_result(experiment, feature_id=feature_id)

            # 9. Prerequisites
            if experiment.parent_conditions:
                verdict = self._eval_prereqs(experiment.parent_conditions, stack if stack is not None else [])
                if verdict != "pass":
                    logger.debug("Skip experiment %s because of prerequisite (%s)", key, verdict)
                    return self._experiment_result(experiment, feature_id=feature_id)

        # 10. Hash and bucket
        n = gbhash(experiment.seed or key, hash_value, experiment.hash_version or 1)
        if n is None:
            logger.warning("Skip experiment %s because of invalid hashVersion", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        if not found_sticky_bucket:
            if experiment.coverage is not None and n > experiment.coverage:
                logger.debug("Skip experiment %s because user is not included in coverage", key)
                return self._experiment_result(experiment, feature_id=feature_id)
            ranges = experiment.ranges or get_bucket_ranges(
                num_variations, experiment.coverage, experiment.weights
            )
            assigned = choose_variation(n, ranges)

        if assigned < 0:
            logger.debug("Skip experiment %s because user is not included in the rollout", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        # 11. Explicit force overrides the assignment without enrolling
        if experiment.force is not None:
            logger.debug("Force variation %d in experiment %s", experiment.force, key)
            return self._experiment_result(
                experiment, experiment.force, feature_id=feature_id, in_experiment=False
            )

        # 12. QA mode
        if self.options.qa_mode:
            logger.debug("Skip experiment %s because of QA mode", key)
            return self._experiment_result(experiment, feature_id=feature_id)

        result = self._experiment_result(
            experiment,
            assigned,
            hash_used=True,
            feature_id=feature_id,
            bucket=n,
            sticky_bucket_used=found_sticky_bucket,
        )

        if use_sticky:
            self.sticky.save_assignment(
                hash_attribute,
                hash_value,
                {sticky_bucket_key(key, experiment.bucket_version): result.key},
            )

        if self.on_experiment_viewed is not None:
            try:
                self.on_experiment_viewed(experiment, result)
            except Exception:
                logger.warning("Experiment viewed callback failed, experiment %s", key, exc_info=True)

        logger.debug("Assigned variation %d in experiment %s", assigned, key)
        return result

    def _experiment_result(
        self,
        experiment: Experiment,
        variation_id: int = -1,
        hash_used: bool = False,
        feature_id: Optional[str] = None,
        bucket: Optional[float] = None,
        sticky_bucket_used: bool = False,
        in_experiment: bool = True,
    ) -> ExperimentResult:
        variations = experiment.variations
        if variation_id < 0 or variation_id >= len(variations):
            variation_id = 0
            in_experiment = False

        meta = None
        if experiment.meta and variation_id < len(experiment.meta):
            meta = experiment.meta[variation_id]

        hash_attribute, hash_value = self._get_hash_value(
            experiment.hash_attribute, experiment.fallback_attribute
        )

        return ExperimentResult(
            value=variations[variation_id] if variations else None,
            variation_id=variation_id,
            in_experiment=in_experiment,
            hash_used=hash_used,
            hash_attribute=hash_attribute,
            hash_value=hash_value,
            feature_id=feature_id,
            key=meta.key if meta and meta.key else str(variation_id),
            name=meta.name if meta else None,
            bucket=bucket,
            passthrough=meta.passthrough if meta else False,
            sticky_bucket_used=sticky_bucket_used,
        )
