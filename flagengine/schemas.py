# flagengine/schemas.py
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, computed_field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """JSON uses camelCase keys, Python uses snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True
    )


# --- Payload building blocks ---
class VariationMeta(CamelModel):
    model_config = ConfigDict(extra="allow")

    key: Optional[str] = None
    name: Optional[str] = None
    passthrough: bool = False


class Filter(CamelModel):
    seed: str = ""
    ranges: List[Tuple[float, float]] = []
    hash_version: int = 2
    attribute: str = "id"


class ParentCondition(CamelModel):
    id: str
    condition: Optional[Dict[str, Any]] = None
    gate: bool = False


# --- Rules: a ForceRule carries "force", an ExperimentRule carries "variations" ---
class RuleBase(CamelModel):
    id: str = ""
    condition: Optional[Dict[str, Any]] = None
    parent_conditions: Optional[List[ParentCondition]] = None
    coverage: Optional[float] = None
    hash_attribute: Optional[str] = "id"
    fallback_attribute: Optional[str] = None
    hash_version: Optional[int] = None
    seed: Optional[str] = None
    filters: Optional[List[Filter]] = None


class ForceRule(RuleBase):
    force: Any = None
    range: Optional[Tuple[float, float]] = None


class ExperimentRule(RuleBase):
    variations: List[Any]
    key: Optional[str] = None
    weights: Optional[List[float]] = None
    ranges: Optional[List[Tuple[float, float]]] = None
    namespace: Optional[Tuple[str, float, float]] = None
    meta: Optional[List[VariationMeta]] = None
    name: Optional[str] = None
    phase: Optional[str] = None
    bucket_version: Optional[int] = None
    min_bucket_version: Optional[int] = None
    disable_sticky_bucketing: bool = False


Rule = Union[ForceRule, ExperimentRule]


def parse_rule(raw: Any) -> Optional[Rule]:
    """Tag a raw rule by the key it carries; malformed rules become None."""
    if not isinstance(raw, dict):
        return None
    try:
        if "force" in raw:
            return ForceRule.model_validate(raw)
        if "variations" in raw:
            return ExperimentRule.model_validate(raw)
    except ValidationError as e:
        logger.warning("Dropping malformed rule %s: %s", raw.get("id", ""), e.errors()[:1])
        return None
    logger.warning("Dropping rule %s without force or variations", raw.get("id", ""))
    return None


class Feature(CamelModel):
    default_value: Any = None
    rules: List[Rule] = []

    @field_validator("rules", mode="before")
    @classmethod
    def _parse_rules(cls, value: Any) -> List[Rule]:
        if not isinstance(value, list):
            return []
        parsed = [parse_rule(r) for r in value]
        return [r for r in parsed if r is not None]

    @classmethod
    def from_raw(cls, raw: Any) -> "Feature":
        """Objects are feature definitions; anything else is a raw scalar feature value."""
        if isinstance(raw, dict):
            try:
                return cls.model_validate(raw)
            except ValidationError:
                logger.warning("Malformed feature definition, serving its default value only")
                return cls(default_value=raw.get("defaultValue"))
        return cls(default_value=raw)


class FeatureSnapshot(CamelModel):
    """Immutable unit of published features and saved groups."""

    model_config = ConfigDict(frozen=True)

    features: Dict[str, Feature] = {}
    saved_groups: Dict[str, List[Any]] = {}


# --- Explicit experiments and results ---
class Experiment(CamelModel):
    key: str
    variations: List[Any]
    weights: Optional[List[float]] = None
    active: bool = True
    coverage: Optional[float] = None
    ranges: Optional[List[Tuple[float, float]]] = None
    condition: Optional[Dict[str, Any]] = None
    parent_conditions: Optional[List[ParentCondition]] = None
    namespace: Optional[Tuple[str, float, float]] = None
    force: Optional[int] = None
    hash_attribute: Optional[str] = "id"
    fallback_attribute: Optional[str] = None
    hash_version: Optional[int] = None
    meta: Optional[List[VariationMeta]] = None
    filters: Optional[List[Filter]] = None
    seed: Optional[str] = None
    name: Optional[str] = None
    phase: Optional[str] = None
    disable_sticky_bucketing: bool = False
    bucket_version: Optional[int] = None
    min_bucket_version: Optional[int] = None


class ExperimentResult(CamelModel):
    value: Any = None
    variation_id: int = 0
    in_experiment: bool = False
    hash_used: bool = False
    hash_attribute: Optional[str] = None
    hash_value: Any = ""
    feature_id: Optional[str] = None
    key: str = "0"
    name: Optional[str] = None
    bucket: Optional[float] = None
    passthrough: bool = False
    sticky_bucket_used: bool = False


class FeatureResult(CamelModel):
    key: str = ""
    value: Any = None
    source: str
    rule_id: str = ""
    variation_id: Optional[int] = None
    sticky_bucket_used: bool = False
    experiment: Optional[Experiment] = None
    experiment_result: Optional[ExperimentResult] = None

    @computed_field
    @property
    def on(self) -> bool:
        return bool(self.value)

    @computed_field
    @property
    def off(self) -> bool:
        return not self.on


# --- HTTP request / response bodies ---
class PayloadIn(CamelModel):
    features: Optional[Dict[str, Any]] = None
    saved_groups: Optional[Dict[str, List[Any]]] = None
    encrypted_features: Optional[str] = None
    encrypted_saved_groups: Optional[str] = None


class FeaturesOut(CamelModel):
    features: List[str]
    saved_groups: int


class EvaluateRequest(CamelModel):
    feature_key: str
    attributes: Dict[str, Any] = {}
    forced_variations: Dict[str, int] = {}
    url: str = ""


class RunRequest(CamelModel):
    experiment: Experiment
    attributes: Dict[str, Any] = {}
    forced_variations: Dict[str, int] = {}
    url: str = ""
