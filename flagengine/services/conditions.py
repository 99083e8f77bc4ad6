# flagengine/services/conditions.py
"""
Targeting condition matcher.

A condition is a JSON-like dict. Top-level keys are either logical combinators
($and, $or, $nor, $not) or dotted attribute paths mapped to a literal (equality)
or to an operator object such as {"$gte": 18, "$lt": 65}.

Evaluation never raises: malformed conditions, unknown operators and bad
regexes simply fail to match.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from flagengine.services.versions import padded_version

logger = logging.getLogger(__name__)


class _Missing:
    """Resolved value of an attribute path that does not exist."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

# Primitive $elemMatch elements are evaluated as {ELEM_MATCH_KEY: element}.
# Condition authors cannot use "$"-prefixed attribute names, so this never collides.
ELEM_MATCH_KEY = "$elem"

SavedGroups = Dict[str, List[Any]]


def eval_condition(
    attributes: Any, condition: Any, saved_groups: Optional[SavedGroups] = None
) -> bool:
    """
    Return True when `attributes` satisfy `condition`.
    Every top-level key must pass; an empty or non-dict condition always passes.
    """
    if not isinstance(condition, dict) or not condition:
        return True
    saved_groups = saved_groups or {}

    for key, value in condition.items():
        if key == "$or":
            passed = _eval_or(attributes, value, saved_groups)
        elif key == "$nor":
            passed = _eval_nor(attributes, value, saved_groups)
        elif key == "$and":
            passed = _eval_and(attributes, value, saved_groups)
        elif key == "$not":
            passed = not eval_condition(attributes, value, saved_groups)
        else:
            passed = _eval_condition_value(value, get_path(attributes, key), saved_groups)
        if not passed:
            return False
    return True


def _eval_or(attributes: Any, conditions: Any, saved_groups: SavedGroups) -> bool:
    if not isinstance(conditions, list):
        return False
    if not conditions:
        return True
    return any(eval_condition(attributes, c, saved_groups) for c in conditions)


def _eval_nor(attributes: Any, conditions: Any, saved_groups: SavedGroups) -> bool:
    if not isinstance(conditions, list):
        return False
    return not any(eval_condition(attributes, c, saved_groups) for c in conditions)


def _eval_and(attributes: Any, conditions: Any, saved_groups: SavedGroups) -> bool:
    if not isinstance(conditions, list):
        return False
    return all(eval_condition(attributes, c, saved_groups) for c in conditions)


def get_path(attributes: Any, path: str) -> Any:
    """Resolve a dotted path; returns MISSING instead of raising."""
    current = attributes
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            return MISSING
    return current


def get_type(value: Any) -> str:
    if value is None or value is MISSING:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "unknown"


def is_operator_object(obj: Any) -> bool:
    return isinstance(obj, dict) and len(obj) > 0 and all(
        isinstance(k, str) and k.startswith("$") for k in obj
    )


def deep_equal(a: Any, b: Any) -> bool:
    """JSON equality. MISSING and None are equal; bools never equal numbers."""
    if a is MISSING:
        a = None
    if b is MISSING:
        b = None
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list, tuple)) or isinstance(b, (dict, list, tuple)):
        return False
    return a == b


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float))


def _compare(actual: Any, expected: Any) -> Optional[int]:
    """
    Three-way comparison used by $eq/$ne/$lt/$lte/$gt/$gte.
    Returns None when the two values cannot be ordered.
    """
    if actual is MISSING:
        return None
    try:
        if _is_number(actual) and not _is_number(expected):
            expected = 0 if expected is None else float(expected)
        elif _is_number(expected) and not _is_number(actual):
            actual = 0 if actual is None else float(actual)
        elif not (
            (_is_number(actual) and _is_number(expected))
            or (isinstance(actual, str) and isinstance(expected, str))
        ):
            return None
        if actual > expected:
            return 1
        if actual < expected:
            return -1
        return 0
    except (TypeError, ValueError):
        return None


def _is_in(candidates: Any, attribute_value: Any) -> bool:
    if not isinstance(candidates, (list, tuple)):
        return False
    if isinstance(attribute_value, (list, tuple)):
        return any(_contains(candidates, v) for v in attribute_value)
    return _contains(candidates, attribute_value)


def _contains(candidates: Any, value: Any) -> bool:
    return any(deep_equal(c, value) for c in candidates)


def _eval_condition_value(condition_value: Any, attribute_value: Any, saved_groups: SavedGroups) -> bool:
    if is_operator_object(condition_value):
        for operator, expected in condition_value.items():
            if not _eval_operator(operator, attribute_value, expected, saved_groups):
                return False
        return True
    return deep_equal(attribute_value, condition_value)


def _elem_match(condition: Any, attribute_value: Any, saved_groups: SavedGroups) -> bool:
    if not isinstance(attribute_value, (list, tuple)):
        return False
    for item in attribute_value:
        if isinstance(item, dict) and not is_operator_object(condition):
            if eval_condition(item, condition, saved_groups):
                return True
        elif eval_condition({ELEM_MATCH_KEY: item}, {ELEM_MATCH_KEY: condition}, saved_groups):
            return True
    return False


def _eval_operator(operator: str, actual: Any, expected: Any, saved_groups: SavedGroups) -> bool:
    if operator == "$eq":
        cmp = _compare(actual, expected)
        return deep_equal(actual, expected) if cmp is None else cmp == 0
    if operator == "$ne":
        return not _eval_operator("$eq", actual, expected, saved_groups)
    if operator in ("$lt", "$lte", "$gt", "$gte"):
        cmp = _compare(actual, expected)
        if cmp is None:
            return False
        if operator == "$lt":
            return cmp < 0
        if operator == "$lte":
            return cmp <= 0
        if operator == "$gt":
            return cmp > 0
        return cmp >= 0
    if operator in ("$veq", "$vne", "$vlt", "$vlte", "$vgt", "$vgte"):
        a = padded_version(None if actual is MISSING else actual)
        b = padded_version(expected)
        if operator == "$veq":
            return a == b
        if operator == "$vne":
            return a != b
        if operator == "$vlt":
            return a < b
        if operator == "$vlte":
            return a <= b
        if operator == "$vgt":
            return a > b
        return a >= b
    if operator == "$in":
        return isinstance(expected, list) and _is_in(expected, actual)
    if operator == "$nin":
        return isinstance(expected, list) and not _is_in(expected, actual)
    if operator == "$inGroup":
        if not isinstance(expected, str) or expected not in saved_groups:
            return False
        return _is_in(saved_groups[expected] or [], actual)
    if operator == "$notInGroup":
        if not isinstance(expected, str):
            return False
        if expected not in saved_groups:
            return True
        return not _is_in(saved_groups[expected] or [], actual)
    if operator == "$exists":
        exists = actual is not MISSING and actual is not None
        return exists if expected else not exists
    if operator == "$type":
        return get_type(actual) == expected
    if operator == "$regex":
        if not isinstance(actual, str):
            return False
        try:
            return re.search(expected, actual) is not None
        except (re.error, TypeError):
            logger.debug("Invalid $regex pattern %r", expected)
            return False
    if operator == "$elemMatch":
        return _elem_match(expected, actual, saved_groups)
    if operator == "$size":
        if not isinstance(actual, (list, tuple)):
            return False
        return _eval_condition_value(expected, len(actual), saved_groups)
    if operator == "$all":
        if not isinstance(actual, (list, tuple)) or not isinstance(expected, list):
            return False
        return all(
            any(_eval_condition_value(required, item, saved_groups) for item in actual)
            for required in expected
        )
    if operator == "$not":
        return not _eval_condition_value(expected, actual, saved_groups)

    logger.debug("Unknown condition operator %s", operator)
    return False
