# flagengine/services/versions.py
import re
from typing import Any

_NUMERIC_PART = re.compile(r"^[0-9]+$")
_PART_SEPARATORS = re.compile(r"[.\-]")


def padded_version(value: Any) -> str:
    """
    Normalize a version-like value so that plain string comparison orders versions.

    "v1.2.3+build.7" -> "    1-    2-    3-~"
    "1.0.0-rc.1"     -> "    1-    0-    0-rc-    1"

    A bare MAJOR.MINOR.PATCH gets a trailing "~" so a release sorts after
    its own pre-release tags ("~" is greater than every ASCII letter).
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not value or not isinstance(value, str):
        value = "0"

    if value[0] in ("v", "V"):
        value = value[1:]
    plus = value.find("+")
    if plus > -1:
        value = value[:plus]

    parts = _PART_SEPARATORS.split(value)
    if len(parts) == 3:
        parts.append("~")

    return "-".join(p.rjust(5, " ") if _NUMERIC_PART.match(p) else p for p in parts)


def compare_versions(a: Any, b: Any) -> int:
    """Return -1, 0 or 1 comparing two version-like values."""
    pa = padded_version(a)
    pb = padded_version(b)
    if pa < pb:
        return -1
    if pa > pb:
        return 1
    return 0
