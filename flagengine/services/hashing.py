# flagengine/services/hashing.py
from typing import Any, Optional, Sequence, Tuple

FNV32_OFFSET_BASIS = 0x811C9DC5
FNV32_PRIME = 0x01000193
UINT32_MASK = 0xFFFFFFFF


def fnv1a32(value: str) -> int:
    """
    32-bit FNV-1a over the characters of `value`.
    Multiplication wraps at 2**32 so the result is always an unsigned 32-bit int.
    """
    h = FNV32_OFFSET_BASIS
    for ch in value:
        h ^= ord(ch)
        h = (h * FNV32_PRIME) & UINT32_MASK
    return h


def gbhash(seed: Any, value: Any, version: Any) -> Optional[float]:
    """
    Deterministically map (seed, value) into [0, 1).

    - version 1: fnv1a32(value + seed), 3 decimal places
    - version 2: fnv1a32 of the decimal string of fnv1a32(seed + value), 4 decimal places
    Any other version returns None: the caller cannot hash and must exclude the subject.
    """
    seed = str(seed)
    value = str(value)
    if version == 2:
        n = fnv1a32(str(fnv1a32(seed + value)))
        return (n % 10000) / 10000
    if version == 1:
        n = fnv1a32(value + seed)
        return (n % 1000) / 1000
    return None


def in_range(n: float, range_: Sequence[float]) -> bool:
    """Half-open interval test: range_[0] <= n < range_[1]."""
    return range_[0] <= n < range_[1]


def in_namespace(hash_value: str, namespace: Tuple[str, float, float]) -> bool:
    # Namespaces always hash with version 1 on a "__"-prefixed seed
    n = gbhash("__" + namespace[0], hash_value, 1)
    if n is None:
        return False
    return namespace[1] <= n < namespace[2]
