# tests/test_hashing.py
import pytest
from flagengine.services.hashing import fnv1a32, gbhash, in_namespace, in_range


def test_fnv1a32_known_values():
    assert fnv1a32("") == 0x811C9DC5
    assert fnv1a32("a") == 0xE40C292C
    assert fnv1a32("foobar") == 0xBF9CF968


def test_fnv1a32_stays_32_bit():
    h = fnv1a32("a much longer string that wraps the multiplication many times over")
    assert 0 <= h <= 0xFFFFFFFF


@pytest.mark.parametrize(
    "seed,value,version,expected",
    [
        ("", "a", 1, 0.22),
        ("", "b", 1, 0.077),
        ("b", "a", 1, 0.946),
        ("ef", "d", 1, 0.652),
        ("asdf", "", 1, 0.087),
        ("", "a", 2, 0.0216),
        ("", "b", 2, 0.9054),
        ("b", "a", 2, 0.665),
        ("ef", "d", 2, 0.8601),
        ("asdf", "", 2, 0.3294),
    ],
)
def test_gbhash(seed, value, version, expected):
    assert gbhash(seed, value, version) == pytest.approx(expected)


@pytest.mark.parametrize("version", [0, 3, 99, None])
def test_gbhash_unknown_version(version):
    assert gbhash("", "a", version) is None


def test_gbhash_is_deterministic():
    assert gbhash("checkout", "user123", 2) == gbhash("checkout", "user123", 2)
    assert 0 <= gbhash("checkout", "user123", 2) < 1


def test_in_range_is_half_open():
    assert in_range(0.0, (0.0, 0.5))
    assert in_range(0.49, (0.0, 0.5))
    assert not in_range(0.5, (0.0, 0.5))


def test_in_namespace_bounds():
    assert in_namespace("user123", ("ns", 0, 1))
    assert not in_namespace("user123", ("ns", 0, 0))


def test_in_namespace_uses_prefixed_seed():
    n = gbhash("__ns", "user123", 1)
    assert in_namespace("user123", ("ns", n, 1))
    assert not in_namespace("user123", ("ns", 0, n))
