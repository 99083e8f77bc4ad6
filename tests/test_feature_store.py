# tests/test_feature_store.py
import json

import pytest
from flagengine.schemas import ExperimentRule, ForceRule
from flagengine.services.decrypt import encrypt_payload
from flagengine.services.feature_store import FeatureStore, PayloadError, parse_payload

DECRYPTION_KEY = "Ns04T5n9+59rl2x3SlNHtQ=="


@pytest.fixture
def payload():
    return {
        "features": {
            "banner": {"defaultValue": "blue", "rules": [{"id": "r1", "condition": {"country": "US"}, "force": "red"}]},
            "checkout": {"defaultValue": "a", "rules": [{"variations": ["a", "b"], "coverage": 0.5}]},
            "limit": 10,
        },
        "savedGroups": {"testers": ["u1", "u2"]},
    }


def test_parse_payload(payload):
    snapshot = parse_payload(payload)
    assert sorted(snapshot.features) == ["banner", "checkout", "limit"]
    assert isinstance(snapshot.features["banner"].rules[0], ForceRule)
    assert isinstance(snapshot.features["checkout"].rules[0], ExperimentRule)
    assert snapshot.features["checkout"].rules[0].coverage == 0.5
    assert snapshot.features["limit"].default_value == 10
    assert snapshot.saved_groups == {"testers": ["u1", "u2"]}


def test_parse_numeric_seeds_as_strings():
    snapshot = parse_payload(
        {
            "features": {
                "f": {
                    "rules": [
                        {"force": "on", "seed": 123, "coverage": 1},
                        {"variations": [0, 1], "seed": 7, "filters": [{"seed": 9, "ranges": [[0, 1]]}]},
                    ]
                }
            }
        }
    )
    force_rule, experiment_rule = snapshot.features["f"].rules
    assert force_rule.seed == "123"
    assert experiment_rule.seed == "7"
    assert experiment_rule.filters[0].seed == "9"


def test_parse_empty_payload():
    snapshot = parse_payload({})
    assert snapshot.features == {}
    assert snapshot.saved_groups == {}


@pytest.mark.parametrize(
    "bad",
    [
        [],
        {"features": ["not", "a", "map"]},
        {"features": {}, "savedGroups": {"testers": "u1"}},
    ],
)
def test_invalid_payload(bad):
    with pytest.raises(PayloadError):
        parse_payload(bad)


def test_encrypted_features(payload):
    encrypted = {
        "encryptedFeatures": encrypt_payload(json.dumps(payload["features"]), DECRYPTION_KEY),
        "encryptedSavedGroups": encrypt_payload(json.dumps(payload["savedGroups"]), DECRYPTION_KEY),
    }
    snapshot = parse_payload(encrypted, DECRYPTION_KEY)
    assert sorted(snapshot.features) == ["banner", "checkout", "limit"]
    assert snapshot.saved_groups["testers"] == ["u1", "u2"]


def test_encrypted_features_without_key(payload):
    encrypted = {"encryptedFeatures": encrypt_payload(json.dumps(payload["features"]), DECRYPTION_KEY)}
    with pytest.raises(PayloadError, match="no decryption key"):
        parse_payload(encrypted)


def test_encrypted_features_bad_ciphertext():
    with pytest.raises(PayloadError, match="decrypt"):
        parse_payload({"encryptedFeatures": "garbage"}, DECRYPTION_KEY)


def test_encrypted_features_not_json():
    encrypted = {"encryptedFeatures": encrypt_payload("{not json", DECRYPTION_KEY)}
    with pytest.raises(PayloadError, match="JSON"):
        parse_payload(encrypted, DECRYPTION_KEY)


def test_publish_swaps_snapshot(payload):
    store = FeatureStore()
    before = store.snapshot()
    published = store.publish(payload)

    assert store.snapshot() is published
    assert before.features == {}
    assert "banner" in store.snapshot().features


def test_failed_publish_keeps_previous_snapshot(payload):
    store = FeatureStore()
    good = store.publish(payload)
    with pytest.raises(PayloadError):
        store.publish({"features": "broken"})
    assert store.snapshot() is good


def test_load_file(tmp_path, payload):
    path = tmp_path / "features.json"
    path.write_text(json.dumps(payload))
    store = FeatureStore()
    snapshot = store.load_file(str(path))
    assert "checkout" in snapshot.features


def test_load_file_errors(tmp_path):
    store = FeatureStore()
    with pytest.raises(PayloadError):
        store.load_file(str(tmp_path / "missing.json"))

    path = tmp_path / "bad.json"
    path.write_text("{")
    with pytest.raises(PayloadError):
        store.load_file(str(path))


def test_clear(payload):
    store = FeatureStore()
    store.publish(payload)
    store.clear()
    assert store.snapshot().features == {}
