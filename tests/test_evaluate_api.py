# tests/test_evaluate_api.py
import pytest
import pytest_asyncio

# -----------------------------
# Fixtures
# -----------------------------

PAYLOAD = {
    "features": {
        "checkout_new": {
            "defaultValue": False,
            "rules": [{"id": "r1", "condition": {"country": "US"}, "force": True}],
        },
        "checkout": {
            "defaultValue": "default",
            "rules": [{"id": "exp1", "seed": "b", "variations": ["control", "treatment"]}],
        },
        "beta": {
            "defaultValue": False,
            "rules": [{"condition": {"id": {"$inGroup": "testers"}}, "force": True}],
        },
    },
    "savedGroups": {"testers": ["a"]},
}


@pytest_asyncio.fixture
async def published(client):
    r = await client.put("/v1/features", json=PAYLOAD)
    assert r.status_code == 200
    return r.json()


async def evaluate(client, feature_key, attributes=None, **extra):
    body = {"featureKey": feature_key, "attributes": attributes or {}}
    body.update(extra)
    r = await client.post("/v1/evaluate", json=body)
    assert r.status_code == 200
    return r.json()

# -----------------------------
# Publishing
# -----------------------------

@pytest.mark.asyncio
async def test_publish_and_list(client):
    r = await client.put("/v1/features", json=PAYLOAD)
    assert r.status_code == 200
    assert r.json() == {"features": ["beta", "checkout", "checkout_new"], "savedGroups": 1}

    r = await client.get("/v1/features")
    assert r.status_code == 200
    assert r.json()["features"] == ["beta", "checkout", "checkout_new"]


@pytest.mark.asyncio
async def test_publish_replaces_previous_payload(client):
    await client.put("/v1/features", json=PAYLOAD)
    await client.put("/v1/features", json={"features": {"only": True}})
    r = await client.get("/v1/features")
    assert r.json() == {"features": ["only"], "savedGroups": 0}


@pytest.mark.asyncio
async def test_publish_rejects_undecryptable_payload(client):
    r = await client.put("/v1/features", json={"encryptedFeatures": "garbage"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_publish_rejects_malformed_body(client):
    r = await client.put("/v1/features", json={"features": {}, "savedGroups": {"testers": "a"}})
    assert r.status_code == 422

# -----------------------------
# Feature evaluation
# -----------------------------

@pytest.mark.asyncio
async def test_evaluate_force_rule(client, published):
    result = await evaluate(client, "checkout_new", {"country": "US"})
    assert result["value"] is True
    assert result["source"] == "force"
    assert result["ruleId"] == "r1"
    assert result["key"] == "checkout_new"
    assert result["on"] is True
    assert result["off"] is False

    result = await evaluate(client, "checkout_new", {"country": "CA"})
    assert result["value"] is False
    assert result["source"] == "defaultValue"


@pytest.mark.asyncio
async def test_evaluate_unknown_feature(client, published):
    result = await evaluate(client, "does_not_exist")
    assert result["source"] == "unknownFeature"
    assert result["value"] is None
    assert result["off"] is True
    assert result["key"] == "does_not_exist"


@pytest.mark.asyncio
async def test_evaluate_saved_group(client, published):
    assert (await evaluate(client, "beta", {"id": "a"}))["on"] is True
    assert (await evaluate(client, "beta", {"id": "b"}))["on"] is False


@pytest.mark.asyncio
async def test_evaluate_experiment(client, published):
    result = await evaluate(client, "checkout", {"id": "a"})
    assert result["source"] == "experiment"
    assert result["value"] == "treatment"
    assert result["variationId"] == 1
    assert result["experiment"]["key"] == "checkout"
    assert result["experimentResult"]["inExperiment"] is True
    assert result["experimentResult"]["hashAttribute"] == "id"


@pytest.mark.asyncio
async def test_evaluate_experiment_is_sticky(client, published):
    first = await evaluate(client, "checkout", {"id": "a"})
    second = await evaluate(client, "checkout", {"id": "a"})
    assert first["stickyBucketUsed"] is False
    assert second["stickyBucketUsed"] is True
    assert second["value"] == first["value"]


@pytest.mark.asyncio
async def test_evaluate_forced_variation(client, published):
    result = await evaluate(client, "checkout", {"id": "a"}, forcedVariations={"checkout": 0})
    assert result["value"] == "control"


@pytest.mark.asyncio
async def test_evaluate_url_override(client, published):
    result = await evaluate(client, "checkout", {"id": "a"}, url="https://shop.example.com/?checkout=0")
    assert result["value"] == "control"


@pytest.mark.asyncio
async def test_evaluate_requires_feature_key(client):
    r = await client.post("/v1/evaluate", json={"attributes": {}})
    assert r.status_code == 422

# -----------------------------
# Explicit experiments
# -----------------------------

@pytest.mark.asyncio
async def test_run_experiment(client):
    body = {"experiment": {"key": "exp", "variations": [0, 1], "seed": "b"}, "attributes": {"id": "a"}}
    r = await client.post("/v1/run", json=body)
    assert r.status_code == 200
    result = r.json()
    assert result["inExperiment"] is True
    assert result["hashUsed"] is True
    assert result["variationId"] == 1
    assert result["value"] == 1


@pytest.mark.asyncio
async def test_run_experiment_not_enrolled(client):
    body = {"experiment": {"key": "exp", "variations": [0, 1], "seed": "b", "coverage": 0.5}, "attributes": {"id": "a"}}
    r = await client.post("/v1/run", json=body)
    assert r.status_code == 200
    assert r.json()["inExperiment"] is False
    assert r.json()["value"] == 0


@pytest.mark.asyncio
async def test_run_experiment_invalid_body(client):
    r = await client.post("/v1/run", json={"experiment": {"key": "exp"}})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_settings_switches_reach_evaluator(client, published, monkeypatch):
    from flagengine.config import settings

    monkeypatch.setattr(settings, "qa_mode", True)
    result = await evaluate(client, "checkout", {"id": "a"})
    assert result["source"] == "defaultValue"

    # forced variations still apply in QA mode
    result = await evaluate(client, "checkout", {"id": "a"}, forcedVariations={"checkout": 1})
    assert result["value"] == "treatment"
