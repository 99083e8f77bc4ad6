# conftest.py
import sys
import os
import copy
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from flagengine.deps import feature_store
from flagengine.main import app
from flagengine.schemas import FeatureSnapshot
from flagengine.services.feature_store import parse_payload
from flagengine.services.flag_eval import Evaluator
from flagengine.services.sticky_bucket import InMemoryStickyBucketService, sticky_bucket_service


# -----------------------------
# Engine helpers
# -----------------------------
@pytest.fixture
def make_snapshot():
    def _make(features=None, saved_groups=None) -> FeatureSnapshot:
        return parse_payload(
            {"features": copy.deepcopy(features or {}), "savedGroups": saved_groups or {}}
        )
    return _make


@pytest.fixture
def make_evaluator(make_snapshot):
    def _make(features=None, attributes=None, saved_groups=None, **kwargs) -> Evaluator:
        return Evaluator(make_snapshot(features, saved_groups), attributes or {}, **kwargs)
    return _make


@pytest.fixture
def sticky_service():
    return InMemoryStickyBucketService()


# -----------------------------
# Reset process-wide state between tests
# -----------------------------
@pytest.fixture(autouse=True)
def reset_state():
    feature_store.clear()
    sticky_bucket_service.clear()
    yield
    feature_store.clear()
    sticky_bucket_service.clear()


# -----------------------------
# HTTP client
# -----------------------------
@pytest_asyncio.fixture(scope="function")
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        client.headers.update({"X-Request-ID": "test"})
        yield client
