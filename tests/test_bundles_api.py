"""
Bundles API Verification

Tests the POST /api/v1/bundles/generate, GET /api/v1/bundles/search and
GET /api/v1/bundles/{slug}
endpoints with the orchestrator and bundle store replaced through
FastAPI dependency overrides.

Tests cover:
- Successful generation → 200 with gift ideas and permalink
- Preview mode → 200 with concepts and needs_configuration
- Invalid request → 400 with the validation message
- Non-object body → 422
- Concept / selection failure → 502
- Deadline exceeded → 504
- Stored bundle → 200, view counted in the background
- Unknown slug → 404
- No datastore or datastore failure → 503
- Bundle search → 200 with results; short query → []; limit bounds → 422
- Health check

Run with: pytest tests/test_bundles_api.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from giftbundle.agents.state import Concept, GenerationResult, GiftIdea, Product
from giftbundle.api.bundles import get_bundle_store, get_orchestrator
from giftbundle.core.errors import (
    ConceptGenerationError,
    GenerationTimeoutError,
    InvalidRequestError,
    SelectionError,
)
from giftbundle.main import app
from giftbundle.models.bundles import BundleSearchResult, StoredBundle


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

VALID_PAYLOAD = {
    "recipient_description": "My sister who loves plants and true crime podcasts",
    "occasion": "Birthday",
    "humor_style": "pg",
    "min_price": 20,
    "max_price": 80,
}


def _gift_idea() -> GiftIdea:
    return GiftIdea(
        id="gift-1",
        title="Plant Detective",
        tagline="Leaf no clue behind",
        description="For the botanist sleuth.",
        humor_style="pg",
        products=[
            Product(
                id="B000TEST01",
                title="Magnifying Glass Plant Mister",
                price=18.99,
                image_url="https://img/B000TEST01.jpg",
                affiliate_url="https://www.amazon.com/dp/B000TEST01?tag=test-20",
            ),
        ],
    )


def _stored_bundle() -> StoredBundle:
    return StoredBundle(
        slug="plant-detective-ab2c",
        recipient_description=VALID_PAYLOAD["recipient_description"],
        occasion="Birthday",
        humor_style="pg",
        min_price=20,
        max_price=80,
        price_range="mid",
        seo_title="Gift Ideas for My sister",
        view_count=3,
        gift_ideas=[_gift_idea()],
    )


def _search_result() -> BundleSearchResult:
    return BundleSearchResult(
        slug="plant-detective-ab2c",
        title="Gift Ideas for My sister",
        description=VALID_PAYLOAD["recipient_description"],
        occasion="Birthday",
        similarity=0.87,
        url="http://localhost:8000/plant-detective-ab2c",
        product_images=["https://img/B000TEST01.jpg"],
    )


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.generate = AsyncMock()
    return mock


@pytest.fixture
def store():
    mock = MagicMock()
    mock.fetch = AsyncMock(return_value=_stored_bundle())
    mock.record_view = AsyncMock()
    mock.search = AsyncMock(return_value=[_search_result()])
    return mock


@pytest.fixture
def client(orchestrator, store):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_bundle_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ===================================================================
# 1. POST /api/v1/bundles/generate
# ===================================================================

class TestGenerateEndpoint:

    def test_success_returns_gift_ideas(self, client, orchestrator):
        orchestrator.generate.return_value = GenerationResult(
            success=True,
            gift_ideas=[_gift_idea()],
            slug="plant-detective-ab2c",
            permalink_url="http://localhost:8000/plant-detective-ab2c",
        )

        resp = client.post("/api/v1/bundles/generate", json=VALID_PAYLOAD)

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["success"] is True
        assert data["gift_ideas"][0]["title"] == "Plant Detective"
        assert data["gift_ideas"][0]["products"][0]["id"] == "B000TEST01"
        assert data["permalink_url"].endswith("/plant-detective-ab2c")
        orchestrator.generate.assert_awaited_once_with(VALID_PAYLOAD)

    def test_preview_mode(self, client, orchestrator):
        orchestrator.generate.return_value = GenerationResult(
            success=False,
            concepts=[Concept(title="Plant Detective", search_queries=["plant mister"])],
            needs_configuration=True,
            message="No products found",
        )

        resp = client.post("/api/v1/bundles/generate", json=VALID_PAYLOAD)

        assert resp.status_code == 200
        data = resp.json()
        assert data["needs_configuration"] is True
        assert data["gift_ideas"] == []
        assert data["concepts"][0]["title"] == "Plant Detective"

    def test_invalid_request_returns_400(self, client, orchestrator):
        orchestrator.generate.side_effect = InvalidRequestError(
            "recipient_description: String should have at least 5 characters"
        )

        resp = client.post("/api/v1/bundles/generate", json={"recipient_description": "abcd"})

        assert resp.status_code == 400
        assert "recipient_description" in resp.json()["detail"]

    def test_non_object_body_returns_422(self, client, orchestrator):
        resp = client.post("/api/v1/bundles/generate", json=["not", "an", "object"])
        assert resp.status_code == 422
        orchestrator.generate.assert_not_called()

    @pytest.mark.parametrize("error", [ConceptGenerationError(), SelectionError()])
    def test_upstream_failure_returns_502(self, client, orchestrator, error):
        orchestrator.generate.side_effect = error
        resp = client.post("/api/v1/bundles/generate", json=VALID_PAYLOAD)
        assert resp.status_code == 502

    def test_timeout_returns_504(self, client, orchestrator):
        orchestrator.generate.side_effect = GenerationTimeoutError(60)
        resp = client.post("/api/v1/bundles/generate", json=VALID_PAYLOAD)
        assert resp.status_code == 504


# ===================================================================
# 2. GET /api/v1/bundles/{slug}
# ===================================================================

class TestGetBundleEndpoint:

    def test_returns_bundle_and_records_view(self, client, store):
        resp = client.get("/api/v1/bundles/plant-detective-ab2c")

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["slug"] == "plant-detective-ab2c"
        assert data["gift_ideas"][0]["products"][0]["price"] == 18.99
        store.fetch.assert_awaited_once_with("plant-detective-ab2c")
        store.record_view.assert_awaited_once_with("plant-detective-ab2c")

    def test_unknown_slug_returns_404(self, client, store):
        store.fetch.return_value = None

        resp = client.get("/api/v1/bundles/missing-0000")

        assert resp.status_code == 404
        store.record_view.assert_not_called()

    def test_datastore_failure_returns_503(self, client, store):
        store.fetch.side_effect = RuntimeError("connection refused")
        resp = client.get("/api/v1/bundles/plant-detective-ab2c")
        assert resp.status_code == 503

    def test_no_datastore_returns_503(self, client):
        app.dependency_overrides[get_bundle_store] = lambda: None
        resp = client.get("/api/v1/bundles/plant-detective-ab2c")
        assert resp.status_code == 503


# ===================================================================
# 3. GET /api/v1/bundles/search
# ===================================================================

class TestSearchEndpoint:

    def test_returns_matches(self, client, store):
        resp = client.get("/api/v1/bundles/search", params={"q": "plant lover", "limit": 5})

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data[0]["slug"] == "plant-detective-ab2c"
        assert data[0]["similarity"] == 0.87
        assert data[0]["product_images"] == ["https://img/B000TEST01.jpg"]
        store.search.assert_awaited_once_with("plant lover", 5)
        store.fetch.assert_not_called()

    def test_default_limit(self, client, store):
        client.get("/api/v1/bundles/search", params={"q": "plants"})
        store.search.assert_awaited_once_with("plants", 10)

    @pytest.mark.parametrize("query", ["", "a", "  b  "])
    def test_short_query_returns_empty(self, client, store, query):
        resp = client.get("/api/v1/bundles/search", params={"q": query})

        assert resp.status_code == 200
        assert resp.json() == []
        store.search.assert_not_called()

    def test_missing_query_returns_empty(self, client, store):
        resp = client.get("/api/v1/bundles/search")
        assert resp.status_code == 200
        assert resp.json() == []

    @pytest.mark.parametrize("limit", [0, 51])
    def test_limit_out_of_range_returns_422(self, client, store, limit):
        resp = client.get("/api/v1/bundles/search", params={"q": "plants", "limit": limit})
        assert resp.status_code == 422
        store.search.assert_not_called()

    def test_datastore_failure_returns_503(self, client, store):
        store.search.side_effect = RuntimeError("connection refused")
        resp = client.get("/api/v1/bundles/search", params={"q": "plants"})
        assert resp.status_code == 503

    def test_no_datastore_returns_503(self, client):
        app.dependency_overrides[get_bundle_store] = lambda: None
        resp = client.get("/api/v1/bundles/search", params={"q": "plants"})
        assert resp.status_code == 503


# ===================================================================
# 4. Health check
# ===================================================================

class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
