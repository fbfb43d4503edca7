"""
API tests for the model hub and recommendation service.

The application is built around an injected ServiceContainer with a stub
loader, a temporary cache and the sample catalog, so no network or real
artifacts are touched.
"""

import pytest
from fastapi.testclient import TestClient

from modelhub.errors import LoadFailureError, UnsupportedFormatError
from learnrec.api import create_app
from learnrec.container import ServiceContainer

from tests.utils.helpers import StubLoader


def build_container(hub_config, catalog, clock, loader=None) -> ServiceContainer:
    return ServiceContainer(
        hub_config=hub_config,
        catalog=catalog,
        loader=loader or StubLoader(),
        enable_scheduler=False,
        clock=clock,
    )


@pytest.fixture
def client(hub_config, catalog, clock):
    app = create_app(build_container(hub_config, catalog, clock))
    with TestClient(app) as test_client:
        yield test_client


def content_ids(response):
    return [rec["content"]["id"] for rec in response.json()["recommendations"]]


# =======================
# Health & Models
# =======================

class TestHealth:

    def test_health_reports_default_registry(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["models"]["total"] == 4
        assert data["models"]["healthy"] == 0
        assert data["loaded_models"] == []

    def test_uninitialized_service_returns_503(self):
        client = TestClient(create_app())

        assert client.get("/health").status_code == 503


class TestModels:

    def test_list_models(self, client):
        response = client.get("/models")

        assert response.status_code == 200
        ids = [model["metadata"]["id"] for model in response.json()]
        assert len(ids) == 4
        assert "content-recommender-model" in ids

    def test_unknown_model_is_404(self, client):
        assert client.get("/models/nope").status_code == 404
        assert client.post("/models/nope/load").status_code == 404

    def test_load_and_unload(self, client):
        response = client.post("/models/content-recommender-model/load")

        assert response.status_code == 200
        assert response.json()["status"]["is_loaded"] is True
        assert client.get("/models/loaded").json() == {"loaded": ["content-recommender-model"]}

        response = client.post("/models/content-recommender-model/unload")

        assert response.json()["status"]["is_loaded"] is False

    def test_load_failure_is_502(self, hub_config, catalog, clock):
        loader = StubLoader(error=LoadFailureError("connection reset"))
        with TestClient(create_app(build_container(hub_config, catalog, clock, loader))) as client:
            response = client.post("/models/content-recommender-model/load")

            assert response.status_code == 502
            assert client.get("/health").json()["status"] == "degraded"

    def test_unsupported_format_is_422(self, hub_config, catalog, clock):
        loader = StubLoader(error=UnsupportedFormatError("no strategy for onnx"))
        with TestClient(create_app(build_container(hub_config, catalog, clock, loader))) as client:
            assert client.post("/models/cultural-context-model/load").status_code == 422

    def test_load_timeout_is_504(self, hub_config, catalog, clock):
        hub_config.load_timeout_seconds = 0.05
        loader = StubLoader(delay=1.0)
        with TestClient(create_app(build_container(hub_config, catalog, clock, loader))) as client:
            response = client.post("/models/educational-content-model/load")

            assert response.status_code == 504
            assert loader.cancelled == ["educational-content-model"]

    def test_updates_without_feed(self, client):
        assert client.get("/models/updates").json() == {"updates": [], "count": 0}


class TestCache:

    def test_loaded_model_is_cached(self, client):
        client.post("/models/performance-prediction-model/load")

        stats = client.get("/cache/stats").json()

        assert stats["total_models"] == 1
        assert stats["keys"] == ["performance-prediction-model"]

    def test_clear_lru(self, client):
        client.post("/models/performance-prediction-model/load")

        response = client.post("/cache/clear_lru", json={"target_size_bytes": 0})

        assert response.json() == {"removed": 1}
        assert client.get("/cache/stats").json()["total_models"] == 0

    def test_clear_old_rejects_negative_age(self, client):
        assert client.post("/cache/clear_old", json={"max_age_seconds": -1}).status_code == 422


# =======================
# Interactions & Recommendations
# =======================

class TestInteractions:

    def test_track_interaction(self, client):
        response = client.post("/interactions", json={
            "user_id": "u1", "content_id": "m1", "action": "complete", "score": 88,
        })

        assert response.status_code == 200
        assert response.json() == {"tracked": 1}

    def test_invalid_action_is_422(self, client):
        response = client.post("/interactions", json={
            "user_id": "u1", "content_id": "m1", "action": "share",
        })

        assert response.status_code == 422

    def test_batch(self, client):
        response = client.post("/interactions/batch", json={"interactions": [
            {"user_id": "u1", "content_id": "m1", "action": "view"},
            {"user_id": "u2", "content_id": "m2", "action": "like"},
        ]})

        assert response.json() == {"tracked": 2, "submitted": 2}


class TestRecommendations:

    def test_similar(self, client):
        response = client.post("/recommend/similar", json={"content_id": "m1"})

        assert response.status_code == 200
        assert content_ids(response) == ["m2", "m3"]
        assert response.json()["count"] == 2
        assert response.json()["latency_ms"] >= 0

    def test_next_after_interactions(self, client):
        client.post("/interactions", json={"user_id": "u1", "content_id": "m1", "action": "complete"})
        client.post("/interactions", json={"user_id": "u2", "content_id": "m1", "action": "complete"})
        client.post("/interactions", json={"user_id": "u2", "content_id": "m2", "action": "like"})

        response = client.post("/recommend/next", json={"user_id": "u1"})

        assert response.status_code == 200
        assert content_ids(response)[0] == "m2"
        assert "m1" not in content_ids(response)

    def test_utc_timestamp_does_not_break_other_users(self, client):
        client.post("/interactions", json={"user_id": "u1", "content_id": "m1", "action": "complete"})
        client.post("/interactions", json={"user_id": "u2", "content_id": "m1", "action": "complete"})
        client.post("/interactions", json={"user_id": "u2", "content_id": "m2", "action": "like"})

        response = client.post("/interactions", json={
            "user_id": "u3", "content_id": "s1", "action": "view", "timestamp": "2026-10-19T09:00:00Z",
        })
        assert response.status_code == 200

        response = client.post("/recommend/next", json={"user_id": "u1"})

        assert response.json()["count"] > 0
        assert content_ids(response)[0] == "m2"

    def test_next_unknown_content_is_404(self, client):
        response = client.post("/recommend/next", json={"user_id": "u1", "content_id": "missing"})

        assert response.status_code == 404

    def test_difficulty(self, client):
        response = client.post("/recommend/difficulty", json={
            "content_id": "m2", "performance_history": [90, 95],
        })

        assert content_ids(response) == ["m3"]
        assert client.post("/recommend/difficulty", json={"content_id": "zz"}).status_code == 404

    def test_exam(self, client):
        response = client.post("/recommend/exam", json={
            "user_id": "u1", "subject": "Science", "topics": ["Chemistry"], "time_available_minutes": 60,
        })

        assert content_ids(response) == ["s2"]

    def test_explicit_gaps(self, client):
        response = client.post("/recommend/gaps", json={
            "user_id": "u1",
            "gaps": [{"topic": "Chemistry", "subject": "Science", "severity": "high", "priority": 1}],
        })

        assert content_ids(response) == ["s2"]
        assert response.json()["recommendations"][0]["type"] == "gap_filling"

    def test_cold_start(self, client):
        response = client.post("/recommend/cold_start", json={
            "user_id": "new", "grade": 10, "subjects": ["Mathematics"], "limit": 3,
        })

        assert content_ids(response) == ["m1", "m2", "m4"]
        assert response.json()["recommendations"][0]["score"] == pytest.approx(0.9)

    def test_trending(self, client):
        response = client.get("/recommend/trending", params={"limit": 3})

        assert content_ids(response) == ["s1", "m1", "m2"]

    def test_dashboard_and_feed(self, client):
        dashboard = client.get("/recommend/dashboard/u1").json()
        feed = client.get("/recommend/feed/u1", params={"page": 1, "page_size": 2}).json()

        assert set(dashboard) == {"next_content", "gap_filling", "exam_prep", "trending"}
        assert len(feed["items"]) == 2
        assert feed["page"] == 1
