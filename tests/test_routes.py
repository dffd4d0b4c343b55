import pytest

from mythilens.api.routes import get_model_client
from mythilens.core.config import settings
from mythilens.main import app
from mythilens.services.model_client import ModelUnavailableError


def discover_payload():
    return {
        "sites": [
            {"name": "Minor shrine", "latitude": 15.3360, "longitude": 76.4600, "popularity_score": 2},
            {"name": "Vittala Temple", "latitude": 15.3430, "longitude": 76.4747, "popularity_score": 10},
            {"name": "Nowhere", "latitude": 200, "longitude": 76.46, "popularity_score": 9},
        ]
    }


class TestHealthAndIdentity:

    def test_health_needs_no_identity(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["profile_store"] == "InMemoryProfileStore"
        assert "X-Request-ID" in response.headers

    def test_profile_requires_identity(self, client):
        response = client.get("/api/profile")
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "IDENTITY_REQUIRED"

    def test_malformed_identity_rejected(self, client):
        response = client.get("/api/profile", headers={"X-User-Id": "ada lovelace; drop"})
        assert response.status_code == 401

    def test_identity_from_cookie(self, client):
        client.cookies.set("mythilens_user", "grace")
        response = client.get("/api/profile")
        assert response.status_code == 200
        assert response.json()["user_id"] == "grace"


class TestPointsAndBadges:

    def test_default_profile(self, client, user_headers):
        body = client.get("/api/profile", headers=user_headers).json()
        assert body == {"user_id": "ada@example.com", "points": 0, "reputation_score": 50.0, "badges": []}

    def test_award_points(self, client, user_headers):
        client.post("/api/points", json={"action": "scan"}, headers=user_headers)
        response = client.post("/api/points", json={"action": "path_completion"}, headers=user_headers)
        assert response.status_code == 200
        assert response.json()["points"] == 60

    def test_unknown_action(self, client, user_headers):
        response = client.post("/api/points", json={"action": "levitate"}, headers=user_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "UNRECOGNIZED_ACTION"

    def test_point_table_is_public(self, client):
        response = client.get("/api/points/table")
        assert response.status_code == 200
        assert response.json()["points"]["helpful_vote"] == 2

    def test_badge_is_idempotent(self, client, user_headers):
        first = client.post("/api/badges", json={"badge": "Temple Trail"}, headers=user_headers).json()
        second = client.post("/api/badges", json={"badge": "Temple Trail"}, headers=user_headers).json()
        assert first["added"] is True
        assert second["added"] is False
        assert second["profile"]["badges"] == ["Temple Trail"]

    def test_blank_badge(self, client, user_headers):
        response = client.post("/api/badges", json={"badge": "   "}, headers=user_headers)
        assert response.status_code == 400

    def test_leaderboard(self, client):
        client.post("/api/points", json={"action": "scan"}, headers={"X-User-Id": "grace"})
        client.post("/api/points", json={"action": "contribution"}, headers={"X-User-Id": "ada"})
        entries = client.get("/api/leaderboard", params={"limit": 10}).json()["entries"]
        assert [(e["rank"], e["user_id"], e["points"]) for e in entries] == [(1, "ada", 25), (2, "grace", 10)]

    def test_leaderboard_lists_only_scorers(self, client, user_headers):
        client.post("/api/badges", json={"badge": "Temple Trail"}, headers={"X-User-Id": "alan"})
        client.post("/api/points", json={"action": "scan"}, headers=user_headers)
        entries = client.get("/api/leaderboard").json()["entries"]
        assert [e["user_id"] for e in entries] == ["ada@example.com"]


class TestReputation:

    def test_requires_admin_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_TOKEN", "s3cret")
        response = client.put("/api/profile/ada/reputation", json={"reputation_score": 90})
        assert response.status_code == 403

    def test_adjusts_reputation(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_TOKEN", "s3cret")
        response = client.put(
            "/api/profile/ada/reputation",
            json={"reputation_score": 90},
            headers={"X-Admin-Token": "s3cret"},
        )
        assert response.status_code == 200
        assert response.json()["reputation_score"] == 90

    @pytest.mark.parametrize("user_id", ["ada:badges", "ada%20lovelace"])
    def test_malformed_user_id_rejected(self, client, monkeypatch, user_id):
        monkeypatch.setattr(settings, "ADMIN_TOKEN", "s3cret")
        response = client.put(
            f"/api/profile/{user_id}/reputation",
            json={"reputation_score": 90},
            headers={"X-Admin-Token": "s3cret"},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_USER_ID"
        assert client.get("/api/leaderboard").json()["entries"] == []

    def test_out_of_range_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_TOKEN", "s3cret")
        response = client.put(
            "/api/profile/ada/reputation",
            json={"reputation_score": 101},
            headers={"X-Admin-Token": "s3cret"},
        )
        assert response.status_code == 422


class TestDiscover:

    def test_ranked_results(self, client, fake_model, user_headers):
        fake_model.response = discover_payload()
        response = client.post(
            "/api/discover",
            json={"latitude": 15.3350, "longitude": 76.4600, "search_radius_km": 5},
            headers=user_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert [r["site"]["name"] for r in body["results"]] == ["Vittala Temple", "Minor shrine"]
        assert body["search_radius_km"] == 5

    def test_default_radius(self, client, fake_model, user_headers):
        fake_model.response = {"sites": []}
        body = client.post("/api/discover", json={"latitude": 15.3, "longitude": 76.4}, headers=user_headers).json()
        assert body["results"] == []
        assert body["search_radius_km"] == settings.DEFAULT_SEARCH_RADIUS_KM

    def test_invalid_user_coordinate(self, client, user_headers):
        response = client.post("/api/discover", json={"latitude": 95, "longitude": 76.4}, headers=user_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_COORDINATE"

    def test_radius_too_large(self, client, user_headers):
        response = client.post(
            "/api/discover",
            json={"latitude": 15.3, "longitude": 76.4, "search_radius_km": 10000},
            headers=user_headers,
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_RADIUS"

    def test_bad_model_payload(self, client, fake_model, user_headers):
        fake_model.response = {"sites": [{"name": "Unscored", "latitude": 15.3, "longitude": 76.4}]}
        response = client.post("/api/discover", json={"latitude": 15.3, "longitude": 76.4}, headers=user_headers)
        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "MODEL_PAYLOAD_INVALID"

    def test_model_down(self, client, fake_model, user_headers):
        fake_model.error = ModelUnavailableError("down")
        response = client.post("/api/discover", json={"latitude": 15.3, "longitude": 76.4}, headers=user_headers)
        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "MODEL_UNAVAILABLE"

    def test_model_not_configured(self, client, user_headers):
        app.dependency_overrides[get_model_client] = lambda: None
        response = client.post("/api/discover", json={"latitude": 15.3, "longitude": 76.4}, headers=user_headers)
        assert response.status_code == 503


class TestNearby:

    def test_nearby(self, client, user_headers):
        response = client.post(
            "/api/nearby",
            json={
                "latitude": 15.3350,
                "longitude": 76.4600,
                "search_radius_km": 5,
                "sites": [
                    {"id": "far", "latitude": 16.0, "longitude": 76.46},
                    {"id": "mid", "latitude": 15.35, "longitude": 76.46},
                    {"id": "near", "latitude": 15.336, "longitude": 76.46},
                ],
            },
            headers=user_headers,
        )
        assert response.status_code == 200
        assert [r["site"]["id"] for r in response.json()["results"]] == ["near", "mid"]


class TestContributions:

    def submission(self):
        return {
            "type": "heritage_site",
            "title": "Stepwell of Hampi",
            "description": "A square stepwell of the Vijayanagara period near the royal enclosure.",
            "location_name": "Hampi, Karnataka",
        }

    def test_approved_contribution(self, client, fake_model, user_headers):
        fake_model.response = {"accuracy_score": 8, "sentiment_score": 9, "approval_recommendation": "approve"}
        response = client.post("/api/contributions", json=self.submission(), headers=user_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["contribution"]["status"] == "approved"
        assert body["points_awarded"] == 25
        assert body["profile"]["points"] == 25

    def test_pending_contribution(self, client, fake_model, user_headers):
        fake_model.response = {"accuracy_score": 9, "sentiment_score": 9, "approval_recommendation": "reject"}
        body = client.post("/api/contributions", json=self.submission(), headers=user_headers).json()
        assert body["contribution"]["status"] == "pending"

    def test_invalid_verdict(self, client, fake_model, user_headers):
        fake_model.response = {"accuracy_score": 9}
        response = client.post("/api/contributions", json=self.submission(), headers=user_headers)
        assert response.status_code == 502
        assert client.get("/api/profile", headers=user_headers).json()["points"] == 0

    def test_request_validation(self, client, user_headers):
        response = client.post("/api/contributions", json={"title": "x"}, headers=user_headers)
        assert response.status_code == 422

    def test_submissions_are_listed_newest_first(self, client, fake_model, user_headers):
        fake_model.response = {"accuracy_score": 8, "sentiment_score": 9, "approval_recommendation": "approve"}
        first = client.post("/api/contributions", json=self.submission(), headers=user_headers).json()
        fake_model.response = {"accuracy_score": 5, "sentiment_score": 9, "approval_recommendation": "approve"}
        second = client.post("/api/contributions", json=self.submission(), headers=user_headers).json()

        response = client.get("/api/contributions", headers=user_headers)
        assert response.status_code == 200
        listed = response.json()["contributions"]
        assert [c["id"] for c in listed] == [second["contribution"]["id"], first["contribution"]["id"]]
        assert [c["status"] for c in listed] == ["pending", "approved"]

        others = client.get("/api/contributions", headers={"X-User-Id": "grace"}).json()
        assert others["contributions"] == []

    def test_listing_requires_identity(self, client):
        assert client.get("/api/contributions").status_code == 401

    def test_out_of_range_coordinate_rejected(self, client, fake_model, user_headers):
        fake_model.response = {"accuracy_score": 8, "sentiment_score": 9, "approval_recommendation": "approve"}
        submission = {**self.submission(), "latitude": 500, "longitude": -999}
        response = client.post("/api/contributions", json=submission, headers=user_headers)
        assert response.status_code == 422
        assert client.get("/api/contributions", headers=user_headers).json()["contributions"] == []

    def test_half_coordinate_rejected(self, client, user_headers):
        submission = {**self.submission(), "latitude": 15.33}
        assert client.post("/api/contributions", json=submission, headers=user_headers).status_code == 422

    def test_coordinate_kept_on_record(self, client, fake_model, user_headers):
        fake_model.response = {"accuracy_score": 8, "sentiment_score": 9, "approval_recommendation": "approve"}
        submission = {**self.submission(), "latitude": 15.3350, "longitude": 76.4600}
        body = client.post("/api/contributions", json=submission, headers=user_headers).json()
        assert (body["contribution"]["latitude"], body["contribution"]["longitude"]) == (15.335, 76.46)
