from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from app import app
from reflection import service_fallback


ENTRY = {
    "apps": ["YouTube", "Instagram"],
    "screenTime": 95,
    "reflection": "Watched more than planned.",
    "tags": ["⏳ Wasted Time", "😵 Overwhelmed"],
}


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        tmp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(tmp_dir.cleanup)
        self.tmp_path = Path(tmp_dir.name)
        env = mock.patch.dict(
            os.environ, {"DB_PATH": str(self.tmp_path / "api.db"), "GEMINI_API_KEY": "test-key"}
        )
        env.start()
        self.addCleanup(env.stop)
        config = mock.patch.dict(app.config, {"TESTING": True, "ALLOW_ANONYMOUS_ENTRIES": False})
        config.start()
        self.addCleanup(config.stop)
        self.client = app.test_client()

    def register_and_login(self, email: str = "asha@example.com", client=None) -> dict:
        client = client or self.client
        response = client.post(
            "/api/register", json={"name": "Asha", "email": email, "password": "secret123"}
        )
        self.assertEqual(response.status_code, 200, response.get_json())
        response = client.post("/api/login", json={"email": email, "password": "secret123"})
        self.assertEqual(response.status_code, 200, response.get_json())
        return response.get_json()["user"]


class AuthApiTests(ApiTestCase):
    def test_register_login_refresh_logout(self) -> None:
        user = self.register_and_login()
        self.assertEqual(set(user), {"id", "name", "email"})

        refreshed = self.client.get("/api/session/refresh").get_json()
        self.assertEqual(
            refreshed,
            {"success": True, "userId": user["id"], "userEmail": "asha@example.com", "userName": "Asha"},
        )

        response = self.client.post("/api/logout")
        self.assertEqual(response.get_json()["success"], True)
        self.assertEqual(self.client.get("/api/session/refresh").get_json()["success"], False)

        # Idempotent.
        self.assertEqual(self.client.post("/api/logout").status_code, 200)

    def test_refresh_drops_session_of_missing_account(self) -> None:
        self.register_and_login()
        with mock.patch.dict(os.environ, {"DB_PATH": str(self.tmp_path / "fresh.db")}):
            self.assertEqual(self.client.get("/api/session/refresh").get_json()["success"], False)
        self.assertEqual(self.client.get("/api/session/refresh").get_json()["success"], False)

    def test_register_validation_and_duplicates(self) -> None:
        bad = self.client.post("/api/register", json={"name": "Asha", "email": "not-an-email", "password": "secret123"})
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.get_json(), {"success": False, "error": "Please enter a valid email address"})

        self.register_and_login(email="user@ex.com")
        dup = self.client.post("/api/register", json={"name": "Other", "email": " User@Ex.com ", "password": "secret123"})
        self.assertEqual(dup.status_code, 400)
        self.assertEqual(dup.get_json()["error"], "User already exists with this email address")

    def test_failed_logins_are_indistinguishable(self) -> None:
        self.register_and_login()
        wrong_password = self.client.post("/api/login", json={"email": "asha@example.com", "password": "nope-nope"})
        unknown = self.client.post("/api/login", json={"email": "ghost@example.com", "password": "secret123"})
        self.assertEqual(wrong_password.status_code, 401)
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong_password.get_json(), unknown.get_json())

    def test_password_hash_never_leaves_the_server(self) -> None:
        self.register_and_login()
        body = self.client.post("/api/login", json={"email": "asha@example.com", "password": "secret123"}).get_data(as_text=True)
        self.assertNotIn("password", body)

    def test_logout_without_signing_key_is_a_session_error(self) -> None:
        with mock.patch.dict(app.config, {"SECRET_KEY": None}):
            response = self.client.post("/api/logout")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"success": False, "error": "Could not log out"})


class EntryApiTests(ApiTestCase):
    def test_entry_round_trip(self) -> None:
        user = self.register_and_login()
        saved = self.client.post("/api/entries", json=ENTRY)
        self.assertEqual(saved.status_code, 200)
        entry_id = saved.get_json()["id"]

        listed = self.client.get("/api/entries").get_json()
        self.assertEqual(listed["count"], 1)
        entry = listed["entries"][0]
        self.assertEqual(entry["id"], entry_id)
        self.assertEqual(entry["user_id"], user["id"])
        self.assertEqual(entry["apps"], ENTRY["apps"])
        self.assertEqual(entry["tags"], ENTRY["tags"])

    def test_body_user_id_is_ignored_when_logged_in(self) -> None:
        user = self.register_and_login()
        self.client.post("/api/entries", json=dict(ENTRY, userId=999))
        entry = self.client.get("/api/entries").get_json()["entries"][0]
        self.assertEqual(entry["user_id"], user["id"])

    def test_entries_are_private_to_their_owner(self) -> None:
        self.register_and_login()
        self.client.post("/api/entries", json=ENTRY)

        other = app.test_client()
        self.register_and_login(email="other@example.com", client=other)
        self.assertEqual(other.get("/api/entries").get_json()["count"], 0)

    def test_validation_error(self) -> None:
        self.register_and_login()
        response = self.client.post("/api/entries", json=dict(ENTRY, apps=[]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "Please select at least one app")

    def test_non_string_items_are_rejected_and_dashboard_survives(self) -> None:
        self.register_and_login()
        bad = self.client.post(
            "/api/entries",
            json={"apps": [{"n": "YouTube"}], "screenTime": 5, "reflection": "ok", "tags": [["x"]]},
        )
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.get_json()["error"], "Please select at least one app")

        bad_tags = self.client.post("/api/entries", json=dict(ENTRY, tags=[["x"]]))
        self.assertEqual(bad_tags.status_code, 400)
        self.assertEqual(bad_tags.get_json()["error"], "Tags must be an array")

        self.assertEqual(self.client.get("/api/entries").get_json()["count"], 0)
        self.assertEqual(self.client.get("/api/insights").status_code, 200)

    def test_non_finite_screen_time_is_a_validation_error(self) -> None:
        self.register_and_login()
        for literal in ("NaN", "Infinity"):
            with self.subTest(literal=literal):
                response = self.client.post(
                    "/api/entries",
                    data='{"apps": ["X"], "screenTime": ' + literal + ', "reflection": "ok", "tags": []}',
                    content_type="application/json",
                )
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["error"], "Invalid screen time value")

        with mock.patch("app.request_reflection") as proxy:
            response = self.client.post(
                "/api/ai-analysis",
                data='{"apps": ["X"], "screenTime": NaN, "reflection": "ok", "tags": []}',
                content_type="application/json",
            )
        self.assertEqual(response.status_code, 400)
        proxy.assert_not_called()

    def test_session_required_by_default(self) -> None:
        self.assertEqual(self.client.post("/api/entries", json=ENTRY).status_code, 401)
        self.assertEqual(self.client.get("/api/entries").status_code, 401)
        self.assertEqual(self.client.get("/api/insights").status_code, 401)

    def test_anonymous_mode_restores_legacy_behaviour(self) -> None:
        app.config["ALLOW_ANONYMOUS_ENTRIES"] = True
        self.client.post("/api/entries", json=dict(ENTRY, userId=42))
        self.client.post("/api/entries", json=ENTRY)
        listed = self.client.get("/api/entries").get_json()
        self.assertEqual(listed["count"], 2)
        self.assertEqual(sorted(e["user_id"] or 0 for e in listed["entries"]), [0, 42])

    def test_storage_failure_is_generic(self) -> None:
        self.register_and_login()
        with mock.patch.dict(os.environ, {"DB_PATH": str(self.tmp_path / "gone" / "x.db")}):
            response = self.client.get("/api/entries")
        self.assertEqual(response.status_code, 500)
        body = response.get_json()
        self.assertFalse(body["success"])
        self.assertNotIn("unable to open", body["error"])

    def test_insights(self) -> None:
        self.register_and_login()
        self.client.post("/api/entries", json=ENTRY)
        self.client.post("/api/entries", json=dict(ENTRY, screenTime=5, tags=["✅ Productive"]))
        insights = self.client.get("/api/insights").get_json()["insights"]
        self.assertEqual(insights["total_entries"], 2)
        self.assertEqual(insights["average_screen_time"], 50)
        self.assertEqual(insights["productivity_ratio"], 50)
        self.assertEqual(insights["app_minutes"], {"YouTube": 100, "Instagram": 100})
        self.assertIsNotNone(insights["today_entry"])
        self.assertEqual(insights["summary"][0], "Asha's Digital Wellness Report")


class AiAnalysisApiTests(ApiTestCase):
    def test_requires_session(self) -> None:
        response = self.client.post("/api/ai-analysis", json=ENTRY)
        self.assertEqual(response.status_code, 401)

    def test_success(self) -> None:
        self.register_and_login()
        answer = {
            "analysis": "Evenings are heavy.",
            "suggestions": ["a", "b", "c"],
            "microHabits": ["d", "e"],
            "motivationalTip": "f",
        }
        gemini = mock.Mock(status_code=200)
        gemini.json.return_value = {"candidates": [{"content": {"parts": [{"text": json.dumps(answer)}]}}]}
        with mock.patch("reflection.requests.post", return_value=gemini):
            response = self.client.post("/api/ai-analysis", json=ENTRY)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), answer)

    def test_failure_returns_fallback(self) -> None:
        self.register_and_login()
        with mock.patch("app.request_reflection", return_value=service_fallback("rate_limit")):
            response = self.client.post("/api/ai-analysis", json=ENTRY)
        self.assertEqual(response.status_code, 500)
        body = response.get_json()
        self.assertEqual(body["errorKind"], "rate_limit")
        self.assertEqual(len(body["fallback"]["suggestions"]), 3)

    def test_invalid_entry_is_rejected_before_the_call(self) -> None:
        self.register_and_login()
        with mock.patch("app.request_reflection") as proxy:
            response = self.client.post("/api/ai-analysis", json=dict(ENTRY, reflection=""))
        self.assertEqual(response.status_code, 400)
        proxy.assert_not_called()

    def test_nothing_is_persisted(self) -> None:
        self.register_and_login()
        with mock.patch("app.request_reflection", return_value=service_fallback("network")):
            self.client.post("/api/ai-analysis", json=ENTRY)
        self.assertEqual(self.client.get("/api/entries").get_json()["count"], 0)


if __name__ == "__main__":
    unittest.main()
