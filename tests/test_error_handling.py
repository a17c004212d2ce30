import unittest
from unittest.mock import patch

from eprocurement import create_app
from eprocurement.config import Config
from eprocurement.db import close_db
from eprocurement.ui_strings import error_message
from tests.helpers.procurement_fixtures import ApiTestCase
from tests.helpers.temp_db import TempDbSandbox


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_perm")
        config = self._temp_db.make_config(
            Config,
            TESTING=False,
            DB_AUTO_INIT=False,
            PROPAGATE_EXCEPTIONS=False,
        )
        self.app = create_app(config)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/requests")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertEqual(response.headers.get("X-Request-Id"), payload.get("request_id"))
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_incoming_request_id_is_echoed(self) -> None:
        response = self.client.get("/api/notifications", headers={"X-Request-Id": "req-externo-42"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json().get("request_id"), "req-externo-42")
        self.assertEqual(response.headers.get("X-Request-Id"), "req-externo-42")

    def test_public_paths_skip_login(self) -> None:
        self.assertEqual(self.client.get("/metrics").status_code, 200)
        self.assertEqual(self.client.post("/api/auth/logout").status_code, 200)


class ErrorHandlingApiTest(ApiTestCase):
    sandbox_prefix = "error_api"
    config_overrides = {"PROPAGATE_EXCEPTIONS": False}

    def _pending_request(self, creator) -> int:
        created = creator.post(
            "/api/requests",
            json={
                "title": "Almuerzo de directorio",
                "description": "Almuerzo para 12 personas",
                "event_type": "corporativo",
                "supplier_ids": [self.actors.supplier_ids["catering"]],
            },
        )
        self.assertEqual(created.status_code, 201)
        return int(created.get_json()["request"]["id"])

    def test_validation_error_for_invalid_flow_action(self) -> None:
        creator = self.login(self.actors.creator)
        approver = self.login(self.actors.approver)
        request_id = self._pending_request(creator)

        first = approver.post(f"/api/requests/{request_id}/approve", json={})
        self.assertEqual(first.status_code, 200)

        again = approver.post(f"/api/requests/{request_id}/approve", json={})
        self.assertEqual(again.status_code, 409)
        payload = again.get_json()
        self.assertEqual(payload.get("error"), "action_not_allowed_for_status")
        self.assertEqual(payload.get("message"), error_message("action_not_allowed_for_status"))
        self.assertEqual(payload.get("status"), "active")
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_not_found_error(self) -> None:
        creator = self.login(self.actors.creator)
        response = creator.get("/api/requests/4242")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json().get("error"), "request_not_found")

    def test_stale_role_claim_requires_reauthentication(self) -> None:
        creator = self.login(self.actors.creator)
        with creator.session_transaction() as session:
            session["token_role"] = "approver"

        response = creator.get("/api/requests")
        self.assertEqual(response.status_code, 200)
        with creator.session_transaction() as session:
            self.assertEqual(session["token_role"], "creator")

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        creator = self.login(self.actors.creator)
        request_service = self.app.extensions["eprocurement"].requests

        with patch.object(request_service, "list_for_creator", side_effect=RuntimeError("stack_secret_token")):
            with self.assertLogs(self.app.logger.name, level="ERROR"):
                response = creator.get("/api/requests")

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)


if __name__ == "__main__":
    unittest.main()
