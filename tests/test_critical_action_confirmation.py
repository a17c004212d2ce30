import unittest

from flask import request

from eprocurement.errors import ValidationError
from eprocurement.procurement.critical_actions import confirmation_details, require_confirmation
from eprocurement.ui_strings import confirm_message, error_message
from tests.helpers.procurement_fixtures import ApiTestCase


class CriticalActionConfirmationTest(ApiTestCase):
    sandbox_prefix = "critical_confirm"

    def _create_request(self) -> int:
        creator = self.login(self.actors.creator)
        created = creator.post(
            "/api/requests",
            json={
                "title": "Feria de proveedores",
                "description": "Stand institucional por dos dias",
                "event_type": "feria",
                "supplier_ids": [self.actors.supplier_ids["audio"]],
            },
        )
        self.assertEqual(created.status_code, 201)
        return int(created.get_json()["request"]["id"])

    def test_cancel_without_confirmation_fails(self) -> None:
        request_id = self._create_request()
        creator = self.login(self.actors.creator)

        response = creator.post(f"/api/requests/{request_id}/cancel", json={"reason": "Sin presupuesto"})
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "confirmation_required")
        self.assertEqual(payload.get("message"), error_message("confirmation_required"))
        self.assertEqual(payload.get("action"), "cancel_request")
        confirmation = payload.get("confirmation") or {}
        self.assertEqual(confirmation.get("action_key"), "cancel_request")
        self.assertEqual(confirmation.get("confirm_message"), confirm_message("cancel_request"))

        detail = creator.get(f"/api/requests/{request_id}").get_json()
        self.assertEqual(detail["request"]["status"], "pending_approval")

    def test_cancel_with_confirmation_passes(self) -> None:
        request_id = self._create_request()
        creator = self.login(self.actors.creator)

        response = creator.post(
            f"/api/requests/{request_id}/cancel",
            json={"reason": "Sin presupuesto", "confirm": True},
        )
        self.assertEqual(response.status_code, 200, response.get_data(as_text=True))
        self.assertEqual(response.get_json()["request"]["status"], "cancelled")

    def test_delete_accepts_header_or_query_confirmation(self) -> None:
        approver = self.login(self.actors.approver)

        first = self._create_request()
        blocked = approver.delete(f"/api/requests/{first}")
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.get_json()["error"], "confirmation_required")

        by_header = approver.delete(f"/api/requests/{first}", headers={"X-Confirm": "si"})
        self.assertEqual(by_header.status_code, 200)
        self.assertTrue(by_header.get_json()["deleted"])

        second = self._create_request()
        by_query = approver.delete(f"/api/requests/{second}?confirm=true")
        self.assertEqual(by_query.status_code, 200)
        self.assertEqual(approver.get(f"/api/requests/{second}").status_code, 404)

    def test_unknown_action_needs_no_confirmation(self) -> None:
        with self.app.test_request_context("/"):
            self.assertEqual(require_confirmation(None, "approve_request"), "not_required")
            with self.assertRaises(ValidationError):
                require_confirmation(request, "delete_request", {"confirm": "no"})
            self.assertEqual(require_confirmation(request, "delete_request", {"confirm_token": "abc"}), "confirm_token")
        self.assertIsNone(confirmation_details("approve_request"))


if __name__ == "__main__":
    unittest.main()
