import io
import json
import unittest

from eprocurement.application.container import services
from eprocurement.db import get_db
from eprocurement.domain.contracts import AttachmentUpload
from eprocurement.ui_strings import error_message, success_message
from tests.helpers.procurement_fixtures import ApiTestCase


class ProcurementApiFlowTest(ApiTestCase):
    sandbox_prefix = "api_flow"

    def _create_active_request(self, creator, approver, **overrides) -> int:
        body = {
            "title": "Lanzamiento de producto",
            "description": "Evento de lanzamiento para 80 personas en Valparaiso, abril 2027.",
            "event_type": "lanzamiento",
            "internal_budget": 8000,
            "max_rounds": 2,
            "supplier_ids": [self.actors.supplier_ids["eventos"], self.actors.supplier_ids["catering"]],
        }
        body.update(overrides)
        created = creator.post("/api/requests", json=body)
        self.assertEqual(created.status_code, 201, created.get_data(as_text=True))
        payload = created.get_json()
        self.assertEqual(payload["message"], success_message("request_submitted"))
        self.assertTrue(payload["request"]["request_number"].startswith("SOL-"))
        request_id = int(payload["request"]["id"])

        approved = approver.post(f"/api/requests/{request_id}/approve", json={"comments": "Aprobado"})
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.get_json()["request"]["status"], "active")
        return request_id

    def test_full_procurement_cycle_over_http(self) -> None:
        creator = self.login(self.actors.creator)
        approver = self.login(self.actors.approver)
        eventos = self.login(self.actors.suppliers["eventos"])
        catering = self.login(self.actors.suppliers["catering"])

        request_id = self._create_active_request(creator, approver)

        invitations = eventos.get("/api/supplier/invitations").get_json()["invitations"]
        self.assertIn(request_id, [int(row["request_id"]) for row in invitations])

        supplier_view = eventos.get(f"/api/requests/{request_id}").get_json()
        self.assertNotIn("internal_budget", json.dumps(supplier_view))

        first = eventos.post(
            f"/api/requests/{request_id}/proposals",
            data={
                "payload": json.dumps(
                    {
                        "items": [
                            {"item_name": "Coctel", "unit_price": 20, "quantity": 80},
                            {"item_name": "Escenario", "unit_price": 900, "quantity": 1},
                        ],
                        "contextual_info": "Incluye montaje",
                    }
                ),
                "attachments": (io.BytesIO(b"%PDF-1.4 cotizacion"), "cotizacion.pdf", "application/pdf"),
            },
            content_type="multipart/form-data",
        )
        self.assertEqual(first.status_code, 201, first.get_data(as_text=True))
        first_payload = first.get_json()
        self.assertTrue(first_payload["attachment_results"][0]["stored"])
        attachment_path = first_payload["attachment_results"][0]["file_path"]
        escenario_id = next(
            int(row["id"]) for row in first_payload["items"] if row["item_name"] == "Escenario"
        )

        second = catering.post(
            f"/api/requests/{request_id}/proposals",
            json={"items": [{"item_name": "Coctel", "unit_price": 25, "quantity": 80}]},
        )
        self.assertEqual(second.status_code, 201)

        listing = creator.get(f"/api/requests/{request_id}/proposals").get_json()
        self.assertEqual(len(listing["proposals"]), 2)

        advanced = creator.post(
            f"/api/requests/{request_id}/rounds/advance",
            json={
                "feedback": [
                    {"proposal_item_id": escenario_id, "action": "modify", "feedback_text": "Reducir costo", "suggested_price": 700}
                ],
                "suggestions": [{"item_name": "Fotografia", "description": "Cobertura de 3 horas"}],
            },
        )
        self.assertEqual(advanced.status_code, 200, advanced.get_data(as_text=True))
        self.assertEqual(advanced.get_json()["current_round"], 2)

        feedback = eventos.get(f"/api/requests/{request_id}/feedback").get_json()
        self.assertEqual(len(feedback["feedback"]), 1)
        self.assertEqual(feedback["suggestions"][0]["item_name"], "Fotografia")

        increased = eventos.post(
            f"/api/requests/{request_id}/proposals",
            json={"items": [{"item_name": "Escenario", "unit_price": 950}]},
        )
        self.assertEqual(increased.status_code, 400)
        self.assertEqual(increased.get_json()["error"], "price_increase_not_allowed")

        round_two = eventos.post(
            f"/api/requests/{request_id}/proposals",
            json={
                "items": [
                    {"item_name": "Coctel", "unit_price": 18, "quantity": 80},
                    {"item_name": "Escenario", "unit_price": 700},
                    {"item_name": "Fotografia", "unit_price": 300},
                ]
            },
        )
        self.assertEqual(round_two.status_code, 201)
        round_two_id = int(round_two.get_json()["proposal"]["id"])

        proposed = creator.post(f"/api/requests/{request_id}/award", json={"proposal_id": round_two_id})
        self.assertEqual(proposed.status_code, 201, proposed.get_data(as_text=True))
        selection_id = int(proposed.get_json()["selection"]["id"])

        pending = approver.get("/api/award-selections").get_json()["selections"]
        self.assertEqual([int(row["id"]) for row in pending], [selection_id])

        approved = approver.post(f"/api/award-selections/{selection_id}/approve", json={"notes": "Conforme"})
        self.assertEqual(approved.status_code, 201)
        award_id = int(approved.get_json()["award"]["id"])

        repeated = approver.post(f"/api/award-selections/{selection_id}/approve", json={})
        self.assertEqual(repeated.status_code, 200)
        self.assertTrue(repeated.get_json()["already_approved"])

        certificate = creator.get(f"/api/awards/{award_id}/certificate?format=text")
        self.assertEqual(certificate.status_code, 200)
        self.assertTrue(certificate.mimetype.startswith("text/plain"))
        text = certificate.get_data(as_text=True)
        self.assertIn("CERTIFICADO DE ADJUDICACION", text)
        self.assertIn("Eventos Pro SpA", text)

        as_json = eventos.get(f"/api/awards/{award_id}/certificate").get_json()
        self.assertEqual(as_json["certificate"]["round_number"], 2)
        denied = catering.get(f"/api/awards/{award_id}/certificate")
        self.assertEqual(denied.status_code, 403)

        download = eventos.get("/api/attachments", query_string={"path": attachment_path})
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.data, b"%PDF-1.4 cotizacion")
        self.assertIn("cotizacion.pdf", download.headers["Content-Disposition"])

        notifications = eventos.get("/api/notifications").get_json()
        self.assertIn("award_won", [row["type"] for row in notifications["notifications"]])
        read_all = eventos.post("/api/notifications/read-all")
        self.assertEqual(read_all.get_json()["unread_count"], 0)

    def test_download_header_escapes_stored_file_name(self) -> None:
        creator = self.login(self.actors.creator)
        approver = self.login(self.actors.approver)
        eventos = self.login(self.actors.suppliers["eventos"])
        request_id = self._create_active_request(creator, approver)
        submitted = eventos.post(
            f"/api/requests/{request_id}/proposals",
            json={"items": [{"item_name": "Coctel", "unit_price": 20, "quantity": 80}]},
        )
        self.assertEqual(submitted.status_code, 201, submitted.get_data(as_text=True))
        proposal_id = int(submitted.get_json()["proposal"]["id"])

        hostile_name = 'precio "final"\r\nX-Inyectado: 1.pdf'
        with self.app.app_context():
            stored = services().proposals.store_attachments(
                get_db(),
                proposal_id,
                [AttachmentUpload(file_name=hostile_name, content=b"%PDF-1.4", mime_type="application/pdf")],
            )
        self.assertTrue(stored[0]["stored"])

        download = eventos.get("/api/attachments", query_string={"path": stored[0]["file_path"]})
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.data, b"%PDF-1.4")
        self.assertNotIn("X-Inyectado", download.headers)
        disposition = download.headers["Content-Disposition"]
        self.assertTrue(disposition.startswith("attachment;"))
        self.assertNotIn("\n", disposition)
        self.assertNotIn('"final"', disposition)
        self.assertIn("precio_final_X-Inyectado_1.pdf", disposition)


    def test_session_endpoints(self) -> None:
        client = self.app.test_client()
        wrong = client.post("/api/auth/login", json={"email": self.actors.creator.email, "password": "incorrecta"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.get_json()["error"], "auth_invalid_credentials")

        missing = client.post("/api/auth/login", json={"email": ""})
        self.assertEqual(missing.status_code, 400)

        creator = self.login(self.actors.creator)
        me = creator.get("/api/auth/me").get_json()["user"]
        self.assertEqual(me["role"], "creator")
        self.assertEqual(creator.post("/api/auth/logout").get_json(), {"logged_out": True})
        self.assertEqual(creator.get("/api/auth/me").status_code, 401)

    def test_supplier_cannot_approve_requests(self) -> None:
        creator = self.login(self.actors.creator)
        created = creator.post(
            "/api/requests",
            json={
                "title": "Seminario",
                "description": "Seminario interno",
                "event_type": "capacitacion",
                "supplier_ids": [self.actors.supplier_ids["audio"]],
            },
        )
        request_id = int(created.get_json()["request"]["id"])

        audio = self.login(self.actors.suppliers["audio"])
        response = audio.post(f"/api/requests/{request_id}/approve", json={})
        self.assertEqual(response.status_code, 403)
        payload = response.get_json()
        self.assertEqual(payload["error"], "permission_denied")
        self.assertEqual(payload["message"], error_message("permission_denied"))

    def test_validation_errors_report_fields(self) -> None:
        creator = self.login(self.actors.creator)
        response = creator.post("/api/requests", json={"title": "  "})
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload["error"], "validation_error")
        self.assertIn("title", payload["fields"])
        self.assertTrue(payload["request_id"])


class DashboardApiTest(ApiTestCase):
    sandbox_prefix = "api_dashboard"

    def test_dashboard_per_role(self) -> None:
        approver = self.login(self.actors.approver)
        body = approver.get("/api/dashboard").get_json()
        self.assertEqual(body["role"], "approver")
        self.assertEqual(body["pending_requests"], 0)

        supplier = self.login(self.actors.suppliers["catering"])
        body = supplier.get("/api/dashboard").get_json()
        self.assertEqual(body["active_invitations"], 0)


if __name__ == "__main__":
    unittest.main()
