import unittest
from unittest.mock import patch

from eprocurement.domain.contracts import AttachmentUpload
from eprocurement.errors import AuthorizationError, NotFoundError, TransientIntegrationError, ValidationError
from eprocurement.observability import metrics_snapshot
from tests.helpers.procurement_fixtures import ProcurementTestCase, item, proposal_input, request_input


def _pdf(name: str = "cotizacion.pdf", content: bytes = b"%PDF-1.4 cotizacion") -> AttachmentUpload:
    return AttachmentUpload(file_name=name, content=content, mime_type="application/pdf")


class ProposalSubmissionTest(ProcurementTestCase):
    sandbox_prefix = "proposal_submission"

    def test_submit_prices_items_and_applies_supplier_fee(self) -> None:
        request_id = self.create_active_request()
        result = self.submit_proposal(
            "eventos",
            request_id,
            item("Cena", 8, 100),
            item("Sonido", 200),
            contextual_info="Incluye garzones",
        )

        self.assertEqual(result.status_code, 201)
        proposal = result.payload["proposal"]
        self.assertEqual(proposal["status"], "submitted")
        self.assertEqual(proposal["round_number"], 1)
        self.assertAlmostEqual(proposal["subtotal"], 1000.0)
        self.assertAlmostEqual(proposal["fee_amount"], 100.0)
        self.assertAlmostEqual(proposal["total_amount"], 1100.0)
        self.assertTrue(proposal["submitted_at"])
        self.assertEqual(proposal["contextual_info"], "Incluye garzones")
        self.assertEqual([row["total_price"] for row in result.payload["items"]], [800.0, 200.0])
        self.assertEqual(result.payload["attachment_results"], [])

        creator_notifications = self.services.notifications.list_for_user(self.db, self.actors.creator)
        self.assertEqual(creator_notifications["notifications"][0]["type"], "proposal_submitted")
        self.assertIn("Eventos Pro SpA", creator_notifications["notifications"][0]["message"])

    def test_uninvited_supplier_is_refused(self) -> None:
        request_id = self.create_active_request()
        with self.assertRaises(AuthorizationError) as ctx:
            self.submit_proposal("audio", request_id, item("Cena", 10))
        self.assertEqual(ctx.exception.code, "not_invited")

    def test_pending_request_does_not_accept_proposals(self) -> None:
        result = self.services.requests.submit(
            self.db, self.actors.creator, request_input([self.supplier_id("eventos")])
        )
        request_id = int(result.payload["request"]["id"])
        with self.assertRaises(ValidationError) as ctx:
            self.submit_proposal("eventos", request_id, item("Cena", 10))
        self.assertEqual(ctx.exception.code, "request_not_accepting_proposals")
        self.assertEqual(ctx.exception.http_status, 409)

    def test_second_submission_in_same_round_conflicts(self) -> None:
        request_id = self.create_active_request()
        self.submit_proposal("eventos", request_id, item("Cena", 10))
        with self.assertRaises(ValidationError) as ctx:
            self.submit_proposal("eventos", request_id, item("Cena", 9))
        self.assertEqual(ctx.exception.code, "proposal_already_submitted")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(self.count_rows("proposals"), 1)

    def test_non_finite_amounts_are_reported_per_field(self) -> None:
        request_id = self.create_active_request()
        with self.assertRaises(ValidationError) as ctx:
            self.submit_proposal("eventos", request_id, item("Cena", 10, 1), item("Extra", "nan", 1))
        self.assertEqual(ctx.exception.code, "validation_error")
        self.assertEqual(set(ctx.exception.fields), {"items[1].unit_price"})

        with self.assertRaises(ValidationError) as ctx:
            self.submit_proposal("catering", request_id, item("Cena", 10, "inf"))
        self.assertEqual(set(ctx.exception.fields), {"items[0].quantity"})
        self.assertEqual(self.count_rows("proposals"), 0)

        accepted = self.submit_proposal("catering", request_id, item("Cena", 10, 2))
        self.assertEqual(accepted.payload["proposal"]["status"], "submitted")

    def test_priced_item_is_required(self) -> None:
        request_id = self.create_active_request()
        with self.assertRaises(ValidationError) as ctx:
            self.submit_proposal("eventos", request_id, item("Cortesia", 0))
        self.assertEqual(ctx.exception.code, "valid_items_required")
        self.assertIn("items", ctx.exception.fields)

    def test_draft_is_private_until_submitted(self) -> None:
        request_id = self.create_active_request()
        draft = self.services.proposals.save_draft(
            self.db, self.supplier("eventos"), request_id, proposal_input(item("Cena", 12, 10))
        )
        self.assertEqual(draft.status_code, 201)
        proposal_id = int(draft.payload["proposal"]["id"])
        self.assertEqual(draft.payload["proposal"]["status"], "draft")

        listing = self.services.proposals.list_for_request(self.db, self.actors.creator, request_id)
        self.assertEqual(listing["proposals"], [])
        with self.assertRaises(NotFoundError):
            self.services.proposals.get(self.db, self.actors.creator, proposal_id)

        again = self.services.proposals.save_draft(
            self.db, self.supplier("eventos"), request_id, proposal_input(item("Cena", 11, 10))
        )
        self.assertEqual(again.status_code, 200)

        submitted = self.submit_proposal("eventos", request_id, item("Cena", 10, 10))
        self.assertEqual(int(submitted.payload["proposal"]["id"]), proposal_id)
        self.assertEqual(len(submitted.payload["items"]), 1)
        self.assertEqual(submitted.payload["items"][0]["unit_price"], 10.0)

        with self.assertRaises(ValidationError):
            self.services.proposals.save_draft(
                self.db, self.supplier("eventos"), request_id, proposal_input(item("Cena", 9, 10))
            )

    def test_listing_and_visibility_rules(self) -> None:
        request_id = self.create_active_request()
        first = self.submit_proposal("eventos", request_id, item("Cena", 10, 100))
        self.submit_proposal("catering", request_id, item("Cena", 9, 100))

        listing = self.services.proposals.list_for_request(self.db, self.actors.creator, request_id)
        self.assertEqual([row["supplier_name"] for row in listing["proposals"]], ["Catering Sur Ltda", "Eventos Pro SpA"])
        self.assertEqual(listing["current_round"], 1)
        self.assertTrue(all(row["items"] for row in listing["proposals"]))

        with self.assertRaises(AuthorizationError):
            self.services.proposals.list_for_request(self.db, self.actors.other_creator, request_id)
        with self.assertRaises(AuthorizationError):
            self.services.proposals.list_for_request(self.db, self.supplier("eventos"), request_id)
        with self.assertRaises(AuthorizationError):
            self.services.proposals.get(self.db, self.supplier("catering"), int(first.payload["proposal"]["id"]))

        own = self.services.proposals.list_for_supplier(self.db, self.supplier("eventos"))
        self.assertEqual(len(own), 1)
        invitations = self.services.proposals.invitations_for_supplier(self.db, self.supplier("eventos"))
        self.assertEqual([int(row["request_id"]) for row in invitations], [request_id])


class ProposalAttachmentTest(ProcurementTestCase):
    sandbox_prefix = "proposal_attachments"
    config_overrides = {"ATTACHMENT_MAX_BYTES": 64}

    def test_attachments_are_validated_individually(self) -> None:
        request_id = self.create_active_request()
        result = self.submit_proposal(
            "eventos",
            request_id,
            item("Cena", 10, 10),
            attachments=[
                _pdf(),
                AttachmentUpload(file_name="notas.txt", content=b"hola", mime_type="text/plain"),
                _pdf("vacio.pdf", b""),
                _pdf("grande.pdf", b"x" * 65),
            ],
        )

        self.assertEqual(result.status_code, 201)
        outcomes = {row["file_name"]: row for row in result.payload["attachment_results"]}
        self.assertTrue(outcomes["cotizacion.pdf"]["stored"])
        self.assertEqual(outcomes["notas.txt"]["reason"], "mime_type_not_allowed")
        self.assertEqual(outcomes["vacio.pdf"]["reason"], "empty_file")
        self.assertEqual(outcomes["grande.pdf"]["reason"], "file_too_large")
        self.assertEqual(len(result.payload["attachments"]), 1)
        self.assertEqual(metrics_snapshot()["attachments"], {"rejected": 3, "stored": 1})

        file_path = outcomes["cotizacion.pdf"]["file_path"]
        self.assertTrue(file_path.startswith(f"proposal-attachments/{result.payload['proposal']['id']}/"))
        self.assertTrue(file_path.endswith(".pdf"))

    def test_download_respects_ownership(self) -> None:
        request_id = self.create_active_request()
        result = self.submit_proposal("eventos", request_id, item("Cena", 10), attachments=[_pdf()])
        file_path = result.payload["attachment_results"][0]["file_path"]

        attachment, content = self.services.proposals.download_attachment(self.db, self.actors.creator, file_path)
        self.assertEqual(content, b"%PDF-1.4 cotizacion")
        self.assertEqual(attachment["file_name"], "cotizacion.pdf")

        _attachment, own_content = self.services.proposals.download_attachment(
            self.db, self.supplier("eventos"), file_path
        )
        self.assertEqual(own_content, content)
        with self.assertRaises(AuthorizationError):
            self.services.proposals.download_attachment(self.db, self.supplier("catering"), file_path)
        with self.assertRaises(AuthorizationError):
            self.services.proposals.download_attachment(self.db, self.actors.other_creator, file_path)
        with self.assertRaises(NotFoundError):
            self.services.proposals.download_attachment(self.db, self.actors.admin, "proposal-attachments/1/x.pdf")

    def test_storage_failure_keeps_the_submitted_proposal(self) -> None:
        request_id = self.create_active_request()
        failure = TransientIntegrationError(code="storage_unavailable", message_key="storage_unavailable")
        with patch.object(self.services.storage, "put", side_effect=failure):
            result = self.submit_proposal("eventos", request_id, item("Cena", 10), attachments=[_pdf()])

        self.assertEqual(result.status_code, 201)
        self.assertEqual(result.payload["proposal"]["status"], "submitted")
        self.assertEqual(
            result.payload["attachment_results"],
            [{"file_name": "cotizacion.pdf", "stored": False, "reason": "storage_unavailable"}],
        )
        self.assertEqual(self.count_rows("proposal_attachments"), 0)
        self.assertEqual(metrics_snapshot()["attachments"], {"failed": 1})


if __name__ == "__main__":
    unittest.main()
