import unittest

from eprocurement.domain.contracts import AwardProposalInput, ItemFeedbackInput, SuggestionInput
from eprocurement.errors import AuthorizationError, ValidationError
from tests.helpers.procurement_fixtures import ProcurementTestCase, item


class RoundAdvanceTest(ProcurementTestCase):
    sandbox_prefix = "round_advance"

    def _items_by_name(self, proposal_payload: dict) -> dict:
        return {row["item_name"]: int(row["id"]) for row in proposal_payload["items"]}

    def test_feedback_and_suggestions_land_on_their_rounds(self) -> None:
        request_id = self.create_active_request(max_rounds=2)
        submitted = self.submit_proposal("eventos", request_id, item("Cena", 10, 100), item("Fuegos artificiales", 300))
        item_ids = self._items_by_name(submitted.payload)

        result = self.services.rounds.advance_round(
            self.db,
            self.actors.creator,
            request_id,
            feedback=[
                ItemFeedbackInput(
                    proposal_item_id=item_ids["Fuegos artificiales"],
                    action="delete",
                    feedback_text="No se permiten en el recinto",
                ),
                ItemFeedbackInput(proposal_item_id=item_ids["Cena"], action="accept"),
            ],
            suggestions=[
                SuggestionInput(item_name="Coctel de bienvenida", description="Para 100 personas", suggested_quantity=None),
                SuggestionInput(item_name="", description="sin nombre"),
            ],
        )

        self.assertEqual(result.payload["previous_round"], 1)
        self.assertEqual(result.payload["current_round"], 2)
        self.assertEqual(result.payload["feedback_count"], 1)
        self.assertEqual(result.payload["suggestion_count"], 1)
        request_row = self.request_row(request_id)
        self.assertEqual(request_row["current_round"], 2)
        self.assertEqual(request_row["round_status"], "accepting_proposals")
        self.assertEqual(request_row["status"], "active")

        feedback_rows = self.db.execute("SELECT round_number, action, feedback_text FROM round_item_feedback").fetchall()
        self.assertEqual([(row["round_number"], row["action"]) for row in feedback_rows], [(1, "delete")])
        suggestion_rows = self.db.execute(
            "SELECT round_number, item_name, suggested_quantity FROM round_suggestions"
        ).fetchall()
        self.assertEqual(
            [(row["round_number"], row["item_name"], row["suggested_quantity"]) for row in suggestion_rows],
            [(2, "Coctel de bienvenida", 1.0)],
        )
        proposal = self.services.proposals.proposals.get_by_id(self.db, int(submitted.payload["proposal"]["id"]))
        self.assertEqual(proposal["status"], "adjustment_requested")

    def test_invited_suppliers_are_notified_of_new_round(self) -> None:
        request_id = self.create_active_request()
        self.submit_proposal("eventos", request_id, item("Cena", 10))
        self.services.rounds.advance_round(self.db, self.actors.creator, request_id)

        for key in ("eventos", "catering"):
            types = [row["type"] for row in self.services.notifications.list_for_user(self.db, self.supplier(key))["notifications"]]
            self.assertIn("round_advanced", types)

    def test_supplier_sees_previous_round_feedback_and_current_suggestions(self) -> None:
        request_id = self.create_active_request()
        submitted = self.submit_proposal("eventos", request_id, item("Cena", 10, 100))
        cena_id = self._items_by_name(submitted.payload)["Cena"]
        self.services.rounds.advance_round(
            self.db,
            self.actors.creator,
            request_id,
            feedback=[ItemFeedbackInput(cena_id, "modify", "Bajar precio", suggested_price=8)],
            suggestions=[SuggestionInput("Bar abierto", "Dos horas")],
        )

        view = self.services.rounds.feedback_for_supplier(self.db, self.supplier("eventos"), request_id)
        self.assertEqual(view["current_round"], 2)
        self.assertEqual(view["previous_round"], 1)
        self.assertEqual(len(view["feedback"]), 1)
        self.assertEqual(view["feedback"][0]["suggested_price"], 8.0)
        self.assertEqual([row["item_name"] for row in view["suggestions"]], ["Bar abierto"])

        other = self.services.rounds.feedback_for_supplier(self.db, self.supplier("catering"), request_id)
        self.assertEqual(other["feedback"], [])

        history = self.services.proposals.history_for_supplier(self.db, self.supplier("eventos"), request_id)
        self.assertEqual([entry["round_number"] for entry in history["rounds"]], [1])
        self.assertEqual(len(history["rounds"][0]["feedback"]), 1)

    def test_max_rounds_is_a_hard_limit(self) -> None:
        request_id = self.create_active_request(max_rounds=1)
        with self.assertRaises(ValidationError) as ctx:
            self.services.rounds.advance_round(self.db, self.actors.creator, request_id)
        self.assertEqual(ctx.exception.code, "max_rounds_reached")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(self.request_row(request_id)["current_round"], 1)

    def test_feedback_validation(self) -> None:
        request_id = self.create_active_request()
        submitted = self.submit_proposal("eventos", request_id, item("Cena", 10, 100))
        cena_id = self._items_by_name(submitted.payload)["Cena"]

        cases = [
            ([ItemFeedbackInput(cena_id, "modify", "a"), ItemFeedbackInput(cena_id, "delete", "b")], "feedback_duplicated"),
            ([ItemFeedbackInput(cena_id, "delete", "  ")], "feedback_text_required"),
            ([ItemFeedbackInput(cena_id, "modify", "precio", suggested_price=-5)], "feedback_text_required"),
            ([ItemFeedbackInput(cena_id, "modify", "precio", suggested_price="inf")], "feedback_text_required"),
            ([ItemFeedbackInput(99999, "delete", "no existe")], "feedback_item_invalid"),
        ]
        for feedback, expected_code in cases:
            with self.subTest(expected_code=expected_code):
                with self.assertRaises(ValidationError) as ctx:
                    self.services.rounds.advance_round(self.db, self.actors.creator, request_id, feedback=feedback)
                self.assertEqual(ctx.exception.code, expected_code)

        self.assertEqual(self.request_row(request_id)["current_round"], 1)
        self.assertEqual(self.count_rows("round_item_feedback"), 0)

    def test_only_owner_or_reviewers_can_advance(self) -> None:
        request_id = self.create_active_request()
        with self.assertRaises(AuthorizationError):
            self.services.rounds.advance_round(self.db, self.actors.other_creator, request_id)
        with self.assertRaises(AuthorizationError):
            self.services.rounds.advance_round(self.db, self.supplier("eventos"), request_id)
        result = self.services.rounds.advance_round(self.db, self.actors.approver, request_id)
        self.assertEqual(result.payload["current_round"], 2)

    def test_pending_award_blocks_new_round(self) -> None:
        request_id = self.create_active_request(max_rounds=3)
        submitted = self.submit_proposal("eventos", request_id, item("Cena", 10))
        self.services.awards.propose_award(
            self.db,
            self.actors.creator,
            request_id,
            AwardProposalInput(proposal_id=int(submitted.payload["proposal"]["id"])),
        )
        with self.assertRaises(ValidationError) as ctx:
            self.services.rounds.advance_round(self.db, self.actors.creator, request_id)
        self.assertEqual(ctx.exception.code, "award_pending")


class PriceReductionTest(ProcurementTestCase):
    sandbox_prefix = "price_reduction"

    def _second_round(self) -> int:
        request_id = self.create_active_request(max_rounds=3)
        self.submit_proposal("eventos", request_id, item("Cena", 10, 100), item("Sonido", 200))
        self.services.rounds.advance_round(self.db, self.actors.creator, request_id)
        return request_id

    def test_price_increase_is_rejected_in_later_rounds(self) -> None:
        request_id = self._second_round()
        with self.assertRaises(ValidationError) as ctx:
            self.submit_proposal("eventos", request_id, item("Cena", 11, 100), item("Sonido", 150))
        error = ctx.exception
        self.assertEqual(error.code, "price_increase_not_allowed")
        self.assertEqual(error.payload["previous_round"], 1)
        self.assertEqual(
            error.payload["items"],
            [{"item_name": "Cena", "previous_unit_price": 10.0, "unit_price": 11.0}],
        )

    def test_lower_prices_and_new_items_are_accepted(self) -> None:
        request_id = self._second_round()
        result = self.submit_proposal(
            "eventos", request_id, item("Cena", 9, 100), item("Sonido", 200), item("Coctel", 500)
        )
        self.assertEqual(result.payload["proposal"]["round_number"], 2)
        self.assertAlmostEqual(result.payload["proposal"]["subtotal"], 1600.0)

    def test_supplier_without_previous_round_is_free_to_price(self) -> None:
        request_id = self._second_round()
        result = self.submit_proposal("catering", request_id, item("Cena", 50, 100))
        self.assertEqual(result.status_code, 201)


class PriceReductionDisabledTest(ProcurementTestCase):
    sandbox_prefix = "price_reduction_off"
    config_overrides = {"ENFORCE_PRICE_REDUCTION": False}

    def test_increase_allowed_when_rule_disabled(self) -> None:
        request_id = self.create_active_request(max_rounds=2)
        self.submit_proposal("eventos", request_id, item("Cena", 10, 100))
        self.services.rounds.advance_round(self.db, self.actors.creator, request_id)
        result = self.submit_proposal("eventos", request_id, item("Cena", 12, 100))
        self.assertEqual(result.status_code, 201)


if __name__ == "__main__":
    unittest.main()
