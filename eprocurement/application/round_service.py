from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from eprocurement.application.identity_service import IdentityService
from eprocurement.application.invitation_service import InvitationService
from eprocurement.core.event_bus import EventBus, RoundAdvanced
from eprocurement.domain.contracts import ItemFeedbackInput, Principal, ServiceOutput, SuggestionInput
from eprocurement.errors import AuthorizationError, NotFoundError, ValidationError
from eprocurement.infrastructure.repositories import (
    AwardRepository,
    FeedbackRepository,
    ProposalRepository,
    RequestRepository,
)
from eprocurement.observability import observe_workflow_transition
from eprocurement.policies import SUPPLIER_ROLES
from eprocurement.procurement.flow_policy import ensure_action_allowed, flow_meta
from eprocurement.procurement.pricing import finite_float
from eprocurement.ui_strings import field_message


logger = logging.getLogger("eprocurement.rounds")

FEEDBACK_ACTIONS = ("accept", "modify", "delete")
ROUND_MANAGER_ROLES = ("creator", "approver", "admin")


def _text(value: object) -> str:
    return str(value or "").strip()


def _optional_price(value: object) -> float | None:
    if value is None or value == "":
        return None
    price = finite_float(value)
    if price is None:
        raise ValueError(f"invalid price: {value!r}")
    return price


class RoundService:
    def __init__(
        self,
        *,
        identity: IdentityService,
        invitations: InvitationService,
        event_bus: EventBus,
        requests: RequestRepository | None = None,
        proposals: ProposalRepository | None = None,
        feedback: FeedbackRepository | None = None,
        awards: AwardRepository | None = None,
    ) -> None:
        self.identity = identity
        self.invitations = invitations
        self.event_bus = event_bus
        self.requests = requests or RequestRepository()
        self.proposals = proposals or ProposalRepository()
        self.feedback = feedback or FeedbackRepository()
        self.awards = awards or AwardRepository()

    def _validate_feedback(self, db, request_row: dict, feedback: Sequence[ItemFeedbackInput]) -> List[dict]:
        """Each item gets at most one action; accept produces no row."""
        request_id = int(request_row["id"])
        current_round = int(request_row["current_round"])
        seen: set[int] = set()
        rows: List[dict] = []
        errors: Dict[str, str] = {}
        for idx, entry in enumerate(feedback or ()):
            action = _text(entry.action).lower()
            if action not in FEEDBACK_ACTIONS:
                errors[f"feedback[{idx}].action"] = field_message("feedback_text")
                continue
            item_id = int(entry.proposal_item_id)
            if item_id in seen:
                raise ValidationError(
                    code="feedback_duplicated",
                    message_key="feedback_duplicated",
                    payload={"proposal_item_id": item_id},
                )
            seen.add(item_id)

            owner = self.proposals.item_owner(db, item_id)
            if (
                not owner
                or int(owner["request_id"]) != request_id
                or int(owner["round_number"]) != current_round
                or owner["status"] == "draft"
                or not owner.get("submitted_at")
            ):
                raise ValidationError(
                    code="feedback_item_invalid",
                    message_key="feedback_item_invalid",
                    payload={"proposal_item_id": item_id},
                )
            if action == "accept":
                continue

            feedback_text = _text(entry.feedback_text)
            if not feedback_text:
                errors[f"feedback[{idx}].feedback_text"] = field_message("feedback_text")
                continue
            suggested_price = None
            if action == "modify":
                try:
                    suggested_price = _optional_price(entry.suggested_price)
                except (TypeError, ValueError):
                    suggested_price = -1.0
                if suggested_price is not None and suggested_price < 0:
                    errors[f"feedback[{idx}].suggested_price"] = field_message("suggested_price")
                    continue
            rows.append(
                {
                    "proposal_id": int(owner["proposal_id"]),
                    "proposal_item_id": item_id,
                    "action": action,
                    "feedback_text": feedback_text,
                    "suggested_price": suggested_price,
                }
            )
        if errors:
            raise ValidationError(code="feedback_text_required", message_key="feedback_text_required", fields=errors)
        return rows

    @staticmethod
    def _valid_suggestions(suggestions: Sequence[SuggestionInput]) -> List[dict]:
        valid: List[dict] = []
        for entry in suggestions or ():
            item_name = _text(entry.item_name)
            description = _text(entry.description)
            if not item_name or not description:
                continue
            quantity = finite_float(entry.suggested_quantity) or 1.0
            valid.append(
                {
                    "item_name": item_name,
                    "description": description,
                    "suggested_quantity": quantity if quantity > 0 else 1.0,
                    "notes": _text(entry.notes) or None,
                }
            )
        return valid

    def advance_round(
        self,
        db,
        principal: Principal,
        request_id: int,
        feedback: Sequence[ItemFeedbackInput] = (),
        suggestions: Sequence[SuggestionInput] = (),
    ) -> ServiceOutput:
        principal = self.identity.authorize(principal, *ROUND_MANAGER_ROLES)
        request_row = self.requests.get_by_id(db, request_id)
        if not request_row:
            raise NotFoundError(code="request_not_found", message_key="request_not_found")
        if principal.role == "creator" and int(request_row["creator_id"]) != principal.profile_id:
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        ensure_action_allowed("request", request_row["status"], "advance_round")

        current_round = int(request_row["current_round"])
        max_rounds = int(request_row["max_rounds"])
        if current_round >= max_rounds:
            raise ValidationError(
                code="max_rounds_reached",
                message_key="max_rounds_reached",
                http_status=409,
                payload={"current_round": current_round, "max_rounds": max_rounds},
            )
        selection = self.awards.get_selection_by_request(db, request_id)
        if selection and selection["status"] == "pending_approval":
            raise ValidationError(code="award_pending", message_key="award_pending", http_status=409)

        feedback_rows = self._validate_feedback(db, request_row, feedback)
        suggestion_rows = self._valid_suggestions(suggestions)
        next_round = current_round + 1

        with db.transaction():
            for row in feedback_rows:
                self.feedback.create_feedback(
                    db,
                    round_number=current_round,
                    created_by=principal.profile_id,
                    **row,
                )
            for row in suggestion_rows:
                self.feedback.create_suggestion(
                    db,
                    request_id=request_id,
                    round_number=next_round,
                    created_by=principal.profile_id,
                    **row,
                )
            adjusted = sorted({row["proposal_id"] for row in feedback_rows})
            self.proposals.set_status(db, adjusted, "adjustment_requested")
            self.requests.update_fields(
                db,
                request_id,
                current_round=next_round,
                round_status="accepting_proposals",
                status="active",
            )

        observe_workflow_transition("request", request_row["status"], "active")
        logger.info(
            "round_advanced",
            extra={
                "request_id": request_id,
                "round_number": next_round,
                "feedback_count": len(feedback_rows),
                "suggestion_count": len(suggestion_rows),
            },
        )
        supplier_ids = tuple(self.invitations.supplier_ids(db, request_id))
        self.event_bus.publish(
            RoundAdvanced(request_id=request_id, round_number=next_round, supplier_ids=supplier_ids)
        )
        updated = self.requests.get_by_id(db, request_id)
        return ServiceOutput(
            payload={
                "request": updated,
                "previous_round": current_round,
                "current_round": next_round,
                "feedback_count": len(feedback_rows),
                "suggestion_count": len(suggestion_rows),
                "adjusted_proposal_ids": adjusted,
                "flow": flow_meta("request", updated["status"]),
            }
        )

    def feedback_for_supplier(self, db, principal: Principal, request_id: int) -> dict:
        principal = self.identity.authorize(principal, *SUPPLIER_ROLES)
        supplier = self.identity.resolve_supplier(db, principal)
        self.invitations.require_invitation(db, request_id, int(supplier["id"]))
        request_row = self.requests.get_by_id(db, request_id)
        if not request_row:
            raise NotFoundError(code="request_not_found", message_key="request_not_found")

        current_round = int(request_row["current_round"])
        previous_round = current_round - 1
        feedback_rows: List[dict] = []
        if previous_round >= 1:
            previous = self.proposals.get_by_key(db, request_id, int(supplier["id"]), previous_round)
            if previous:
                feedback_rows = self.feedback.list_feedback_for_proposals(db, [int(previous["id"])])
        return {
            "request_id": request_id,
            "current_round": current_round,
            "previous_round": previous_round if previous_round >= 1 else None,
            "feedback": feedback_rows,
            "suggestions": self.feedback.list_suggestions(db, request_id, round_number=current_round),
        }
