from __future__ import annotations

import logging

from eprocurement.application.identity_service import IdentityService
from eprocurement.core.event_bus import AwardApproved, AwardProposed, AwardRejected, EventBus
from eprocurement.db import TransactionRollbackError, is_integrity_error
from eprocurement.domain.contracts import AwardProposalInput, Principal, ServiceOutput
from eprocurement.errors import AuthorizationError, NotFoundError, PartialCompletionError, ValidationError
from eprocurement.infrastructure.repositories import (
    AwardRepository,
    ProposalRepository,
    RequestRepository,
    SupplierRepository,
)
from eprocurement.observability import observe_workflow_transition
from eprocurement.policies import APPROVER_ROLES, CREATOR_ROLES, SUPPLIER_ROLES, VALID_ROLES
from eprocurement.procurement.certificate import build_certificate, render_text
from eprocurement.procurement.flow_policy import ensure_action_allowed, flow_meta, forbidden_action
from eprocurement.procurement.pricing import is_lowest_total
from eprocurement.ui_strings import field_message


logger = logging.getLogger("eprocurement.awards")


def _text(value: object) -> str | None:
    text = str(value or "").strip()
    return text or None


class AwardService:
    def __init__(
        self,
        *,
        identity: IdentityService,
        event_bus: EventBus,
        requests: RequestRepository | None = None,
        proposals: ProposalRepository | None = None,
        awards: AwardRepository | None = None,
        suppliers: SupplierRepository | None = None,
    ) -> None:
        self.identity = identity
        self.event_bus = event_bus
        self.requests = requests or RequestRepository()
        self.proposals = proposals or ProposalRepository()
        self.awards = awards or AwardRepository()
        self.suppliers = suppliers or SupplierRepository()

    def _load_request(self, db, request_id: int) -> dict:
        row = self.requests.get_by_id(db, request_id)
        if not row:
            raise NotFoundError(code="request_not_found", message_key="request_not_found")
        return row

    def _load_selection(self, db, selection_id: int) -> dict:
        selection = self.awards.get_selection(db, selection_id)
        if not selection:
            raise NotFoundError(
                code="selection_not_found",
                message_key="selection_not_found",
                payload={"selection_id": selection_id},
            )
        return selection

    def propose_award(
        self,
        db,
        principal: Principal,
        request_id: int,
        award_input: AwardProposalInput,
    ) -> ServiceOutput:
        principal = self.identity.authorize(principal, *CREATOR_ROLES)
        request_row = self._load_request(db, request_id)
        if principal.role != "admin" and int(request_row["creator_id"]) != principal.profile_id:
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        ensure_action_allowed("request", request_row["status"], "propose_award")

        current_round = int(request_row["current_round"])
        candidates = self.proposals.list_submitted_for_round(db, request_id, current_round)
        chosen = next((row for row in candidates if int(row["id"]) == int(award_input.proposal_id)), None)
        if chosen is None:
            raise ValidationError(
                code="proposal_not_eligible",
                message_key="proposal_not_eligible",
                http_status=409,
                payload={"proposal_id": award_input.proposal_id, "current_round": current_round},
            )

        others = [float(row["total_amount"]) for row in candidates if int(row["id"]) != int(chosen["id"])]
        lowest = is_lowest_total(float(chosen["total_amount"]), others)
        justification = _text(award_input.justification)
        if not lowest and not justification:
            raise ValidationError(
                code="justification_required",
                message_key="justification_required",
                fields={"justification": field_message("justification")},
            )

        existing = self.awards.get_selection_by_request(db, request_id)
        if existing and existing["status"] == "approved":
            raise forbidden_action("award_selection", "approved", "propose_award")

        with db.transaction():
            selection_id = self.awards.upsert_selection(
                db,
                request_id=request_id,
                proposal_id=int(chosen["id"]),
                supplier_id=int(chosen["supplier_id"]),
                amount=float(chosen["total_amount"]),
                is_lowest_price=lowest,
                justification=justification,
                selected_by=principal.profile_id,
            )
            self.requests.update_fields(db, request_id, status="evaluation", round_status="award_pending")

        observe_workflow_transition("award_selection", existing["status"] if existing else None, "pending_approval")
        if request_row["status"] != "evaluation":
            observe_workflow_transition("request", request_row["status"], "evaluation")
        logger.info(
            "award_proposed",
            extra={
                "request_id": request_id,
                "selection_id": selection_id,
                "proposal_id": int(chosen["id"]),
                "is_lowest_price": lowest,
            },
        )
        self.event_bus.publish(AwardProposed(request_id=request_id, selection_id=selection_id))
        selection = self.awards.get_selection(db, selection_id)
        return ServiceOutput(
            payload={"selection": selection, "flow": flow_meta("award_selection", selection["status"])},
            status_code=201 if existing is None else 200,
        )

    def _complete_award(self, db, selection: dict, principal: Principal, notes: str | None) -> int:
        if selection["status"] == "pending_approval":
            self.awards.decide_selection(
                db, int(selection["id"]), status="approved", decided_by=principal.profile_id, notes=notes
            )
        award_id = self.awards.create_award(
            db,
            selection=selection,
            justification=_text(selection.get("creator_justification")) or notes,
            awarded_by=principal.profile_id,
        )
        request_id = int(selection["request_id"])
        winning_id = int(selection["selected_proposal_id"])
        self.requests.update_fields(db, request_id, status="awarded", round_status="closed")

        winning = self.proposals.get_by_id(db, winning_id)
        round_number = int(winning["round_number"]) if winning else None
        self.proposals.set_status(db, [winning_id], "awarded")
        if round_number is not None:
            losers = [
                int(row["id"])
                for row in self.proposals.list_submitted_for_round(db, request_id, round_number)
                if int(row["id"]) != winning_id
            ]
            self.proposals.set_status(db, losers, "not_selected")
        self.suppliers.increment_awards(db, int(selection["selected_supplier_id"]))
        return award_id

    def _already_approved(self, award: dict) -> ServiceOutput:
        return ServiceOutput(payload={"award": award, "already_approved": True})

    def approve_award(
        self,
        db,
        principal: Principal,
        selection_id: int,
        notes: str | None = None,
    ) -> ServiceOutput:
        """Atomic and idempotent on selection_id."""
        principal = self.identity.authorize(principal, *APPROVER_ROLES)
        notes = _text(notes)
        selection = self._load_selection(db, selection_id)
        existing_award = self.awards.get_award_by_selection(db, selection_id)
        if existing_award:
            logger.info("award_already_approved", extra={"selection_id": selection_id})
            return self._already_approved(existing_award)
        ensure_action_allowed("award_selection", selection["status"], "approve_award")
        recovering = selection["status"] == "approved"

        try:
            with db.transaction():
                award_id = self._complete_award(db, selection, principal, notes)
        except TransactionRollbackError as exc:
            logger.critical(
                "award_partial_completion",
                extra={"selection_id": selection_id, "request_id": selection["request_id"]},
                exc_info=True,
            )
            raise PartialCompletionError(
                code="award_partial_completion",
                message_key="award_partial_completion",
                idempotency_key=str(selection_id),
                details=str(exc),
            ) from exc
        except Exception as exc:
            if not is_integrity_error(exc):
                raise
            concurrent = self.awards.get_award_by_selection(db, selection_id)
            if not concurrent:
                raise
            return self._already_approved(concurrent)

        observe_workflow_transition("award_selection", selection["status"], "approved")
        observe_workflow_transition("request", "evaluation", "awarded")
        logger.info(
            "award_approved",
            extra={
                "selection_id": selection_id,
                "award_id": award_id,
                "request_id": selection["request_id"],
                "recovered_partial": recovering,
            },
        )
        self.event_bus.publish(
            AwardApproved(
                request_id=int(selection["request_id"]),
                selection_id=selection_id,
                award_id=award_id,
                supplier_id=int(selection["selected_supplier_id"]),
            )
        )
        return ServiceOutput(
            payload={"award": self.awards.get_award(db, award_id), "already_approved": False},
            status_code=201,
        )

    def reject_award(self, db, principal: Principal, selection_id: int, notes: str | None) -> ServiceOutput:
        principal = self.identity.authorize(principal, *APPROVER_ROLES)
        notes = _text(notes)
        if not notes:
            raise ValidationError(
                code="notes_required",
                message_key="notes_required",
                fields={"notes": field_message("notes")},
            )
        selection = self._load_selection(db, selection_id)
        ensure_action_allowed("award_selection", selection["status"], "reject_award")
        request_id = int(selection["request_id"])

        with db.transaction():
            self.awards.decide_selection(
                db, selection_id, status="rejected", decided_by=principal.profile_id, notes=notes
            )
            self.requests.update_fields(db, request_id, status="evaluation", round_status="award_rejected")

        observe_workflow_transition("award_selection", selection["status"], "rejected")
        logger.info("award_rejected", extra={"selection_id": selection_id, "request_id": request_id})
        self.event_bus.publish(AwardRejected(request_id=request_id, selection_id=selection_id, notes=notes))
        updated = self.awards.get_selection(db, selection_id)
        return ServiceOutput(payload={"selection": updated, "flow": flow_meta("award_selection", updated["status"])})

    def list_pending(self, db, principal: Principal) -> list[dict]:
        self.identity.authorize(principal, *APPROVER_ROLES)
        return self.awards.list_selections(db, status="pending_approval")

    def get_selection(self, db, principal: Principal, selection_id: int) -> dict:
        principal = self.identity.authorize(principal, "creator", "approver", "admin")
        selection = self._load_selection(db, selection_id)
        request_row = self._load_request(db, int(selection["request_id"]))
        if principal.role == "creator" and int(request_row["creator_id"]) != principal.profile_id:
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        round_number = int(request_row["current_round"])
        return {
            "selection": selection,
            "request": request_row,
            "proposal": self.proposals.get_by_id(db, int(selection["selected_proposal_id"])),
            "items": self.proposals.list_items(db, int(selection["selected_proposal_id"])),
            "competing_proposals": self.proposals.list_submitted_for_round(
                db, int(selection["request_id"]), round_number
            ),
            "flow": flow_meta("award_selection", selection["status"]),
        }

    def _ensure_award_visible(self, db, principal: Principal, award: dict) -> None:
        if principal.role in SUPPLIER_ROLES:
            supplier = self.identity.resolve_supplier(db, principal)
            if int(award["winning_supplier_id"]) != int(supplier["id"]):
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        elif principal.role == "creator":
            request_row = self._load_request(db, int(award["request_id"]))
            if int(request_row["creator_id"]) != principal.profile_id:
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")

    def get_award(self, db, principal: Principal, award_id: int) -> dict:
        principal = self.identity.authorize(principal, *sorted(VALID_ROLES))
        award = self.awards.get_award(db, award_id)
        if not award:
            raise NotFoundError(code="award_not_found", message_key="award_not_found")
        self._ensure_award_visible(db, principal, award)
        return award

    def award_for_request(self, db, principal: Principal, request_id: int) -> dict:
        principal = self.identity.authorize(principal, *sorted(VALID_ROLES))
        award = self.awards.get_award_by_request(db, request_id)
        if not award:
            raise NotFoundError(code="award_not_found", message_key="award_not_found")
        self._ensure_award_visible(db, principal, award)
        return award

    def certificate(self, db, principal: Principal, award_id: int) -> dict:
        award = self.get_award(db, principal, award_id)
        request_row = self._load_request(db, int(award["request_id"]))
        supplier = self.suppliers.get_by_id(db, int(award["winning_supplier_id"])) or {}
        proposal = self.proposals.get_by_id(db, int(award["winning_proposal_id"])) or {}
        items = self.proposals.list_items(db, int(award["winning_proposal_id"]))
        document = build_certificate(award, request_row, supplier, proposal, items)
        return {"certificate": document, "text": render_text(document)}
