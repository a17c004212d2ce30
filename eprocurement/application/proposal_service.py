from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from eprocurement.application.identity_service import IdentityService
from eprocurement.application.invitation_service import InvitationService
from eprocurement.core.event_bus import EventBus, ProposalSubmitted
from eprocurement.db import is_unique_violation
from eprocurement.domain.contracts import AttachmentUpload, Principal, ProposalInput, ServiceOutput
from eprocurement.errors import AuthorizationError, NotFoundError, TransientIntegrationError, ValidationError
from eprocurement.infrastructure.repositories import (
    AttachmentRepository,
    FeedbackRepository,
    ProposalRepository,
    RequestRepository,
)
from eprocurement.infrastructure.repositories.base import utc_now_iso
from eprocurement.infrastructure.storage import ObjectStore, attachment_path
from eprocurement.observability import observe_attachment, observe_workflow_transition
from eprocurement.policies import SUPPLIER_ROLES, VALID_ROLES
from eprocurement.procurement.flow_policy import flow_meta
from eprocurement.procurement.pricing import compute_totals, has_priced_item, normalize_items, price_increases
from eprocurement.ui_strings import field_message


logger = logging.getLogger("eprocurement.proposals")

REVIEWER_ROLES = ("creator", "approver", "admin")


def parse_mime_types(raw: object) -> set[str]:
    if isinstance(raw, (list, tuple, set)):
        values = raw
    else:
        values = str(raw or "").split(",")
    return {str(value).strip().lower() for value in values if str(value).strip()}


class ProposalService:
    def __init__(
        self,
        *,
        identity: IdentityService,
        invitations: InvitationService,
        event_bus: EventBus,
        storage: ObjectStore | None = None,
        requests: RequestRepository | None = None,
        proposals: ProposalRepository | None = None,
        attachments: AttachmentRepository | None = None,
        feedback: FeedbackRepository | None = None,
        enforce_price_reduction: bool = True,
        attachment_max_bytes: int = 10 * 1024 * 1024,
        allowed_mime_types: Iterable[str] | str = ("application/pdf",),
    ) -> None:
        self.identity = identity
        self.invitations = invitations
        self.event_bus = event_bus
        self.storage = storage
        self.requests = requests or RequestRepository()
        self.proposals = proposals or ProposalRepository()
        self.attachments = attachments or AttachmentRepository()
        self.feedback = feedback or FeedbackRepository()
        self.enforce_price_reduction = bool(enforce_price_reduction)
        self.attachment_max_bytes = int(attachment_max_bytes)
        self.allowed_mime_types = parse_mime_types(allowed_mime_types)

    def _load_request(self, db, request_id: int) -> dict:
        row = self.requests.get_by_id(db, request_id)
        if not row:
            raise NotFoundError(code="request_not_found", message_key="request_not_found")
        return row

    def _load_proposal(self, db, proposal_id: int) -> dict:
        proposal = self.proposals.get_by_id(db, proposal_id)
        if not proposal:
            raise NotFoundError(code="proposal_not_found", message_key="proposal_not_found")
        return proposal

    def _supplier_context(self, db, principal: Principal, request_id: int) -> tuple[Principal, dict, dict]:
        principal = self.identity.authorize(principal, *SUPPLIER_ROLES)
        supplier = self.identity.resolve_supplier(db, principal)
        request_row = self._load_request(db, request_id)
        self.invitations.require_invitation(db, request_id, int(supplier["id"]))
        if request_row["status"] != "active" or request_row.get("round_status") not in (None, "accepting_proposals"):
            raise ValidationError(
                code="request_not_accepting_proposals",
                message_key="request_not_accepting_proposals",
                http_status=409,
                payload={"status": request_row["status"], "round_status": request_row.get("round_status")},
            )
        return principal, supplier, request_row

    @staticmethod
    def _already_submitted(round_number: int) -> ValidationError:
        return ValidationError(
            code="proposal_already_submitted",
            message_key="proposal_already_submitted",
            http_status=409,
            payload={"round_number": round_number},
        )

    def _previous_submitted(self, db, supplier_id: int, request_id: int, round_number: int) -> dict | None:
        previous = [
            row
            for row in self.proposals.list_for_supplier(db, supplier_id, request_id=request_id)
            if int(row["round_number"]) < round_number and row.get("submitted_at") and row["status"] != "draft"
        ]
        return previous[-1] if previous else None

    def _check_price_reduction(self, db, supplier_id: int, request_id: int, round_number: int, items) -> None:
        if not self.enforce_price_reduction or round_number <= 1:
            return
        previous = self._previous_submitted(db, supplier_id, request_id, round_number)
        if not previous:
            return
        increases = price_increases(self.proposals.list_items(db, int(previous["id"])), items)
        if increases:
            raise ValidationError(
                code="price_increase_not_allowed",
                message_key="price_increase_not_allowed",
                payload={"items": increases, "previous_round": int(previous["round_number"])},
            )

    def _write(
        self,
        db,
        *,
        request_id: int,
        supplier: dict,
        round_number: int,
        existing: dict | None,
        totals,
        contextual_info: str | None,
        status: str,
        submitted_at: str | None,
    ) -> int:
        try:
            with db.transaction():
                if existing:
                    proposal_id = int(existing["id"])
                    self.proposals.update_header(
                        db,
                        proposal_id,
                        totals=totals,
                        contextual_info=contextual_info,
                        status=status,
                        submitted_at=submitted_at,
                    )
                else:
                    proposal_id = self.proposals.create(
                        db,
                        request_id=request_id,
                        supplier_id=int(supplier["id"]),
                        round_number=round_number,
                        totals=totals,
                        contextual_info=contextual_info,
                        status=status,
                        submitted_at=submitted_at,
                    )
                self.proposals.replace_items(db, proposal_id, totals)
        except Exception as exc:
            if is_unique_violation(exc, "proposals"):
                raise self._already_submitted(round_number) from exc
            raise
        return proposal_id

    def save_draft(self, db, principal: Principal, request_id: int, proposal_input: ProposalInput) -> ServiceOutput:
        principal, supplier, request_row = self._supplier_context(db, principal, request_id)
        round_number = int(request_row["current_round"])
        existing = self.proposals.get_by_key(db, request_id, int(supplier["id"]), round_number)
        if existing and existing["status"] != "draft":
            raise self._already_submitted(round_number)

        totals = compute_totals(normalize_items(proposal_input.items), supplier.get("contract_fee_percentage"))
        proposal_id = self._write(
            db,
            request_id=request_id,
            supplier=supplier,
            round_number=round_number,
            existing=existing,
            totals=totals,
            contextual_info=(proposal_input.contextual_info or "").strip() or None,
            status="draft",
            submitted_at=None,
        )
        logger.info(
            "proposal_draft_saved",
            extra={"request_id": request_id, "proposal_id": proposal_id, "round_number": round_number},
        )
        return ServiceOutput(
            payload=self._detail(db, self._load_proposal(db, proposal_id)),
            status_code=200 if existing else 201,
        )

    def submit(
        self,
        db,
        principal: Principal,
        request_id: int,
        proposal_input: ProposalInput,
        attachments: Sequence[AttachmentUpload] = (),
    ) -> ServiceOutput:
        principal, supplier, request_row = self._supplier_context(db, principal, request_id)
        supplier_id = int(supplier["id"])
        round_number = int(request_row["current_round"])

        items = normalize_items(proposal_input.items)
        if not has_priced_item(items):
            raise ValidationError(
                code="valid_items_required",
                message_key="valid_items_required",
                fields={"items": field_message("items")},
            )
        existing = self.proposals.get_by_key(db, request_id, supplier_id, round_number)
        if existing and existing["status"] != "draft":
            raise self._already_submitted(round_number)
        self._check_price_reduction(db, supplier_id, request_id, round_number, items)

        totals = compute_totals(items, supplier.get("contract_fee_percentage"))
        proposal_id = self._write(
            db,
            request_id=request_id,
            supplier=supplier,
            round_number=round_number,
            existing=existing,
            totals=totals,
            contextual_info=(proposal_input.contextual_info or "").strip() or None,
            status="submitted",
            submitted_at=utc_now_iso(),
        )
        observe_workflow_transition("proposal", existing["status"] if existing else None, "submitted")
        logger.info(
            "proposal_submitted",
            extra={
                "request_id": request_id,
                "proposal_id": proposal_id,
                "supplier_id": supplier_id,
                "round_number": round_number,
                "total_amount": totals.total_amount,
            },
        )

        attachment_results = self.store_attachments(db, proposal_id, attachments)
        self.event_bus.publish(
            ProposalSubmitted(
                request_id=request_id,
                proposal_id=proposal_id,
                supplier_id=supplier_id,
                round_number=round_number,
            )
        )
        payload = self._detail(db, self._load_proposal(db, proposal_id))
        payload["attachment_results"] = attachment_results
        return ServiceOutput(payload=payload, status_code=201)

    def _reject_upload(self, upload: AttachmentUpload) -> str | None:
        file_name = (upload.file_name or "").strip()
        mime_type = (upload.mime_type or "").strip().lower()
        if not mime_type and file_name.lower().endswith(".pdf"):
            mime_type = "application/pdf"
        if self.allowed_mime_types and mime_type not in self.allowed_mime_types:
            return "mime_type_not_allowed"
        size = len(upload.content or b"")
        if size == 0:
            return "empty_file"
        if size > self.attachment_max_bytes:
            return "file_too_large"
        return None

    def store_attachments(self, db, proposal_id: int, uploads: Sequence[AttachmentUpload]) -> List[Dict[str, object]]:
        results: List[Dict[str, object]] = []
        for upload in uploads or ():
            reason = self._reject_upload(upload)
            if reason is None and self.storage is None:
                reason = "storage_unavailable"
            if reason:
                observe_attachment("rejected")
                logger.info(
                    "attachment_skipped",
                    extra={"proposal_id": proposal_id, "file_name": upload.file_name, "reason": reason},
                )
                results.append({"file_name": upload.file_name, "stored": False, "reason": reason})
                continue

            key = attachment_path(proposal_id, upload.file_name)
            try:
                self.storage.put(key, upload.content, upload.mime_type or "application/pdf")
                with db.transaction():
                    self.attachments.create(
                        db,
                        proposal_id=proposal_id,
                        file_name=upload.file_name,
                        file_path=key,
                        file_size=len(upload.content),
                        mime_type=upload.mime_type or "application/pdf",
                    )
            except TransientIntegrationError as exc:
                observe_attachment("failed")
                logger.warning(
                    "attachment_store_failed",
                    extra={"proposal_id": proposal_id, "file_name": upload.file_name, "error": exc.code},
                )
                results.append({"file_name": upload.file_name, "stored": False, "reason": exc.code})
                continue
            observe_attachment("stored")
            results.append({"file_name": upload.file_name, "stored": True, "file_path": key})
        return results

    def _detail(self, db, proposal: dict, *, include_feedback: bool = False) -> dict:
        proposal_id = int(proposal["id"])
        detail = {
            "proposal": proposal,
            "items": self.proposals.list_items(db, proposal_id),
            "attachments": self.attachments.list_for_proposal(db, proposal_id),
            "flow": flow_meta("proposal", proposal["status"]),
        }
        if include_feedback:
            detail["feedback"] = self.feedback.list_feedback_for_proposals(db, [proposal_id])
        return detail

    def _with_items(self, db, proposals: List[dict]) -> List[dict]:
        items_by_proposal: Dict[int, List[dict]] = {}
        for item in self.proposals.list_items_for_proposals(db, [int(row["id"]) for row in proposals]):
            items_by_proposal.setdefault(int(item["proposal_id"]), []).append(item)
        return [dict(row, items=items_by_proposal.get(int(row["id"]), [])) for row in proposals]

    def get(self, db, principal: Principal, proposal_id: int) -> dict:
        principal = self.identity.authorize(principal, *sorted(VALID_ROLES))
        proposal = self._load_proposal(db, proposal_id)
        if principal.role in SUPPLIER_ROLES:
            supplier = self.identity.resolve_supplier(db, principal)
            if int(proposal["supplier_id"]) != int(supplier["id"]):
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")
            return self._detail(db, proposal, include_feedback=True)

        if proposal["status"] == "draft":
            raise NotFoundError(code="proposal_not_found", message_key="proposal_not_found")
        if principal.role == "creator":
            request_row = self._load_request(db, int(proposal["request_id"]))
            if int(request_row["creator_id"]) != principal.profile_id:
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        return self._detail(db, proposal, include_feedback=True)

    def list_for_request(self, db, principal: Principal, request_id: int, round_number: int | None = None) -> dict:
        principal = self.identity.authorize(principal, *REVIEWER_ROLES)
        request_row = self._load_request(db, request_id)
        if principal.role == "creator" and int(request_row["creator_id"]) != principal.profile_id:
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        proposals = self.proposals.list_for_request(db, request_id, round_number=round_number)
        return {
            "request_id": request_id,
            "current_round": int(request_row["current_round"]),
            "max_rounds": int(request_row["max_rounds"]),
            "round_number": round_number,
            "proposals": self._with_items(db, proposals),
        }

    def history_for_supplier(self, db, principal: Principal, request_id: int) -> dict:
        principal = self.identity.authorize(principal, *SUPPLIER_ROLES)
        supplier = self.identity.resolve_supplier(db, principal)
        self.invitations.require_invitation(db, request_id, int(supplier["id"]))
        proposals = self._with_items(
            db, self.proposals.list_for_supplier(db, int(supplier["id"]), request_id=request_id)
        )
        feedback_rows = self.feedback.list_feedback_for_proposals(db, [int(row["id"]) for row in proposals])
        rounds: Dict[int, dict] = {}
        for proposal in proposals:
            round_number = int(proposal["round_number"])
            rounds[round_number] = {"round_number": round_number, "proposal": proposal, "feedback": []}
        for row in feedback_rows:
            round_entry = rounds.get(int(row["round_number"]))
            if round_entry is not None:
                round_entry["feedback"].append(row)
        return {"request_id": request_id, "rounds": [rounds[key] for key in sorted(rounds)]}

    def list_for_supplier(self, db, principal: Principal) -> list[dict]:
        principal = self.identity.authorize(principal, *SUPPLIER_ROLES)
        supplier = self.identity.resolve_supplier(db, principal)
        return self.proposals.list_for_supplier(db, int(supplier["id"]))

    def invitations_for_supplier(self, db, principal: Principal) -> list[dict]:
        principal = self.identity.authorize(principal, *SUPPLIER_ROLES)
        supplier = self.identity.resolve_supplier(db, principal)
        return self.invitations.list_for_supplier(db, int(supplier["id"]))

    def download_attachment(self, db, principal: Principal, file_path: str) -> tuple[dict, bytes]:
        principal = self.identity.authorize(principal, *sorted(VALID_ROLES))
        attachment = self.attachments.get_by_path(db, file_path)
        if not attachment or self.storage is None:
            raise NotFoundError(code="attachment_not_found", message_key="attachment_not_found")
        if principal.role in SUPPLIER_ROLES:
            supplier = self.identity.resolve_supplier(db, principal)
            if int(attachment["supplier_id"]) != int(supplier["id"]):
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        elif principal.role == "creator":
            request_row = self._load_request(db, int(attachment["request_id"]))
            if int(request_row["creator_id"]) != principal.profile_id:
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        try:
            content = self.storage.get(attachment["file_path"])
        except FileNotFoundError as exc:
            raise NotFoundError(code="attachment_not_found", message_key="attachment_not_found") from exc
        return attachment, content
