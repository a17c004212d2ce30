from __future__ import annotations

import logging
from typing import Any, Dict, List

from eprocurement.application.identity_service import IdentityService
from eprocurement.application.invitation_service import InvitationService, distinct_ids
from eprocurement.core.event_bus import EventBus, RequestApproved, RequestRejected, RequestSubmitted
from eprocurement.domain.contracts import Principal, RequestInput, ServiceOutput
from eprocurement.errors import AuthorizationError, NotFoundError, TransientIntegrationError, ValidationError
from eprocurement.infrastructure.repositories import (
    AttachmentRepository,
    RequestRepository,
    SupplierRepository,
)
from eprocurement.infrastructure.repositories.base import utc_now_iso
from eprocurement.infrastructure.storage import ObjectStore
from eprocurement.observability import observe_workflow_transition
from eprocurement.policies import APPROVER_ROLES, CREATOR_ROLES, SUPPLIER_ROLES, VALID_ROLES
from eprocurement.procurement.flow_policy import ensure_action_allowed, flow_meta
from eprocurement.procurement.pricing import finite_float
from eprocurement.ui_strings import field_message


logger = logging.getLogger("eprocurement.requests")

VISIBLE_TO_SUPPLIERS = ("active", "evaluation", "awarded")


def _clean(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def _parse_budget(value: Any, errors: Dict[str, str]) -> float | None:
    if value is None or value == "":
        return None
    budget = finite_float(value)
    if budget is None or budget < 0:
        errors["internal_budget"] = field_message("internal_budget")
        return None
    return budget


def _parse_max_rounds(value: Any, default: int, limit: int, errors: Dict[str, str]) -> int:
    if value is None or value == "":
        return default
    try:
        max_rounds = int(value)
    except (TypeError, ValueError):
        errors["max_rounds"] = field_message("max_rounds")
        return default
    if max_rounds < 1 or max_rounds > limit:
        errors["max_rounds"] = field_message("max_rounds")
        return default
    return max_rounds


def supplier_view(request_row: dict) -> dict:
    visible = dict(request_row)
    visible.pop("internal_budget", None)
    return visible


class RequestService:
    def __init__(
        self,
        *,
        identity: IdentityService,
        invitations: InvitationService,
        event_bus: EventBus,
        storage: ObjectStore | None = None,
        requests: RequestRepository | None = None,
        suppliers: SupplierRepository | None = None,
        attachments: AttachmentRepository | None = None,
        default_max_rounds: int = 2,
        max_rounds_limit: int = 5,
    ) -> None:
        self.identity = identity
        self.invitations = invitations
        self.event_bus = event_bus
        self.storage = storage
        self.requests = requests or RequestRepository()
        self.suppliers = suppliers or SupplierRepository()
        self.attachments = attachments or AttachmentRepository()
        self.default_max_rounds = int(default_max_rounds)
        self.max_rounds_limit = int(max_rounds_limit)

    def load(self, db, request_id: int) -> dict:
        row = self.requests.get_by_id(db, request_id)
        if not row:
            raise NotFoundError(
                code="request_not_found",
                message_key="request_not_found",
                payload={"request_id": request_id},
            )
        return row

    @staticmethod
    def ensure_owner(principal: Principal, request_row: dict) -> None:
        if principal.role == "admin":
            return
        if int(request_row["creator_id"]) != int(principal.profile_id):
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")

    def _load_own_draft(self, db, principal: Principal, request_id: int, action: str) -> dict:
        row = self.load(db, request_id)
        self.ensure_owner(principal, row)
        ensure_action_allowed("request", row["status"], action)
        return row

    def save_draft(
        self,
        db,
        principal: Principal,
        request_input: RequestInput,
        request_id: int | None = None,
    ) -> ServiceOutput:
        principal = self.identity.authorize(principal, *CREATOR_ROLES)
        errors: Dict[str, str] = {}
        budget = _parse_budget(request_input.internal_budget, errors)
        max_rounds = _parse_max_rounds(
            request_input.max_rounds, self.default_max_rounds, self.max_rounds_limit, errors
        )
        if errors:
            raise ValidationError(code="validation_error", fields=errors)

        fields = {
            "title": _clean(request_input.title),
            "description": _clean(request_input.description),
            "event_type": _clean(request_input.event_type),
            "internal_budget": budget,
            "max_rounds": max_rounds,
            "round_deadline": _clean(request_input.round_deadline),
        }
        with db.transaction():
            if request_id is None:
                request_id = self.requests.create(db, creator_id=principal.profile_id, status="draft", **fields)
                created = True
            else:
                self._load_own_draft(db, principal, request_id, "edit_request")
                self.requests.update_fields(db, request_id, current_round=1, **fields)
                created = False

        row = self.load(db, request_id)
        logger.info("request_draft_saved", extra={"request_id": request_id, "created": created})
        return ServiceOutput(
            payload={"request": row, "flow": flow_meta("request", row["status"])},
            status_code=201 if created else 200,
        )

    def _validate_submission(self, db, request_input: RequestInput) -> tuple[Dict[str, Any], List[int]]:
        errors: Dict[str, str] = {}
        title = _clean(request_input.title)
        description = _clean(request_input.description)
        event_type = _clean(request_input.event_type)
        if not title:
            errors["title"] = field_message("title")
        if not description:
            errors["description"] = field_message("description")
        if not event_type:
            errors["event_type"] = field_message("event_type")
        supplier_ids = distinct_ids(request_input.supplier_ids or ())
        if not supplier_ids:
            errors["supplier_ids"] = field_message("supplier_ids")
        budget = _parse_budget(request_input.internal_budget, errors)
        max_rounds = _parse_max_rounds(
            request_input.max_rounds, self.default_max_rounds, self.max_rounds_limit, errors
        )
        if errors:
            raise ValidationError(code="validation_error", fields=errors)

        active = self.suppliers.active_ids(db, supplier_ids)
        invalid = [supplier_id for supplier_id in supplier_ids if supplier_id not in active]
        if invalid:
            raise ValidationError(
                code="suppliers_invalid",
                message_key="suppliers_invalid",
                fields={"supplier_ids": field_message("supplier_ids")},
                payload={"invalid_supplier_ids": invalid},
            )
        fields = {
            "title": title,
            "description": description,
            "event_type": event_type,
            "internal_budget": budget,
            "max_rounds": max_rounds,
            "round_deadline": _clean(request_input.round_deadline),
        }
        return fields, supplier_ids

    def submit(
        self,
        db,
        principal: Principal,
        request_input: RequestInput,
        request_id: int | None = None,
    ) -> ServiceOutput:
        principal = self.identity.authorize(principal, *CREATOR_ROLES)
        previous_status = None
        if request_id is not None:
            previous_status = self._load_own_draft(db, principal, request_id, "submit_request")["status"]
        fields, supplier_ids = self._validate_submission(db, request_input)

        with db.transaction():
            if request_id is None:
                request_id = self.requests.create(
                    db, creator_id=principal.profile_id, status="pending_approval", **fields
                )
            else:
                self.requests.update_fields(
                    db,
                    request_id,
                    status="pending_approval",
                    current_round=1,
                    round_status=None,
                    **fields,
                )
            if previous_status is not None:
                self.invitations.withdraw_unlisted(db, request_id, supplier_ids)
            invited = self.invitations.invite(db, request_id, supplier_ids)

        observe_workflow_transition("request", previous_status, "pending_approval")
        logger.info(
            "request_submitted",
            extra={"request_id": request_id, "creator_id": principal.profile_id, "invited": len(invited)},
        )
        self.event_bus.publish(RequestSubmitted(request_id=request_id, creator_id=principal.profile_id))
        row = self.load(db, request_id)
        return ServiceOutput(
            payload={
                "request": row,
                "invited_supplier_ids": self.invitations.supplier_ids(db, request_id),
                "flow": flow_meta("request", row["status"]),
            },
            status_code=201 if previous_status is None else 200,
        )

    def approve(self, db, principal: Principal, request_id: int, comments: str | None = None) -> ServiceOutput:
        principal = self.identity.authorize(principal, *APPROVER_ROLES)
        with db.transaction():
            row = self.load(db, request_id)
            ensure_action_allowed("request", row["status"], "approve_request")
            self.requests.update_fields(
                db,
                request_id,
                status="active",
                round_status="accepting_proposals",
                approved_by=principal.profile_id,
                approved_at=utc_now_iso(),
                approval_comments=_clean(comments),
            )

        observe_workflow_transition("request", row["status"], "active")
        logger.info("request_approved", extra={"request_id": request_id, "approved_by": principal.profile_id})
        self.event_bus.publish(
            RequestApproved(
                request_id=request_id,
                creator_id=int(row["creator_id"]),
                approved_by=principal.profile_id,
            )
        )
        updated = self.load(db, request_id)
        return ServiceOutput(payload={"request": updated, "flow": flow_meta("request", updated["status"])})

    def reject(self, db, principal: Principal, request_id: int, comments: str | None) -> ServiceOutput:
        principal = self.identity.authorize(principal, *APPROVER_ROLES)
        comments = _clean(comments)
        if not comments:
            raise ValidationError(
                code="comments_required",
                message_key="comments_required",
                fields={"comments": field_message("comments")},
            )
        with db.transaction():
            row = self.load(db, request_id)
            ensure_action_allowed("request", row["status"], "reject_request")
            self.requests.update_fields(
                db,
                request_id,
                status="draft",
                approval_comments=comments,
            )

        observe_workflow_transition("request", row["status"], "draft")
        logger.info("request_rejected", extra={"request_id": request_id, "rejected_by": principal.profile_id})
        self.event_bus.publish(
            RequestRejected(request_id=request_id, creator_id=int(row["creator_id"]), comments=comments)
        )
        updated = self.load(db, request_id)
        return ServiceOutput(payload={"request": updated, "flow": flow_meta("request", updated["status"])})

    def cancel(self, db, principal: Principal, request_id: int, reason: str | None = None) -> ServiceOutput:
        principal = self.identity.authorize(principal, *CREATOR_ROLES)
        with db.transaction():
            row = self.load(db, request_id)
            self.ensure_owner(principal, row)
            ensure_action_allowed("request", row["status"], "cancel_request")
            self.requests.update_fields(
                db,
                request_id,
                status="cancelled",
                round_status="closed",
                cancel_reason=_clean(reason),
            )

        observe_workflow_transition("request", row["status"], "cancelled")
        logger.info("request_cancelled", extra={"request_id": request_id, "cancelled_by": principal.profile_id})
        updated = self.load(db, request_id)
        return ServiceOutput(payload={"request": updated, "flow": flow_meta("request", updated["status"])})

    def delete(self, db, principal: Principal, request_id: int) -> ServiceOutput:
        principal = self.identity.authorize(principal, *APPROVER_ROLES)
        with db.transaction():
            row = self.load(db, request_id)
            ensure_action_allowed("request", row["status"], "delete_request")
            file_paths = self.attachments.paths_for_request(db, request_id)
            self.requests.delete_cascade(db, request_id)

        observe_workflow_transition("request", row["status"], "deleted")
        logger.warning(
            "request_deleted",
            extra={"request_id": request_id, "deleted_by": principal.profile_id, "previous_status": row["status"]},
        )
        removed = self._remove_files(request_id, file_paths)
        return ServiceOutput(
            payload={"deleted": True, "request_id": request_id, "files_removed": removed},
        )

    def _remove_files(self, request_id: int, file_paths: List[str]) -> int:
        if self.storage is None:
            return 0
        removed = 0
        for path in file_paths:
            try:
                if self.storage.delete(path):
                    removed += 1
            except (OSError, ValueError, TransientIntegrationError):
                logger.warning(
                    "attachment_cleanup_failed",
                    extra={"request_id": request_id, "file_path": path},
                    exc_info=True,
                )
        return removed

    def get(self, db, principal: Principal, request_id: int) -> dict:
        principal = self.identity.authorize(principal, *sorted(VALID_ROLES))
        row = self.load(db, request_id)
        if principal.role in SUPPLIER_ROLES:
            supplier = self.identity.resolve_supplier(db, principal)
            self.invitations.require_invitation(db, request_id, int(supplier["id"]))
            if row["status"] not in VISIBLE_TO_SUPPLIERS:
                raise AuthorizationError(code="permission_denied", message_key="permission_denied")
            return {"request": supplier_view(row), "flow": flow_meta("request", row["status"])}

        if principal.role == "creator":
            self.ensure_owner(principal, row)
        return {
            "request": row,
            "invitations": self.invitations.list_for_request(db, request_id),
            "flow": flow_meta("request", row["status"]),
        }

    def list_for_creator(self, db, principal: Principal) -> list[dict]:
        principal = self.identity.authorize(principal, *CREATOR_ROLES)
        return self.requests.list_by_creator(db, principal.profile_id)

    def list_pending_approval(self, db, principal: Principal) -> list[dict]:
        self.identity.authorize(principal, *APPROVER_ROLES)
        return self.requests.list_by_statuses(db, ["pending_approval"])

    def list_active(self, db, principal: Principal) -> list[dict]:
        self.identity.authorize(principal, "creator", "approver", "admin")
        return self.requests.list_by_statuses(db, ["active", "evaluation"])

    def list_suppliers(self, db, principal: Principal) -> list[dict]:
        self.identity.authorize(principal, *CREATOR_ROLES)
        return self.suppliers.list_active(db)
