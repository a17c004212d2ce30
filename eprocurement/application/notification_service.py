from __future__ import annotations

import logging
from typing import Callable, Iterable

from eprocurement.core.event_bus import (
    AwardApproved,
    AwardProposed,
    AwardRejected,
    EventBus,
    ProposalSubmitted,
    RequestApproved,
    RequestRejected,
    RequestSubmitted,
    RoundAdvanced,
)
from eprocurement.domain.contracts import Principal, ServiceOutput
from eprocurement.errors import AuthorizationError, NotFoundError
from eprocurement.infrastructure.repositories import (
    InvitationRepository,
    NotificationRepository,
    ProfileRepository,
    RequestRepository,
    SupplierRepository,
)
from eprocurement.policies import APPROVER_ROLES
from eprocurement.ui_strings import notification_text


logger = logging.getLogger("eprocurement.notifications")


class NotificationService:
    """Append-only notification sink fed by domain events."""

    def __init__(
        self,
        db_provider: Callable[[], object] | None = None,
        notifications: NotificationRepository | None = None,
        profiles: ProfileRepository | None = None,
        requests: RequestRepository | None = None,
        suppliers: SupplierRepository | None = None,
        invitations: InvitationRepository | None = None,
    ) -> None:
        self.db_provider = db_provider
        self.notifications = notifications or NotificationRepository()
        self.profiles = profiles or ProfileRepository()
        self.requests = requests or RequestRepository()
        self.suppliers = suppliers or SupplierRepository()
        self.invitations = invitations or InvitationRepository()

    def register_event_handlers(self, bus: EventBus) -> None:
        bus.subscribe(RequestSubmitted, self.on_request_submitted)
        bus.subscribe(RequestApproved, self.on_request_approved)
        bus.subscribe(RequestRejected, self.on_request_rejected)
        bus.subscribe(ProposalSubmitted, self.on_proposal_submitted)
        bus.subscribe(RoundAdvanced, self.on_round_advanced)
        bus.subscribe(AwardProposed, self.on_award_proposed)
        bus.subscribe(AwardApproved, self.on_award_approved)
        bus.subscribe(AwardRejected, self.on_award_rejected)

    def _db(self):
        if self.db_provider is None:
            raise RuntimeError("NotificationService sin proveedor de base de datos.")
        return self.db_provider()

    def notify(
        self,
        db,
        user_ids: Iterable[int],
        kind: str,
        related_id: int | None = None,
        **values,
    ) -> int:
        recipients = sorted({int(user_id) for user_id in user_ids if user_id})
        if not recipients:
            return 0
        title, message = notification_text(kind, **values)
        with db.transaction():
            for user_id in recipients:
                self.notifications.create(
                    db,
                    user_id=user_id,
                    title=title,
                    message=message,
                    notification_type=kind,
                    related_id=related_id,
                )
        logger.info(
            "notification_sent",
            extra={"kind": kind, "related_id": related_id, "recipients": len(recipients)},
        )
        return len(recipients)

    def _request(self, db, request_id: int) -> dict:
        row = self.requests.get_by_id(db, request_id)
        if not row:
            raise NotFoundError(code="request_not_found", message_key="request_not_found")
        return row

    def _supplier_user_ids(self, db, supplier_ids: Iterable[int]) -> list[int]:
        return self.profiles.list_ids_by_emails(db, self.suppliers.contact_emails(db, supplier_ids))

    def on_request_submitted(self, event: RequestSubmitted) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        self.notify(
            db,
            self.profiles.list_ids_by_roles(db, APPROVER_ROLES),
            "request_submitted",
            related_id=event.request_id,
            request_number=request_row["request_number"],
            title=request_row["title"],
        )

    def on_request_approved(self, event: RequestApproved) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        values = {"request_number": request_row["request_number"], "title": request_row["title"]}
        self.notify(db, [event.creator_id], "request_approved", related_id=event.request_id, **values)
        supplier_ids = self.invitations.supplier_ids_for_request(db, event.request_id)
        self.notify(
            db,
            self._supplier_user_ids(db, supplier_ids),
            "invitation",
            related_id=event.request_id,
            **values,
        )
        with db.transaction():
            self.invitations.mark_notified(db, event.request_id)

    def on_request_rejected(self, event: RequestRejected) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        self.notify(
            db,
            [event.creator_id],
            "request_rejected",
            related_id=event.request_id,
            request_number=request_row["request_number"],
            title=request_row["title"],
            comments=event.comments,
        )

    def on_proposal_submitted(self, event: ProposalSubmitted) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        supplier = self.suppliers.get_by_id(db, event.supplier_id) or {}
        self.notify(
            db,
            [request_row["creator_id"]],
            "proposal_submitted",
            related_id=event.proposal_id,
            supplier_name=supplier.get("name") or "",
            request_number=request_row["request_number"],
            round_number=event.round_number,
        )

    def on_round_advanced(self, event: RoundAdvanced) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        self.notify(
            db,
            self._supplier_user_ids(db, event.supplier_ids),
            "round_advanced",
            related_id=event.request_id,
            request_number=request_row["request_number"],
            round_number=event.round_number,
        )

    def on_award_proposed(self, event: AwardProposed) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        self.notify(
            db,
            self.profiles.list_ids_by_roles(db, APPROVER_ROLES),
            "award_proposed",
            related_id=event.selection_id,
            request_number=request_row["request_number"],
        )

    def on_award_approved(self, event: AwardApproved) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        supplier = self.suppliers.get_by_id(db, event.supplier_id) or {}
        self.notify(
            db,
            [request_row["creator_id"]],
            "award_approved",
            related_id=event.award_id,
            request_number=request_row["request_number"],
            supplier_name=supplier.get("name") or "",
        )
        self.notify(
            db,
            self._supplier_user_ids(db, [event.supplier_id]),
            "award_won",
            related_id=event.award_id,
            request_number=request_row["request_number"],
        )

    def on_award_rejected(self, event: AwardRejected) -> None:
        db = self._db()
        request_row = self._request(db, event.request_id)
        self.notify(
            db,
            [request_row["creator_id"]],
            "award_rejected",
            related_id=event.selection_id,
            request_number=request_row["request_number"],
            notes=event.notes,
        )

    def list_for_user(self, db, principal: Principal) -> dict:
        return {
            "notifications": self.notifications.list_for_user(db, principal.profile_id),
            "unread_count": self.notifications.unread_count(db, principal.profile_id),
        }

    def mark_read(self, db, principal: Principal, notification_id: int) -> ServiceOutput:
        row = self.notifications.get_by_id(db, notification_id)
        if not row:
            raise NotFoundError(code="notification_not_found", message_key="notification_not_found")
        if int(row["user_id"]) != principal.profile_id:
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        with db.transaction():
            self.notifications.mark_read(db, notification_id)
        return ServiceOutput(payload={"id": notification_id, "is_read": True})

    def mark_all_read(self, db, principal: Principal) -> ServiceOutput:
        with db.transaction():
            self.notifications.mark_all_read(db, principal.profile_id)
        return ServiceOutput(payload={"unread_count": 0})
