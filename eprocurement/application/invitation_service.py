from __future__ import annotations

import logging
from typing import Iterable, List

from eprocurement.errors import AuthorizationError
from eprocurement.infrastructure.repositories import InvitationRepository, SupplierRepository


logger = logging.getLogger("eprocurement.invitations")


def distinct_ids(values: Iterable[object]) -> List[int]:
    seen: List[int] = []
    for value in values:
        try:
            supplier_id = int(value)
        except (TypeError, ValueError):
            continue
        if supplier_id not in seen:
            seen.append(supplier_id)
    return seen


class InvitationService:
    def __init__(
        self,
        invitations: InvitationRepository | None = None,
        suppliers: SupplierRepository | None = None,
    ) -> None:
        self.invitations = invitations or InvitationRepository()
        self.suppliers = suppliers or SupplierRepository()

    def invite(self, db, request_id: int, supplier_ids: Iterable[object]) -> List[int]:
        """Create the missing invitations; returns the supplier ids newly invited."""
        wanted = distinct_ids(supplier_ids)
        created: List[int] = []
        with db.transaction():
            existing = self.invitations.existing_supplier_ids(db, request_id)
            for supplier_id in wanted:
                if supplier_id in existing:
                    continue
                self.invitations.create(db, request_id, supplier_id)
                created.append(supplier_id)
            self.suppliers.increment_invitations(db, created)
        if created:
            logger.info(
                "suppliers_invited",
                extra={"request_id": request_id, "supplier_ids": created, "skipped": len(wanted) - len(created)},
            )
        return created

    def withdraw_unlisted(self, db, request_id: int, supplier_ids: Iterable[object]) -> List[int]:
        """Drop invitations of suppliers no longer selected; only valid before approval."""
        keep = set(distinct_ids(supplier_ids))
        with db.transaction():
            removed = sorted(self.invitations.existing_supplier_ids(db, request_id) - keep)
            self.invitations.delete_for_suppliers(db, request_id, removed)
            self.suppliers.decrement_invitations(db, removed)
        if removed:
            logger.info("invitations_withdrawn", extra={"request_id": request_id, "supplier_ids": removed})
        return removed

    def list_for_request(self, db, request_id: int) -> list[dict]:
        return self.invitations.list_for_request(db, request_id)

    def list_for_supplier(self, db, supplier_id: int) -> list[dict]:
        return self.invitations.list_for_supplier(db, supplier_id)

    def supplier_ids(self, db, request_id: int) -> List[int]:
        return self.invitations.supplier_ids_for_request(db, request_id)

    def require_invitation(self, db, request_id: int, supplier_id: int) -> None:
        if not self.invitations.exists(db, request_id, supplier_id):
            raise AuthorizationError(
                code="not_invited",
                message_key="not_invited",
                payload={"request_id": request_id},
            )
