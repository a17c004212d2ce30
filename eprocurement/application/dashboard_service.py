from __future__ import annotations

from eprocurement.application.identity_service import IdentityService
from eprocurement.domain.contracts import Principal
from eprocurement.infrastructure.repositories import (
    AwardRepository,
    InvitationRepository,
    ProposalRepository,
    RequestRepository,
)
from eprocurement.policies import SUPPLIER_ROLES, VALID_ROLES
from eprocurement.ui_strings import status_keys_for_group


class DashboardService:
    def __init__(
        self,
        *,
        identity: IdentityService,
        poll_interval_seconds: int = 30,
        requests: RequestRepository | None = None,
        awards: AwardRepository | None = None,
        invitations: InvitationRepository | None = None,
        proposals: ProposalRepository | None = None,
    ) -> None:
        self.identity = identity
        self.poll_interval_seconds = int(poll_interval_seconds)
        self.requests = requests or RequestRepository()
        self.awards = awards or AwardRepository()
        self.invitations = invitations or InvitationRepository()
        self.proposals = proposals or ProposalRepository()

    def for_principal(self, db, principal: Principal) -> dict:
        principal = self.identity.authorize(principal, *sorted(VALID_ROLES))
        if principal.role in ("approver", "admin"):
            counts = self.requests.count_by_status(db)
            return {
                "role": principal.role,
                "pending_requests": counts.get("pending_approval", 0),
                "pending_awards": self.awards.count_selections(db, status="pending_approval"),
                "active_requests": counts.get("active", 0) + counts.get("evaluation", 0),
                "awarded_requests": counts.get("awarded", 0),
                "poll_interval_seconds": self.poll_interval_seconds,
            }
        if principal.role in SUPPLIER_ROLES:
            supplier = self.identity.resolve_supplier(db, principal)
            counts = self.proposals.count_for_supplier_by_status(db, int(supplier["id"]))
            submitted = sum(total for status, total in counts.items() if status != "draft")
            return {
                "role": principal.role,
                "active_invitations": self.invitations.count_active_for_supplier(db, int(supplier["id"])),
                "draft_proposals": counts.get("draft", 0),
                "submitted_proposals": submitted,
                "awarded_proposals": counts.get("awarded", 0),
                "poll_interval_seconds": self.poll_interval_seconds,
            }

        counts = self.requests.count_by_status(db, creator_id=principal.profile_id)
        by_status = {status: counts.get(status, 0) for status in status_keys_for_group("request")}
        return {
            "role": principal.role,
            "by_status": by_status,
            "total_requests": sum(counts.values()),
            "poll_interval_seconds": self.poll_interval_seconds,
        }
