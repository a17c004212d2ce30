from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Protocol

from werkzeug.security import check_password_hash

from eprocurement.domain.contracts import AuthLoginInput, Principal
from eprocurement.errors import AuthorizationError, NotFoundError, TransientIntegrationError
from eprocurement.infrastructure.repositories import ProfileRepository, SupplierRepository
from eprocurement.policies import normalize_role, require_roles


logger = logging.getLogger("eprocurement.identity")

STATE_CONSISTENT = "consistent"
STATE_REFRESHING = "refreshing"
STATE_RESOLVED = "resolved"
STATE_FAILED = "failed"


class IdentityProvider(Protocol):
    def refresh(self, principal: Principal) -> Principal:
        """Return the principal with a freshly issued role claim."""


@dataclass
class ReconciliationResult:
    state: str
    principal: Principal
    transitions: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state in {STATE_CONSISTENT, STATE_RESOLVED}


def principal_from_profile(profile: dict, token_role: str | None = None) -> Principal:
    return Principal(
        profile_id=int(profile["id"]),
        email=str(profile.get("email") or ""),
        full_name=str(profile.get("full_name") or ""),
        role=normalize_role(profile.get("role")),
        token_role=token_role,
    )


class ProfileIdentityProvider:
    """Re-reads the stored profile and re-issues the role claim from it."""

    def __init__(self, db_provider: Callable[[], object], profiles: ProfileRepository | None = None) -> None:
        self.db_provider = db_provider
        self.profiles = profiles or ProfileRepository()

    def refresh(self, principal: Principal) -> Principal:
        try:
            profile = self.profiles.get_by_id(self.db_provider(), principal.profile_id)
        except Exception as exc:  # noqa: BLE001
            raise TransientIntegrationError(
                code="identity_refresh_failed",
                message_key="role_mismatch",
                details=str(exc),
            ) from exc
        if not profile or not int(profile.get("is_active") or 0):
            return principal.with_token_role(None)
        stored_role = normalize_role(profile.get("role"))
        return principal_from_profile(profile, token_role=stored_role)


class RoleReconciler:
    """consistent -> (refreshing -> resolved | failed)"""

    def __init__(self, provider: IdentityProvider) -> None:
        self.provider = provider

    def reconcile(self, principal: Principal) -> ReconciliationResult:
        token_role = normalize_role(principal.token_role)
        profile_role = normalize_role(principal.role)
        if token_role and token_role == profile_role:
            return ReconciliationResult(STATE_CONSISTENT, principal, [STATE_CONSISTENT])

        transitions = [STATE_REFRESHING]
        try:
            refreshed = self.provider.refresh(principal)
        except TransientIntegrationError as exc:
            logger.warning(
                "role_refresh_failed",
                extra={"profile_id": principal.profile_id, "error": exc.code},
            )
            transitions.append(STATE_FAILED)
            return ReconciliationResult(STATE_FAILED, principal, transitions)

        refreshed_claim = normalize_role(refreshed.token_role)
        if refreshed_claim and refreshed_claim == normalize_role(refreshed.role):
            transitions.append(STATE_RESOLVED)
            logger.info(
                "role_reconciled",
                extra={"profile_id": principal.profile_id, "from_role": token_role, "to_role": refreshed_claim},
            )
            return ReconciliationResult(STATE_RESOLVED, refreshed, transitions)

        transitions.append(STATE_FAILED)
        return ReconciliationResult(STATE_FAILED, refreshed, transitions)


class IdentityService:
    def __init__(
        self,
        provider: IdentityProvider,
        profiles: ProfileRepository | None = None,
        suppliers: SupplierRepository | None = None,
    ) -> None:
        self.reconciler = RoleReconciler(provider)
        self.profiles = profiles or ProfileRepository()
        self.suppliers = suppliers or SupplierRepository()

    def login(self, db, auth_input: AuthLoginInput) -> Principal | None:
        email = (auth_input.email or "").strip().lower()
        password = auth_input.password or ""
        if not email or not password:
            return None
        profile = self.profiles.get_by_email(db, email)
        if not profile or not int(profile.get("is_active") or 0):
            return None
        if not profile.get("password_hash") or not check_password_hash(profile["password_hash"], password):
            return None
        role = normalize_role(profile.get("role"))
        return principal_from_profile(profile, token_role=role)

    def load_principal(self, db, profile_id: int, token_role: str | None) -> Principal:
        profile = self.profiles.get_by_id(db, profile_id)
        if not profile or not int(profile.get("is_active") or 0):
            raise NotFoundError(code="profile_not_found", message_key="profile_not_found")
        return principal_from_profile(profile, token_role=token_role)

    def reconcile(self, principal: Principal) -> ReconciliationResult:
        return self.reconciler.reconcile(principal)

    def authorize(self, principal: Principal, *allowed_roles: str) -> Principal:
        result = self.reconciler.reconcile(principal)
        if not result.ok:
            raise AuthorizationError(
                code="role_mismatch",
                message_key="role_mismatch",
                hint="reauthenticate",
                payload={"reconciliation": result.state},
            )
        effective = result.principal
        if allowed_roles:
            require_roles(effective.role, *allowed_roles)
        return effective

    def resolve_supplier(self, db, principal: Principal) -> dict:
        supplier = self.suppliers.get_active_by_contact_email(db, principal.email)
        if not supplier:
            raise NotFoundError(code="supplier_not_found", message_key="supplier_not_found")
        return supplier
