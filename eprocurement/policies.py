from __future__ import annotations

from typing import Iterable, Set

from eprocurement.errors import AuthorizationError


VALID_ROLES: Set[str] = {"creator", "approver", "supplier", "admin"}

ROLE_ALIASES = {
    "request_creator": "creator",
    "procurement_approver": "approver",
}

CREATOR_ROLES = ("creator", "admin")
APPROVER_ROLES = ("approver", "admin")
SUPPLIER_ROLES = ("supplier",)


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().lower()
    normalized = ROLE_ALIASES.get(normalized, normalized)
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role)
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalize_role(role) in allowed


def require_roles(role: str | None, *allowed_roles: str) -> str:
    normalized_role = normalize_role(role)
    if normalized_role and has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise AuthorizationError(
        code="permission_denied",
        message_key="permission_denied",
        http_status=403,
        critical=False,
        payload={"required_roles": sorted(normalize_allowed_roles(allowed_roles))},
    )
