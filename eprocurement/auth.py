from __future__ import annotations

from flask import Blueprint, current_app, has_request_context, jsonify, request, session

from eprocurement.application.identity_service import ProfileIdentityProvider
from eprocurement.db import get_db
from eprocurement.domain.contracts import AuthLoginInput, Principal
from eprocurement.errors import AuthorizationError, ValidationError


auth_bp = Blueprint("auth", __name__)

_PUBLIC_PATHS = {"/api/auth/login", "/api/auth/logout", "/health", "/metrics"}


class SessionIdentityProvider(ProfileIdentityProvider):
    """Re-reads the profile and re-issues the session role claim."""

    def refresh(self, principal: Principal) -> Principal:
        refreshed = super().refresh(principal)
        if has_request_context() and session.get("profile_id") == principal.profile_id:
            if refreshed.token_role:
                session["token_role"] = refreshed.token_role
            else:
                session.pop("token_role", None)
        return refreshed


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_login():
        if not app.config.get("AUTH_ENABLED", True):
            return None

        path = request.path or "/"
        if path in _PUBLIC_PATHS:
            return None
        if session.get("profile_id"):
            return None
        if path.startswith("/api/"):
            raise AuthorizationError(code="auth_required", message_key="auth_required", http_status=401)
        return None


def current_principal() -> Principal:
    profile_id = session.get("profile_id")
    if not profile_id:
        raise AuthorizationError(code="auth_required", message_key="auth_required", http_status=401)
    identity = current_app.extensions["eprocurement"].identity
    return identity.load_principal(get_db(), int(profile_id), session.get("token_role"))


def _principal_payload(principal: Principal) -> dict:
    return {
        "profile_id": principal.profile_id,
        "email": principal.email,
        "full_name": principal.full_name,
        "role": principal.role,
    }


@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or request.form or {}
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    if not email or not password:
        raise ValidationError(code="auth_missing_credentials", message_key="auth_missing_credentials")

    identity = current_app.extensions["eprocurement"].identity
    principal = identity.login(get_db(), AuthLoginInput(email=email, password=password))
    if principal is None:
        current_app.logger.warning("login_failed", extra={"email": email})
        raise AuthorizationError(
            code="auth_invalid_credentials",
            message_key="auth_invalid_credentials",
            http_status=401,
        )

    session.clear()
    session["profile_id"] = principal.profile_id
    session["token_role"] = principal.token_role
    session["user_email"] = principal.email
    current_app.logger.info("login_succeeded", extra={"profile_id": principal.profile_id, "role": principal.role})
    return jsonify({"user": _principal_payload(principal)})


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"logged_out": True})


@auth_bp.route("/api/auth/me", methods=["GET"])
def me():
    principal = current_principal()
    return jsonify({"user": _principal_payload(principal)})
