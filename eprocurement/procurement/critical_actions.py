from __future__ import annotations

from typing import Dict, Tuple

from eprocurement.errors import ValidationError
from eprocurement.ui_strings import confirm_message, get_ui_text


CRITICAL_ACTIONS: Dict[str, Dict[str, str]] = {
    "delete_request": {
        "action_key": "delete_request",
        "confirm_message_key": "delete_request",
        "impact_text_key": "impact.delete_request",
    },
    "cancel_request": {
        "action_key": "cancel_request",
        "confirm_message_key": "cancel_request",
        "impact_text_key": "impact.cancel_request",
    },
}


_TRUE_TEXT_VALUES = {"1", "true", "yes", "on", "si"}


def get_critical_action(action_key: str | None) -> Dict[str, str] | None:
    if not action_key:
        return None
    return CRITICAL_ACTIONS.get(str(action_key).strip())


def _is_explicit_true(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT_VALUES
    return False


def resolve_confirmation(request_obj, payload: dict | None = None) -> Tuple[bool, str]:
    payload_dict = payload if isinstance(payload, dict) else {}

    confirm_token = (
        payload_dict.get("confirm_token")
        or request_obj.args.get("confirm_token")
        or request_obj.headers.get("X-Confirm-Token")
    )
    if isinstance(confirm_token, str) and confirm_token.strip():
        return True, "confirm_token"

    confirm_value = payload_dict.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.args.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.headers.get("X-Confirm")

    if _is_explicit_true(confirm_value):
        return True, "confirm_flag"

    return False, "missing_confirmation"


def confirmation_details(action_key: str) -> dict | None:
    meta = get_critical_action(action_key)
    if not meta:
        return None
    confirm_key = meta.get("confirm_message_key") or action_key
    impact_key = meta.get("impact_text_key") or f"impact.{action_key}"
    return {
        "action_key": action_key,
        "confirm_key": confirm_key,
        "confirm_message": confirm_message(confirm_key, confirm_key),
        "impact_key": impact_key,
        "impact": get_ui_text(impact_key, impact_key),
    }


def require_confirmation(request_obj, action_key: str, payload: dict | None = None) -> str:
    """Return the confirmation mode, or raise when a critical action arrives unconfirmed."""
    if not get_critical_action(action_key):
        return "not_required"
    confirmed, mode = resolve_confirmation(request_obj, payload)
    if not confirmed:
        raise ValidationError(
            code="confirmation_required",
            message_key="confirmation_required",
            http_status=400,
            critical=False,
            payload={"action": action_key, "confirmation": confirmation_details(action_key)},
        )
    return mode
