from __future__ import annotations

from typing import Any, Dict, Mapping

from eprocurement.ui_strings import error_message, field_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "No fue posible completar la operacion.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    """Input or state-transition rule broken. 409 is used for state conflicts."""

    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False

    def __init__(self, *args, fields: Mapping[str, str] | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fields: Dict[str, str] = dict(fields or {})
        if self.fields:
            self.payload["fields"] = dict(self.fields)

    @classmethod
    def for_fields(cls, *field_names: str, code: str = "validation_error") -> "ValidationError":
        return cls(code=code, fields={name: field_message(name) for name in field_names})


class AuthorizationError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False

    def __init__(self, *args, hint: str | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.hint = (hint or "").strip() or None
        if self.hint:
            self.payload["hint"] = self.hint


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "unexpected_error"
    default_http_status = 404
    default_critical = False


class TransientIntegrationError(AppError):
    default_code = "integration_error"
    default_message_key = "unexpected_error"
    default_http_status = 502
    default_critical = False


class PartialCompletionError(AppError):
    default_code = "partial_completion"
    default_message_key = "award_partial_completion"
    default_http_status = 500
    default_critical = True

    def __init__(self, *args, idempotency_key: str | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.idempotency_key = str(idempotency_key or "").strip() or None
        self.payload["retryable"] = True
        if self.idempotency_key:
            self.payload["idempotency_key"] = self.idempotency_key


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
