from __future__ import annotations

from typing import Dict, List

from eprocurement.errors import ValidationError


ACTION_LABELS: Dict[str, str] = {
    "edit_request": "Editar borrador",
    "submit_request": "Enviar para aprobacion",
    "approve_request": "Aprobar solicitud",
    "reject_request": "Devolver solicitud",
    "cancel_request": "Cancelar solicitud",
    "delete_request": "Eliminar solicitud",
    "submit_proposal": "Enviar propuesta",
    "advance_round": "Abrir nueva ronda",
    "propose_award": "Seleccionar ganador",
    "approve_award": "Aprobar adjudicacion",
    "reject_award": "Rechazar adjudicacion",
    "analyze_proposals": "Analizar propuestas",
    "view_award": "Ver adjudicacion",
    "view_history": "Ver historial",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "request": {
        "draft": {
            "allowed_actions": ["edit_request", "submit_request", "cancel_request", "delete_request"],
            "primary_action": "submit_request",
        },
        "pending_approval": {
            "allowed_actions": ["approve_request", "reject_request", "cancel_request", "delete_request"],
            "primary_action": "approve_request",
        },
        "active": {
            "allowed_actions": [
                "submit_proposal",
                "advance_round",
                "propose_award",
                "analyze_proposals",
                "cancel_request",
                "delete_request",
            ],
            "primary_action": "propose_award",
        },
        "evaluation": {
            "allowed_actions": [
                "advance_round",
                "propose_award",
                "analyze_proposals",
                "cancel_request",
                "delete_request",
            ],
            "primary_action": "propose_award",
        },
        "awarded": {
            "allowed_actions": ["view_award", "view_history", "delete_request"],
            "primary_action": "view_award",
        },
        "cancelled": {
            "allowed_actions": ["view_history", "delete_request"],
            "primary_action": "view_history",
        },
    },
    "proposal": {
        "draft": {
            "allowed_actions": ["save_proposal", "submit_proposal"],
            "primary_action": "submit_proposal",
        },
        "submitted": {
            "allowed_actions": ["propose_award", "advance_round", "view_history"],
            "primary_action": "propose_award",
        },
        "adjustment_requested": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "awarded": {
            "allowed_actions": ["view_award", "view_history"],
            "primary_action": "view_award",
        },
        "not_selected": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
    "award_selection": {
        "pending_approval": {
            "allowed_actions": ["approve_award", "reject_award"],
            "primary_action": "approve_award",
        },
        "rejected": {
            "allowed_actions": ["propose_award"],
            "primary_action": "propose_award",
        },
        "approved": {
            "allowed_actions": ["approve_award", "view_award"],
            "primary_action": "view_award",
        },
    },
}


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(str(status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
    }


def forbidden_action(stage: str, status: str | None, action: str, http_status: int = 409) -> ValidationError:
    return ValidationError(
        code="action_not_allowed_for_status",
        message_key="action_not_allowed_for_status",
        http_status=http_status,
        critical=False,
        payload={
            "stage": stage,
            "status": status,
            "action": action,
            "allowed_actions": allowed_actions(stage, status),
            "primary_action": primary_action(stage, status),
        },
    )


def ensure_action_allowed(stage: str, status: str | None, action: str) -> None:
    if not action_allowed(stage, status, action):
        raise forbidden_action(stage, status, action)
