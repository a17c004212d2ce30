from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Compras de Eventos",
    "request": "Solicitud",
    "invitation": "Invitacion",
    "proposal": "Propuesta",
    "round": "Ronda",
    "award_selection": "Seleccion de adjudicacion",
    "award": "Adjudicacion",
    "supplier": "Proveedor",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "request": [
        {"key": "draft", "label": "Borrador", "description": "Solicitud en preparacion por el creador."},
        {
            "key": "pending_approval",
            "label": "Pendiente de aprobacion",
            "description": "Solicitud enviada, esperando revision del aprobador.",
        },
        {"key": "approved", "label": "Aprobada", "description": "Solicitud aprobada por compras."},
        {"key": "active", "label": "Activa", "description": "Ronda abierta para recibir propuestas."},
        {"key": "evaluation", "label": "En evaluacion", "description": "Propuestas en analisis o adjudicacion pendiente."},
        {"key": "awarded", "label": "Adjudicada", "description": "Proceso cerrado con proveedor ganador."},
        {"key": "cancelled", "label": "Cancelada", "description": "Solicitud cerrada sin continuidad."},
    ],
    "proposal": [
        {"key": "draft", "label": "Borrador", "description": "Propuesta guardada sin enviar."},
        {"key": "submitted", "label": "Enviada", "description": "Propuesta enviada para la ronda actual."},
        {"key": "under_review", "label": "En revision", "description": "Propuesta en analisis por el creador."},
        {
            "key": "adjustment_requested",
            "label": "Ajuste solicitado",
            "description": "Se pidieron ajustes para la siguiente ronda.",
        },
        {"key": "finalist", "label": "Finalista", "description": "Propuesta seleccionada como finalista."},
        {"key": "awarded", "label": "Adjudicada", "description": "Propuesta ganadora."},
        {"key": "not_selected", "label": "No seleccionada", "description": "Propuesta no elegida."},
    ],
    "award_selection": [
        {
            "key": "pending_approval",
            "label": "Pendiente de aprobacion",
            "description": "Seleccion enviada al aprobador.",
        },
        {"key": "approved", "label": "Aprobada", "description": "Adjudicacion confirmada."},
        {"key": "rejected", "label": "Rechazada", "description": "Seleccion rechazada por el aprobador."},
    ],
}


UI_TEXTS: Dict[str, str] = {
    "impact.delete_request": "La solicitud y todas sus propuestas, rondas y adjudicaciones seran eliminadas.",
    "impact.cancel_request": "La solicitud se cerrara y no recibira nuevas propuestas.",
    "certificate.title": "CERTIFICADO DE ADJUDICACION",
    "certificate.request": "Solicitud",
    "certificate.supplier": "Proveedor",
    "certificate.awarded_at": "Fecha de adjudicacion",
    "certificate.round": "Ronda",
    "certificate.items": "Items",
    "certificate.subtotal": "Subtotal",
    "certificate.fee": "Comision",
    "certificate.total": "Total",
    "certificate.contextual_info": "Informacion adicional",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "request_saved": "Borrador guardado.",
        "request_submitted": "Solicitud enviada para aprobacion.",
        "request_approved": "Solicitud aprobada.",
        "request_rejected": "Solicitud devuelta al creador.",
        "request_cancelled": "Solicitud cancelada.",
        "request_deleted": "Solicitud eliminada.",
        "proposal_saved": "Borrador de propuesta guardado.",
        "proposal_submitted": "Propuesta enviada.",
        "round_advanced": "Nueva ronda abierta.",
        "award_proposed": "Adjudicacion enviada para aprobacion.",
        "award_approved": "Adjudicacion aprobada.",
        "award_rejected": "Adjudicacion rechazada.",
        "notifications_read": "Notificaciones marcadas como leidas.",
    },
    "error": {
        "action_not_allowed_for_status": "Esta accion no esta permitida para el estado actual.",
        "action_invalid": "Accion invalida para esta operacion.",
        "ai_disabled": "El analisis con IA no esta configurado.",
        "ai_unavailable": "El servicio de analisis no respondio. Intente nuevamente en unos minutos.",
        "attachment_not_found": "Archivo adjunto no encontrado.",
        "auth_invalid_credentials": "Credenciales invalidas. Intente nuevamente.",
        "auth_missing_credentials": "Ingrese email y contrasena.",
        "auth_required": "Debe iniciar sesion para continuar.",
        "award_already_approved": "La adjudicacion ya fue aprobada y no puede reemplazarse.",
        "award_not_found": "Adjudicacion no encontrada.",
        "award_pending": "Hay una adjudicacion pendiente de aprobacion para esta solicitud.",
        "award_partial_completion": "La adjudicacion quedo incompleta. Reintente la aprobacion; la operacion es segura de repetir.",
        "comments_required": "Ingrese comentarios para rechazar la solicitud.",
        "confirmation_required": "Confirme explicitamente esta accion critica para continuar.",
        "feedback_duplicated": "Cada item solo admite una accion de retroalimentacion.",
        "feedback_item_invalid": "El item indicado no pertenece a una propuesta enviada de la ronda actual.",
        "feedback_text_required": "Ingrese el comentario para los items a modificar o eliminar.",
        "justification_required": "Debe justificar la seleccion cuando no es la propuesta de menor precio.",
        "max_rounds_reached": "Se alcanzo el numero maximo de rondas para esta solicitud.",
        "max_rounds_invalid": "El numero de rondas debe estar entre 1 y 5.",
        "notes_required": "Ingrese el motivo del rechazo.",
        "notification_not_found": "Notificacion no encontrada.",
        "not_invited": "El proveedor no esta invitado a esta solicitud.",
        "permission_denied": "No tiene permiso para ejecutar esta accion.",
        "price_increase_not_allowed": "Los precios no pueden aumentar respecto de la ronda anterior.",
        "profile_not_found": "Perfil de usuario no encontrado.",
        "proposal_already_submitted": "Ya existe una propuesta enviada para esta ronda.",
        "proposal_not_found": "Propuesta no encontrada.",
        "proposal_not_eligible": "La propuesta no es una propuesta enviada de la ronda actual.",
        "request_not_found": "Solicitud no encontrada.",
        "request_not_accepting_proposals": "La solicitud no esta recibiendo propuestas en este momento.",
        "role_mismatch": "Su sesion tiene un rol desactualizado. Cierre sesion e ingrese nuevamente.",
        "selection_not_found": "Seleccion de adjudicacion no encontrada.",
        "storage_unavailable": "No fue posible acceder al almacenamiento de archivos.",
        "supplier_not_found": "No se encontro un proveedor activo asociado a su usuario.",
        "suppliers_invalid": "Uno o mas proveedores seleccionados no estan activos.",
        "unexpected_error": "No fue posible completar la operacion. Intente nuevamente en unos instantes.",
        "validation_error": "Revise los campos marcados.",
        "valid_items_required": "Ingrese al menos un item con nombre y precio unitario mayor a cero.",
    },
    "field": {
        "title": "El titulo es obligatorio.",
        "description": "La descripcion es obligatoria.",
        "event_type": "El tipo de evento es obligatorio.",
        "supplier_ids": "Seleccione al menos un proveedor.",
        "internal_budget": "El presupuesto debe ser un numero mayor o igual a cero.",
        "max_rounds": "El numero de rondas debe estar entre 1 y 5.",
        "items": "Ingrese al menos un item con nombre y precio unitario mayor a cero.",
        "quantity": "La cantidad debe ser mayor a cero.",
        "unit_price": "El precio unitario debe ser un numero valido.",
        "comments": "El comentario es obligatorio.",
        "notes": "El motivo es obligatorio.",
        "justification": "La justificacion es obligatoria.",
        "feedback_text": "El comentario es obligatorio.",
        "suggested_price": "El precio sugerido debe ser mayor o igual a cero.",
    },
    "confirm": {
        "delete_request": "Confirma la eliminacion definitiva de la solicitud?",
        "cancel_request": "Confirma la cancelacion de la solicitud?",
    },
    "notification": {
        "request_submitted.title": "Solicitud Pendiente de Aprobacion",
        "request_submitted.message": "La solicitud {request_number} - {title} espera su aprobacion.",
        "request_approved.title": "Solicitud Aprobada",
        "request_approved.message": "Su solicitud {request_number} - {title} fue aprobada.",
        "request_rejected.title": "Solicitud Rechazada",
        "request_rejected.message": "Su solicitud {request_number} - {title} fue devuelta: {comments}",
        "invitation.title": "Nueva Invitacion",
        "invitation.message": "Fue invitado a cotizar la solicitud {request_number} - {title}.",
        "proposal_submitted.title": "Nueva Propuesta Recibida",
        "proposal_submitted.message": "{supplier_name} envio una propuesta para {request_number} (ronda {round_number}).",
        "round_advanced.title": "Nueva Ronda de Negociacion",
        "round_advanced.message": "La solicitud {request_number} abrio la ronda {round_number}. Revise los comentarios.",
        "award_proposed.title": "Adjudicacion Pendiente",
        "award_proposed.message": "La solicitud {request_number} tiene una adjudicacion esperando aprobacion.",
        "award_approved.title": "Adjudicacion Aprobada",
        "award_approved.message": "La adjudicacion de {request_number} a {supplier_name} fue aprobada.",
        "award_won.title": "Propuesta Adjudicada",
        "award_won.message": "Su propuesta para {request_number} fue adjudicada.",
        "award_rejected.title": "Adjudicacion Rechazada",
        "award_rejected.message": "La adjudicacion de {request_number} fue rechazada: {notes}",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, key: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    return str(key or "")


def get_ui_text(key: str, default: str | None = None) -> str:
    if key in UI_TEXTS:
        return UI_TEXTS[key]
    if default is not None:
        return default
    return key


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def field_message(field: str) -> str:
    return get_message("field", field, error_message("validation_error"))


def notification_text(kind: str, **values) -> tuple[str, str]:
    title = get_message("notification", f"{kind}.title")
    template = get_message("notification", f"{kind}.message", "")
    try:
        message = template.format(**values)
    except (KeyError, IndexError):
        message = template
    return title, message
