from __future__ import annotations

import io
import json
from typing import Any, Dict, List

from flask import Blueprint, Response, jsonify, request, send_file
from werkzeug.utils import secure_filename

from eprocurement.application.container import services
from eprocurement.auth import current_principal
from eprocurement.db import get_db
from eprocurement.domain.contracts import (
    AttachmentUpload,
    AwardProposalInput,
    ItemFeedbackInput,
    ProposalInput,
    RequestInput,
    SuggestionInput,
)
from eprocurement.errors import ValidationError
from eprocurement.procurement.critical_actions import require_confirmation
from eprocurement.ui_strings import field_message, success_message


procurement_bp = Blueprint("procurement", __name__)


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    raw = request.form.get("payload")
    if raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(code="validation_error", details="payload invalido") from exc
        if isinstance(parsed, dict):
            return parsed
    return dict(request.form or {})


def _parse_optional_int(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _normalize_int_list(value) -> List[int]:
    if not isinstance(value, list):
        return []
    result: List[int] = []
    for raw in value:
        parsed = _parse_optional_int(raw)
        if parsed is not None and parsed not in result:
            result.append(parsed)
    return result


def _respond(result, success_key: str | None = None):
    payload = dict(result.payload)
    if success_key:
        payload.setdefault("message", success_message(success_key))
    return jsonify(payload), result.status_code


def _request_input(payload: Dict[str, Any]) -> RequestInput:
    return RequestInput(
        title=payload.get("title"),
        description=payload.get("description"),
        event_type=payload.get("event_type"),
        internal_budget=payload.get("internal_budget"),
        max_rounds=payload.get("max_rounds"),
        round_deadline=payload.get("round_deadline"),
        supplier_ids=tuple(_normalize_int_list(payload.get("supplier_ids"))),
    )


def _proposal_input(payload: Dict[str, Any]) -> ProposalInput:
    items = payload.get("items")
    return ProposalInput(
        items=items if isinstance(items, list) else [],
        contextual_info=payload.get("contextual_info"),
    )


def _uploads() -> List[AttachmentUpload]:
    uploads: List[AttachmentUpload] = []
    for storage in request.files.getlist("attachments"):
        if not storage or not storage.filename:
            continue
        uploads.append(
            AttachmentUpload(
                file_name=storage.filename,
                content=storage.read(),
                mime_type=storage.mimetype,
            )
        )
    return uploads


def _feedback_inputs(raw_entries) -> List[ItemFeedbackInput]:
    entries: List[ItemFeedbackInput] = []
    for idx, raw in enumerate(raw_entries if isinstance(raw_entries, list) else []):
        if not isinstance(raw, dict):
            continue
        item_id = _parse_optional_int(raw.get("proposal_item_id"))
        if item_id is None:
            raise ValidationError(
                code="feedback_item_invalid",
                message_key="feedback_item_invalid",
                fields={f"feedback[{idx}].proposal_item_id": field_message("items")},
            )
        entries.append(
            ItemFeedbackInput(
                proposal_item_id=item_id,
                action=str(raw.get("action") or "accept"),
                feedback_text=raw.get("feedback_text"),
                suggested_price=raw.get("suggested_price"),
            )
        )
    return entries


def _suggestion_inputs(raw_entries) -> List[SuggestionInput]:
    return [
        SuggestionInput(
            item_name=raw.get("item_name"),
            description=raw.get("description"),
            suggested_quantity=raw.get("suggested_quantity"),
            notes=raw.get("notes"),
        )
        for raw in (raw_entries if isinstance(raw_entries, list) else [])
        if isinstance(raw, dict)
    ]


@procurement_bp.route("/api/dashboard", methods=["GET"])
def dashboard():
    return jsonify(services().dashboards.for_principal(get_db(), current_principal()))


@procurement_bp.route("/api/suppliers", methods=["GET"])
def list_suppliers():
    return jsonify({"suppliers": services().requests.list_suppliers(get_db(), current_principal())})


@procurement_bp.route("/api/requests", methods=["GET"])
def list_requests():
    db = get_db()
    principal = current_principal()
    scope = (request.args.get("scope") or "mine").strip().lower()
    request_service = services().requests
    if scope == "pending":
        rows = request_service.list_pending_approval(db, principal)
    elif scope == "active":
        rows = request_service.list_active(db, principal)
    else:
        rows = request_service.list_for_creator(db, principal)
    return jsonify({"scope": scope, "requests": rows})


@procurement_bp.route("/api/requests", methods=["POST"])
def submit_new_request():
    result = services().requests.submit(get_db(), current_principal(), _request_input(_payload()))
    return _respond(result, "request_submitted")


@procurement_bp.route("/api/requests/drafts", methods=["POST"])
def create_draft():
    result = services().requests.save_draft(get_db(), current_principal(), _request_input(_payload()))
    return _respond(result, "request_saved")


@procurement_bp.route("/api/requests/<int:request_id>/draft", methods=["PUT"])
def update_draft(request_id: int):
    result = services().requests.save_draft(
        get_db(), current_principal(), _request_input(_payload()), request_id=request_id
    )
    return _respond(result, "request_saved")


@procurement_bp.route("/api/requests/<int:request_id>/submit", methods=["POST"])
def submit_draft(request_id: int):
    result = services().requests.submit(
        get_db(), current_principal(), _request_input(_payload()), request_id=request_id
    )
    return _respond(result, "request_submitted")


@procurement_bp.route("/api/requests/<int:request_id>", methods=["GET"])
def get_request(request_id: int):
    return jsonify(services().requests.get(get_db(), current_principal(), request_id))


@procurement_bp.route("/api/requests/<int:request_id>/approve", methods=["POST"])
def approve_request(request_id: int):
    payload = _payload()
    result = services().requests.approve(get_db(), current_principal(), request_id, payload.get("comments"))
    return _respond(result, "request_approved")


@procurement_bp.route("/api/requests/<int:request_id>/reject", methods=["POST"])
def reject_request(request_id: int):
    payload = _payload()
    result = services().requests.reject(get_db(), current_principal(), request_id, payload.get("comments"))
    return _respond(result, "request_rejected")


@procurement_bp.route("/api/requests/<int:request_id>/cancel", methods=["POST"])
def cancel_request(request_id: int):
    payload = _payload()
    require_confirmation(request, "cancel_request", payload)
    result = services().requests.cancel(get_db(), current_principal(), request_id, payload.get("reason"))
    return _respond(result, "request_cancelled")


@procurement_bp.route("/api/requests/<int:request_id>", methods=["DELETE"])
def delete_request(request_id: int):
    payload = _payload()
    require_confirmation(request, "delete_request", payload)
    result = services().requests.delete(get_db(), current_principal(), request_id)
    return _respond(result, "request_deleted")


@procurement_bp.route("/api/requests/<int:request_id>/proposals", methods=["GET"])
def list_request_proposals(request_id: int):
    round_number = _parse_optional_int(request.args.get("round"))
    return jsonify(
        services().proposals.list_for_request(get_db(), current_principal(), request_id, round_number=round_number)
    )


@procurement_bp.route("/api/requests/<int:request_id>/proposals/draft", methods=["POST"])
def save_proposal_draft(request_id: int):
    result = services().proposals.save_draft(get_db(), current_principal(), request_id, _proposal_input(_payload()))
    return _respond(result, "proposal_saved")


@procurement_bp.route("/api/requests/<int:request_id>/proposals", methods=["POST"])
def submit_proposal(request_id: int):
    result = services().proposals.submit(
        get_db(),
        current_principal(),
        request_id,
        _proposal_input(_payload()),
        attachments=_uploads(),
    )
    return _respond(result, "proposal_submitted")


@procurement_bp.route("/api/requests/<int:request_id>/proposals/history", methods=["GET"])
def proposal_history(request_id: int):
    return jsonify(services().proposals.history_for_supplier(get_db(), current_principal(), request_id))


@procurement_bp.route("/api/requests/<int:request_id>/feedback", methods=["GET"])
def supplier_feedback(request_id: int):
    return jsonify(services().rounds.feedback_for_supplier(get_db(), current_principal(), request_id))


@procurement_bp.route("/api/requests/<int:request_id>/rounds/advance", methods=["POST"])
def advance_round(request_id: int):
    payload = _payload()
    result = services().rounds.advance_round(
        get_db(),
        current_principal(),
        request_id,
        feedback=_feedback_inputs(payload.get("feedback")),
        suggestions=_suggestion_inputs(payload.get("suggestions")),
    )
    return _respond(result, "round_advanced")


@procurement_bp.route("/api/requests/<int:request_id>/award", methods=["POST"])
def propose_award(request_id: int):
    payload = _payload()
    proposal_id = _parse_optional_int(payload.get("proposal_id"))
    if proposal_id is None:
        raise ValidationError(code="proposal_not_found", message_key="proposal_not_found", http_status=400)
    result = services().awards.propose_award(
        get_db(),
        current_principal(),
        request_id,
        AwardProposalInput(proposal_id=proposal_id, justification=payload.get("justification")),
    )
    return _respond(result, "award_proposed")


@procurement_bp.route("/api/requests/<int:request_id>/award", methods=["GET"])
def award_for_request(request_id: int):
    return jsonify({"award": services().awards.award_for_request(get_db(), current_principal(), request_id)})


@procurement_bp.route("/api/requests/<int:request_id>/analysis", methods=["POST"])
def analyze_proposals(request_id: int):
    return jsonify(services().analysis.analyze_proposals(get_db(), current_principal(), request_id))


@procurement_bp.route("/api/requests/<int:request_id>/analysis/rounds", methods=["POST"])
def compare_rounds(request_id: int):
    payload = _payload()
    from_round = _parse_optional_int(payload.get("from_round")) or 1
    to_round = _parse_optional_int(payload.get("to_round")) or from_round + 1
    return jsonify(
        services().analysis.compare_rounds(get_db(), current_principal(), request_id, from_round, to_round)
    )


@procurement_bp.route("/api/briefs/validate", methods=["POST"])
def validate_brief():
    current_principal()
    payload = _payload()
    return jsonify(services().analysis.validate_brief(payload.get("description")))


@procurement_bp.route("/api/supplier/invitations", methods=["GET"])
def supplier_invitations():
    return jsonify({"invitations": services().proposals.invitations_for_supplier(get_db(), current_principal())})


@procurement_bp.route("/api/supplier/proposals", methods=["GET"])
def supplier_proposals():
    return jsonify({"proposals": services().proposals.list_for_supplier(get_db(), current_principal())})


@procurement_bp.route("/api/proposals/<int:proposal_id>", methods=["GET"])
def get_proposal(proposal_id: int):
    return jsonify(services().proposals.get(get_db(), current_principal(), proposal_id))


@procurement_bp.route("/api/attachments", methods=["GET"])
def download_attachment():
    file_path = (request.args.get("path") or "").strip()
    attachment, content = services().proposals.download_attachment(get_db(), current_principal(), file_path)
    return send_file(
        io.BytesIO(content),
        mimetype=attachment.get("mime_type") or "application/octet-stream",
        as_attachment=True,
        download_name=secure_filename(attachment["file_name"] or "") or "adjunto.pdf",
    )


@procurement_bp.route("/api/award-selections", methods=["GET"])
def pending_award_selections():
    return jsonify({"selections": services().awards.list_pending(get_db(), current_principal())})


@procurement_bp.route("/api/award-selections/<int:selection_id>", methods=["GET"])
def get_award_selection(selection_id: int):
    return jsonify(services().awards.get_selection(get_db(), current_principal(), selection_id))


@procurement_bp.route("/api/award-selections/<int:selection_id>/approve", methods=["POST"])
def approve_award(selection_id: int):
    payload = _payload()
    result = services().awards.approve_award(get_db(), current_principal(), selection_id, payload.get("notes"))
    return _respond(result, "award_approved")


@procurement_bp.route("/api/award-selections/<int:selection_id>/reject", methods=["POST"])
def reject_award(selection_id: int):
    payload = _payload()
    result = services().awards.reject_award(get_db(), current_principal(), selection_id, payload.get("notes"))
    return _respond(result, "award_rejected")


@procurement_bp.route("/api/awards/<int:award_id>", methods=["GET"])
def get_award(award_id: int):
    return jsonify({"award": services().awards.get_award(get_db(), current_principal(), award_id)})


@procurement_bp.route("/api/awards/<int:award_id>/certificate", methods=["GET"])
def award_certificate(award_id: int):
    document = services().awards.certificate(get_db(), current_principal(), award_id)
    if (request.args.get("format") or "").strip().lower() == "text":
        return Response(document["text"], mimetype="text/plain")
    return jsonify(document)


@procurement_bp.route("/api/notifications", methods=["GET"])
def list_notifications():
    return jsonify(services().notifications.list_for_user(get_db(), current_principal()))


@procurement_bp.route("/api/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: int):
    result = services().notifications.mark_read(get_db(), current_principal(), notification_id)
    return _respond(result)


@procurement_bp.route("/api/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    result = services().notifications.mark_all_read(get_db(), current_principal())
    return _respond(result, "notifications_read")
