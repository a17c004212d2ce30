from __future__ import annotations

from typing import Any, Dict, List

from eprocurement.ui_strings import get_ui_text


def build_certificate(
    award: Dict[str, Any],
    request_row: Dict[str, Any],
    supplier: Dict[str, Any],
    proposal: Dict[str, Any],
    items: List[Dict[str, Any]],
) -> Dict[str, Any]:
    return {
        "award_id": award["id"],
        "request": {
            "request_number": request_row.get("request_number"),
            "title": request_row.get("title"),
            "description": request_row.get("description"),
            "event_type": request_row.get("event_type"),
        },
        "supplier": {
            "name": supplier.get("name"),
            "contact_name": supplier.get("contact_name"),
            "contact_email": supplier.get("contact_email"),
            "contact_phone": supplier.get("contact_phone"),
        },
        "awarded_at": award.get("awarded_at"),
        "round_number": proposal.get("round_number"),
        "is_lowest_price": bool(award.get("is_lowest_price")),
        "justification": award.get("justification"),
        "items": [
            {
                "item_name": item.get("item_name"),
                "description": item.get("description"),
                "quantity": float(item.get("quantity") or 0),
                "unit_price": float(item.get("unit_price") or 0),
                "total_price": float(item.get("total_price") or 0),
            }
            for item in items
        ],
        "subtotal": float(proposal.get("subtotal") or 0),
        "fee_amount": float(proposal.get("fee_amount") or 0),
        "contract_fee_percentage": float(supplier.get("contract_fee_percentage") or 0),
        "total_amount": float(award.get("awarded_amount") or 0),
        "contextual_info": proposal.get("contextual_info"),
    }


def _money(value: float) -> str:
    return f"{float(value):,.2f}"


def render_text(certificate: Dict[str, Any]) -> str:
    request_block = certificate["request"]
    supplier_block = certificate["supplier"]
    lines = [
        get_ui_text("certificate.title"),
        "",
        f"{get_ui_text('certificate.request')}: {request_block.get('request_number')} - {request_block.get('title')}",
    ]
    if request_block.get("description"):
        lines.append(str(request_block["description"]))
    lines.append(f"{get_ui_text('certificate.supplier')}: {supplier_block.get('name')}")
    contact = " / ".join(
        str(value) for value in (supplier_block.get("contact_name"), supplier_block.get("contact_email")) if value
    )
    if contact:
        lines.append(contact)
    lines.append(f"{get_ui_text('certificate.awarded_at')}: {certificate.get('awarded_at')}")
    lines.append(f"{get_ui_text('certificate.round')}: {certificate.get('round_number')}")
    lines.append("")
    lines.append(f"{get_ui_text('certificate.items')}:")
    for item in certificate["items"]:
        lines.append(
            f"- {item['item_name']}: {item['quantity']:g} x {_money(item['unit_price'])} = {_money(item['total_price'])}"
        )
    lines.append("")
    lines.append(f"{get_ui_text('certificate.subtotal')}: {_money(certificate['subtotal'])}")
    lines.append(
        f"{get_ui_text('certificate.fee')} ({certificate['contract_fee_percentage']:g}%): "
        f"{_money(certificate['fee_amount'])}"
    )
    lines.append(f"{get_ui_text('certificate.total')}: {_money(certificate['total_amount'])}")
    if certificate.get("contextual_info"):
        lines.append("")
        lines.append(f"{get_ui_text('certificate.contextual_info')}: {certificate['contextual_info']}")
    return "\n".join(lines) + "\n"
