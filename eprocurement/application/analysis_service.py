from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List

from eprocurement.application.identity_service import IdentityService
from eprocurement.domain.contracts import Principal
from eprocurement.errors import AuthorizationError, NotFoundError, TransientIntegrationError
from eprocurement.infrastructure.ai_client import ChatCompletionClient
from eprocurement.infrastructure.repositories import ProposalRepository, RequestRepository


logger = logging.getLogger("eprocurement.analysis")

MIN_BRIEF_LENGTH = 50
BRIEF_REQUIRED_FLAGS = (
    "hasEventDate",
    "hasParticipantCount",
    "hasLocation",
    "hasObjectives",
    "hasTargetAudience",
)
BRIEF_FLAGS = BRIEF_REQUIRED_FLAGS + ("hasBudgetInfo",)

_ANALYST_SYSTEM = "Eres un analista de compras. Entrega analisis claros y concisos en espanol."
_ROUNDS_SYSTEM = "Eres un analista de compras especializado en licitaciones de varias rondas. Responde en espanol."
_BRIEF_SYSTEM = "Eres un analista de planificacion de eventos. Responde SOLO con JSON valido, sin texto adicional."

_BRIEF_PROMPT = """Analiza el siguiente brief de evento y determina si incluye la informacion esencial para que
los proveedores puedan cotizar correctamente.

BRIEF:
\"\"\"
{brief}
\"\"\"

Verifica: fecha del evento, numero de participantes, ubicacion, objetivos, audiencia objetivo e informacion
presupuestaria. Responde UNICAMENTE con un objeto JSON con las claves hasEventDate, hasParticipantCount,
hasLocation, hasObjectives, hasTargetAudience, hasBudgetInfo (booleanos), extractedInfo (objeto),
missingFields (lista de textos) y feedback (texto en espanol)."""

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")


def proposal_summary(proposal: dict, items: List[dict]) -> Dict[str, Any]:
    return {
        "supplier": proposal.get("supplier_name"),
        "round": int(proposal.get("round_number") or 0),
        "total": float(proposal.get("total_amount") or 0),
        "contextual_info": proposal.get("contextual_info"),
        "items": [
            {
                "name": item.get("item_name"),
                "qty": float(item.get("quantity") or 0),
                "unit_price": float(item.get("unit_price") or 0),
                "total": float(item.get("total_price") or 0),
            }
            for item in items
        ],
    }


def _disabled() -> dict:
    return {"enabled": False, "analysis": None}


class AnalysisService:
    """Optional AI read-side analysis; never touches workflow state."""

    def __init__(
        self,
        *,
        identity: IdentityService,
        client: ChatCompletionClient,
        requests: RequestRepository | None = None,
        proposals: ProposalRepository | None = None,
    ) -> None:
        self.identity = identity
        self.client = client
        self.requests = requests or RequestRepository()
        self.proposals = proposals or ProposalRepository()

    @property
    def enabled(self) -> bool:
        return bool(self.client and self.client.enabled)

    def _request_for_reviewer(self, db, principal: Principal, request_id: int) -> dict:
        principal = self.identity.authorize(principal, "creator", "approver", "admin")
        request_row = self.requests.get_by_id(db, request_id)
        if not request_row:
            raise NotFoundError(code="request_not_found", message_key="request_not_found")
        if principal.role == "creator" and int(request_row["creator_id"]) != principal.profile_id:
            raise AuthorizationError(code="permission_denied", message_key="permission_denied")
        return request_row

    def _round_summaries(self, db, request_id: int, round_number: int) -> List[Dict[str, Any]]:
        proposals = self.proposals.list_submitted_for_round(db, request_id, round_number)
        items_by_proposal: Dict[int, List[dict]] = {}
        for item in self.proposals.list_items_for_proposals(db, [int(row["id"]) for row in proposals]):
            items_by_proposal.setdefault(int(item["proposal_id"]), []).append(item)
        return [proposal_summary(row, items_by_proposal.get(int(row["id"]), [])) for row in proposals]

    def analyze_proposals(self, db, principal: Principal, request_id: int) -> dict:
        request_row = self._request_for_reviewer(db, principal, request_id)
        if not self.enabled:
            return _disabled()
        round_number = int(request_row["current_round"])
        summaries = self._round_summaries(db, request_id, round_number)
        budget = request_row.get("internal_budget")
        prompt = (
            "Analiza estas propuestas de proveedores:\n\n"
            f"{json.dumps(summaries, ensure_ascii=True, indent=2)}\n\n"
            + (f"Presupuesto interno: {float(budget):,.2f}\n\n" if budget is not None else "")
            + "Entrega: 1) comparacion breve, 2) mejor relacion precio-valor, 3) diferencias porcentuales de precio, "
            "4) diferencias por item, 5) recomendacion con fundamento."
        )
        analysis = self.client.complete(
            [{"role": "system", "content": _ANALYST_SYSTEM}, {"role": "user", "content": prompt}],
            operation="analyze_proposals",
        )
        logger.info(
            "proposals_analyzed",
            extra={"request_id": request_id, "round_number": round_number, "proposals": len(summaries)},
        )
        return {"enabled": True, "analysis": analysis, "round_number": round_number, "proposals": len(summaries)}

    def compare_rounds(self, db, principal: Principal, request_id: int, from_round: int, to_round: int) -> dict:
        self._request_for_reviewer(db, principal, request_id)
        if not self.enabled:
            return _disabled()
        before = self._round_summaries(db, request_id, int(from_round))
        after = self._round_summaries(db, request_id, int(to_round))
        prompt = (
            f"Compara las propuestas entre dos rondas.\n\nRONDA {int(from_round)}:\n"
            f"{json.dumps(before, ensure_ascii=True, indent=2)}\n\nRONDA {int(to_round)}:\n"
            f"{json.dumps(after, ensure_ascii=True, indent=2)}\n\n"
            "Analiza cambios de precio, items agregados o eliminados, posicion competitiva y comportamiento de proveedores."
        )
        analysis = self.client.complete(
            [{"role": "system", "content": _ROUNDS_SYSTEM}, {"role": "user", "content": prompt}],
            operation="compare_rounds",
        )
        return {"enabled": True, "analysis": analysis, "from_round": int(from_round), "to_round": int(to_round)}

    def validate_brief(self, description: str | None) -> dict:
        brief = (description or "").strip()
        if len(brief) < MIN_BRIEF_LENGTH:
            return {
                "enabled": self.enabled,
                "is_complete": False,
                "missing_fields": ["La descripcion debe tener al menos 50 caracteres con informacion relevante."],
                "extracted_info": {},
                "feedback": "La descripcion es demasiado corta. Agregue mas detalles del evento.",
                **{flag: False for flag in BRIEF_FLAGS},
            }
        if not self.enabled:
            return {"enabled": False, "is_complete": None, "analysis": None}

        raw = self.client.complete(
            [
                {"role": "system", "content": _BRIEF_SYSTEM},
                {"role": "user", "content": _BRIEF_PROMPT.format(brief=brief)},
            ],
            operation="validate_brief",
            temperature=0.3,
            max_tokens=1000,
        )
        try:
            verdict = json.loads(_FENCE_RE.sub("", raw).strip())
        except json.JSONDecodeError as exc:
            raise TransientIntegrationError(
                code="ai_unavailable",
                message_key="ai_unavailable",
                details="invalid brief verdict",
            ) from exc
        if not isinstance(verdict, dict):
            verdict = {}
        return {
            "enabled": True,
            "is_complete": all(bool(verdict.get(flag)) for flag in BRIEF_REQUIRED_FLAGS),
            "missing_fields": list(verdict.get("missingFields") or []),
            "extracted_info": dict(verdict.get("extractedInfo") or {}),
            "feedback": str(verdict.get("feedback") or ""),
            **{flag: bool(verdict.get(flag)) for flag in BRIEF_FLAGS},
        }
