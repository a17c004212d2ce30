from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Principal:
    """Caller identity: stored profile role plus the role claim carried by the session."""

    profile_id: int
    email: str
    full_name: str
    role: str
    token_role: str | None = None

    def with_token_role(self, token_role: str | None) -> "Principal":
        return replace(self, token_role=token_role)


@dataclass(frozen=True)
class RequestInput:
    title: str | None
    description: str | None
    event_type: str | None
    internal_budget: float | None = None
    max_rounds: int | None = None
    round_deadline: str | None = None
    supplier_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ProposalInput:
    items: List[Dict[str, Any]]
    contextual_info: str | None = None


@dataclass(frozen=True)
class AttachmentUpload:
    file_name: str
    content: bytes
    mime_type: str | None = None


@dataclass(frozen=True)
class ItemFeedbackInput:
    proposal_item_id: int
    action: str
    feedback_text: str | None = None
    suggested_price: float | None = None


@dataclass(frozen=True)
class SuggestionInput:
    item_name: str | None
    description: str | None
    suggested_quantity: float | None = None
    notes: str | None = None


@dataclass(frozen=True)
class AwardProposalInput:
    proposal_id: int
    justification: str | None = None


@dataclass(frozen=True)
class AuthLoginInput:
    email: str
    password: str

