from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Tuple, Type

from eprocurement.observability import observe_domain_event_emitted, observe_event_handler_failed


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))


@dataclass(frozen=True, kw_only=True)
class RequestSubmitted(DomainEvent):
    request_id: int
    creator_id: int


@dataclass(frozen=True, kw_only=True)
class RequestApproved(DomainEvent):
    request_id: int
    creator_id: int
    approved_by: int


@dataclass(frozen=True, kw_only=True)
class RequestRejected(DomainEvent):
    request_id: int
    creator_id: int
    comments: str = ""


@dataclass(frozen=True, kw_only=True)
class ProposalSubmitted(DomainEvent):
    request_id: int
    proposal_id: int
    supplier_id: int
    round_number: int


@dataclass(frozen=True, kw_only=True)
class RoundAdvanced(DomainEvent):
    request_id: int
    round_number: int
    supplier_ids: Tuple[int, ...] = ()


@dataclass(frozen=True, kw_only=True)
class AwardProposed(DomainEvent):
    request_id: int
    selection_id: int


@dataclass(frozen=True, kw_only=True)
class AwardApproved(DomainEvent):
    request_id: int
    selection_id: int
    award_id: int
    supplier_id: int


@dataclass(frozen=True, kw_only=True)
class AwardRejected(DomainEvent):
    request_id: int
    selection_id: int
    notes: str = ""


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("eprocurement")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        event_type = type(event).__name__
        observe_domain_event_emitted(event_type)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                observe_event_handler_failed(event_type)
                self._logger.exception(
                    "event_handler_failed",
                    extra={"event_type": event_type, "event_id": event.event_id},
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
