from eprocurement.core.event_bus import (
    AwardApproved,
    AwardProposed,
    AwardRejected,
    DomainEvent,
    EventBus,
    ProposalSubmitted,
    RequestApproved,
    RequestRejected,
    RequestSubmitted,
    RoundAdvanced,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "RequestSubmitted",
    "RequestApproved",
    "RequestRejected",
    "ProposalSubmitted",
    "RoundAdvanced",
    "AwardProposed",
    "AwardApproved",
    "AwardRejected",
]
