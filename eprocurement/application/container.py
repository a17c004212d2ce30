from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from flask import current_app

from eprocurement.application.analysis_service import AnalysisService
from eprocurement.application.award_service import AwardService
from eprocurement.application.dashboard_service import DashboardService
from eprocurement.application.identity_service import IdentityProvider, IdentityService
from eprocurement.application.invitation_service import InvitationService
from eprocurement.application.notification_service import NotificationService
from eprocurement.application.proposal_service import ProposalService
from eprocurement.application.request_service import RequestService
from eprocurement.application.round_service import RoundService
from eprocurement.core.event_bus import EventBus
from eprocurement.infrastructure.ai_client import ChatCompletionClient
from eprocurement.infrastructure.storage import ObjectStore, S3ObjectStore


EXTENSION_KEY = "eprocurement"


@dataclass
class Services:
    event_bus: EventBus
    storage: ObjectStore
    identity: IdentityService
    invitations: InvitationService
    requests: RequestService
    proposals: ProposalService
    rounds: RoundService
    awards: AwardService
    notifications: NotificationService
    dashboards: DashboardService
    analysis: AnalysisService


def build_services(
    config,
    *,
    db_provider: Callable[[], object],
    identity_provider: IdentityProvider,
    ai_client: ChatCompletionClient | None = None,
    storage: ObjectStore | None = None,
) -> Services:
    event_bus = EventBus()
    storage = storage or S3ObjectStore.from_config(config)
    identity = IdentityService(identity_provider)
    invitations = InvitationService()

    notifications = NotificationService(db_provider=db_provider)
    notifications.register_event_handlers(event_bus)

    return Services(
        event_bus=event_bus,
        storage=storage,
        identity=identity,
        invitations=invitations,
        requests=RequestService(
            identity=identity,
            invitations=invitations,
            event_bus=event_bus,
            storage=storage,
            default_max_rounds=config.get("DEFAULT_MAX_ROUNDS", 2),
            max_rounds_limit=config.get("MAX_ROUNDS_LIMIT", 5),
        ),
        proposals=ProposalService(
            identity=identity,
            invitations=invitations,
            event_bus=event_bus,
            storage=storage,
            enforce_price_reduction=config.get("ENFORCE_PRICE_REDUCTION", True),
            attachment_max_bytes=config.get("ATTACHMENT_MAX_BYTES", 10 * 1024 * 1024),
            allowed_mime_types=config.get("ATTACHMENT_ALLOWED_MIME_TYPES", "application/pdf"),
        ),
        rounds=RoundService(identity=identity, invitations=invitations, event_bus=event_bus),
        awards=AwardService(identity=identity, event_bus=event_bus),
        notifications=notifications,
        dashboards=DashboardService(
            identity=identity,
            poll_interval_seconds=config.get("DASHBOARD_POLL_INTERVAL_SECONDS", 30),
        ),
        analysis=AnalysisService(
            identity=identity,
            client=ai_client or ChatCompletionClient.from_config(config),
        ),
    )


def init_services(app, **overrides) -> Services:
    from eprocurement.auth import SessionIdentityProvider
    from eprocurement.db import get_db

    services = build_services(
        app.config,
        db_provider=overrides.pop("db_provider", get_db),
        identity_provider=overrides.pop("identity_provider", SessionIdentityProvider(get_db)),
        **overrides,
    )
    app.extensions[EXTENSION_KEY] = services
    return services


def services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
