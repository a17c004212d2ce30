from eprocurement.infrastructure.repositories.attachment_repository import AttachmentRepository
from eprocurement.infrastructure.repositories.award_repository import AwardRepository
from eprocurement.infrastructure.repositories.feedback_repository import FeedbackRepository
from eprocurement.infrastructure.repositories.invitation_repository import InvitationRepository
from eprocurement.infrastructure.repositories.notification_repository import NotificationRepository
from eprocurement.infrastructure.repositories.profile_repository import ProfileRepository
from eprocurement.infrastructure.repositories.proposal_repository import ProposalRepository
from eprocurement.infrastructure.repositories.request_repository import RequestRepository
from eprocurement.infrastructure.repositories.supplier_repository import SupplierRepository

__all__ = [
    "AttachmentRepository",
    "AwardRepository",
    "FeedbackRepository",
    "InvitationRepository",
    "NotificationRepository",
    "ProfileRepository",
    "ProposalRepository",
    "RequestRepository",
    "SupplierRepository",
]
