"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_command_service import ApprovalCommandService
from approval_kernel.services.approval_repository import ApprovalRepository
from approval_kernel.services.event_dispatch import InProcessEventPublisher, Subscription
from approval_kernel.services.user_directory import SqlUserDirectory

__all__ = [
    "ApprovalCommandService",
    "ApprovalRepository",
    "InProcessEventPublisher",
    "SqlUserDirectory",
    "Subscription",
]
