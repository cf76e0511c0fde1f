"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalRequestModel, LevelDecisionModel
from approval_kernel.models.chain_template import ChainLevelModel, ChainTemplateModel
from approval_kernel.models.history import ApprovalCommentModel, ApprovalHistoryModel
from approval_kernel.models.user import UserModel

__all__ = [
    "UserModel",
    "ChainTemplateModel",
    "ChainLevelModel",
    "ApprovalRequestModel",
    "LevelDecisionModel",
    "ApprovalHistoryModel",
    "ApprovalCommentModel",
]
