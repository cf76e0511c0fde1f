"""
Module: approval_kernel.models.history
Responsibility: ORM persistence for the append-only approval audit trail
    (ApprovalHistoryModel) and reviewer commentary attached to rejections
    (ApprovalCommentModel).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Append-only: UPDATE and DELETE are refused by the listeners in
      db/immutability.py.
    - Exactly one history row per submit/approve/reject action.
    - level_order is NULL only for SUBMITTED rows.

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import HistoryAction


class ApprovalHistoryModel(Base):
    """One submit/approve/reject action on an approval request."""

    __tablename__ = "approval_history"

    __table_args__ = (
        CheckConstraint(
            "action IN ('SUBMITTED', 'APPROVED', 'REJECTED')",
            name="ck_approval_history_action",
        ),
        CheckConstraint(
            "(action = 'SUBMITTED' AND level_order IS NULL) "
            "OR (action <> 'SUBMITTED' AND level_order IS NOT NULL)",
            name="ck_approval_history_level_order",
        ),
        Index("ix_approval_history_request", "approval_request_id", "created_at"),
    )

    approval_request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    level_order: Mapped[int | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalHistory {self.action} request={self.approval_request_id} "
            f"level={self.level_order}>"
        )

    @property
    def action_enum(self) -> HistoryAction:
        return HistoryAction(self.action)


class ApprovalCommentModel(Base):
    """Free-text commentary recorded alongside a rejection."""

    __tablename__ = "approval_comments"

    __table_args__ = (
        Index("ix_approval_comments_request", "approval_request_id", "created_at"),
    )

    approval_request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    commenter_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalComment request={self.approval_request_id}>"
