"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests and their per-level
    decisions, plus the request-side aggregate behaviour: the sequential
    state machine and the actor authorization rule.
Architecture position: Kernel > Models.  May import from db/, domain/ and
    exceptions.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - Lifecycle state machine: APPROVAL_TRANSITIONS is the only source of
      legal status changes; the DB check constraint limits status values.
    - len(level_decisions) == total_levels, fixed at submission.
    - Only the decision at current_level is ever mutated, at most one per
      approve/reject call.
    - 1 <= current_level <= total_levels (check constraints).
    - At most one PENDING request per (entity_type, entity_id)
      (partial unique index).
    - Concurrent writers are detected through the version counter
      (SQLAlchemy version_id_col).

Failure modes:
    - ApprovalAlreadyFinalizedError, NotAtCurrentLevelError,
      UnauthorizedApproverError from ensure_actionable_by().
    - StaleDataError at flush when another transaction already advanced
      the request (translated by the repository).
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TimestampedBase, UUIDString
from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalStatus,
    DecisionStatus,
    EntityType,
    LevelDecision,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyFinalizedError,
    BusinessRuleViolationError,
    NotAtCurrentLevelError,
    UnauthorizedApproverError,
)


class ApprovalRequestModel(TimestampedBase):
    """Persistent approval request (aggregate root).

    Contract:
        Created PENDING at level 1.  Each approve advances one level or,
        at the final level, completes the request as APPROVED.  Any reject
        completes it as REJECTED.  Terminal requests never change again.

    Guarantees:
        - level_decisions is ordered by level_order and was snapshotted
          from the chain template at submission.
        - A failed check mutates nothing.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "entity_type IN ('QUOTATION', 'PURCHASE_ORDER')",
            name="ck_approval_requests_entity_type",
        ),
        CheckConstraint("total_levels >= 1", name="ck_approval_requests_total_levels"),
        CheckConstraint(
            "current_level >= 1 AND current_level <= total_levels",
            name="ck_approval_requests_current_level",
        ),
        Index(
            "ix_approval_requests_pending_entity",
            "entity_type", "entity_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index(
            "ix_approval_requests_status_submitted",
            "status", "submitted_at",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    current_level: Mapped[int] = mapped_column(nullable=False)
    total_levels: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    submitted_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False)

    level_decisions: Mapped[list["LevelDecisionModel"]] = relationship(
        "LevelDecisionModel",
        back_populates="request",
        order_by="LevelDecisionModel.level_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} {self.entity_type}/{self.entity_id} "
            f"level={self.current_level}/{self.total_levels} status={self.status}>"
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def submit(
        cls,
        entity_type: EntityType,
        entity_id: UUID,
        entity_description: str | None,
        submitted_by_id: UUID,
        decisions: Sequence[LevelDecision],
        submitted_at: datetime,
    ) -> ApprovalRequestModel:
        """Build a PENDING request at level 1 from decision snapshots."""
        if not decisions:
            raise BusinessRuleViolationError(
                "An approval request needs at least one level decision"
            )
        request = cls(
            id=uuid4(),
            entity_type=EntityType(entity_type).value,
            entity_id=entity_id,
            entity_description=entity_description,
            current_level=1,
            total_levels=len(decisions),
            status=ApprovalStatus.PENDING.value,
            submitted_by_id=submitted_by_id,
            submitted_at=submitted_at,
        )
        request.level_decisions = [LevelDecisionModel.from_dto(d) for d in decisions]
        return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def status_enum(self) -> ApprovalStatus:
        return ApprovalStatus(self.status)

    @property
    def is_pending(self) -> bool:
        return self.status_enum == ApprovalStatus.PENDING

    @property
    def is_at_final_level(self) -> bool:
        return self.current_level == self.total_levels

    def decision_at(self, level_order: int) -> LevelDecisionModel | None:
        for decision in self.level_decisions:
            if decision.level_order == level_order:
                return decision
        return None

    def current_decision(self) -> LevelDecisionModel | None:
        return self.decision_at(self.current_level)

    def is_approver_at_any_level(self, user_id: UUID) -> bool:
        return any(
            d.expected_approver_user_id == user_id for d in self.level_decisions
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def ensure_actionable_by(self, actor_id: UUID) -> LevelDecisionModel:
        """
        Verify the actor may decide the current level.

        Order of checks: finalized, missing current decision, actor mismatch.
        An actor who approves some other level is acting out of turn; an
        actor who approves no level at all is not authorized.

        Returns:
            The decision at the current level.
        """
        if not self.is_pending:
            raise ApprovalAlreadyFinalizedError(str(self.id), self.status)

        current = self.current_decision()
        if current is None:
            raise NotAtCurrentLevelError(str(self.id), str(actor_id), self.current_level)

        if current.expected_approver_user_id != actor_id:
            if self.is_approver_at_any_level(actor_id):
                raise NotAtCurrentLevelError(
                    str(self.id), str(actor_id), self.current_level,
                )
            raise UnauthorizedApproverError(str(self.id), str(actor_id))

        return current

    def approve_at_current_level(
        self,
        actor_id: UUID,
        comments: str | None,
        decided_at: datetime,
    ) -> int:
        """
        Approve the current level; advance, or complete at the final level.

        Returns:
            The level order that was decided.
        """
        current = self.ensure_actionable_by(actor_id)
        decided_level = current.level_order
        current.apply(current.to_dto().approved(actor_id, decided_at, comments))

        if self.is_at_final_level:
            self._transition_to(ApprovalStatus.APPROVED, decided_at)
        else:
            self.current_level += 1
        return decided_level

    def reject_at_current_level(
        self,
        actor_id: UUID,
        reason: str,
        decided_at: datetime,
    ) -> int:
        """
        Reject the current level and complete the request as REJECTED.

        Later levels stay PENDING.

        Returns:
            The level order that was decided.
        """
        current = self.ensure_actionable_by(actor_id)
        decided_level = current.level_order
        current.apply(current.to_dto().rejected(actor_id, decided_at, reason))
        self._transition_to(ApprovalStatus.REJECTED, decided_at)
        return decided_level

    def _transition_to(self, new_status: ApprovalStatus, at: datetime) -> None:
        if new_status not in APPROVAL_TRANSITIONS[self.status_enum]:
            raise ApprovalAlreadyFinalizedError(str(self.id), self.status)
        self.status = new_status.value
        self.completed_at = at


class LevelDecisionModel(TimestampedBase):
    """Per-level decision of an approval request.

    Contract:
        Starts PENDING and transitions exactly once, through
        ApprovalRequestModel.approve_at_current_level() or
        reject_at_current_level().
    """

    __tablename__ = "approval_level_decisions"

    __table_args__ = (
        UniqueConstraint(
            "approval_request_id", "level_order",
            name="uq_level_decision_request_order",
        ),
        CheckConstraint(
            "decision IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_level_decision_valid_decision",
        ),
        CheckConstraint("level_order > 0", name="ck_level_decision_order_positive"),
        Index("ix_level_decision_approver", "expected_approver_user_id", "decision"),
    )

    approval_request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    level_order: Mapped[int] = mapped_column(nullable=False)
    level_name: Mapped[str] = mapped_column(String(100), nullable=False)
    expected_approver_user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    decided_by_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel",
        back_populates="level_decisions",
    )

    def __repr__(self) -> str:
        return f"<LevelDecision {self.level_order}:{self.level_name} {self.decision}>"

    def apply(self, dto: LevelDecision) -> None:
        self.decision = dto.decision.value
        self.decided_by_user_id = dto.decided_by_user_id
        self.decided_at = dto.decided_at
        self.comments = dto.comments

    def to_dto(self) -> LevelDecision:
        """Convert ORM model to frozen domain value."""
        return LevelDecision(
            level_order=self.level_order,
            level_name=self.level_name,
            expected_approver_user_id=self.expected_approver_user_id,
            decision=DecisionStatus(self.decision),
            decided_by_user_id=self.decided_by_user_id,
            decided_at=self.decided_at,
            comments=self.comments,
        )

    @classmethod
    def from_dto(cls, dto: LevelDecision) -> LevelDecisionModel:
        """Create ORM model from domain value."""
        return cls(
            level_order=dto.level_order,
            level_name=dto.level_name,
            expected_approver_user_id=dto.expected_approver_user_id,
            decision=dto.decision.value,
            decided_by_user_id=dto.decided_by_user_id,
            decided_at=dto.decided_at,
            comments=dto.comments,
        )
