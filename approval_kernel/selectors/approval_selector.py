"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only query access to approval requests, their level
    decisions, the audit trail, and chain templates.  Converts ORM models to
    frozen views with user display names resolved.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  Uses the UserDirectory port for names.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - User names are resolved in one batch lookup per call; a user missing
      from the directory yields a None name, never an error.
    - Decisions and levels are ordered by level_order; history is
      chronological.

Failure modes:
    - ApprovalRequestNotFoundError / ChainTemplateNotFoundError when a
      single-object lookup misses.  List queries return empty pages.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session, selectinload

from approval_kernel.domain.approval import (
    ApprovalStatus,
    DecisionStatus,
    EntityType,
    HistoryAction,
)
from approval_kernel.domain.identity import UserDirectory, UserInfo
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ChainTemplateNotFoundError,
)
from approval_kernel.models.approval import ApprovalRequestModel, LevelDecisionModel
from approval_kernel.models.chain_template import ChainTemplateModel
from approval_kernel.models.history import ApprovalCommentModel, ApprovalHistoryModel
from approval_kernel.selectors.base import BaseSelector
from approval_kernel.services.user_directory import SqlUserDirectory

T = TypeVar("T")


# =============================================================================
# Views
# =============================================================================


@dataclass(frozen=True)
class Page(Generic[T]):
    """One slice of a list query."""

    items: tuple[T, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class LevelDecisionView:
    level_order: int
    level_name: str
    expected_approver_user_id: UUID
    expected_approver_name: str | None
    decision: DecisionStatus
    decided_by_user_id: UUID | None
    decided_by_name: str | None
    decided_at: datetime | None
    comments: str | None


@dataclass(frozen=True)
class ApprovalSummaryView:
    id: UUID
    entity_type: EntityType
    entity_id: UUID
    entity_description: str | None
    current_level: int
    total_levels: int
    status: ApprovalStatus
    submitted_by_id: UUID
    submitted_by_name: str | None
    submitted_at: datetime
    completed_at: datetime | None


@dataclass(frozen=True)
class ApprovalDetailView:
    """A request with every level decision, for the approval screen."""

    id: UUID
    entity_type: EntityType
    entity_id: UUID
    entity_description: str | None
    current_level: int
    total_levels: int
    status: ApprovalStatus
    submitted_by_id: UUID
    submitted_by_name: str | None
    submitted_at: datetime
    completed_at: datetime | None
    level_decisions: tuple[LevelDecisionView, ...]

    @property
    def current_decision(self) -> LevelDecisionView | None:
        for decision in self.level_decisions:
            if decision.level_order == self.current_level:
                return decision
        return None


@dataclass(frozen=True)
class HistoryView:
    id: UUID
    level_order: int | None
    action: HistoryAction
    actor_id: UUID
    actor_name: str | None
    comments: str | None
    created_at: datetime


@dataclass(frozen=True)
class CommentView:
    id: UUID
    commenter_id: UUID
    commenter_name: str | None
    comment_text: str
    created_at: datetime


@dataclass(frozen=True)
class ChainLevelView:
    level_order: int
    level_name: str
    approver_user_id: UUID
    approver_name: str | None
    is_required: bool


@dataclass(frozen=True)
class ChainTemplateView:
    id: UUID
    entity_type: EntityType
    name: str
    description: str | None
    is_active: bool
    levels: tuple[ChainLevelView, ...]

    @property
    def total_levels(self) -> int:
        return len(self.levels)


# =============================================================================
# Selector
# =============================================================================


class ApprovalSelector(BaseSelector):
    """Read side of the approval workflow."""

    def __init__(self, session: Session, users: UserDirectory | None = None):
        super().__init__(session)
        self._users = users or SqlUserDirectory(session)

    # ------------------------------------------------------------------
    # Approval requests
    # ------------------------------------------------------------------

    def exists(self, request_id: UUID) -> bool:
        return self.session.scalar(
            select(func.count())
            .select_from(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
        ) > 0

    def get_approval_detail(self, request_id: UUID) -> ApprovalDetailView:
        """
        Load a request with its level decisions.

        Raises:
            ApprovalRequestNotFoundError: no request with this id.
        """
        request = self.session.scalars(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .options(selectinload(ApprovalRequestModel.level_decisions))
        ).one_or_none()
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))

        ids = [request.submitted_by_id]
        for decision in request.level_decisions:
            ids.append(decision.expected_approver_user_id)
            if decision.decided_by_user_id is not None:
                ids.append(decision.decided_by_user_id)
        names = self._names(ids)

        return ApprovalDetailView(
            id=request.id,
            entity_type=EntityType(request.entity_type),
            entity_id=request.entity_id,
            entity_description=request.entity_description,
            current_level=request.current_level,
            total_levels=request.total_levels,
            status=ApprovalStatus(request.status),
            submitted_by_id=request.submitted_by_id,
            submitted_by_name=names.get(request.submitted_by_id),
            submitted_at=request.submitted_at,
            completed_at=request.completed_at,
            level_decisions=tuple(
                self._decision_view(d, names) for d in request.level_decisions
            ),
        )

    def list_pending_for_approver(
        self,
        user_id: UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> Page[ApprovalSummaryView]:
        """PENDING requests whose current level is awaiting ``user_id``."""
        current_decision = and_(
            LevelDecisionModel.approval_request_id == ApprovalRequestModel.id,
            LevelDecisionModel.level_order == ApprovalRequestModel.current_level,
        )
        conditions = (
            ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            LevelDecisionModel.expected_approver_user_id == user_id,
        )

        total = self.session.scalar(
            select(func.count())
            .select_from(ApprovalRequestModel)
            .join(LevelDecisionModel, current_decision)
            .where(*conditions)
        )
        rows = self.session.scalars(
            select(ApprovalRequestModel)
            .join(LevelDecisionModel, current_decision)
            .where(*conditions)
            .order_by(ApprovalRequestModel.submitted_at.desc(), ApprovalRequestModel.id)
            .limit(limit)
            .offset(offset)
        ).all()
        return self._summary_page(rows, total, limit, offset)

    def list_approvals(
        self,
        entity_type: EntityType | None = None,
        status: ApprovalStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Page[ApprovalSummaryView]:
        """All requests, optionally filtered, newest submission first."""
        conditions = []
        if entity_type is not None:
            conditions.append(
                ApprovalRequestModel.entity_type == EntityType(entity_type).value
            )
        if status is not None:
            conditions.append(ApprovalRequestModel.status == ApprovalStatus(status).value)

        total = self.session.scalar(
            select(func.count()).select_from(ApprovalRequestModel).where(*conditions)
        )
        rows = self.session.scalars(
            select(ApprovalRequestModel)
            .where(*conditions)
            .order_by(ApprovalRequestModel.submitted_at.desc(), ApprovalRequestModel.id)
            .limit(limit)
            .offset(offset)
        ).all()
        return self._summary_page(rows, total, limit, offset)

    def get_history(self, request_id: UUID) -> list[HistoryView]:
        """Audit trail of a request in chronological order."""
        self._require_request(request_id)
        rows = self.session.scalars(
            select(ApprovalHistoryModel)
            .where(ApprovalHistoryModel.approval_request_id == request_id)
            .order_by(
                ApprovalHistoryModel.created_at,
                ApprovalHistoryModel.level_order.asc().nulls_first(),
            )
        ).all()
        names = self._names(row.actor_id for row in rows)
        return [
            HistoryView(
                id=row.id,
                level_order=row.level_order,
                action=HistoryAction(row.action),
                actor_id=row.actor_id,
                actor_name=names.get(row.actor_id),
                comments=row.comments,
                created_at=row.created_at,
            )
            for row in rows
        ]

    def get_comments(self, request_id: UUID) -> list[CommentView]:
        self._require_request(request_id)
        rows = self.session.scalars(
            select(ApprovalCommentModel)
            .where(ApprovalCommentModel.approval_request_id == request_id)
            .order_by(ApprovalCommentModel.created_at)
        ).all()
        names = self._names(row.commenter_id for row in rows)
        return [
            CommentView(
                id=row.id,
                commenter_id=row.commenter_id,
                commenter_name=names.get(row.commenter_id),
                comment_text=row.comment_text,
                created_at=row.created_at,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Chain templates
    # ------------------------------------------------------------------

    def list_chain_templates(self) -> list[ChainTemplateView]:
        templates = self.session.scalars(
            select(ChainTemplateModel)
            .options(selectinload(ChainTemplateModel.levels))
            .order_by(ChainTemplateModel.entity_type)
        ).all()
        names = self._names(
            level.approver_user_id for t in templates for level in t.levels
        )
        return [self._template_view(t, names) for t in templates]

    def get_chain_template(self, template_id: UUID) -> ChainTemplateView:
        """
        Raises:
            ChainTemplateNotFoundError: no template with this id.
        """
        template = self.session.scalars(
            select(ChainTemplateModel)
            .where(ChainTemplateModel.id == template_id)
            .options(selectinload(ChainTemplateModel.levels))
        ).one_or_none()
        if template is None:
            raise ChainTemplateNotFoundError(str(template_id))
        names = self._names(level.approver_user_id for level in template.levels)
        return self._template_view(template, names)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_request(self, request_id: UUID) -> None:
        if not self.exists(request_id):
            raise ApprovalRequestNotFoundError(str(request_id))

    def _names(self, user_ids: Iterable[UUID]) -> dict[UUID, str]:
        users: dict[UUID, UserInfo] = self._users.find_users(set(user_ids))
        return {user_id: info.display_name for user_id, info in users.items()}

    def _summary_page(
        self,
        rows: list[ApprovalRequestModel],
        total: int,
        limit: int,
        offset: int,
    ) -> Page[ApprovalSummaryView]:
        names = self._names(row.submitted_by_id for row in rows)
        items = tuple(
            ApprovalSummaryView(
                id=row.id,
                entity_type=EntityType(row.entity_type),
                entity_id=row.entity_id,
                entity_description=row.entity_description,
                current_level=row.current_level,
                total_levels=row.total_levels,
                status=ApprovalStatus(row.status),
                submitted_by_id=row.submitted_by_id,
                submitted_by_name=names.get(row.submitted_by_id),
                submitted_at=row.submitted_at,
                completed_at=row.completed_at,
            )
            for row in rows
        )
        return Page(items=items, total=total or 0, limit=limit, offset=offset)

    @staticmethod
    def _decision_view(
        decision: LevelDecisionModel,
        names: dict[UUID, str],
    ) -> LevelDecisionView:
        return LevelDecisionView(
            level_order=decision.level_order,
            level_name=decision.level_name,
            expected_approver_user_id=decision.expected_approver_user_id,
            expected_approver_name=names.get(decision.expected_approver_user_id),
            decision=DecisionStatus(decision.decision),
            decided_by_user_id=decision.decided_by_user_id,
            decided_by_name=(
                names.get(decision.decided_by_user_id)
                if decision.decided_by_user_id is not None
                else None
            ),
            decided_at=decision.decided_at,
            comments=decision.comments,
        )

    @staticmethod
    def _template_view(
        template: ChainTemplateModel,
        names: dict[UUID, str],
    ) -> ChainTemplateView:
        return ChainTemplateView(
            id=template.id,
            entity_type=EntityType(template.entity_type),
            name=template.name,
            description=template.description,
            is_active=template.is_active,
            levels=tuple(
                ChainLevelView(
                    level_order=level.level_order,
                    level_name=level.level_name,
                    approver_user_id=level.approver_user_id,
                    approver_name=names.get(level.approver_user_id),
                    is_required=level.is_required,
                )
                for level in template.levels
            ),
        )
