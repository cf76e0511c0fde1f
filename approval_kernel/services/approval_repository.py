"""
approval_kernel.services.approval_repository -- Persistence collaborator.

Responsibility:
    Loads and saves chain templates and approval requests, and appends
    history and comment records.  The only place that issues queries or
    flushes on behalf of the command service.

Architecture position:
    Kernel > Services.  May import from models/, domain/, db/.

Invariants enforced:
    - Requests are loaded FOR UPDATE by default and refreshed from the
      database, so a command always acts on the latest committed state.
    - Template lookups by entity type eagerly load levels.
    - History and comment rows are only ever inserted.

Failure modes:
    - OptimisticLockError when a flush finds the row's version changed
      underneath it (StaleDataError).
    - PersistenceUnavailableError when the data store connection fails
      (OperationalError / InterfaceError).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.approval import ApprovalStatus, EntityType, HistoryAction
from approval_kernel.exceptions import OptimisticLockError, PersistenceUnavailableError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.chain_template import ChainTemplateModel
from approval_kernel.models.history import ApprovalCommentModel, ApprovalHistoryModel

logger = get_logger("services.approval_repository")


class ApprovalRepository:
    """Session-bound persistence for the approval aggregates."""

    def __init__(self, session: Session):
        self._session = session

    @contextmanager
    def _translate_errors(
        self,
        operation: str,
        entity_type: str = "",
        entity_id: object = "",
    ) -> Iterator[None]:
        try:
            yield
        except StaleDataError as exc:
            logger.warning(
                "optimistic_lock_conflict",
                extra={
                    "operation": operation,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
            )
            raise OptimisticLockError(entity_type, str(entity_id)) from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error(
                "persistence_unavailable",
                extra={"operation": operation, "error": str(exc.orig or exc)},
            )
            raise PersistenceUnavailableError(operation, str(exc.orig or exc)) from exc

    def _flush(self, operation: str, entity_type: str, entity_id: object) -> None:
        with self._translate_errors(operation, entity_type, entity_id):
            self._session.flush()

    # ------------------------------------------------------------------
    # Chain templates
    # ------------------------------------------------------------------

    def find_chain_template_by_entity_type(
        self,
        entity_type: EntityType,
        active_only: bool = True,
    ) -> ChainTemplateModel | None:
        stmt = (
            select(ChainTemplateModel)
            .where(ChainTemplateModel.entity_type == EntityType(entity_type).value)
            .options(selectinload(ChainTemplateModel.levels))
        )
        if active_only:
            stmt = stmt.where(ChainTemplateModel.is_active.is_(True))
        with self._translate_errors("find_chain_template_by_entity_type"):
            return self._session.scalars(stmt).one_or_none()

    def find_chain_template_by_id(
        self,
        template_id: UUID,
        for_update: bool = False,
    ) -> ChainTemplateModel | None:
        stmt = (
            select(ChainTemplateModel)
            .where(ChainTemplateModel.id == template_id)
            .options(selectinload(ChainTemplateModel.levels))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        with self._translate_errors("find_chain_template_by_id"):
            return self._session.scalars(stmt).one_or_none()

    def save_chain_template(self, template: ChainTemplateModel) -> ChainTemplateModel:
        self._session.add(template)
        self._flush("save_chain_template", "ApprovalChainTemplate", template.id)
        return template

    # ------------------------------------------------------------------
    # Approval requests
    # ------------------------------------------------------------------

    def find_approval_request_by_id(
        self,
        request_id: UUID,
        for_update: bool = True,
    ) -> ApprovalRequestModel | None:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .options(selectinload(ApprovalRequestModel.level_decisions))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        with self._translate_errors("find_approval_request_by_id"):
            return self._session.scalars(stmt).one_or_none()

    def find_pending_request_for_entity(
        self,
        entity_type: EntityType,
        entity_id: UUID,
    ) -> ApprovalRequestModel | None:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.entity_type == EntityType(entity_type).value,
            ApprovalRequestModel.entity_id == entity_id,
            ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
        )
        with self._translate_errors("find_pending_request_for_entity"):
            return self._session.scalars(stmt).one_or_none()

    def save_approval_request(self, request: ApprovalRequestModel) -> ApprovalRequestModel:
        self._session.add(request)
        self._flush("save_approval_request", "ApprovalRequest", request.id)
        return request

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def append_history(
        self,
        approval_request_id: UUID,
        action: HistoryAction,
        actor_id: UUID,
        created_at: datetime,
        level_order: int | None = None,
        comments: str | None = None,
    ) -> ApprovalHistoryModel:
        history = ApprovalHistoryModel(
            id=uuid4(),
            approval_request_id=approval_request_id,
            level_order=level_order,
            action=HistoryAction(action).value,
            actor_id=actor_id,
            comments=comments,
            created_at=created_at,
        )
        self._session.add(history)
        self._flush("append_history", "ApprovalHistory", history.id)
        return history

    def append_comment(
        self,
        approval_request_id: UUID,
        commenter_id: UUID,
        comment_text: str,
        created_at: datetime,
    ) -> ApprovalCommentModel:
        comment = ApprovalCommentModel(
            id=uuid4(),
            approval_request_id=approval_request_id,
            commenter_id=commenter_id,
            comment_text=comment_text,
            created_at=created_at,
        )
        self._session.add(comment)
        self._flush("append_comment", "ApprovalComment", comment.id)
        return comment
