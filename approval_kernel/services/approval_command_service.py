"""
approval_kernel.services.approval_command_service -- Approval workflow commands.

Responsibility:
    Orchestrates every state change of the approval workflow: submitting
    an entity for approval, approving and rejecting at the current level,
    and administering chain templates.  Loads aggregates through the
    repository, invokes their domain methods, appends the audit trail and
    publishes a completion event when a request reaches a terminal state.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and sibling
    services.  MUST NOT import entity modules; they subscribe to events.

Invariants enforced:
    - Sequential gating: only the expected approver of the current level
      may decide it, and only once.
    - Terminal states are final: APPROVED/REJECTED requests refuse further
      commands with nothing mutated.
    - Exactly one history record per submit/approve/reject.
    - Exactly one completion event per terminal transition, published
      after every write of the command has been flushed.
    - A rejection reason is validated before any persistence access.
    - Chain levels are always 1..n and bound to existing users.

Failure modes:
    - ApprovalRequestNotFoundError, ChainTemplateNotFoundError,
      UserNotFoundError for missing references.
    - ApprovalAlreadyFinalizedError, NotAtCurrentLevelError,
      RejectionReasonRequiredError, ChainHasNoLevelsError,
      NonSequentialLevelOrderError, DuplicateApprovalRequestError,
      DuplicateChainTemplateError for rule violations.
    - UnauthorizedApproverError for actors outside the chain.
    - OptimisticLockError / PersistenceUnavailableError from the
      repository.

Transaction contract:
    The service flushes, never commits.  Wrap each call in
    ``session_scope()`` (or the caller's own transaction) so a failure in
    any step, subscriber included, rolls the whole command back.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ChainLevel,
    EntityType,
    HistoryAction,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.events import ApprovalCompletedEvent, EventPublisher
from approval_kernel.domain.identity import UserDirectory
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ApprovalRequestNotFoundError,
    ChainTemplateNotFoundError,
    DuplicateApprovalRequestError,
    DuplicateChainTemplateError,
    RejectionReasonRequiredError,
    UserNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.chain_template import ChainTemplateModel
from approval_kernel.services.approval_repository import ApprovalRepository
from approval_kernel.services.base import BaseService
from approval_kernel.services.event_dispatch import InProcessEventPublisher
from approval_kernel.services.user_directory import SqlUserDirectory

logger = get_logger("services.approval_command")

ENTITY_DESCRIPTION_MAX_LENGTH = 500


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


class ApprovalCommandService(BaseService):
    """Write side of the approval workflow.

    Usage:
        with session_scope() as session:
            service = ApprovalCommandService(session, publisher=publisher)
            request_id = service.create_approval_request(
                EntityType.QUOTATION, quotation_id, "Quotation Q-1042", submitter_id,
            )
    """

    def __init__(
        self,
        session: Session,
        users: UserDirectory | None = None,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        repository: ApprovalRepository | None = None,
    ):
        super().__init__(session)
        self._users = users or SqlUserDirectory(session)
        self._publisher = publisher or InProcessEventPublisher()
        self._clock = clock or SystemClock()
        self._repository = repository or ApprovalRepository(session)

    # =========================================================================
    # Approval requests
    # =========================================================================

    def create_approval_request(
        self,
        entity_type: EntityType,
        entity_id: UUID,
        entity_description: str | None,
        submitted_by_user_id: UUID,
    ) -> UUID:
        """
        Submit an entity for approval against its chain template.

        Preconditions:
            - An active template exists for ``entity_type`` with levels.
            - The submitter and every configured approver exist.
            - No PENDING request exists for this entity.

        Postconditions:
            - A PENDING request at level 1 with one PENDING decision per
              level, and one SUBMITTED history record.

        Returns:
            The new approval request id.
        """
        entity_type = EntityType(entity_type)

        with LogContext.bind(
            actor_id=submitted_by_user_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
        ):
            template = self._repository.find_chain_template_by_entity_type(entity_type)
            if template is None:
                self._reject_command(
                    ChainTemplateNotFoundError(entity_type.value),
                    "create_approval_request",
                )

            decisions = self._guard(
                template.create_level_decisions, "create_approval_request",
            )

            self._require_user(submitted_by_user_id, "create_approval_request")
            self._require_users(
                [d.expected_approver_user_id for d in decisions],
                "create_approval_request",
            )

            existing = self._repository.find_pending_request_for_entity(
                entity_type, entity_id,
            )
            if existing is not None:
                self._reject_command(
                    DuplicateApprovalRequestError(
                        entity_type.value, str(entity_id), str(existing.id),
                    ),
                    "create_approval_request",
                )

            now = self._clock.now()
            if entity_description is not None:
                entity_description = entity_description[:ENTITY_DESCRIPTION_MAX_LENGTH]

            request = ApprovalRequestModel.submit(
                entity_type=entity_type,
                entity_id=entity_id,
                entity_description=entity_description,
                submitted_by_id=submitted_by_user_id,
                decisions=decisions,
                submitted_at=now,
            )
            self._repository.save_approval_request(request)
            self._repository.append_history(
                request.id,
                HistoryAction.SUBMITTED,
                submitted_by_user_id,
                now,
            )

            logger.info(
                "approval_request_created",
                extra={
                    "approval_request_id": str(request.id),
                    "template_id": str(template.id),
                    "total_levels": request.total_levels,
                },
            )
            return request.id

    def approve(
        self,
        request_id: UUID,
        approver_user_id: UUID,
        comments: str | None = None,
    ) -> UUID:
        """
        Approve the request at its current level.

        Advances to the next level, or completes the request as APPROVED
        at the final level.  A completion event is published only on the
        final approval.

        Returns:
            The approval request id.
        """
        with LogContext.bind(approval_request_id=request_id, actor_id=approver_user_id):
            request = self._load_request(request_id, "approve")
            self._guard(
                lambda: request.ensure_actionable_by(approver_user_id), "approve",
            )
            self._require_user(approver_user_id, "approve")

            now = self._clock.now()
            decided_level = request.approve_at_current_level(approver_user_id, comments, now)
            self._repository.save_approval_request(request)
            self._repository.append_history(
                request.id,
                HistoryAction.APPROVED,
                approver_user_id,
                now,
                level_order=decided_level,
                comments=comments,
            )

            if not request.is_pending:
                logger.info(
                    "approval_completed",
                    extra={
                        "level_order": decided_level,
                        "total_levels": request.total_levels,
                        "outcome": request.status,
                    },
                )
                self._publisher.publish(
                    ApprovalCompletedEvent.approved(
                        approval_request_id=request.id,
                        entity_type=EntityType(request.entity_type),
                        entity_id=request.entity_id,
                        approver_user_id=approver_user_id,
                        occurred_at=now,
                    )
                )
            else:
                logger.info(
                    "approval_level_approved",
                    extra={
                        "level_order": decided_level,
                        "next_level": request.current_level,
                        "total_levels": request.total_levels,
                    },
                )
            return request.id

    def reject(
        self,
        request_id: UUID,
        approver_user_id: UUID,
        reason: str,
        comments: str | None = None,
    ) -> UUID:
        """
        Reject the request at its current level.

        The request completes as REJECTED regardless of remaining levels.
        ``reason`` is recorded on the level decision and the history
        record; ``comments``, when given, becomes a separate comment.

        Raises:
            RejectionReasonRequiredError: ``reason`` is missing or blank,
                checked before the request is loaded.

        Returns:
            The approval request id.
        """
        with LogContext.bind(approval_request_id=request_id, actor_id=approver_user_id):
            if _is_blank(reason):
                self._reject_command(RejectionReasonRequiredError(str(request_id)), "reject")

            request = self._load_request(request_id, "reject")
            self._guard(
                lambda: request.ensure_actionable_by(approver_user_id), "reject",
            )
            self._require_user(approver_user_id, "reject")

            now = self._clock.now()
            decided_level = request.reject_at_current_level(approver_user_id, reason, now)
            self._repository.save_approval_request(request)
            self._repository.append_history(
                request.id,
                HistoryAction.REJECTED,
                approver_user_id,
                now,
                level_order=decided_level,
                comments=reason,
            )
            if not _is_blank(comments):
                self._repository.append_comment(request.id, approver_user_id, comments, now)

            logger.info(
                "approval_rejected",
                extra={
                    "level_order": decided_level,
                    "total_levels": request.total_levels,
                    "has_comment": not _is_blank(comments),
                },
            )
            self._publisher.publish(
                ApprovalCompletedEvent.rejected(
                    approval_request_id=request.id,
                    entity_type=EntityType(request.entity_type),
                    entity_id=request.entity_id,
                    approver_user_id=approver_user_id,
                    occurred_at=now,
                    reason=reason,
                )
            )
            return request.id

    # =========================================================================
    # Chain templates
    # =========================================================================

    def update_chain_levels(
        self,
        template_id: UUID,
        levels: Sequence[ChainLevel],
    ) -> UUID:
        """
        Replace every level of a chain template.

        The template row is locked for the duration of the caller's
        transaction, and its version is bumped so a concurrent
        reconfiguration fails with OptimisticLockError.  In-flight
        requests keep their snapshotted decisions.

        Returns:
            The template id.
        """
        template = self._load_template(template_id, "update_chain_levels")
        self._require_users(
            [level.approver_user_id for level in levels], "update_chain_levels",
        )
        self._guard(lambda: template.replace_all_levels(levels), "update_chain_levels")
        template.updated_at = self._clock.now()
        self._repository.save_chain_template(template)

        logger.info(
            "chain_levels_replaced",
            extra={
                "template_id": str(template.id),
                "entity_type": template.entity_type,
                "total_levels": template.total_levels,
            },
        )
        return template.id

    def create_chain_template(
        self,
        entity_type: EntityType,
        name: str,
        description: str | None = None,
        levels: Sequence[ChainLevel] = (),
    ) -> UUID:
        """Create the chain template for an entity type, optionally with levels."""
        entity_type = EntityType(entity_type)
        existing = self._repository.find_chain_template_by_entity_type(
            entity_type, active_only=False,
        )
        if existing is not None:
            self._reject_command(
                DuplicateChainTemplateError(entity_type.value), "create_chain_template",
            )

        self._require_users(
            [level.approver_user_id for level in levels], "create_chain_template",
        )
        template = ChainTemplateModel(
            id=uuid4(),
            entity_type=entity_type.value,
            name=name,
            description=description,
            is_active=True,
        )
        self._guard(lambda: template.replace_all_levels(levels), "create_chain_template")
        self._repository.save_chain_template(template)

        logger.info(
            "chain_template_created",
            extra={
                "template_id": str(template.id),
                "entity_type": entity_type.value,
                "total_levels": template.total_levels,
            },
        )
        return template.id

    def deactivate_chain_template(self, template_id: UUID) -> UUID:
        """Take a template out of service; new requests for its type fail."""
        return self._set_template_active(template_id, False)

    def activate_chain_template(self, template_id: UUID) -> UUID:
        return self._set_template_active(template_id, True)

    # =========================================================================
    # Internals
    # =========================================================================

    def _set_template_active(self, template_id: UUID, active: bool) -> UUID:
        operation = "activate_chain_template" if active else "deactivate_chain_template"
        template = self._load_template(template_id, operation)
        if template.is_active != active:
            template.is_active = active
            self._repository.save_chain_template(template)
        logger.info(
            "chain_template_activated" if active else "chain_template_deactivated",
            extra={"template_id": str(template.id), "entity_type": template.entity_type},
        )
        return template.id

    def _load_request(self, request_id: UUID, operation: str) -> ApprovalRequestModel:
        request = self._repository.find_approval_request_by_id(request_id, for_update=True)
        if request is None:
            self._reject_command(ApprovalRequestNotFoundError(str(request_id)), operation)
        return request

    def _load_template(self, template_id: UUID, operation: str) -> ChainTemplateModel:
        template = self._repository.find_chain_template_by_id(template_id, for_update=True)
        if template is None:
            self._reject_command(ChainTemplateNotFoundError(str(template_id)), operation)
        return template

    def _require_user(self, user_id: UUID, operation: str) -> None:
        if not self._users.user_exists(user_id):
            self._reject_command(UserNotFoundError(str(user_id)), operation)

    def _require_users(self, user_ids: Sequence[UUID], operation: str) -> None:
        if not user_ids:
            return
        found = self._users.find_users(user_ids)
        for user_id in user_ids:
            if user_id not in found:
                self._reject_command(UserNotFoundError(str(user_id)), operation)

    def _guard(self, fn, operation: str):
        """Run a domain check, logging any kernel error before it propagates."""
        try:
            return fn()
        except ApprovalKernelError as exc:
            self._reject_command(exc, operation)

    @staticmethod
    def _reject_command(exc: ApprovalKernelError, operation: str):
        logger.warning(
            "approval_command_rejected",
            extra={
                "operation": operation,
                "error_code": exc.code,
                "error": str(exc),
            },
        )
        raise exc
