"""
Completion events (``approval_kernel.domain.events``).

Responsibility
--------------
The single outward signal of the kernel.  When a request reaches a
terminal status, exactly one ``ApprovalCompletedEvent`` is handed to an
``EventPublisher``.  Entity-specific handlers (a quotation module marking
its quotation APPROVED, for instance) subscribe outside the kernel; the
kernel never imports them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and a port Protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from approval_kernel.domain.approval import ApprovalStatus, EntityType


@dataclass(frozen=True)
class ApprovalCompletedEvent:
    """A request reached APPROVED (final level) or REJECTED (any level)."""

    approval_request_id: UUID
    entity_type: EntityType
    entity_id: UUID
    outcome: ApprovalStatus
    actor_id: UUID
    occurred_at: datetime
    reason: str | None = None

    @property
    def is_approved(self) -> bool:
        return self.outcome == ApprovalStatus.APPROVED

    @classmethod
    def approved(
        cls,
        approval_request_id: UUID,
        entity_type: EntityType,
        entity_id: UUID,
        approver_user_id: UUID,
        occurred_at: datetime,
    ) -> ApprovalCompletedEvent:
        return cls(
            approval_request_id=approval_request_id,
            entity_type=entity_type,
            entity_id=entity_id,
            outcome=ApprovalStatus.APPROVED,
            actor_id=approver_user_id,
            occurred_at=occurred_at,
        )

    @classmethod
    def rejected(
        cls,
        approval_request_id: UUID,
        entity_type: EntityType,
        entity_id: UUID,
        approver_user_id: UUID,
        occurred_at: datetime,
        reason: str,
    ) -> ApprovalCompletedEvent:
        return cls(
            approval_request_id=approval_request_id,
            entity_type=entity_type,
            entity_id=entity_id,
            outcome=ApprovalStatus.REJECTED,
            actor_id=approver_user_id,
            occurred_at=occurred_at,
            reason=reason,
        )


@runtime_checkable
class EventPublisher(Protocol):
    """Port for delivering completion events to subscribers."""

    def publish(self, event: ApprovalCompletedEvent) -> None: ...
