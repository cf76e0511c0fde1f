"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential approval chain.  Defines the
request lifecycle state machine, chain level configuration, level
decision snapshots, and the level-order validation rule.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``.  May import
only from ``exceptions``.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only
  valid request status transitions.  Terminal states have no outgoing
  edges.
* Level ordering -- ``validate_level_orders`` accepts only the contiguous
  sequence ``1..n`` (no gaps, no duplicates).
* Single transition per decision -- ``LevelDecision.approved`` /
  ``LevelDecision.rejected`` refuse a decision that is no longer PENDING.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable
from uuid import UUID

from approval_kernel.exceptions import (
    BusinessRuleViolationError,
    NonSequentialLevelOrderError,
)


# =========================================================================
# Enumerations
# =========================================================================


class EntityType(str, Enum):
    """Business entities that can be routed through an approval chain."""

    QUOTATION = "QUOTATION"
    PURCHASE_ORDER = "PURCHASE_ORDER"


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
})


class DecisionStatus(str, Enum):
    """Outcome of a single level decision."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class HistoryAction(str, Enum):
    """Actions recorded in the approval history trail."""

    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# =========================================================================
# Chain configuration
# =========================================================================


@dataclass(frozen=True)
class ChainLevel:
    """One configured level of a chain template.

    Also serves as the command payload for ``update_chain_levels``.
    """

    level_order: int
    level_name: str
    approver_user_id: UUID
    is_required: bool = True


def validate_level_orders(levels: Iterable[ChainLevel]) -> None:
    """Reject level orders that, sorted, are not exactly ``1..n``.

    An empty collection is valid: an administrator may clear a chain.

    Raises:
        NonSequentialLevelOrderError: gaps, duplicates, or a start other
            than 1.
    """
    orders = sorted(level.level_order for level in levels)
    for expected, actual in enumerate(orders, start=1):
        if actual != expected:
            raise NonSequentialLevelOrderError(orders)


# =========================================================================
# Level decisions
# =========================================================================


@dataclass(frozen=True)
class LevelDecision:
    """Per-level outcome record of an approval request.

    Snapshotted from the chain template at submission time so later
    template edits never reach in-flight requests.
    """

    level_order: int
    level_name: str
    expected_approver_user_id: UUID
    decision: DecisionStatus = DecisionStatus.PENDING
    decided_by_user_id: UUID | None = None
    decided_at: datetime | None = None
    comments: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.decision == DecisionStatus.PENDING

    @classmethod
    def from_chain_level(cls, level: ChainLevel) -> LevelDecision:
        return cls(
            level_order=level.level_order,
            level_name=level.level_name,
            expected_approver_user_id=level.approver_user_id,
        )

    def approved(
        self,
        decided_by_user_id: UUID,
        decided_at: datetime,
        comments: str | None = None,
    ) -> LevelDecision:
        """Return a copy of this decision marked APPROVED."""
        return self._decide(DecisionStatus.APPROVED, decided_by_user_id, decided_at, comments)

    def rejected(
        self,
        decided_by_user_id: UUID,
        decided_at: datetime,
        comments: str | None = None,
    ) -> LevelDecision:
        """Return a copy of this decision marked REJECTED."""
        return self._decide(DecisionStatus.REJECTED, decided_by_user_id, decided_at, comments)

    def _decide(
        self,
        outcome: DecisionStatus,
        decided_by_user_id: UUID,
        decided_at: datetime,
        comments: str | None,
    ) -> LevelDecision:
        if not self.is_pending:
            raise BusinessRuleViolationError(
                f"Level {self.level_order} already decided: {self.decision.value}"
            )
        return replace(
            self,
            decision=outcome,
            decided_by_user_id=decided_by_user_id,
            decided_at=decided_at,
            comments=comments,
        )
