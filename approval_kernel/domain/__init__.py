"""Pure domain layer: value objects, state machine, ports.  Zero I/O."""

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus,
    ChainLevel,
    DecisionStatus,
    EntityType,
    HistoryAction,
    LevelDecision,
    validate_level_orders,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.events import ApprovalCompletedEvent, EventPublisher
from approval_kernel.domain.identity import UserDirectory, UserInfo

__all__ = [
    "APPROVAL_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "ApprovalStatus",
    "ChainLevel",
    "DecisionStatus",
    "EntityType",
    "HistoryAction",
    "LevelDecision",
    "validate_level_orders",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ApprovalCompletedEvent",
    "EventPublisher",
    "UserDirectory",
    "UserInfo",
]
