"""
ORM-Level Immutability Enforcement for the approval audit trail.

===============================================================================
WHY THIS EXISTS
===============================================================================

The approval trail is the record of who signed off on what.  Once written,
a history row or a rejection comment must never change, and a request that
reached APPROVED or REJECTED must never be reopened.  Services honour these
rules already; this module makes the ORM refuse to violate them even if a
bug (or a test) tries.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                     | Why
------------------|------------------------------------|-------------------------------
ApprovalHistory   | ALWAYS (from creation)             | Audit trail is append-only
ApprovalComment   | ALWAYS (from creation)             | Reviewer commentary is evidence
ApprovalRequest   | After status = APPROVED / REJECTED | Terminal states never reopen
LevelDecision     | After decision != PENDING, or once | A signature is recorded once
                  | its request is finalized           |

The PENDING -> APPROVED/REJECTED transition itself is allowed; only changes
to a request that was ALREADY terminal before the flush are blocked.  A
level decision likewise records its outcome once, in the same flush that
advances or finalizes its request.
Audit metadata (updated_at) and the optimistic lock counter are exempt.

===============================================================================
USAGE
===============================================================================

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    from approval_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import object_session
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_EXEMPT_FIELDS = frozenset({"updated_at", "version"})


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(target.id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_history_immutability(mapper, connection, target):
    """Prevent any updates to ApprovalHistory records."""
    _block(
        "ApprovalHistory", target, "UPDATE",
        "Approval history records are immutable and cannot be modified",
    )


def _check_history_delete(mapper, connection, target):
    """Prevent deletion of ApprovalHistory records."""
    _block(
        "ApprovalHistory", target, "DELETE",
        "Approval history records cannot be deleted",
    )


def _check_comment_immutability(mapper, connection, target):
    """Prevent any updates to ApprovalComment records."""
    _block(
        "ApprovalComment", target, "UPDATE",
        "Approval comments are immutable and cannot be modified",
    )


def _check_comment_delete(mapper, connection, target):
    """Prevent deletion of ApprovalComment records."""
    _block(
        "ApprovalComment", target, "DELETE",
        "Approval comments cannot be deleted",
    )


def _was_terminal_before(target) -> bool:
    from approval_kernel.domain.approval import (
        TERMINAL_APPROVAL_STATUSES,
        ApprovalStatus,
    )

    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    elif not status_history.added:
        previous = target.status
    else:
        # Freshly assigned without a loaded prior value; the transition is in progress.
        return False
    return ApprovalStatus(previous) in TERMINAL_APPROVAL_STATUSES


def _check_request_immutability(mapper, connection, target):
    """
    Prevent updates to an approval request that was already finalized.

    Allows the PENDING -> terminal transition, blocks everything after it.
    """
    if not _was_terminal_before(target):
        return

    for attr in inspect(target).attrs:
        if attr.key in _EXEMPT_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "ApprovalRequest", target, "UPDATE",
                f"Cannot modify field '{attr.key}' on finalized approval request",
                field=attr.key,
            )


def _check_request_delete(mapper, connection, target):
    """Prevent deletion of finalized approval requests."""
    from approval_kernel.domain.approval import TERMINAL_APPROVAL_STATUSES, ApprovalStatus

    if ApprovalStatus(target.status) in TERMINAL_APPROVAL_STATUSES:
        _block(
            "ApprovalRequest", target, "DELETE",
            "Finalized approval requests cannot be deleted",
        )


def _was_decided_before(target) -> bool:
    from approval_kernel.domain.approval import DecisionStatus

    decision_history = get_history(target, "decision")
    if decision_history.deleted:
        previous = decision_history.deleted[0]
    elif not decision_history.added:
        previous = target.decision
    else:
        return False
    return previous != DecisionStatus.PENDING.value


def _request_finalized_before(target) -> bool:
    # Identity map only: no SQL may be emitted from inside a flush.
    from approval_kernel.models.approval import ApprovalRequestModel

    session = object_session(target)
    if session is None:
        return False
    key = session.identity_key(ApprovalRequestModel, target.approval_request_id)
    request = session.identity_map.get(key)
    return request is not None and _was_terminal_before(request)


def _check_decision_immutability(mapper, connection, target):
    """
    Prevent updates to a level decision once it has been decided, or once
    its request is finalized.
    """
    if not (_was_decided_before(target) or _request_finalized_before(target)):
        return

    state = inspect(target)
    for prop in mapper.column_attrs:
        if prop.key in _EXEMPT_FIELDS:
            continue
        if state.attrs[prop.key].history.has_changes():
            _block(
                "LevelDecision", target, "UPDATE",
                f"Cannot modify field '{prop.key}' on a recorded level decision",
                field=prop.key,
            )


def _check_decision_delete(mapper, connection, target):
    """Prevent deletion of decided levels and of any level of a finalized request."""
    if _was_decided_before(target) or _request_finalized_before(target):
        _block(
            "LevelDecision", target, "DELETE",
            "Recorded level decisions cannot be deleted",
        )


def _listeners():
    from approval_kernel.models.approval import ApprovalRequestModel, LevelDecisionModel
    from approval_kernel.models.history import ApprovalCommentModel, ApprovalHistoryModel

    return [
        (ApprovalHistoryModel, "before_update", _check_history_immutability),
        (ApprovalHistoryModel, "before_delete", _check_history_delete),
        (ApprovalCommentModel, "before_update", _check_comment_immutability),
        (ApprovalCommentModel, "before_delete", _check_comment_delete),
        (ApprovalRequestModel, "before_update", _check_request_immutability),
        (ApprovalRequestModel, "before_delete", _check_request_delete),
        (LevelDecisionModel, "before_update", _check_decision_immutability),
        (LevelDecisionModel, "before_delete", _check_decision_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not added twice.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
