"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval is an authorization- and compliance-sensitive workflow.  A UI must
be able to explain *why* an action was refused: "not your turn" is a
different message from "you are not an approver on this request", and both
differ from "this request is already closed".  Parsing message strings for
that distinction is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        service.approve(request_id, actor_id, "ok")
    except NotAtCurrentLevelError as e:
        api_response(code=e.code, current_level=e.current_level)
    except UnauthorizedApproverError as e:
        api_response(code=e.code, status=403)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- NotFoundError
    |   +-- ChainTemplateNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- UserNotFoundError
    |
    +-- BusinessRuleViolationError
    |   +-- ChainHasNoLevelsError
    |   +-- NonSequentialLevelOrderError
    |   +-- ApprovalAlreadyFinalizedError
    |   +-- NotAtCurrentLevelError
    |   +-- RejectionReasonRequiredError
    |   +-- DuplicateApprovalRequestError
    |   +-- DuplicateChainTemplateError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedApproverError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- InfrastructureError
    |   +-- PersistenceUnavailableError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|----------------------------------------
Not found       | CHAIN_TEMPLATE_NOT_FOUND     | No (active) template for id/entity type
                | APPROVAL_REQUEST_NOT_FOUND   | Request id doesn't exist
                | USER_NOT_FOUND               | Submitter/approver/actor doesn't exist
----------------|------------------------------|----------------------------------------
Business rule   | CHAIN_HAS_NO_LEVELS          | Template has zero levels
                | NON_SEQUENTIAL_LEVEL_ORDER   | Level orders are not 1..n
                | APPROVAL_ALREADY_FINALIZED   | Request is APPROVED or REJECTED
                | NOT_AT_CURRENT_LEVEL         | Approver of another level acted
                | REJECTION_REASON_REQUIRED    | Reject with null/blank reason
                | DUPLICATE_APPROVAL_REQUEST   | Entity already has a PENDING request
                | DUPLICATE_CHAIN_TEMPLATE     | Entity type already has a template
----------------|------------------------------|----------------------------------------
Authorization   | UNAUTHORIZED_APPROVER        | Actor is nobody's approver
----------------|------------------------------|----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT     | Concurrent modification detected
----------------|------------------------------|----------------------------------------
Infrastructure  | PERSISTENCE_UNAVAILABLE      | Data store connection failure
----------------|------------------------------|----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION       | Modifying history/comment records

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATEGORIES MAP TO RESPONSES:
   - NotFoundError              -> 404
   - BusinessRuleViolationError -> 409/422, show e.code to the user
   - AuthorizationError         -> 403
   - ConcurrencyError           -> reload and retry at the caller's discretion
   - InfrastructureError        -> transient, caller may retry

2. NOTHING IS RECOVERED LOCALLY.  The kernel never retries and never
   auto-corrects an invalid transition.

===============================================================================
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ApprovalKernelError):
    """Base exception for missing resources."""

    code: str = "NOT_FOUND"


class ChainTemplateNotFoundError(NotFoundError):
    """No chain template matches the given id or entity type."""

    code: str = "CHAIN_TEMPLATE_NOT_FOUND"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"ApprovalChainTemplate not found: {identifier}")


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"ApprovalRequest not found: {request_id}")


class UserNotFoundError(NotFoundError):
    """Referenced user does not exist."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# Business-rule exceptions


class BusinessRuleViolationError(ApprovalKernelError):
    """Base exception for workflow rule violations."""

    code: str = "BUSINESS_RULE_VIOLATION"


class ChainHasNoLevelsError(BusinessRuleViolationError):
    """Template has no levels, so no request can be created from it."""

    code: str = "CHAIN_HAS_NO_LEVELS"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(
            f"Approval chain template for {entity_type} has no levels configured"
        )


class NonSequentialLevelOrderError(BusinessRuleViolationError):
    """Level orders, sorted, are not the sequence 1..n."""

    code: str = "NON_SEQUENTIAL_LEVEL_ORDER"

    def __init__(self, level_orders: list[int]):
        self.level_orders = level_orders
        super().__init__(
            f"Level orders must be sequential starting from 1: got {level_orders}"
        )


class ApprovalAlreadyFinalizedError(BusinessRuleViolationError):
    """Request already reached a terminal status."""

    code: str = "APPROVAL_ALREADY_FINALIZED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} already finalized with status {status}"
        )


class NotAtCurrentLevelError(BusinessRuleViolationError):
    """Actor is not entitled to act at the request's current level."""

    code: str = "NOT_AT_CURRENT_LEVEL"

    def __init__(self, request_id: str, user_id: str, current_level: int):
        self.request_id = request_id
        self.user_id = user_id
        self.current_level = current_level
        super().__init__(
            f"Cannot act out of order on {request_id}: "
            f"user {user_id} is not the approver at current level {current_level}"
        )


class RejectionReasonRequiredError(BusinessRuleViolationError):
    """Rejection attempted without a reason."""

    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Rejection reason is required for {request_id}")


class DuplicateApprovalRequestError(BusinessRuleViolationError):
    """A PENDING request already exists for this entity."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, entity_type: str, entity_id: str, existing_request_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Pending approval request {existing_request_id} already exists "
            f"for {entity_type} {entity_id}"
        )


class DuplicateChainTemplateError(BusinessRuleViolationError):
    """A chain template already exists for this entity type."""

    code: str = "DUPLICATE_CHAIN_TEMPLATE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Approval chain template already exists for {entity_type}")


# Authorization exceptions


class AuthorizationError(ApprovalKernelError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_DENIED"


class UnauthorizedApproverError(AuthorizationError):
    """Actor is not an approver anywhere on this request."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, request_id: str, user_id: str):
        self.request_id = request_id
        self.user_id = user_id
        super().__init__(
            f"User {user_id} is not authorized to act on approval request {request_id}"
        )


# Concurrency exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Infrastructure exceptions


class InfrastructureError(ApprovalKernelError):
    """Base exception for data-store failures outside the workflow rules."""

    code: str = "INFRASTRUCTURE_ERROR"


class PersistenceUnavailableError(InfrastructureError):
    """The data store could not be reached; safe for the caller to retry."""

    code: str = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence unavailable during {operation}: {detail}")


# Immutability exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    ApprovalHistory and ApprovalComment rows are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
