"""
approval_kernel.services.event_dispatch -- In-process completion event delivery.

Responsibility:
    Default ``EventPublisher``.  Keeps a registry of subscriber callables,
    optionally filtered by entity type, and invokes them synchronously when
    an ``ApprovalCompletedEvent`` is published.

Architecture position:
    Kernel > Services.  Entity modules (quotations, purchase orders)
    register handlers here; the kernel never imports them.

Invariants enforced:
    - Delivery order equals subscription order.
    - A subscriber exception propagates to the publishing command, which
      aborts the caller's unit of work.  Nothing is swallowed or retried.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from approval_kernel.domain.approval import EntityType
from approval_kernel.domain.events import ApprovalCompletedEvent
from approval_kernel.logging_config import get_logger

logger = get_logger("services.event_dispatch")

CompletionHandler = Callable[[ApprovalCompletedEvent], None]


@dataclass(frozen=True)
class Subscription:
    handler: CompletionHandler
    entity_type: EntityType | None = None

    def matches(self, event: ApprovalCompletedEvent) -> bool:
        return self.entity_type is None or self.entity_type == event.entity_type


class InProcessEventPublisher:
    """Synchronous subscriber registry.

    Usage:
        publisher = InProcessEventPublisher()
        publisher.subscribe(mark_quotation_approved, EntityType.QUOTATION)
        service = ApprovalCommandService(session, publisher=publisher)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        handler: CompletionHandler,
        entity_type: EntityType | None = None,
    ) -> Subscription:
        """Register a handler; ``entity_type=None`` receives every event."""
        subscription = Subscription(
            handler=handler,
            entity_type=EntityType(entity_type) if entity_type is not None else None,
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ApprovalCompletedEvent) -> None:
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.handler(event)
                delivered += 1

        logger.info(
            "approval_event_published",
            extra={
                "approval_request_id": str(event.approval_request_id),
                "entity_type": event.entity_type.value,
                "outcome": event.outcome.value,
                "subscribers_notified": delivered,
            },
        )
