"""Side effects triggered by lifecycle transitions.

Effects run on the new status inside the same unit of work as the status
write, so a failure anywhere rolls both back together.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from agrimarket.core.logging import get_logger
from agrimarket.database.models.booking import ServiceBooking
from agrimarket.database.models.order import Order
from agrimarket.database.models.outbox import RefundRequest
from agrimarket.database.models.ticket import Ticket
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.enums import (
    BookingPaymentStatus,
    BookingStatus,
    EntityKind,
    OrderPaymentStatus,
    OrderStatus,
    RefundStatus,
    TicketPriority,
    TicketStatus,
)
from agrimarket.services.lifecycle.repository import LifecycleRepository

logger = get_logger(__name__)

Effect = Callable[[Any, Optional[Actor], Optional[str]], Awaitable[None]]


class SideEffectCoordinator:
    """
    Runs the side effects registered for a (kind, new status) pair.

    Attributes:
        repository: Data access for stock and the refund outbox
        clock: Returns the current aware time
    """

    def __init__(self, repository: LifecycleRepository, clock: Callable[[], datetime]):
        self.repository = repository
        self.clock = clock
        self._side_effects: Dict[Tuple[EntityKind, Enum], Effect] = (
            self._initialize_side_effects()
        )

    def _initialize_side_effects(self) -> Dict[Tuple[EntityKind, Enum], Effect]:
        """Map target statuses to their effect handlers."""
        return {
            (EntityKind.ORDER, OrderStatus.CANCELLED): self._effect_order_cancelled,
            (EntityKind.ORDER, OrderStatus.DELIVERED): self._effect_order_delivered,
            (EntityKind.ORDER, OrderStatus.REFUNDED): self._effect_order_refunded,
            (EntityKind.SERVICE_BOOKING, BookingStatus.COMPLETED): (
                self._effect_booking_completed
            ),
            (EntityKind.SERVICE_BOOKING, BookingStatus.CANCELLED): (
                self._effect_booking_cancelled
            ),
            (EntityKind.SERVICE_BOOKING, BookingStatus.REFUNDED): (
                self._effect_booking_refunded
            ),
            (EntityKind.TICKET, TicketStatus.RESOLVED): self._effect_ticket_resolved,
            (EntityKind.TICKET, TicketStatus.CLOSED): self._effect_ticket_closed,
        }

    async def run(
        self,
        entity_kind: EntityKind,
        entity: Any,
        actor: Optional[Actor] = None,
        reason: Optional[str] = None,
    ) -> None:
        """
        Execute the effect registered for the entity's new status, if any.

        Args:
            entity_kind: Kind of entity
            entity: Entity whose status has just been written
            actor: User responsible for the transition
            reason: Free text reason, used by cancellations
        """
        effect = self._side_effects.get((entity_kind, entity.status))
        if effect is None:
            return

        logger.debug(
            "Running transition side effect",
            entity_kind=entity_kind.value,
            entity_id=str(entity.id),
            status=entity.status.value,
        )
        await effect(entity, actor, reason)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def _effect_order_cancelled(
        self, order: Order, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        for item in order.items:
            await self.repository.release_stock(item.product_id, item.quantity)

        order.cancelled_at = self.clock()
        if reason:
            order.cancellation_reason = reason

        if order.payment_status == OrderPaymentStatus.PAID:
            await self._enqueue_refund(
                EntityKind.ORDER,
                order.id,
                amount=order.total_amount,
                currency=order.currency,
                transaction_reference=None,
                reason=reason,
            )

        logger.info(
            "Order stock restored after cancellation",
            order_id=str(order.id),
            item_count=len(order.items),
        )

    async def _effect_order_delivered(
        self, order: Order, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        order.delivered_at = self.clock()

    async def _effect_order_refunded(
        self, order: Order, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        refund = await self._settle_refund(EntityKind.ORDER, order.id)
        # Unpaid orders reach refunded with nothing to give back
        if order.payment_status == OrderPaymentStatus.PAID or refund is not None:
            order.payment_status = OrderPaymentStatus.REFUNDED

    # ------------------------------------------------------------------
    # Service bookings
    # ------------------------------------------------------------------

    async def _effect_booking_completed(
        self, booking: ServiceBooking, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        booking.completed_at = self.clock()

    async def _effect_booking_cancelled(
        self, booking: ServiceBooking, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        booking.cancellation_reason = reason
        booking.cancelled_by = actor.id if actor else None
        booking.cancelled_at = self.clock()
        booking.refund_amount = booking.final_amount
        booking.refund_status = RefundStatus.PENDING

        await self._enqueue_refund(
            EntityKind.SERVICE_BOOKING,
            booking.id,
            amount=booking.final_amount,
            currency=booking.currency,
            transaction_reference=booking.transaction_id,
            reason=reason,
        )

    async def _effect_booking_refunded(
        self, booking: ServiceBooking, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        booking.payment_status = BookingPaymentStatus.REFUNDED
        booking.refund_status = RefundStatus.PROCESSED
        await self._settle_refund(EntityKind.SERVICE_BOOKING, booking.id)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def _effect_ticket_resolved(
        self, ticket: Ticket, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        ticket.resolved_at = self.clock()

    async def _effect_ticket_closed(
        self, ticket: Ticket, actor: Optional[Actor], reason: Optional[str]
    ) -> None:
        ticket.closed_at = self.clock()

    def escalate(self, ticket: Ticket, reason: str) -> TicketPriority:
        """
        Flag a ticket as escalated and raise it to urgent priority.

        Returns:
            The priority the ticket had before escalation
        """
        previous_priority = ticket.priority
        ticket.escalated = True
        ticket.escalation_reason = reason
        ticket.priority = TicketPriority.URGENT
        logger.info(
            "Ticket escalated",
            ticket_id=str(ticket.id),
            previous_priority=previous_priority.value,
        )
        return previous_priority

    # ------------------------------------------------------------------
    # Refund outbox
    # ------------------------------------------------------------------

    async def _enqueue_refund(
        self,
        entity_kind: EntityKind,
        entity_id,
        amount,
        currency: str,
        transaction_reference: Optional[str],
        reason: Optional[str],
    ) -> None:
        if await self.repository.get_refund_request(entity_kind, entity_id) is not None:
            return

        self.repository.add(
            RefundRequest(
                entity_kind=entity_kind,
                entity_id=entity_id,
                transaction_reference=transaction_reference,
                amount=amount,
                currency=currency,
                status=RefundStatus.PENDING,
                reason=reason,
            )
        )
        logger.info(
            "Refund request queued",
            entity_kind=entity_kind.value,
            entity_id=str(entity_id),
            amount=str(amount),
        )

    async def _settle_refund(
        self, entity_kind: EntityKind, entity_id
    ) -> Optional[RefundRequest]:
        refund = await self.repository.get_refund_request(entity_kind, entity_id)
        if refund is None:
            return None
        refund.status = RefundStatus.PROCESSED
        refund.processed_at = self.clock()
        return refund
