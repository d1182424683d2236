"""
Test suite for transition side effects.

Entities are transient model instances and the repository is mocked, so
these tests check which effects fire for which status and what they write.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, Mock, call
from uuid import uuid4

import pytest

from agrimarket.database.models import Order, OrderItem, RefundRequest, ServiceBooking, Ticket
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
    UserRole,
)
from agrimarket.services.lifecycle.side_effects import SideEffectCoordinator

NOW = datetime(2025, 5, 20, 8, 0, tzinfo=timezone.utc)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def repository() -> Mock:
    """Repository mock with an empty refund outbox."""
    repository = Mock()
    repository.release_stock = AsyncMock()
    repository.get_refund_request = AsyncMock(return_value=None)
    repository.add = Mock()
    return repository


@pytest.fixture
def coordinator(repository: Mock) -> SideEffectCoordinator:
    return SideEffectCoordinator(repository, lambda: NOW)


@pytest.fixture
def actor() -> Actor:
    return Actor(id=uuid4(), role=UserRole.FARMER)


@pytest.fixture
def order() -> Order:
    """Order with two line items."""
    product_a, product_b = uuid4(), uuid4()
    return Order(
        id=uuid4(),
        status=OrderStatus.CANCELLED,
        payment_status=OrderPaymentStatus.PENDING,
        total_amount=Decimal("1291.00"),
        currency="LKR",
        tracking_updates=[],
        items=[
            OrderItem(product_id=product_a, quantity=3, unit_price=Decimal("150.00")),
            OrderItem(product_id=product_b, quantity=2, unit_price=Decimal("420.50")),
        ],
    )


@pytest.fixture
def booking() -> ServiceBooking:
    return ServiceBooking(
        id=uuid4(),
        status=BookingStatus.CANCELLED,
        payment_status=BookingPaymentStatus.PAID,
        final_amount=Decimal("5000.00"),
        currency="LKR",
        transaction_id="TXN20250520080000ABCDEF12",
        refund_status=RefundStatus.NONE,
        timeline=[],
    )


@pytest.fixture
def ticket() -> Ticket:
    return Ticket(
        id=uuid4(),
        status=TicketStatus.RESOLVED,
        priority=TicketPriority.LOW,
        escalated=False,
        comments=[],
        history=[],
    )


# ============================================================================
# Order Side Effect Tests
# ============================================================================


class TestOrderSideEffects:
    """Test effects of order transitions."""

    @pytest.mark.asyncio
    async def test_cancel_restores_stock_for_every_item(
        self, coordinator: SideEffectCoordinator, repository: Mock, order: Order, actor: Actor
    ):
        await coordinator.run(EntityKind.ORDER, order, actor, "Changed my mind")

        repository.release_stock.assert_has_awaits(
            [
                call(order.items[0].product_id, 3),
                call(order.items[1].product_id, 2),
            ]
        )
        assert order.cancelled_at == NOW
        assert order.cancellation_reason == "Changed my mind"

    @pytest.mark.asyncio
    async def test_cancel_of_unpaid_order_queues_no_refund(
        self, coordinator: SideEffectCoordinator, repository: Mock, order: Order, actor: Actor
    ):
        await coordinator.run(EntityKind.ORDER, order, actor)

        repository.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_of_paid_order_queues_refund(
        self, coordinator: SideEffectCoordinator, repository: Mock, order: Order, actor: Actor
    ):
        order.payment_status = OrderPaymentStatus.PAID

        await coordinator.run(EntityKind.ORDER, order, actor, "Out of season")

        refund = repository.add.call_args.args[0]
        assert isinstance(refund, RefundRequest)
        assert refund.entity_kind == EntityKind.ORDER
        assert refund.entity_id == order.id
        assert refund.amount == Decimal("1291.00")
        assert refund.status == RefundStatus.PENDING

    @pytest.mark.asyncio
    async def test_delivered_stamps_delivery_time(
        self, coordinator: SideEffectCoordinator, order: Order
    ):
        order.status = OrderStatus.DELIVERED

        await coordinator.run(EntityKind.ORDER, order)

        assert order.delivered_at == NOW

    @pytest.mark.asyncio
    async def test_refunded_settles_outbox_entry(
        self, coordinator: SideEffectCoordinator, repository: Mock, order: Order
    ):
        refund = RefundRequest(status=RefundStatus.PENDING)
        repository.get_refund_request.return_value = refund
        order.status = OrderStatus.REFUNDED

        await coordinator.run(EntityKind.ORDER, order)

        assert order.payment_status == OrderPaymentStatus.REFUNDED
        assert refund.status == RefundStatus.PROCESSED
        assert refund.processed_at == NOW

    @pytest.mark.asyncio
    async def test_refunded_keeps_unpaid_order_pending(
        self, coordinator: SideEffectCoordinator, order: Order
    ):
        order.status = OrderStatus.REFUNDED

        await coordinator.run(EntityKind.ORDER, order)

        assert order.payment_status == OrderPaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_refunded_marks_paid_order_without_outbox_entry(
        self, coordinator: SideEffectCoordinator, order: Order
    ):
        order.status = OrderStatus.REFUNDED
        order.payment_status = OrderPaymentStatus.PAID

        await coordinator.run(EntityKind.ORDER, order)

        assert order.payment_status == OrderPaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_status_without_effect_is_noop(
        self, coordinator: SideEffectCoordinator, repository: Mock, order: Order
    ):
        order.status = OrderStatus.CONFIRMED

        await coordinator.run(EntityKind.ORDER, order)

        repository.release_stock.assert_not_awaited()
        assert order.cancelled_at is None


# ============================================================================
# Booking Side Effect Tests
# ============================================================================


class TestBookingSideEffects:
    """Test effects of booking transitions."""

    @pytest.mark.asyncio
    async def test_cancel_records_cancellation_and_refund(
        self,
        coordinator: SideEffectCoordinator,
        repository: Mock,
        booking: ServiceBooking,
        actor: Actor,
    ):
        await coordinator.run(EntityKind.SERVICE_BOOKING, booking, actor, "Rain expected")

        assert booking.cancellation_reason == "Rain expected"
        assert booking.cancelled_by == actor.id
        assert booking.cancelled_at == NOW
        assert booking.refund_amount == Decimal("5000.00")
        assert booking.refund_status == RefundStatus.PENDING

        refund = repository.add.call_args.args[0]
        assert refund.transaction_reference == "TXN20250520080000ABCDEF12"

    @pytest.mark.asyncio
    async def test_cancel_does_not_queue_duplicate_refund(
        self,
        coordinator: SideEffectCoordinator,
        repository: Mock,
        booking: ServiceBooking,
        actor: Actor,
    ):
        repository.get_refund_request.return_value = RefundRequest(status=RefundStatus.PENDING)

        await coordinator.run(EntityKind.SERVICE_BOOKING, booking, actor)

        repository.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_completed_stamps_completion(
        self, coordinator: SideEffectCoordinator, booking: ServiceBooking
    ):
        booking.status = BookingStatus.COMPLETED

        await coordinator.run(EntityKind.SERVICE_BOOKING, booking)

        assert booking.completed_at == NOW

    @pytest.mark.asyncio
    async def test_refunded_marks_payment_refunded(
        self, coordinator: SideEffectCoordinator, booking: ServiceBooking
    ):
        booking.status = BookingStatus.REFUNDED

        await coordinator.run(EntityKind.SERVICE_BOOKING, booking)

        assert booking.payment_status == BookingPaymentStatus.REFUNDED
        assert booking.refund_status == RefundStatus.PROCESSED


# ============================================================================
# Ticket Side Effect Tests
# ============================================================================


class TestTicketSideEffects:
    """Test effects of ticket transitions and escalation."""

    @pytest.mark.asyncio
    async def test_resolved_stamps_resolution_time(
        self, coordinator: SideEffectCoordinator, ticket: Ticket
    ):
        await coordinator.run(EntityKind.TICKET, ticket)
        assert ticket.resolved_at == NOW

    @pytest.mark.asyncio
    async def test_closed_stamps_close_time(
        self, coordinator: SideEffectCoordinator, ticket: Ticket
    ):
        ticket.status = TicketStatus.CLOSED

        await coordinator.run(EntityKind.TICKET, ticket)

        assert ticket.closed_at == NOW
        assert ticket.resolved_at is None

    def test_escalate_raises_priority_to_urgent(
        self, coordinator: SideEffectCoordinator, ticket: Ticket
    ):
        previous = coordinator.escalate(ticket, "Customer threatening chargeback")

        assert previous == TicketPriority.LOW
        assert ticket.priority == TicketPriority.URGENT
        assert ticket.escalated is True
        assert ticket.escalation_reason == "Customer threatening chargeback"
