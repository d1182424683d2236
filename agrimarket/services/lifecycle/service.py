"""
Lifecycle service orchestrating orders, service bookings and support tickets.

This module implements the LifecycleService class: the single entry point
through which entity statuses change. Every mutating operation follows the
same shape: load (row locked where the database supports it), authorize,
validate the transition and any temporal or slot gates, then apply the
status, run side effects, record the audit entry and commit once. Checks
happen before any mutation; failures after mutation began roll the unit of
work back. There are no internal retries.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agrimarket.core.config import Settings, get_settings
from agrimarket.core.logging import get_logger, log_performance
from agrimarket.database.base import utcnow
from agrimarket.database.models.booking import ServiceBooking
from agrimarket.database.models.order import Order, OrderItem
from agrimarket.database.models.ticket import Ticket
from agrimarket.schemas.lifecycle import (
    BookingCreate,
    BookingUpdate,
    CommentCreate,
    OrderCreate,
    TicketClose,
    TicketCreate,
    TicketUpdate,
)
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.audit import AuditTrailRecorder
from agrimarket.services.lifecycle.enums import (
    BookingPaymentStatus,
    BookingStatus,
    EntityKind,
    OrderPaymentStatus,
    OrderStatus,
    PricingType,
    RefundStatus,
    TicketAction,
    TicketStatus,
    UserRole,
)
from agrimarket.services.lifecycle.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    PaymentDeclined,
    PersistenceError,
    ValidationFailed,
)
from agrimarket.services.lifecycle.payments import PaymentGateway, SimulatedPaymentGateway
from agrimarket.services.lifecycle.repository import LifecycleRepository
from agrimarket.services.lifecycle.side_effects import SideEffectCoordinator
from agrimarket.services.lifecycle.slots import SlotConflictChecker, parse_booking_time
from agrimarket.services.lifecycle.transitions import coerce_status, ensure_transition

logger = get_logger(__name__)

CENTS = Decimal("0.01")


def _reference(prefix: str, now: datetime, separator: str = "") -> str:
    timestamp = now.strftime("%Y%m%d%H%M%S")
    suffix = uuid.uuid4().hex[:6].upper()
    return f"{prefix}{separator}{timestamp}{separator}{suffix}"


def _humanize(status: Enum) -> str:
    return status.value.replace("_", " ")


class LifecycleService:
    """
    Lifecycle service for marketplace entities.

    Attributes:
        repository: Data access for entities, stock, slots and the outbox
        audit: Recorder for embedded audit trails
        side_effects: Effects triggered by transitions
        slots: Slot conflict and schedule checks for bookings
        payment_gateway: External payment collaborator
    """

    def __init__(
        self,
        session: AsyncSession,
        payment_gateway: Optional[PaymentGateway] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize lifecycle service.

        Args:
            session: Async database session for the unit of work
            payment_gateway: Payment collaborator; a simulated gateway is
                built from settings when omitted
            settings: Application settings
            clock: Returns the current aware time; injectable for tests
        """
        settings = settings or get_settings()
        self.clock = clock or utcnow
        self.default_currency = settings.default_currency
        self.repository = LifecycleRepository(session)
        self.audit = AuditTrailRecorder(self.clock)
        self.side_effects = SideEffectCoordinator(self.repository, self.clock)
        self.slots = SlotConflictChecker(
            self.repository,
            self.clock,
            settings.booking_tz,
            timedelta(hours=settings.booking_modification_window_hours),
        )
        self.payment_gateway = payment_gateway or SimulatedPaymentGateway(
            success_rate=settings.payment_simulation_success_rate,
            delay_ms=settings.payment_simulation_delay_ms,
        )

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """
        Wrap the mutating part of an operation.

        Commits once when the block completes; any failure inside the block
        rolls back everything it changed.
        """
        try:
            yield
            await self.repository.commit()
        except SQLAlchemyError as e:
            await self.repository.rollback()
            logger.error(
                "Lifecycle operation failed in storage",
                operation=operation,
                error=str(e),
                **context,
            )
            raise PersistenceError(
                f"{operation} failed", operation=operation, error=str(e)
            ) from e
        except Exception:
            await self.repository.rollback()
            logger.warning("Lifecycle operation rolled back", operation=operation, **context)
            raise

    # ------------------------------------------------------------------
    # Generic transitions
    # ------------------------------------------------------------------

    async def request_transition(
        self,
        entity_kind: EntityKind,
        entity_id: uuid.UUID,
        new_status: Any,
        actor: Actor,
        note: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Any:
        """
        Move an entity to a new status.

        Args:
            entity_kind: Kind of entity
            entity_id: Entity identifier
            new_status: Requested status (enum member or value)
            actor: Acting user
            note: Optional note stored with the change
            reason: Cancellation reason, where applicable

        Returns:
            The updated entity

        Raises:
            ValidationFailed: If the status is not one of the kind's statuses
            NotFound: If the entity does not exist
            Forbidden: If the actor may not change this entity
            InvalidTransition: If the change is not in the transition table
            SlotConflict, TooLateToModify: Booking gates
            PersistenceError: If the storage layer fails
        """
        entity_kind = EntityKind(entity_kind)
        try:
            requested = coerce_status(entity_kind, new_status)
        except ValueError as e:
            raise ValidationFailed(str(e), requested_status=str(new_status)) from e

        with log_performance(
            logger,
            "request_transition",
            entity_kind=entity_kind.value,
            entity_id=str(entity_id),
            requested_status=requested.value,
        ):
            if entity_kind == EntityKind.ORDER:
                return await self._transition_order(entity_id, requested, actor, note, reason)
            if entity_kind == EntityKind.SERVICE_BOOKING:
                return await self._transition_booking(entity_id, requested, actor, note, reason)
            return await self._transition_ticket(entity_id, requested, actor, note)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def _load_order(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        order = await self.repository.get_order(order_id, for_update=for_update)
        if order is None:
            raise NotFound("Order not found", order_id=str(order_id))
        return order

    def _authorize_order(self, order: Order, actor: Actor, read_only: bool = False) -> None:
        if order.is_party(actor.id) or actor.is_admin:
            return
        if read_only and actor.is_staff:
            return
        raise Forbidden(
            "You do not have permission to access this order",
            order_id=str(order.id),
        )

    @staticmethod
    def _store_order_note(order: Order, actor: Actor, note: Optional[str]) -> None:
        if not note:
            return
        if actor.is_admin:
            order.admin_notes = note
        elif actor.id == order.buyer_id:
            order.buyer_notes = note
        else:
            order.seller_notes = note

    async def create_order(self, actor: Actor, data: OrderCreate) -> Order:
        """
        Place an order and take its units out of stock.

        All items must come from one seller. Stock is decremented with a
        conditional update per item, so concurrent orders can never drive a
        product below zero.

        Args:
            actor: Buyer placing the order
            data: Order request

        Returns:
            Created order in pending status

        Raises:
            ValidationFailed: If a product is missing, unavailable, out of
                stock, or the items span several sellers or currencies
        """
        with log_performance(logger, "create_order", item_count=len(data.items)):
            product_ids = [item.product_id for item in data.items]
            products = await self.repository.get_products(product_ids)

            missing = [str(pid) for pid in product_ids if pid not in products]
            if missing:
                raise ValidationFailed("Some products do not exist", product_ids=missing)

            for item in data.items:
                product = products[item.product_id]
                if not product.is_available:
                    raise ValidationFailed(
                        f"Product {product.name} is not available",
                        product_id=str(product.id),
                    )
                if product.quantity_available < item.quantity:
                    raise ValidationFailed(
                        f"Insufficient quantity for {product.name}. "
                        f"Available: {product.quantity_available}",
                        product_id=str(product.id),
                        requested=item.quantity,
                        available=product.quantity_available,
                    )

            sellers = {product.seller_id for product in products.values()}
            if len(sellers) != 1:
                raise ValidationFailed(
                    "All items in an order must come from the same seller",
                    seller_count=len(sellers),
                )
            seller_id = sellers.pop()
            if seller_id == actor.id:
                raise ValidationFailed("You cannot order your own products")

            currencies = {product.currency for product in products.values()}
            if len(currencies) != 1:
                raise ValidationFailed("All items in an order must share one currency")

            now = self.clock()
            items = []
            total = Decimal("0.00")
            for position, item in enumerate(data.items):
                product = products[item.product_id]
                items.append(
                    OrderItem(
                        product_id=product.id,
                        seller_id=product.seller_id,
                        product_name=product.name,
                        quantity=item.quantity,
                        unit_price=product.price_amount,
                        unit=product.price_unit,
                        position=position,
                    )
                )
                total += product.price_amount * item.quantity

            order = Order(
                id=uuid.uuid4(),
                order_number=_reference("AGR", now),
                created_at=now,
                buyer_id=actor.id,
                seller_id=seller_id,
                items=items,
                total_amount=total.quantize(CENTS, rounding=ROUND_HALF_UP),
                currency=currencies.pop(),
                status=OrderStatus.PENDING,
                payment_status=OrderPaymentStatus.PENDING,
                payment_method=data.payment_method,
                delivery_method=data.delivery_method,
                shipping_address=(
                    data.shipping_address.model_dump() if data.shipping_address else None
                ),
                buyer_notes=data.notes,
                tracking_updates=[],
            )

            async with self._unit_of_work("create_order", order_number=order.order_number):
                for item in data.items:
                    if not await self.repository.reserve_stock(item.product_id, item.quantity):
                        raise ValidationFailed(
                            f"Insufficient quantity for {products[item.product_id].name}",
                            product_id=str(item.product_id),
                        )
                self.repository.add(order)
                self.audit.record_created(order, actor, "Order created")

            logger.info(
                "Order created",
                order_id=str(order.id),
                order_number=order.order_number,
                total_amount=str(order.total_amount),
            )
            return order

    async def _transition_order(
        self,
        order_id: uuid.UUID,
        requested: OrderStatus,
        actor: Actor,
        note: Optional[str],
        reason: Optional[str],
    ) -> Order:
        order = await self._load_order(order_id, for_update=True)
        self._authorize_order(order, actor)
        ensure_transition(EntityKind.ORDER, order.status, requested, actor)

        previous = order.status
        async with self._unit_of_work("order_transition", order_id=str(order.id)):
            order.status = requested
            self._store_order_note(order, actor, note)
            await self.side_effects.run(EntityKind.ORDER, order, actor, reason or note)
            self.audit.record(
                order,
                TicketAction.STATUS_CHANGED,
                actor,
                previous_value=previous,
                new_value=requested,
                message=f"Order {_humanize(requested)}",
            )

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            previous_status=previous.value,
            new_status=requested.value,
        )
        return order

    async def cancel_order(
        self, order_id: uuid.UUID, actor: Actor, reason: Optional[str] = None
    ) -> Order:
        """Cancel an order, restoring its stock."""
        return await self.request_transition(
            EntityKind.ORDER, order_id, OrderStatus.CANCELLED, actor, reason=reason
        )

    async def mark_order_paid(self, order_id: uuid.UUID, actor: Actor) -> Order:
        """
        Record that the buyer has settled an order.

        Only the seller or an admin may confirm payment, and only while the
        order is still live and unpaid.

        Raises:
            Forbidden: If the actor is neither the seller nor an admin
            ValidationFailed: If the order is already paid or no longer live
        """
        order = await self._load_order(order_id, for_update=True)
        if actor.id != order.seller_id and not actor.is_admin:
            raise Forbidden("Only the seller can confirm payment", order_id=str(order_id))
        if order.payment_status != OrderPaymentStatus.PENDING:
            raise ValidationFailed(
                "Order payment is not pending",
                payment_status=order.payment_status.value,
            )
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise ValidationFailed("Cancelled orders cannot be paid", status=order.status.value)

        async with self._unit_of_work("mark_order_paid", order_id=str(order.id)):
            order.payment_status = OrderPaymentStatus.PAID
            self.audit.record(order, TicketAction.UPDATED, actor, message="Payment received")
        return order

    async def get_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self._load_order(order_id)
        self._authorize_order(order, actor, read_only=True)
        return order

    async def list_orders(
        self,
        actor: Actor,
        status: Optional[OrderStatus] = None,
        as_seller: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[Order]:
        """List the actor's purchases, or sales with ``as_seller``; staff see all."""
        if actor.is_staff:
            return await self.repository.list_orders(status=status, skip=skip, limit=limit)
        if as_seller:
            return await self.repository.list_orders(
                seller_id=actor.id, status=status, skip=skip, limit=limit
            )
        return await self.repository.list_orders(
            buyer_id=actor.id, status=status, skip=skip, limit=limit
        )

    async def get_product_stock(self, product_id: uuid.UUID) -> Optional[int]:
        return await self.repository.get_stock(product_id)

    # ------------------------------------------------------------------
    # Service bookings
    # ------------------------------------------------------------------

    async def _load_booking(
        self, booking_id: uuid.UUID, for_update: bool = False
    ) -> ServiceBooking:
        booking = await self.repository.get_booking(booking_id, for_update=for_update)
        if booking is None:
            raise NotFound("Booking not found", booking_id=str(booking_id))
        return booking

    def _authorize_booking(
        self, booking: ServiceBooking, actor: Actor, read_only: bool = False
    ) -> None:
        if booking.is_party(actor.id) or actor.is_admin:
            return
        if read_only and actor.is_staff:
            return
        raise Forbidden(
            "You do not have permission to access this booking",
            booking_id=str(booking.id),
        )

    @staticmethod
    def _store_booking_note(booking: ServiceBooking, actor: Actor, note: Optional[str]) -> None:
        if not note:
            return
        if actor.is_admin:
            booking.admin_notes = note
        elif actor.id == booking.customer_id:
            booking.customer_notes = note
        else:
            booking.provider_notes = note

    @staticmethod
    def _price_booking(
        pricing_type: PricingType, base_amount: Decimal, field_size: Decimal
    ) -> Decimal:
        """Per-acre listings scale with field size; every other type is flat."""
        amount = base_amount * field_size if pricing_type == PricingType.PER_ACRE else base_amount
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)

    async def check_slot(
        self,
        listing_id: uuid.UUID,
        booking_date: date,
        booking_time: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Check whether a slot is free.

        Returns:
            True if no active booking holds the slot

        Raises:
            ValidationFailed: If the time is not "HH:MM"
        """
        parse_booking_time(booking_time)
        return not await self.slots.has_conflict(listing_id, booking_date, booking_time, exclude_id)

    async def create_booking(self, actor: Actor, data: BookingCreate) -> ServiceBooking:
        """
        Book and pay for a service slot.

        The booking row is flushed before the charge so the slot index
        claims the slot; a declined charge rolls the claim back.

        Args:
            actor: Customer booking the service
            data: Booking request

        Returns:
            Paid booking pending provider confirmation

        Raises:
            NotFound: If the listing does not exist
            ValidationFailed: If the listing is inactive or input is invalid
            PastSchedule: If the schedule is not in the future
            SlotConflict: If the slot is already held
            PaymentDeclined: If the payment collaborator declines
        """
        with log_performance(
            logger,
            "create_booking",
            listing_id=str(data.service_listing_id),
            booking_date=data.booking_date.isoformat(),
            booking_time=data.booking_time,
        ):
            listing = await self.repository.get_service_listing(data.service_listing_id)
            if listing is None:
                raise NotFound(
                    "Service listing not found",
                    listing_id=str(data.service_listing_id),
                )
            if not listing.is_active:
                raise ValidationFailed(
                    "This service is not accepting bookings",
                    listing_id=str(listing.id),
                )
            if listing.provider_id == actor.id:
                raise ValidationFailed("You cannot book your own service")
            if data.field_size <= 0:
                raise ValidationFailed(
                    "Field size must be greater than 0",
                    field_size=str(data.field_size),
                )

            self.slots.ensure_future(data.booking_date, data.booking_time)
            await self.slots.ensure_available(listing.id, data.booking_date, data.booking_time)

            now = self.clock()
            final_amount = self._price_booking(
                listing.pricing_type, listing.price_amount, data.field_size
            )
            transaction_id = f"TXN{now.strftime('%Y%m%d%H%M%S')}{uuid.uuid4().hex[:8].upper()}"

            booking = ServiceBooking(
                id=uuid.uuid4(),
                booking_number=_reference("SRV", now),
                created_at=now,
                customer_id=actor.id,
                provider_id=listing.provider_id,
                service_listing_id=listing.id,
                service_title=listing.title,
                service_type=listing.service_type,
                booking_date=data.booking_date,
                booking_time=data.booking_time,
                field_size=data.field_size,
                pricing_type=listing.pricing_type,
                base_amount=listing.price_amount,
                final_amount=final_amount,
                currency=listing.currency or self.default_currency,
                payment_status=BookingPaymentStatus.PENDING,
                payment_method=data.payment_method,
                transaction_id=transaction_id,
                card_last4=data.card_last4,
                status=BookingStatus.PENDING_CONFIRMATION,
                customer_notes=data.notes,
                refund_status=RefundStatus.NONE,
                timeline=[],
            )

            async with self._unit_of_work("create_booking", transaction_id=transaction_id):
                self.repository.add(booking)
                await self.repository.flush()

                outcome = await self.payment_gateway.charge(
                    amount=final_amount,
                    currency=booking.currency,
                    method=data.payment_method.value,
                    idempotency_key=transaction_id,
                )
                if not outcome.approved:
                    raise PaymentDeclined(
                        outcome.message or "Payment was declined",
                        transaction_id=transaction_id,
                    )

                booking.payment_status = BookingPaymentStatus.PAID
                booking.paid_at = self.clock()
                self.audit.record_created(booking, actor, "Booking created and payment processed")

            logger.info(
                "Booking created",
                booking_id=str(booking.id),
                booking_number=booking.booking_number,
                final_amount=str(final_amount),
            )
            return booking

    async def _transition_booking(
        self,
        booking_id: uuid.UUID,
        requested: BookingStatus,
        actor: Actor,
        note: Optional[str],
        reason: Optional[str],
    ) -> ServiceBooking:
        booking = await self._load_booking(booking_id, for_update=True)
        self._authorize_booking(booking, actor)
        if requested == BookingStatus.REFUNDED and not actor.is_admin:
            raise Forbidden("Only administrators can refund bookings", booking_id=str(booking_id))

        ensure_transition(EntityKind.SERVICE_BOOKING, booking.status, requested, actor)

        if requested == BookingStatus.CANCELLED:
            self.slots.ensure_modifiable(booking)
        if requested.holds_slot() and not booking.status.holds_slot():
            await self.slots.ensure_available(
                booking.service_listing_id,
                booking.booking_date,
                booking.booking_time,
                exclude_booking_id=booking.id,
            )

        previous = booking.status
        if requested == BookingStatus.CANCELLED:
            message = f"Booking cancelled: {reason}" if reason else "Booking cancelled"
        else:
            message = f"Status updated to {_humanize(requested)}"

        async with self._unit_of_work("booking_transition", booking_id=str(booking.id)):
            booking.status = requested
            self._store_booking_note(booking, actor, note)
            await self.side_effects.run(
                EntityKind.SERVICE_BOOKING, booking, actor, reason or note
            )
            self.audit.record(
                booking,
                TicketAction.STATUS_CHANGED,
                actor,
                previous_value=previous,
                new_value=requested,
                message=message,
            )

        logger.info(
            "Booking status changed",
            booking_id=str(booking.id),
            previous_status=previous.value,
            new_status=requested.value,
        )
        return booking

    async def reschedule_booking(
        self, booking_id: uuid.UUID, actor: Actor, data: BookingUpdate
    ) -> ServiceBooking:
        """
        Change a booking's schedule or notes.

        Only the customer or an admin may move the schedule; the provider may
        only revise their notes. Schedule changes must happen outside the
        modification window of the current schedule and land on a free,
        future slot.

        Raises:
            InvalidTransition: If the booking is in progress or finished
            Forbidden: If the actor may not make the requested change
            TooLateToModify: Inside the modification window
            PastSchedule: If the new schedule is not in the future
            SlotConflict: If the new slot is taken
        """
        booking = await self._load_booking(booking_id, for_update=True)
        self._authorize_booking(booking, actor)

        if not booking.status.is_reschedulable():
            raise InvalidTransition(
                booking.status,
                booking.status,
                message=f"Bookings that are {_humanize(booking.status)} cannot be modified",
                booking_id=str(booking.id),
            )

        if not data.changes_schedule and data.notes is None:
            raise ValidationFailed("No changes requested")

        new_date = data.booking_date or booking.booking_date
        new_time = data.booking_time or booking.booking_time
        schedule_changed = data.changes_schedule and (
            new_date != booking.booking_date or new_time != booking.booking_time
        )

        if data.changes_schedule:
            if actor.id != booking.customer_id and not actor.is_admin:
                raise Forbidden(
                    "Only the customer can reschedule a booking",
                    booking_id=str(booking.id),
                )
            self.slots.ensure_modifiable(booking)
            self.slots.ensure_future(new_date, new_time)
            if schedule_changed:
                await self.slots.ensure_available(
                    booking.service_listing_id,
                    new_date,
                    new_time,
                    exclude_booking_id=booking.id,
                )

        async with self._unit_of_work("reschedule_booking", booking_id=str(booking.id)):
            if schedule_changed:
                previous = f"{booking.booking_date.isoformat()} {booking.booking_time}"
                booking.booking_date = new_date
                booking.booking_time = new_time
                current = f"{new_date.isoformat()} {new_time}"
                self.audit.record(
                    booking,
                    TicketAction.UPDATED,
                    actor,
                    previous_value=previous,
                    message=f"Booking rescheduled from {previous} to {current}",
                )
            if data.notes is not None:
                self._store_booking_note(booking, actor, data.notes)
                self.audit.record(booking, TicketAction.UPDATED, actor, message="Notes updated")

        return booking

    async def cancel_booking(
        self, booking_id: uuid.UUID, actor: Actor, reason: Optional[str] = None
    ) -> ServiceBooking:
        """Cancel a booking, queueing a refund of the amount paid."""
        return await self.request_transition(
            EntityKind.SERVICE_BOOKING,
            booking_id,
            BookingStatus.CANCELLED,
            actor,
            reason=reason,
        )

    async def delete_booking(self, booking_id: uuid.UUID, actor: Actor) -> None:
        """
        Remove a finished booking.

        Raises:
            Forbidden: If the actor is neither the customer nor an admin
            ValidationFailed: If the booking is still live
        """
        booking = await self._load_booking(booking_id, for_update=True)
        if actor.id != booking.customer_id and not actor.is_admin:
            raise Forbidden("Only the customer can delete a booking", booking_id=str(booking_id))
        if not booking.status.is_removable():
            raise ValidationFailed(
                "Only cancelled, completed or refunded bookings can be deleted",
                status=booking.status.value,
            )

        async with self._unit_of_work("delete_booking", booking_id=str(booking.id)):
            await self.repository.delete(booking)

        logger.info("Booking deleted", booking_id=str(booking_id))

    async def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> ServiceBooking:
        booking = await self._load_booking(booking_id)
        self._authorize_booking(booking, actor, read_only=True)
        return booking

    async def list_bookings(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[ServiceBooking]:
        """Providers see bookings of their listings, customers their own."""
        if actor.is_staff:
            return await self.repository.list_bookings(status=status, skip=skip, limit=limit)
        if actor.role == UserRole.SERVICE_PROVIDER:
            return await self.repository.list_bookings(
                provider_id=actor.id, status=status, skip=skip, limit=limit
            )
        return await self.repository.list_bookings(
            customer_id=actor.id, status=status, skip=skip, limit=limit
        )

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def _load_ticket(self, ticket_id: uuid.UUID, for_update: bool = False) -> Ticket:
        ticket = await self.repository.get_ticket(ticket_id, for_update=for_update)
        if ticket is None:
            raise NotFound("Ticket not found", ticket_id=str(ticket_id))
        return ticket

    def _authorize_ticket_access(self, ticket: Ticket, actor: Actor) -> None:
        if actor.is_staff or ticket.submitted_by == actor.id:
            return
        raise Forbidden("Access denied", ticket_id=str(ticket.id))

    async def _validate_assignee(self, assignee_id: uuid.UUID) -> None:
        assignee = await self.repository.get_user(assignee_id)
        if assignee is None or not assignee.is_staff:
            raise ValidationFailed("Invalid assignee", assignee_id=str(assignee_id))

    async def _change_ticket_status(
        self, ticket: Ticket, requested: TicketStatus, actor: Actor
    ) -> None:
        previous = ticket.status
        ticket.status = requested
        await self.side_effects.run(EntityKind.TICKET, ticket, actor)
        self.audit.record(
            ticket,
            TicketAction.STATUS_CHANGED,
            actor,
            previous_value=previous,
            new_value=requested,
            message=f"Status changed from {_humanize(previous)} to {_humanize(requested)}",
        )

    def _attach_note(self, ticket: Ticket, actor: Actor, note: Optional[str]) -> None:
        """Staff notes become internal comments; submitter notes are public."""
        if note:
            self.audit.attach_note(ticket, note, actor, is_internal=actor.is_staff)

    async def create_ticket(self, actor: Actor, data: TicketCreate) -> Ticket:
        """
        Raise a support ticket.

        Raises:
            ValidationFailed: If a referenced order or listing does not exist
        """
        if data.related_order_id and await self.repository.get_order(data.related_order_id) is None:
            raise ValidationFailed(
                "Related order not found", order_id=str(data.related_order_id)
            )
        if (
            data.related_listing_id
            and await self.repository.get_service_listing(data.related_listing_id) is None
        ):
            raise ValidationFailed(
                "Related service listing not found",
                listing_id=str(data.related_listing_id),
            )

        now = self.clock()
        ticket = Ticket(
            id=uuid.uuid4(),
            ticket_number=_reference("TKT", now, separator="-"),
            created_at=now,
            title=data.title,
            description=data.description,
            issue_type=data.issue_type,
            priority=data.priority,
            status=TicketStatus.OPEN,
            submitted_by=actor.id,
            related_order_id=data.related_order_id,
            related_listing_id=data.related_listing_id,
            tags=list(data.tags),
            comments=[],
            history=[],
            escalated=False,
        )

        async with self._unit_of_work("create_ticket", ticket_number=ticket.ticket_number):
            self.repository.add(ticket)
            self.audit.record_created(ticket, actor, "Ticket created")

        logger.info(
            "Ticket created",
            ticket_id=str(ticket.id),
            ticket_number=ticket.ticket_number,
            priority=ticket.priority.value,
        )
        return ticket

    async def _transition_ticket(
        self,
        ticket_id: uuid.UUID,
        requested: TicketStatus,
        actor: Actor,
        note: Optional[str],
    ) -> Ticket:
        ticket = await self._load_ticket(ticket_id, for_update=True)
        is_submitter = ticket.submitted_by == actor.id
        if not actor.is_staff and not (is_submitter and requested == TicketStatus.CLOSED):
            raise Forbidden("Insufficient permissions", ticket_id=str(ticket_id))

        ensure_transition(EntityKind.TICKET, ticket.status, requested, actor, is_submitter)

        async with self._unit_of_work("ticket_transition", ticket_id=str(ticket.id)):
            await self._change_ticket_status(ticket, requested, actor)
            self._attach_note(ticket, actor, note)

        return ticket

    async def update_ticket(
        self, ticket_id: uuid.UUID, actor: Actor, data: TicketUpdate
    ) -> Ticket:
        """
        Apply a staff update to a ticket.

        History entries are written in a fixed order: the status change, then
        the assignee change, then one ``updated`` entry per other changed
        field. Changing the assignee without an explicit status moves the
        ticket to ``assigned``.

        Raises:
            Forbidden: If the actor is not staff, or assigns without being
                an admin
            ValidationFailed: If the assignee is not active staff or nothing
                was requested
            InvalidTransition: If the status change is not allowed
        """
        if not actor.is_staff:
            raise Forbidden("Insufficient permissions", ticket_id=str(ticket_id))
        if not data.model_fields_set:
            raise ValidationFailed("No changes requested")

        ticket = await self._load_ticket(ticket_id, for_update=True)

        assignee_changed = data.changes_assignee and data.assigned_to != ticket.assigned_to
        if assignee_changed:
            if not actor.is_admin:
                raise Forbidden("Only administrators can assign tickets")
            if data.assigned_to is not None:
                await self._validate_assignee(data.assigned_to)

        target_status = data.status
        if (
            target_status is None
            and assignee_changed
            and data.assigned_to is not None
            and ticket.status != TicketStatus.ASSIGNED
        ):
            target_status = TicketStatus.ASSIGNED
        if target_status == ticket.status and not ticket.status.is_terminal():
            target_status = None

        if target_status is not None:
            ensure_transition(EntityKind.TICKET, ticket.status, target_status, actor)
        elif ticket.status.is_terminal():
            raise InvalidTransition(
                ticket.status,
                ticket.status,
                message="Closed tickets cannot be updated",
                ticket_id=str(ticket.id),
            )

        async with self._unit_of_work("update_ticket", ticket_id=str(ticket.id)):
            if target_status is not None:
                await self._change_ticket_status(ticket, target_status, actor)

            if assignee_changed:
                previous_assignee = ticket.assigned_to
                ticket.assigned_to = data.assigned_to
                self.audit.record(
                    ticket,
                    TicketAction.ASSIGNED,
                    actor,
                    previous_value=previous_assignee,
                    new_value=data.assigned_to,
                    message="Ticket assigned" if data.assigned_to else "Ticket unassigned",
                )

            if data.priority is not None and data.priority != ticket.priority:
                previous_priority = ticket.priority
                ticket.priority = data.priority
                self.audit.record(
                    ticket,
                    TicketAction.UPDATED,
                    actor,
                    previous_value=previous_priority,
                    new_value=data.priority,
                    message="Priority changed",
                )

            if data.resolution is not None and data.resolution != ticket.resolution:
                previous_resolution = ticket.resolution
                ticket.resolution = data.resolution
                self.audit.record(
                    ticket,
                    TicketAction.UPDATED,
                    actor,
                    previous_value=previous_resolution,
                    new_value=data.resolution,
                    message="Resolution updated",
                )

            if data.escalation_reason:
                previous_priority = self.side_effects.escalate(ticket, data.escalation_reason)
                self.audit.record(
                    ticket,
                    TicketAction.UPDATED,
                    actor,
                    previous_value=previous_priority,
                    new_value=ticket.priority,
                    message=f"Escalated: {data.escalation_reason}",
                )

            self._attach_note(ticket, actor, data.note)

        return ticket

    async def assign_ticket(
        self, ticket_id: uuid.UUID, actor: Actor, assignee_id: uuid.UUID
    ) -> Ticket:
        """Assign a ticket to a staff member; admins only."""
        return await self.update_ticket(ticket_id, actor, TicketUpdate(assigned_to=assignee_id))

    async def add_comment(
        self, ticket_id: uuid.UUID, actor: Actor, data: CommentCreate
    ) -> Ticket:
        """
        Comment on a ticket.

        Internal comments are a staff privilege; a non-staff request for an
        internal comment is stored as a public one.
        """
        ticket = await self._load_ticket(ticket_id, for_update=True)
        self._authorize_ticket_access(ticket, actor)

        async with self._unit_of_work("add_comment", ticket_id=str(ticket.id)):
            self.audit.add_comment(
                ticket,
                data.message,
                actor,
                is_internal=data.is_internal and actor.is_staff,
            )
        return ticket

    async def close_ticket(
        self, ticket_id: uuid.UUID, actor: Actor, data: TicketClose
    ) -> Ticket:
        """
        Close a ticket.

        Staff may close any open ticket and record a resolution. The
        submitter may close a resolved ticket and leave a 1-5 satisfaction
        rating. Closed is terminal, so the rating is set at most once.

        Raises:
            Forbidden: If the actor is neither staff nor the submitter
            InvalidTransition: If the ticket cannot be closed from its status
            ValidationFailed: If the rating is out of range or supplied by staff
        """
        ticket = await self._load_ticket(ticket_id, for_update=True)
        is_submitter = ticket.submitted_by == actor.id
        if not actor.is_staff and not is_submitter:
            raise Forbidden("Insufficient permissions", ticket_id=str(ticket_id))

        ensure_transition(
            EntityKind.TICKET, ticket.status, TicketStatus.CLOSED, actor, is_submitter
        )

        if data.satisfaction_rating is not None:
            if actor.is_staff:
                raise ValidationFailed("Only the submitter can rate a ticket")
            if not 1 <= data.satisfaction_rating <= 5:
                raise ValidationFailed(
                    "Satisfaction rating must be between 1 and 5",
                    rating=data.satisfaction_rating,
                )

        async with self._unit_of_work("close_ticket", ticket_id=str(ticket.id)):
            if actor.is_staff and data.resolution:
                ticket.resolution = data.resolution
            if data.satisfaction_rating is not None:
                ticket.satisfaction_rating = data.satisfaction_rating
                ticket.satisfaction_feedback = data.feedback or ""
                ticket.satisfaction_submitted_at = self.clock()
            await self._change_ticket_status(ticket, TicketStatus.CLOSED, actor)

        return ticket

    async def get_ticket(self, ticket_id: uuid.UUID, actor: Actor) -> Ticket:
        """
        Fetch a ticket; non-staff may only read their own.

        Callers rendering the ticket must hide internal comments from
        non-staff readers.
        """
        ticket = await self._load_ticket(ticket_id)
        self._authorize_ticket_access(ticket, actor)
        return ticket

    async def list_tickets(
        self,
        actor: Actor,
        status: Optional[TicketStatus] = None,
        assigned_to_me: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[Ticket]:
        if not actor.is_staff:
            return await self.repository.list_tickets(
                submitted_by=actor.id, status=status, skip=skip, limit=limit
            )
        return await self.repository.list_tickets(
            assigned_to=actor.id if assigned_to_me else None,
            status=status,
            skip=skip,
            limit=limit,
        )

    async def delete_ticket(self, ticket_id: uuid.UUID, actor: Actor) -> None:
        """
        Delete a ticket that nobody is working on.

        Raises:
            Forbidden: If the actor is neither the submitter nor staff
            ValidationFailed: If the ticket is assigned or in progress
        """
        ticket = await self._load_ticket(ticket_id, for_update=True)
        self._authorize_ticket_access(ticket, actor)
        if ticket.status.is_being_worked():
            raise ValidationFailed(
                "Tickets that are being worked on cannot be deleted",
                status=ticket.status.value,
            )

        async with self._unit_of_work("delete_ticket", ticket_id=str(ticket.id)):
            await self.repository.delete(ticket)

        logger.info("Ticket deleted", ticket_id=str(ticket_id))
