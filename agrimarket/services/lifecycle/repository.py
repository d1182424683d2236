"""
Lifecycle data access repository.

This module implements the LifecycleRepository class providing async access
to orders, service bookings, tickets, catalog stock, slot occupancy and the
refund outbox. Storage failures are translated into the lifecycle error
taxonomy; the repository never commits on its own except through
:meth:`LifecycleRepository.commit`.
"""

import uuid
from datetime import date
from typing import Any, Optional, Sequence, Type, TypeVar

from sqlalchemy import and_, exists, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from agrimarket.core.logging import get_logger
from agrimarket.database.base import Base
from agrimarket.database.models.booking import ServiceBooking
from agrimarket.database.models.catalog import Product, ServiceListing
from agrimarket.database.models.order import Order
from agrimarket.database.models.outbox import RefundRequest
from agrimarket.database.models.ticket import Ticket
from agrimarket.database.models.user import User
from agrimarket.services.lifecycle.enums import (
    ACTIVE_BOOKING_STATUSES,
    BookingStatus,
    EntityKind,
    OrderStatus,
    ProductStatus,
    TicketStatus,
)
from agrimarket.services.lifecycle.errors import (
    ConcurrentModification,
    PersistenceError,
    SlotConflict,
)

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)

SLOT_INDEX_NAME = "uq_service_bookings_active_slot"


def is_slot_violation(error: IntegrityError) -> bool:
    """
    Check whether an integrity error came from the active-slot index.

    PostgreSQL names the index in its message; SQLite lists the indexed
    columns instead.
    """
    message = str(error.orig)
    return SLOT_INDEX_NAME in message or "service_bookings.booking_time" in message


class LifecycleRepository:
    """
    Repository for lifecycle entity data access.

    Attributes:
        session: Async database session shared with the calling service
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    async def _get(
        self,
        model: Type[ModelT],
        entity_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[ModelT]:
        stmt = select(model).where(model.id == entity_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch entity",
                model=model.__name__,
                entity_id=str(entity_id),
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to fetch {model.__name__}",
                entity_id=str(entity_id),
                error=str(e),
            ) from e

        return result.scalar_one_or_none()

    async def _list(self, stmt) -> Sequence[Any]:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to list entities", error=str(e))
            raise PersistenceError("Failed to list entities", error=str(e)) from e
        return result.scalars().all()

    def add(self, entity: Base) -> None:
        self.session.add(entity)

    async def delete(self, entity: Base) -> None:
        await self.session.delete(entity)

    async def flush(self) -> None:
        """
        Flush pending changes.

        Raises:
            SlotConflict: If the flush would double-book an active slot
            ConcurrentModification: If a versioned row changed underneath
            PersistenceError: On any other storage failure
        """
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise self._translate(e, "flush") from e

    async def commit(self) -> None:
        """
        Commit the unit of work.

        Raises:
            SlotConflict: If the commit would double-book an active slot
            ConcurrentModification: If a versioned row changed underneath
            PersistenceError: On any other storage failure
        """
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise self._translate(e, "commit") from e

    async def rollback(self) -> None:
        await self.session.rollback()

    def _translate(self, error: Exception, operation: str) -> Exception:
        if isinstance(error, StaleDataError):
            logger.warning("Optimistic version conflict", operation=operation)
            return ConcurrentModification(
                "The record was modified concurrently; reload and retry",
                operation=operation,
            )
        if isinstance(error, IntegrityError) and is_slot_violation(error):
            logger.info("Active slot index rejected booking", operation=operation)
            return SlotConflict(
                "The requested time slot is already booked",
                operation=operation,
            )
        logger.error(
            "Storage operation failed",
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        return PersistenceError(
            f"Storage {operation} failed",
            operation=operation,
            error=str(error),
        )

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, for_update: bool = False) -> Optional[Order]:
        return await self._get(Order, order_id, for_update)

    async def get_booking(
        self, booking_id: uuid.UUID, for_update: bool = False
    ) -> Optional[ServiceBooking]:
        return await self._get(ServiceBooking, booking_id, for_update)

    async def get_ticket(self, ticket_id: uuid.UUID, for_update: bool = False) -> Optional[Ticket]:
        return await self._get(Ticket, ticket_id, for_update)

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self._get(User, user_id)

    async def get_service_listing(self, listing_id: uuid.UUID) -> Optional[ServiceListing]:
        return await self._get(ServiceListing, listing_id)

    async def get_products(self, product_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, Product]:
        """Load products by id, keyed by id; missing ids are simply absent."""
        stmt = (
            select(Product)
            .where(Product.id.in_(list(product_ids)))
            .execution_options(populate_existing=True)
        )
        products = await self._list(stmt)
        return {product.id: product for product in products}

    async def list_orders(
        self,
        buyer_id: Optional[uuid.UUID] = None,
        seller_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[Order]:
        conditions = []
        if buyer_id is not None:
            conditions.append(Order.buyer_id == buyer_id)
        if seller_id is not None:
            conditions.append(Order.seller_id == seller_id)
        if status is not None:
            conditions.append(Order.status == status)

        stmt = (
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return await self._list(stmt)

    async def list_bookings(
        self,
        customer_id: Optional[uuid.UUID] = None,
        provider_id: Optional[uuid.UUID] = None,
        status: Optional[BookingStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[ServiceBooking]:
        conditions = []
        if customer_id is not None:
            conditions.append(ServiceBooking.customer_id == customer_id)
        if provider_id is not None:
            conditions.append(ServiceBooking.provider_id == provider_id)
        if status is not None:
            conditions.append(ServiceBooking.status == status)

        stmt = (
            select(ServiceBooking)
            .where(*conditions)
            .order_by(ServiceBooking.booking_date.desc(), ServiceBooking.booking_time.desc())
            .offset(skip)
            .limit(limit)
        )
        return await self._list(stmt)

    async def list_tickets(
        self,
        submitted_by: Optional[uuid.UUID] = None,
        assigned_to: Optional[uuid.UUID] = None,
        status: Optional[TicketStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[Ticket]:
        conditions = []
        if submitted_by is not None:
            conditions.append(Ticket.submitted_by == submitted_by)
        if assigned_to is not None:
            conditions.append(Ticket.assigned_to == assigned_to)
        if status is not None:
            conditions.append(Ticket.status == status)

        stmt = (
            select(Ticket)
            .where(*conditions)
            .order_by(Ticket.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return await self._list(stmt)

    # ------------------------------------------------------------------
    # Catalog stock
    # ------------------------------------------------------------------

    async def reserve_stock(self, product_id: uuid.UUID, quantity: int) -> bool:
        """
        Atomically take units out of stock.

        The decrement only applies while enough units remain, so stock never
        goes negative under concurrent orders.

        Returns:
            True if the units were reserved, False if stock was insufficient
        """
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.status == ProductStatus.AVAILABLE,
                Product.quantity_available >= quantity,
            )
            .values(quantity_available=Product.quantity_available - quantity)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise self._translate(e, "reserve_stock") from e

        reserved = result.rowcount == 1
        logger.debug(
            "Stock reservation attempted",
            product_id=str(product_id),
            quantity=quantity,
            reserved=reserved,
        )
        return reserved

    async def release_stock(self, product_id: uuid.UUID, quantity: int) -> None:
        """Atomically return units to stock."""
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(quantity_available=Product.quantity_available + quantity)
            .execution_options(synchronize_session=False)
        )
        try:
            await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise self._translate(e, "release_stock") from e

        logger.debug("Stock released", product_id=str(product_id), quantity=quantity)

    async def get_stock(self, product_id: uuid.UUID) -> Optional[int]:
        """Read the current stock level straight from the database."""
        try:
            result = await self.session.execute(
                select(Product.quantity_available).where(Product.id == product_id)
            )
        except SQLAlchemyError as e:
            raise self._translate(e, "get_stock") from e
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    async def slot_taken(
        self,
        listing_id: uuid.UUID,
        booking_date: date,
        booking_time: str,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Check for an active booking on the exact (listing, date, time)."""
        conditions = [
            ServiceBooking.service_listing_id == listing_id,
            ServiceBooking.booking_date == booking_date,
            ServiceBooking.booking_time == booking_time,
            ServiceBooking.status.in_(list(ACTIVE_BOOKING_STATUSES)),
        ]
        if exclude_booking_id is not None:
            conditions.append(ServiceBooking.id != exclude_booking_id)

        try:
            result = await self.session.execute(select(exists().where(and_(*conditions))))
        except SQLAlchemyError as e:
            raise self._translate(e, "slot_taken") from e
        return bool(result.scalar())

    # ------------------------------------------------------------------
    # Refund outbox
    # ------------------------------------------------------------------

    async def get_refund_request(
        self, entity_kind: EntityKind, entity_id: uuid.UUID
    ) -> Optional[RefundRequest]:
        stmt = select(RefundRequest).where(
            RefundRequest.entity_kind == entity_kind,
            RefundRequest.entity_id == entity_id,
        )
        rows = await self._list(stmt)
        return rows[0] if rows else None
