"""
Service booking model.

A booking reserves one (listing, date, time) slot, snapshots the listing's
pricing and carries its payment record, an optional cancellation record and
an append-only timeline.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from agrimarket.database.base import (
    JSONType,
    LifecycleModel,
    enum_type,
    ensure_append_only,
)
from agrimarket.services.lifecycle.enums import (
    ACTIVE_BOOKING_STATUSES,
    BookingPaymentMethod,
    BookingPaymentStatus,
    BookingStatus,
    PricingType,
    RefundStatus,
)

_ACTIVE_SLOT_PREDICATE = text(
    "status IN ({})".format(
        ", ".join(f"'{status.value}'" for status in sorted(ACTIVE_BOOKING_STATUSES))
    )
)


class ServiceBooking(LifecycleModel):
    """
    Booking of a service listing for a calendar date and time of day.

    Attributes:
        booking_number: Human-readable booking number (SRV...)
        customer_id: Booking farmer
        provider_id: Listing provider
        service_listing_id: Booked listing
        booking_date: Calendar date of the service
        booking_time: Time of day as "HH:MM"
        field_size: Field size the service covers, positive
        final_amount: Price charged for the booking
        transaction_id: Payment idempotency key, unique
        status: Current booking status
        timeline: Append-only list of {status, message, timestamp, actor}
        version: Optimistic concurrency counter
    """

    __tablename__ = "service_bookings"

    booking_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable booking number",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Customer who booked the service",
    )

    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Provider delivering the service",
    )

    service_listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("service_listings.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Booked service listing",
    )

    # Service snapshot
    service_title: Mapped[str] = mapped_column(String(200), nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Schedule
    booking_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Calendar date of the service",
    )

    booking_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
        comment="Time of day as HH:MM",
    )

    field_size: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Field size covered by the service",
    )

    # Pricing snapshot
    pricing_type: Mapped[PricingType] = mapped_column(
        enum_type(PricingType, "pricing_type"),
        nullable=False,
    )

    base_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    final_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="LKR")

    # Payment record
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        enum_type(BookingPaymentStatus, "booking_payment_status"),
        nullable=False,
        default=BookingPaymentStatus.PENDING,
    )

    payment_method: Mapped[BookingPaymentMethod] = mapped_column(
        enum_type(BookingPaymentMethod, "booking_payment_method"),
        nullable=False,
        default=BookingPaymentMethod.DEMO_CARD,
    )

    transaction_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Payment idempotency key",
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    card_last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        enum_type(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING_CONFIRMATION,
        index=True,
        comment="Current booking status",
    )

    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Cancellation record
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    refund_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=True,
    )

    refund_status: Mapped[RefundStatus] = mapped_column(
        enum_type(RefundStatus, "refund_status"),
        nullable=False,
        default=RefundStatus.NONE,
    )

    timeline: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Append-only booking timeline",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency version",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("field_size > 0", name="ck_service_bookings_field_size_positive"),
        CheckConstraint("final_amount >= 0", name="ck_service_bookings_amount_non_negative"),
        # At most one active booking per slot
        Index(
            "uq_service_bookings_active_slot",
            "service_listing_id",
            "booking_date",
            "booking_time",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
        ),
        Index("ix_service_bookings_listing_date", "service_listing_id", "booking_date"),
    )

    @validates("timeline")
    def _validate_timeline(self, key: str, value: Any) -> list[dict[str, Any]]:
        return ensure_append_only(self, key, value)

    def is_party(self, user_id: uuid.UUID) -> bool:
        """Check if the user is the customer or the provider."""
        return user_id in (self.customer_id, self.provider_id)
