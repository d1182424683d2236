"""
Integration tests for the service booking lifecycle.

The clock is frozen at 2025-05-20 08:00 UTC and bookings default to
ploughing two acres on 2025-06-01 at 09:00 in UTC.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from agrimarket.core.config import get_settings
from agrimarket.schemas.lifecycle import BookingUpdate
from agrimarket.services.lifecycle.enums import (
    BookingPaymentStatus,
    BookingStatus,
    EntityKind,
    RefundStatus,
)
from agrimarket.services.lifecycle.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    PastSchedule,
    PaymentDeclined,
    SlotConflict,
    TooLateToModify,
    ValidationFailed,
)
from agrimarket.services.lifecycle.payments import SimulatedPaymentGateway
from agrimarket.services.lifecycle.service import LifecycleService

SCENARIO_DATE = date(2025, 6, 1)


async def move(service, booking, actor, *statuses):
    for status in statuses:
        booking = await service.request_transition(
            EntityKind.SERVICE_BOOKING, booking.id, status, actor
        )
    return booking


# ============================================================================
# Booking Placement Tests
# ============================================================================


class TestCreateBooking:
    """Test booking placement and payment."""

    @pytest.mark.asyncio
    async def test_creates_paid_booking(self, service, marketplace, actor_for, booking_request):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        assert booking.status == BookingStatus.PENDING_CONFIRMATION
        assert booking.payment_status == BookingPaymentStatus.PAID
        assert booking.paid_at is not None
        assert booking.booking_number.startswith("SRV20250520080000")
        assert booking.transaction_id.startswith("TXN20250520080000")
        assert booking.customer_id == marketplace.farmer.id
        assert booking.provider_id == marketplace.provider.id
        assert booking.service_title == "Tractor ploughing"
        assert booking.final_amount == Decimal("5000.00")
        assert booking.refund_status == RefundStatus.NONE

        assert len(booking.timeline) == 1
        assert booking.timeline[0]["status"] == "pending_confirmation"
        assert booking.timeline[0]["message"] == "Booking created and payment processed"

    @pytest.mark.asyncio
    async def test_fixed_price_ignores_field_size(
        self, service, marketplace, actor_for, booking_request
    ):
        booking = await service.create_booking(
            actor_for(marketplace.farmer),
            booking_request(
                service_listing_id=marketplace.harvesting.id, field_size=Decimal("7.50")
            ),
        )

        assert booking.final_amount == Decimal("18000.00")

    @pytest.mark.asyncio
    async def test_second_booking_of_same_slot_conflicts(
        self, service, marketplace, actor_for, booking_request
    ):
        await service.create_booking(actor_for(marketplace.farmer), booking_request())

        with pytest.raises(SlotConflict):
            await service.create_booking(actor_for(marketplace.buyer), booking_request())

        other_time = await service.create_booking(
            actor_for(marketplace.buyer), booking_request(booking_time="10:00")
        )
        assert other_time.booking_time == "10:00"

    @pytest.mark.asyncio
    async def test_same_time_on_another_listing_is_free(
        self, service, marketplace, actor_for, booking_request
    ):
        await service.create_booking(actor_for(marketplace.farmer), booking_request())

        booking = await service.create_booking(
            actor_for(marketplace.buyer),
            booking_request(service_listing_id=marketplace.harvesting.id),
        )

        assert booking.status == BookingStatus.PENDING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_slot_index_rejects_double_booking(
        self, service, marketplace, actor_for, booking_request
    ):
        """The database index holds even when the pre-check is bypassed."""
        await service.create_booking(actor_for(marketplace.farmer), booking_request())
        service.slots.ensure_available = AsyncMock()

        with pytest.raises(SlotConflict):
            await service.create_booking(actor_for(marketplace.buyer), booking_request())

        bookings = await service.list_bookings(actor_for(marketplace.admin))
        assert len(bookings) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "booking_date,booking_time",
        [(date(2025, 5, 20), "08:00"), (date(2025, 5, 19), "12:00")],
    )
    async def test_past_schedule_rejected(
        self, service, marketplace, actor_for, booking_request, booking_date, booking_time
    ):
        with pytest.raises(PastSchedule):
            await service.create_booking(
                actor_for(marketplace.farmer),
                booking_request(booking_date=booking_date, booking_time=booking_time),
            )

    @pytest.mark.asyncio
    async def test_malformed_time_rejected(self, service, marketplace, actor_for, booking_request):
        with pytest.raises(ValidationFailed, match="HH:MM"):
            await service.create_booking(
                actor_for(marketplace.farmer), booking_request(booking_time="9am")
            )

    @pytest.mark.asyncio
    async def test_missing_listing_not_found(
        self, service, marketplace, actor_for, booking_request
    ):
        with pytest.raises(NotFound):
            await service.create_booking(
                actor_for(marketplace.farmer), booking_request(service_listing_id=uuid4())
            )

    @pytest.mark.asyncio
    async def test_inactive_listing_rejected(
        self, service, marketplace, actor_for, booking_request
    ):
        with pytest.raises(ValidationFailed, match="not accepting bookings"):
            await service.create_booking(
                actor_for(marketplace.farmer),
                booking_request(service_listing_id=marketplace.retired_listing.id),
            )

    @pytest.mark.asyncio
    async def test_provider_cannot_book_own_listing(
        self, service, marketplace, actor_for, booking_request
    ):
        with pytest.raises(ValidationFailed, match="your own service"):
            await service.create_booking(actor_for(marketplace.provider), booking_request())

    @pytest.mark.asyncio
    async def test_zero_field_size_rejected(
        self, service, marketplace, actor_for, booking_request
    ):
        with pytest.raises(ValidationFailed, match="Field size"):
            await service.create_booking(
                actor_for(marketplace.farmer), booking_request(field_size=Decimal("0"))
            )

    @pytest.mark.asyncio
    async def test_declined_payment_leaves_no_booking(
        self, session, clock, marketplace, actor_for, booking_request
    ):
        declining = LifecycleService(
            session,
            payment_gateway=SimulatedPaymentGateway(success_rate=0.0),
            settings=get_settings(),
            clock=clock,
        )
        farmer = actor_for(marketplace.farmer)

        with pytest.raises(PaymentDeclined):
            await declining.create_booking(farmer, booking_request())

        assert await declining.list_bookings(farmer) == []
        assert await declining.check_slot(marketplace.ploughing.id, SCENARIO_DATE, "09:00")


# ============================================================================
# Booking Transition Tests
# ============================================================================


class TestBookingTransitions:
    """Test booking status changes."""

    @pytest.mark.asyncio
    async def test_provider_works_booking_to_completion(
        self, service, marketplace, actor_for, booking_request
    ):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        booking = await move(
            service,
            booking,
            actor_for(marketplace.provider),
            BookingStatus.CONFIRMED,
            BookingStatus.IN_PROGRESS,
            BookingStatus.COMPLETED,
        )

        assert booking.status == BookingStatus.COMPLETED
        assert booking.completed_at is not None
        assert [entry["message"] for entry in booking.timeline][1:] == [
            "Status updated to confirmed",
            "Status updated to in progress",
            "Status updated to completed",
        ]

    @pytest.mark.asyncio
    async def test_self_transition_rejected(
        self, service, marketplace, actor_for, booking_request
    ):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        with pytest.raises(InvalidTransition):
            await move(
                service,
                booking,
                actor_for(marketplace.provider),
                BookingStatus.PENDING_CONFIRMATION,
            )

    @pytest.mark.asyncio
    async def test_reopening_into_taken_slot_conflicts(
        self, service, marketplace, actor_for, booking_request
    ):
        provider = actor_for(marketplace.provider)
        first = await service.create_booking(actor_for(marketplace.farmer), booking_request())
        first = await move(service, first, provider, BookingStatus.COMPLETED)

        await service.create_booking(actor_for(marketplace.buyer), booking_request())

        with pytest.raises(SlotConflict):
            await move(service, first, provider, BookingStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_stranger_cannot_change_booking(
        self, service, marketplace, actor_for, booking_request
    ):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        with pytest.raises(Forbidden):
            await move(service, booking, actor_for(marketplace.buyer), BookingStatus.CONFIRMED)
        with pytest.raises(Forbidden):
            await service.get_booking(booking.id, actor_for(marketplace.buyer))

    @pytest.mark.asyncio
    async def test_rep_can_read_booking(self, service, marketplace, actor_for, booking_request):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        fetched = await service.get_booking(booking.id, actor_for(marketplace.rep))

        assert fetched.id == booking.id


# ============================================================================
# Cancellation and Refund Tests
# ============================================================================


class TestBookingCancellation:
    """Test cancellation, the modification window and refunds."""

    @pytest.mark.asyncio
    async def test_cancel_records_refund_and_frees_slot(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())

        booking = await service.cancel_booking(booking.id, farmer, reason="Rain forecast")

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "Rain forecast"
        assert booking.cancelled_by == marketplace.farmer.id
        assert booking.refund_amount == Decimal("5000.00")
        assert booking.refund_status == RefundStatus.PENDING
        assert booking.timeline[-1]["message"] == "Booking cancelled: Rain forecast"

        refund = await service.repository.get_refund_request(
            EntityKind.SERVICE_BOOKING, booking.id
        )
        assert refund.transaction_reference == booking.transaction_id
        assert refund.amount == Decimal("5000.00")

        assert await service.check_slot(marketplace.ploughing.id, SCENARIO_DATE, "09:00")
        rebooked = await service.create_booking(actor_for(marketplace.buyer), booking_request())
        assert rebooked.status == BookingStatus.PENDING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_cancel_inside_window_is_too_late(
        self, service, clock, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        clock.now = datetime(2025, 5, 31, 10, 0, tzinfo=timezone.utc)

        with pytest.raises(TooLateToModify):
            await service.cancel_booking(booking.id, farmer)

        reloaded = await service.get_booking(booking.id, farmer)
        assert reloaded.status == BookingStatus.PENDING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_cancel_just_outside_window_succeeds(
        self, service, clock, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        clock.now = datetime(2025, 5, 31, 9, 0, tzinfo=timezone.utc)

        booking = await service.cancel_booking(booking.id, farmer)

        assert booking.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancelled_booking_cannot_be_revived(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        await service.cancel_booking(booking.id, farmer)

        with pytest.raises(InvalidTransition):
            await move(service, booking, actor_for(marketplace.provider), BookingStatus.CONFIRMED)
        with pytest.raises(InvalidTransition):
            await service.cancel_booking(booking.id, farmer)

    @pytest.mark.asyncio
    async def test_only_admin_refunds(self, service, marketplace, actor_for, booking_request):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        await service.cancel_booking(booking.id, farmer)

        with pytest.raises(Forbidden):
            await move(service, booking, farmer, BookingStatus.REFUNDED)

        booking = await move(service, booking, actor_for(marketplace.admin), BookingStatus.REFUNDED)

        assert booking.status == BookingStatus.REFUNDED
        assert booking.payment_status == BookingPaymentStatus.REFUNDED
        assert booking.refund_status == RefundStatus.PROCESSED


# ============================================================================
# Reschedule Tests
# ============================================================================


class TestRescheduleBooking:
    """Test schedule and note changes."""

    @pytest.mark.asyncio
    async def test_customer_moves_booking(self, service, marketplace, actor_for, booking_request):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())

        booking = await service.reschedule_booking(
            booking.id,
            farmer,
            BookingUpdate(booking_date=date(2025, 6, 2), booking_time="10:00"),
        )

        assert booking.booking_date == date(2025, 6, 2)
        assert booking.booking_time == "10:00"
        assert booking.timeline[-1]["message"] == (
            "Booking rescheduled from 2025-06-01 09:00 to 2025-06-02 10:00"
        )
        assert await service.check_slot(marketplace.ploughing.id, SCENARIO_DATE, "09:00")

    @pytest.mark.asyncio
    async def test_move_into_taken_slot_conflicts(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        await service.create_booking(
            actor_for(marketplace.buyer), booking_request(booking_time="11:00")
        )

        with pytest.raises(SlotConflict):
            await service.reschedule_booking(
                booking.id, farmer, BookingUpdate(booking_time="11:00")
            )

    @pytest.mark.asyncio
    async def test_reschedule_inside_window_is_too_late(
        self, service, clock, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        clock.now = datetime(2025, 5, 31, 12, 0, tzinfo=timezone.utc)

        with pytest.raises(TooLateToModify):
            await service.reschedule_booking(
                booking.id, farmer, BookingUpdate(booking_date=date(2025, 6, 10))
            )

    @pytest.mark.asyncio
    async def test_reschedule_into_past_rejected(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())

        with pytest.raises(PastSchedule):
            await service.reschedule_booking(
                booking.id, farmer, BookingUpdate(booking_date=date(2025, 5, 1))
            )

    @pytest.mark.asyncio
    async def test_provider_cannot_move_schedule(
        self, service, marketplace, actor_for, booking_request
    ):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        with pytest.raises(Forbidden):
            await service.reschedule_booking(
                booking.id,
                actor_for(marketplace.provider),
                BookingUpdate(booking_time="12:00"),
            )

    @pytest.mark.asyncio
    async def test_provider_updates_notes(self, service, marketplace, actor_for, booking_request):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        booking = await service.reschedule_booking(
            booking.id,
            actor_for(marketplace.provider),
            BookingUpdate(notes="Bring the rotavator"),
        )

        assert booking.provider_notes == "Bring the rotavator"
        assert booking.timeline[-1]["message"] == "Notes updated"

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, service, marketplace, actor_for, booking_request):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())

        with pytest.raises(ValidationFailed, match="No changes"):
            await service.reschedule_booking(booking.id, farmer, BookingUpdate())

    @pytest.mark.asyncio
    async def test_in_progress_booking_cannot_be_rescheduled(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        await move(service, booking, actor_for(marketplace.provider), BookingStatus.IN_PROGRESS)

        with pytest.raises(InvalidTransition):
            await service.reschedule_booking(
                booking.id, farmer, BookingUpdate(booking_time="15:00")
            )


# ============================================================================
# Deletion and Listing Tests
# ============================================================================


class TestBookingDeletionAndListing:
    """Test removal of finished bookings and scoped listing."""

    @pytest.mark.asyncio
    async def test_live_booking_cannot_be_deleted(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())

        with pytest.raises(ValidationFailed):
            await service.delete_booking(booking.id, farmer)

    @pytest.mark.asyncio
    async def test_cancelled_booking_deleted_by_customer(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        booking = await service.create_booking(farmer, booking_request())
        await service.cancel_booking(booking.id, farmer)

        with pytest.raises(Forbidden):
            await service.delete_booking(booking.id, actor_for(marketplace.provider))

        await service.delete_booking(booking.id, farmer)

        with pytest.raises(NotFound):
            await service.get_booking(booking.id, farmer)

    @pytest.mark.asyncio
    async def test_list_bookings_scopes_to_actor(
        self, service, marketplace, actor_for, booking_request
    ):
        booking = await service.create_booking(actor_for(marketplace.farmer), booking_request())

        assert [b.id for b in await service.list_bookings(actor_for(marketplace.farmer))] == [
            booking.id
        ]
        assert [b.id for b in await service.list_bookings(actor_for(marketplace.provider))] == [
            booking.id
        ]
        assert [b.id for b in await service.list_bookings(actor_for(marketplace.rep))] == [
            booking.id
        ]
        assert await service.list_bookings(actor_for(marketplace.buyer)) == []

    @pytest.mark.asyncio
    async def test_list_bookings_filters_by_status(
        self, service, marketplace, actor_for, booking_request
    ):
        farmer = actor_for(marketplace.farmer)
        first = await service.create_booking(farmer, booking_request())
        await service.create_booking(farmer, booking_request(booking_time="14:00"))
        await service.cancel_booking(first.id, farmer)

        cancelled = await service.list_bookings(farmer, status=BookingStatus.CANCELLED)

        assert [b.id for b in cancelled] == [first.id]
