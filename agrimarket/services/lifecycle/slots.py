"""Slot conflict and schedule checks for service bookings.

A slot is the exact (listing, calendar date, "HH:MM") triple. Only bookings
that are pending confirmation, confirmed or in progress hold their slot.
Schedule comparisons interpret the booking's date and time in the configured
booking time zone and compare against an injected clock.
"""

import re
import uuid
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from agrimarket.core.logging import get_logger
from agrimarket.database.models.booking import ServiceBooking
from agrimarket.services.lifecycle.errors import (
    PastSchedule,
    SlotConflict,
    TooLateToModify,
    ValidationFailed,
)
from agrimarket.services.lifecycle.repository import LifecycleRepository

logger = get_logger(__name__)

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_booking_time(value: str) -> time:
    """
    Parse a 24-hour "HH:MM" time of day.

    Raises:
        ValidationFailed: If the value is not a valid "HH:MM" string
    """
    match = _TIME_PATTERN.match(value or "")
    if not match:
        raise ValidationFailed(
            "Booking time must be in HH:MM 24-hour format",
            booking_time=value,
        )
    return time(int(match.group(1)), int(match.group(2)))


def scheduled_at(booking_date: date, booking_time: str, tz: ZoneInfo) -> datetime:
    """Combine a booking's date and time into an aware datetime in ``tz``."""
    return datetime.combine(booking_date, parse_booking_time(booking_time), tzinfo=tz)


class SlotConflictChecker:
    """
    Decides slot availability and enforces the booking schedule gates.

    Attributes:
        repository: Data access used for occupancy queries
        clock: Returns the current aware time
        tz: Time zone booking dates and times are interpreted in
        modification_window: Period before the schedule in which a booking
            can no longer be cancelled or rescheduled
    """

    def __init__(
        self,
        repository: LifecycleRepository,
        clock: Callable[[], datetime],
        tz: ZoneInfo,
        modification_window: timedelta = timedelta(hours=24),
    ):
        self.repository = repository
        self.clock = clock
        self.tz = tz
        self.modification_window = modification_window

    async def has_conflict(
        self,
        listing_id: uuid.UUID,
        booking_date: date,
        booking_time: str,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Check whether an active booking already holds the slot.

        Args:
            listing_id: Service listing
            booking_date: Calendar date
            booking_time: Time of day as "HH:MM"
            exclude_booking_id: Booking to ignore, used when rescheduling

        Returns:
            True if the slot is taken
        """
        return await self.repository.slot_taken(
            listing_id, booking_date, booking_time, exclude_booking_id
        )

    async def ensure_available(
        self,
        listing_id: uuid.UUID,
        booking_date: date,
        booking_time: str,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Raises:
            SlotConflict: If an active booking already holds the slot
        """
        if await self.has_conflict(listing_id, booking_date, booking_time, exclude_booking_id):
            logger.info(
                "Slot conflict detected",
                listing_id=str(listing_id),
                booking_date=booking_date.isoformat(),
                booking_time=booking_time,
            )
            raise SlotConflict(
                "The requested time slot is already booked",
                listing_id=str(listing_id),
                booking_date=booking_date.isoformat(),
                booking_time=booking_time,
            )

    def ensure_future(self, booking_date: date, booking_time: str) -> datetime:
        """
        Check that a schedule lies strictly after now.

        Returns:
            The schedule as an aware datetime

        Raises:
            ValidationFailed: If the time is malformed
            PastSchedule: If the schedule is now or in the past
        """
        schedule = scheduled_at(booking_date, booking_time, self.tz)
        if schedule <= self.clock():
            raise PastSchedule(
                "Booking date and time must be in the future",
                booking_date=booking_date.isoformat(),
                booking_time=booking_time,
            )
        return schedule

    def ensure_modifiable(self, booking: ServiceBooking) -> None:
        """
        Check that a booking is outside its modification window.

        The window is measured against the booking's current schedule, not
        any newly requested one.

        Raises:
            TooLateToModify: If the current schedule is too close
        """
        schedule = scheduled_at(booking.booking_date, booking.booking_time, self.tz)
        remaining = schedule - self.clock()
        if remaining < self.modification_window:
            hours = int(self.modification_window.total_seconds() // 3600)
            raise TooLateToModify(
                f"Bookings cannot be changed less than {hours} hours before the service",
                booking_id=str(booking.id),
                hours_remaining=round(remaining.total_seconds() / 3600, 2),
            )
