"""Request-scoped summaries over lifecycle entities.

Summaries are pure functions over the entities passed in; nothing is
accumulated between requests.
"""

from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from agrimarket.database.models.booking import ServiceBooking
from agrimarket.database.models.ticket import Ticket
from agrimarket.schemas.lifecycle import BookingSummaryResponse, TicketStatsResponse
from agrimarket.services.lifecycle.enums import (
    BookingPaymentStatus,
    BookingStatus,
    RefundStatus,
    TicketStatus,
)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def summarize_bookings(
    bookings: Iterable[ServiceBooking], currency: str
) -> BookingSummaryResponse:
    """
    Summarize bookings by status and money.

    Revenue counts paid bookings that were completed; pending refunds count
    cancellations whose refund has not been processed yet.

    Args:
        bookings: Bookings visible to the caller
        currency: Currency to report amounts in

    Returns:
        Booking summary
    """
    by_status: Counter = Counter()
    revenue = Decimal("0.00")
    pending_refunds = Decimal("0.00")

    for booking in bookings:
        by_status[booking.status.value] += 1
        if booking.currency != currency:
            continue
        if (
            booking.status == BookingStatus.COMPLETED
            and booking.payment_status == BookingPaymentStatus.PAID
        ):
            revenue += booking.final_amount
        if booking.refund_status == RefundStatus.PENDING and booking.refund_amount:
            pending_refunds += booking.refund_amount

    return BookingSummaryResponse(
        total=sum(by_status.values()),
        by_status=dict(by_status),
        revenue=revenue,
        pending_refunds=pending_refunds,
        currency=currency,
    )


def ticket_stats(tickets: Iterable[Ticket]) -> TicketStatsResponse:
    """Aggregate ticket counts, resolution time and satisfaction."""
    by_status: Counter = Counter()
    by_priority: Counter = Counter()
    escalated = 0
    unassigned_open = 0
    resolution_hours = []
    ratings = []

    for ticket in tickets:
        by_status[ticket.status.value] += 1
        by_priority[ticket.priority.value] += 1
        if ticket.escalated:
            escalated += 1
        if ticket.assigned_to is None and ticket.status == TicketStatus.OPEN:
            unassigned_open += 1
        if ticket.resolved_at is not None and ticket.created_at is not None:
            elapsed = _aware(ticket.resolved_at) - _aware(ticket.created_at)
            resolution_hours.append(elapsed.total_seconds() / 3600)
        if ticket.satisfaction_rating is not None:
            ratings.append(ticket.satisfaction_rating)

    return TicketStatsResponse(
        total=sum(by_status.values()),
        by_status=dict(by_status),
        by_priority=dict(by_priority),
        escalated=escalated,
        unassigned_open=unassigned_open,
        average_resolution_hours=_mean(resolution_hours),
        average_satisfaction=_mean(ratings),
    )


def _mean(values: list) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)
