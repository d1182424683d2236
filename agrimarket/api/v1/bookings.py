"""
Service booking API endpoints.

This module implements the FastAPI router for booking placement with
payment, slot availability checks, rescheduling, status transitions,
cancellation with refund bookkeeping, and booking summaries.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from agrimarket.api.deps import CurrentActor, LifecycleServiceDep
from agrimarket.api.rate_limit import limiter
from agrimarket.core.config import get_settings
from agrimarket.core.logging import get_logger
from agrimarket.schemas.lifecycle import (
    BookingCreate,
    BookingResponse,
    BookingSummaryResponse,
    BookingUpdate,
    CancelRequest,
    SlotCheckResponse,
    TransitionRequest,
)
from agrimarket.services.lifecycle.enums import BookingStatus, EntityKind
from agrimarket.services.lifecycle.reports import summarize_bookings

logger = get_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["Service Bookings"])


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a service",
    description="Book a service slot and pay for it; the slot must be free and in the future",
)
@limiter.limit("20/minute")
async def create_booking(
    request: Request,
    payload: BookingCreate,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> BookingResponse:
    """
    Create a paid service booking.

    Args:
        request: HTTP request, used for rate limiting
        payload: Listing, schedule, field size and payment details
        actor: Authenticated customer
        service: Lifecycle service

    Returns:
        BookingResponse: Booking pending provider confirmation
    """
    logger.info(
        "Creating booking",
        actor_id=str(actor.id),
        listing_id=str(payload.service_listing_id),
    )
    booking = await service.create_booking(actor, payload)
    return BookingResponse.model_validate(booking)


@router.get("", response_model=list[BookingResponse], summary="List bookings")
async def list_bookings(
    actor: CurrentActor,
    service: LifecycleServiceDep,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> list[BookingResponse]:
    bookings = await service.list_bookings(actor, status=status_filter, skip=skip, limit=limit)
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get(
    "/summary",
    response_model=BookingSummaryResponse,
    summary="Summarize bookings",
    description="Counts by status, completed revenue and pending refunds for the caller",
)
async def booking_summary(
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> BookingSummaryResponse:
    bookings = await service.list_bookings(actor, limit=1000)
    return summarize_bookings(bookings, get_settings().default_currency)


@router.get(
    "/slots/check",
    response_model=SlotCheckResponse,
    summary="Check slot availability",
)
async def check_slot(
    actor: CurrentActor,
    service: LifecycleServiceDep,
    service_listing_id: UUID = Query(...),
    booking_date: date = Query(...),
    booking_time: str = Query(..., description="Time of day as HH:MM"),
    exclude_booking_id: Optional[UUID] = Query(None),
) -> SlotCheckResponse:
    available = await service.check_slot(
        service_listing_id, booking_date, booking_time, exclude_booking_id
    )
    return SlotCheckResponse(
        service_listing_id=service_listing_id,
        booking_date=booking_date,
        booking_time=booking_time,
        available=available,
    )


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get booking")
async def get_booking(
    booking_id: UUID,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> BookingResponse:
    booking = await service.get_booking(booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.patch(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Reschedule booking or update notes",
)
async def update_booking(
    booking_id: UUID,
    payload: BookingUpdate,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> BookingResponse:
    """
    Reschedule a booking or revise the caller's notes.

    Args:
        booking_id: Booking identifier
        payload: New date and/or time, or notes
        actor: Customer, provider or admin
        service: Lifecycle service

    Returns:
        BookingResponse: Updated booking
    """
    booking = await service.reschedule_booking(booking_id, actor, payload)
    return BookingResponse.model_validate(booking)


@router.post(
    "/{booking_id}/transitions",
    response_model=BookingResponse,
    summary="Change booking status",
)
async def transition_booking(
    booking_id: UUID,
    payload: TransitionRequest,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> BookingResponse:
    booking = await service.request_transition(
        EntityKind.SERVICE_BOOKING, booking_id, payload.status, actor, note=payload.note
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse, summary="Cancel booking")
async def cancel_booking(
    booking_id: UUID,
    payload: CancelRequest,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> BookingResponse:
    booking = await service.cancel_booking(booking_id, actor, reason=payload.reason)
    return BookingResponse.model_validate(booking)


@router.delete(
    "/{booking_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete finished booking",
)
async def delete_booking(
    booking_id: UUID,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> None:
    await service.delete_booking(booking_id, actor)
