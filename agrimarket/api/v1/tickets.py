"""
Support ticket API endpoints.

This module implements the FastAPI router for ticket submission, staff
updates and assignment, comments, closing with satisfaction feedback, and
ticket statistics. Internal comments are only rendered for staff.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from agrimarket.api.deps import CurrentActor, LifecycleServiceDep
from agrimarket.api.rate_limit import limiter
from agrimarket.core.logging import get_logger
from agrimarket.schemas.lifecycle import (
    CommentCreate,
    TicketAssign,
    TicketClose,
    TicketCreate,
    TicketResponse,
    TicketStatsResponse,
    TicketUpdate,
    TransitionRequest,
)
from agrimarket.services.lifecycle.enums import EntityKind, TicketStatus
from agrimarket.services.lifecycle.reports import ticket_stats

logger = get_logger(__name__)

router = APIRouter(prefix="/tickets", tags=["Support Tickets"])


@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit ticket",
)
@limiter.limit("10/minute")
async def create_ticket(
    request: Request,
    payload: TicketCreate,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    """
    Submit a support ticket.

    Args:
        request: HTTP request, used for rate limiting
        payload: Ticket details
        actor: Authenticated submitter
        service: Lifecycle service

    Returns:
        TicketResponse: Created ticket
    """
    ticket = await service.create_ticket(actor, payload)
    return TicketResponse.from_ticket(ticket, include_internal=actor.is_staff)


@router.get("", response_model=list[TicketResponse], summary="List tickets")
async def list_tickets(
    actor: CurrentActor,
    service: LifecycleServiceDep,
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    assigned_to_me: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> list[TicketResponse]:
    tickets = await service.list_tickets(
        actor,
        status=status_filter,
        assigned_to_me=assigned_to_me,
        skip=skip,
        limit=limit,
    )
    return [
        TicketResponse.from_ticket(ticket, include_internal=actor.is_staff)
        for ticket in tickets
    ]


@router.get("/stats", response_model=TicketStatsResponse, summary="Ticket statistics")
async def get_ticket_stats(
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketStatsResponse:
    tickets = await service.list_tickets(actor, limit=1000)
    return ticket_stats(tickets)


@router.get("/{ticket_id}", response_model=TicketResponse, summary="Get ticket")
async def get_ticket(
    ticket_id: UUID,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    ticket = await service.get_ticket(ticket_id, actor)
    return TicketResponse.from_ticket(ticket, include_internal=actor.is_staff)


@router.patch(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update ticket",
    description="Staff update of status, assignee, priority, resolution or escalation",
)
async def update_ticket(
    ticket_id: UUID,
    payload: TicketUpdate,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    ticket = await service.update_ticket(ticket_id, actor, payload)
    return TicketResponse.from_ticket(ticket, include_internal=True)


@router.post("/{ticket_id}/assign", response_model=TicketResponse, summary="Assign ticket")
async def assign_ticket(
    ticket_id: UUID,
    payload: TicketAssign,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    ticket = await service.assign_ticket(ticket_id, actor, payload.assigned_to)
    return TicketResponse.from_ticket(ticket, include_internal=True)


@router.post(
    "/{ticket_id}/comments",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on ticket",
)
async def add_comment(
    ticket_id: UUID,
    payload: CommentCreate,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    ticket = await service.add_comment(ticket_id, actor, payload)
    return TicketResponse.from_ticket(ticket, include_internal=actor.is_staff)


@router.post("/{ticket_id}/close", response_model=TicketResponse, summary="Close ticket")
async def close_ticket(
    ticket_id: UUID,
    payload: TicketClose,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    """
    Close a ticket.

    Staff may close with a resolution; the submitter may close a resolved
    ticket and rate the support received.
    """
    ticket = await service.close_ticket(ticket_id, actor, payload)
    return TicketResponse.from_ticket(ticket, include_internal=actor.is_staff)


@router.post(
    "/{ticket_id}/transitions",
    response_model=TicketResponse,
    summary="Change ticket status",
)
async def transition_ticket(
    ticket_id: UUID,
    payload: TransitionRequest,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> TicketResponse:
    ticket = await service.request_transition(
        EntityKind.TICKET, ticket_id, payload.status, actor, note=payload.note
    )
    return TicketResponse.from_ticket(ticket, include_internal=actor.is_staff)


@router.delete(
    "/{ticket_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete ticket",
)
async def delete_ticket(
    ticket_id: UUID,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> None:
    await service.delete_ticket(ticket_id, actor)
