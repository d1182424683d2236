"""
Order lifecycle API endpoints.

This module implements the FastAPI router for order placement, status
transitions, cancellation and payment confirmation. Domain errors raised by
the lifecycle service are rendered by the application's error handlers.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from agrimarket.api.deps import CurrentActor, LifecycleServiceDep
from agrimarket.api.rate_limit import limiter
from agrimarket.core.logging import get_logger
from agrimarket.schemas.lifecycle import (
    CancelRequest,
    OrderCreate,
    OrderResponse,
    TransitionRequest,
)
from agrimarket.services.lifecycle.enums import EntityKind, OrderStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place order",
    description="Place an order for products of a single seller, reserving stock",
)
@limiter.limit("30/minute")
async def create_order(
    request: Request,
    payload: OrderCreate,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> OrderResponse:
    """
    Place a new order.

    Args:
        request: HTTP request, used for rate limiting
        payload: Items, payment and delivery details
        actor: Authenticated buyer
        service: Lifecycle service

    Returns:
        OrderResponse: Created order
    """
    logger.info("Creating order", actor_id=str(actor.id), item_count=len(payload.items))
    order = await service.create_order(actor, payload)
    return OrderResponse.model_validate(order)


@router.get(
    "",
    response_model=list[OrderResponse],
    summary="List orders",
    description="List the caller's purchases, or sales with as_seller; staff see all orders",
)
async def list_orders(
    actor: CurrentActor,
    service: LifecycleServiceDep,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    as_seller: bool = Query(False, description="List orders received as seller"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> list[OrderResponse]:
    orders = await service.list_orders(
        actor, status=status_filter, as_seller=as_seller, skip=skip, limit=limit
    )
    return [OrderResponse.model_validate(order) for order in orders]


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order")
async def get_order(
    order_id: UUID,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> OrderResponse:
    order = await service.get_order(order_id, actor)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/transitions",
    response_model=OrderResponse,
    summary="Change order status",
)
async def transition_order(
    order_id: UUID,
    payload: TransitionRequest,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> OrderResponse:
    """
    Move an order along its status table.

    Args:
        order_id: Order identifier
        payload: Requested status and optional note
        actor: Buyer, seller or admin
        service: Lifecycle service

    Returns:
        OrderResponse: Updated order
    """
    order = await service.request_transition(
        EntityKind.ORDER, order_id, payload.status, actor, note=payload.note
    )
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/cancel", response_model=OrderResponse, summary="Cancel order")
async def cancel_order(
    order_id: UUID,
    payload: CancelRequest,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> OrderResponse:
    order = await service.cancel_order(order_id, actor, reason=payload.reason)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/payment",
    response_model=OrderResponse,
    summary="Confirm payment",
    description="Seller or admin confirms that the buyer has paid",
)
async def confirm_payment(
    order_id: UUID,
    actor: CurrentActor,
    service: LifecycleServiceDep,
) -> OrderResponse:
    order = await service.mark_order_paid(order_id, actor)
    return OrderResponse.model_validate(order)
