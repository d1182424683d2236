"""
Lifecycle Pydantic schemas for API request/response validation.

Request schemas are explicit, allow-listed update structs: unknown fields are
rejected rather than merged into the stored record. Business rules that need
the database or the clock (slot availability, schedule windows, stock) are
enforced by the lifecycle service, not here.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agrimarket.services.lifecycle.enums import (
    BookingPaymentMethod,
    BookingPaymentStatus,
    BookingStatus,
    DeliveryMethod,
    IssueType,
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
    PricingType,
    RefundStatus,
    TicketPriority,
    TicketStatus,
)

# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class TransitionRequest(BaseModel):
    """Request to move an entity to a new status."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    status: str = Field(..., min_length=1, max_length=32, description="Requested status")
    note: Optional[str] = Field(None, max_length=1000, description="Optional note")


class CancelRequest(BaseModel):
    """Cancellation with an optional reason."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderItemRequest(BaseModel):
    """Line item of a new order."""

    product_id: UUID = Field(..., description="Product to order")
    quantity: int = Field(..., ge=1, le=100_000, description="Units to order")


class ShippingAddress(BaseModel):
    """Delivery address for non-pickup orders."""

    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    district: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    phone: Optional[str] = Field(None, max_length=20)


class OrderCreate(BaseModel):
    """Order placement request."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=100)
    payment_method: OrderPaymentMethod = OrderPaymentMethod.CASH_ON_DELIVERY
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP
    shipping_address: Optional[ShippingAddress] = None
    notes: Optional[str] = Field(None, max_length=1000, description="Buyer notes")

    @field_validator("items")
    @classmethod
    def validate_unique_products(cls, v: list[OrderItemRequest]) -> list[OrderItemRequest]:
        """Each product may appear only once per order."""
        product_ids = [item.product_id for item in v]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Each product may only appear once per order")
        return v

    @model_validator(mode="after")
    def validate_shipping_address(self) -> "OrderCreate":
        """Delivered orders need somewhere to deliver to."""
        if self.delivery_method != DeliveryMethod.PICKUP and self.shipping_address is None:
            raise ValueError("Shipping address is required unless the order is picked up")
        return self


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    unit: str
    line_total: Decimal


class OrderResponse(BaseModel):
    """Order as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    buyer_id: UUID
    seller_id: UUID
    items: list[OrderItemResponse]
    total_amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_method: OrderPaymentMethod
    delivery_method: DeliveryMethod
    shipping_address: Optional[dict[str, Any]] = None
    buyer_notes: Optional[str] = None
    seller_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    tracking_updates: list[dict[str, Any]]
    created_at: datetime
    last_activity_at: datetime


# ---------------------------------------------------------------------------
# Service bookings
# ---------------------------------------------------------------------------


class BookingCreate(BaseModel):
    """Service booking request, paid at placement."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    service_listing_id: UUID
    booking_date: date
    booking_time: str = Field(..., description="Time of day as HH:MM")
    field_size: Decimal = Field(..., max_digits=10, decimal_places=2)
    payment_method: BookingPaymentMethod = BookingPaymentMethod.DEMO_CARD
    card_last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    notes: Optional[str] = Field(None, max_length=1000)


class BookingUpdate(BaseModel):
    """
    Allow-listed booking changes.

    Only the schedule and the caller's notes may change; everything else on
    a booking moves through status transitions.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    booking_date: Optional[date] = None
    booking_time: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @property
    def changes_schedule(self) -> bool:
        return self.booking_date is not None or self.booking_time is not None


class SlotCheckResponse(BaseModel):
    service_listing_id: UUID
    booking_date: date
    booking_time: str
    available: bool


class BookingResponse(BaseModel):
    """Service booking as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_number: str
    customer_id: UUID
    provider_id: UUID
    service_listing_id: UUID
    service_title: str
    service_type: str
    booking_date: date
    booking_time: str
    field_size: Decimal
    pricing_type: PricingType
    base_amount: Decimal
    final_amount: Decimal
    currency: str
    payment_status: BookingPaymentStatus
    payment_method: BookingPaymentMethod
    transaction_id: str
    paid_at: Optional[datetime] = None
    card_last4: Optional[str] = None
    status: BookingStatus
    customer_notes: Optional[str] = None
    provider_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[UUID] = None
    cancelled_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    refund_status: RefundStatus
    timeline: list[dict[str, Any]]
    created_at: datetime
    last_activity_at: datetime


class BookingSummaryResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    revenue: Decimal
    pending_refunds: Decimal
    currency: str


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------


class TicketCreate(BaseModel):
    """Support ticket submission."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    issue_type: IssueType = IssueType.OTHER
    priority: TicketPriority = TicketPriority.MEDIUM
    related_order_id: Optional[UUID] = None
    related_listing_id: Optional[UUID] = None
    tags: list[str] = Field(default_factory=list, max_length=20)


class TicketUpdate(BaseModel):
    """
    Staff update of a ticket.

    ``assigned_to`` distinguishes "not provided" from an explicit null,
    which unassigns the ticket.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    status: Optional[TicketStatus] = None
    assigned_to: Optional[UUID] = None
    priority: Optional[TicketPriority] = None
    resolution: Optional[str] = Field(None, max_length=5000)
    escalation_reason: Optional[str] = Field(None, min_length=1, max_length=500)
    note: Optional[str] = Field(None, max_length=1000)

    @property
    def changes_assignee(self) -> bool:
        return "assigned_to" in self.model_fields_set


class TicketAssign(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assigned_to: UUID


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    message: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False


class TicketClose(BaseModel):
    """
    Close a ticket.

    Staff may supply a resolution; the submitter closing a resolved ticket
    may leave a satisfaction rating.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    resolution: Optional[str] = Field(None, max_length=5000)
    satisfaction_rating: Optional[int] = None
    feedback: Optional[str] = Field(None, max_length=2000)


class TicketResponse(BaseModel):
    """Ticket as returned by the API; internal comments only for staff."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_number: str
    title: str
    description: str
    issue_type: IssueType
    priority: TicketPriority
    status: TicketStatus
    submitted_by: UUID
    assigned_to: Optional[UUID] = None
    related_order_id: Optional[UUID] = None
    related_listing_id: Optional[UUID] = None
    tags: list[str]
    comments: list[dict[str, Any]]
    history: list[dict[str, Any]]
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    satisfaction_rating: Optional[int] = None
    satisfaction_feedback: Optional[str] = None
    escalated: bool
    escalation_reason: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime

    @classmethod
    def from_ticket(cls, ticket: Any, include_internal: bool) -> "TicketResponse":
        response = cls.model_validate(ticket)
        return response.model_copy(
            update={"comments": ticket.visible_comments(include_internal)}
        )


class TicketStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    escalated: int
    unassigned_open: int
    average_resolution_hours: Optional[float] = None
    average_satisfaction: Optional[float] = None
