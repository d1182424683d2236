"""Status enums and transition tables for the marketplace lifecycle entities.

This module defines the finite status sets owned by orders, service bookings
and support tickets, the supporting enums their records carry, and the
directed transition tables the Transition Validator consults.
"""

from enum import Enum
from typing import Dict, FrozenSet


class EntityKind(str, Enum):
    """Record types that own a status lifecycle."""

    ORDER = "order"
    SERVICE_BOOKING = "service_booking"
    TICKET = "ticket"


class UserRole(str, Enum):
    """Marketplace roles supplied by the identity collaborator."""

    ADMIN = "admin"
    CUSTOMER_SERVICE_REP = "customer_service_rep"
    SERVICE_PROVIDER = "service_provider"
    FARMER = "farmer"

    def is_staff(self) -> bool:
        """Staff may work any ticket and see internal comments."""
        return self in {UserRole.ADMIN, UserRole.CUSTOMER_SERVICE_REP}


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> CONFIRMED, CANCELLED
    - CONFIRMED -> PROCESSING, CANCELLED
    - PROCESSING -> READY_FOR_PICKUP, SHIPPED
    - READY_FOR_PICKUP -> DELIVERED
    - SHIPPED -> DELIVERED
    - CANCELLED -> REFUNDED
    - DELIVERED, REFUNDED -> (terminal)
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY_FOR_PICKUP = "ready_for_pickup"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        return not ORDER_STATUS_TRANSITIONS[self]

    def can_cancel(self) -> bool:
        return OrderStatus.CANCELLED in ORDER_STATUS_TRANSITIONS[self]


class OrderPaymentStatus(str, Enum):
    """Settlement state of an order's payment."""

    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    REFUNDED = "refunded"
    FAILED = "failed"


class OrderPaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_PAYMENT = "mobile_payment"
    CREDIT_CARD = "credit_card"


class DeliveryMethod(str, Enum):
    PICKUP = "pickup"
    LOCAL_DELIVERY = "local_delivery"
    SHIPPING = "shipping"


class ProductStatus(str, Enum):
    """Catalog availability of a product listing."""

    AVAILABLE = "available"
    SOLD_OUT = "sold_out"
    RESERVED = "reserved"
    DISCONTINUED = "discontinued"


# ---------------------------------------------------------------------------
# Service bookings
# ---------------------------------------------------------------------------


class BookingStatus(str, Enum):
    """Service booking lifecycle status.

    Booking status edits are deliberately lenient: any permitted actor may
    move between the working statuses. Cancellation is only possible from
    an active status and is final apart from the refund edge.
    """

    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "BookingStatus":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid booking status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def holds_slot(self) -> bool:
        """Check if a booking in this status occupies its time slot.

        Returns:
            True for pending confirmation, confirmed and in progress
        """
        return self in ACTIVE_BOOKING_STATUSES

    def is_removable(self) -> bool:
        """Only finished bookings may be deleted outright."""
        return self in {
            BookingStatus.CANCELLED,
            BookingStatus.COMPLETED,
            BookingStatus.REFUNDED,
        }

    def is_reschedulable(self) -> bool:
        return self in {
            BookingStatus.PENDING_CONFIRMATION,
            BookingStatus.CONFIRMED,
        }


class BookingPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    REFUNDED = "refunded"
    FAILED = "failed"


class BookingPaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_PAYMENT = "mobile_payment"
    CREDIT_CARD = "credit_card"
    DEMO_CARD = "demo_card"


class PricingType(str, Enum):
    """How a service listing's base price scales to a booking."""

    FIXED = "fixed"
    HOURLY = "hourly"
    DAILY = "daily"
    PER_ACRE = "per_acre"
    PER_UNIT = "per_unit"


class RefundStatus(str, Enum):
    """Refund bookkeeping state, shared by bookings and the refund outbox."""

    NONE = "none"
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Support tickets
# ---------------------------------------------------------------------------


class TicketStatus(str, Enum):
    """Support ticket status.

    Staff may move an open ticket between any two statuses; CLOSED is
    terminal. Submitters may only close a RESOLVED ticket.
    """

    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    WAITING_CUSTOMER = "waiting_customer"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @classmethod
    def from_string(cls, value: str) -> "TicketStatus":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid ticket status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        return self == TicketStatus.CLOSED

    def is_being_worked(self) -> bool:
        return self in {TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS}


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class IssueType(str, Enum):
    TECHNICAL_ISSUE = "technical_issue"
    PAYMENT_PROBLEM = "payment_problem"
    ORDER_INQUIRY = "order_inquiry"
    SERVICE_COMPLAINT = "service_complaint"
    ACCOUNT_ISSUE = "account_issue"
    PRODUCT_QUESTION = "product_question"
    BILLING_INQUIRY = "billing_inquiry"
    FEATURE_REQUEST = "feature_request"
    OTHER = "other"


class TicketAction(str, Enum):
    """Kinds of entries in a ticket's history."""

    CREATED = "created"
    UPDATED = "updated"
    ASSIGNED = "assigned"
    STATUS_CHANGED = "status_changed"
    COMMENT_ADDED = "comment_added"
    RESOLVED = "resolved"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------

ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.READY_FOR_PICKUP, OrderStatus.SHIPPED}
    ),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),  # Terminal
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),  # Terminal
}

ACTIVE_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {
        BookingStatus.PENDING_CONFIRMATION,
        BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS,
    }
)

# Statuses an actor may set directly on a booking.
SETTABLE_BOOKING_STATUSES: FrozenSet[BookingStatus] = ACTIVE_BOOKING_STATUSES | {
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
}

BOOKING_STATUS_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    **{
        status: SETTABLE_BOOKING_STATUSES - {status}
        for status in ACTIVE_BOOKING_STATUSES
    },
    BookingStatus.COMPLETED: ACTIVE_BOOKING_STATUSES,
    BookingStatus.CANCELLED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.REFUNDED: frozenset(),  # Terminal
}

TICKET_STAFF_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    status: (
        frozenset()
        if status.is_terminal()
        else frozenset(TicketStatus) - {status}
    )
    for status in TicketStatus
}

TICKET_SUBMITTER_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.RESOLVED: frozenset({TicketStatus.CLOSED}),
}
