"""
Order model for marketplace purchases and fulfillment tracking.

An order belongs to one buyer and one seller, snapshots its line items at
placement time and keeps an append-only list of tracking updates embedded
on the row.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from agrimarket.database.base import (
    BaseModel,
    JSONType,
    LifecycleModel,
    enum_type,
    ensure_append_only,
)
from agrimarket.services.lifecycle.enums import (
    DeliveryMethod,
    OrderPaymentMethod,
    OrderPaymentStatus,
    OrderStatus,
)


class Order(LifecycleModel):
    """
    Order placed by a buyer with a single seller.

    Attributes:
        order_number: Human-readable order number (AGR...)
        buyer_id: Purchasing user
        seller_id: Selling user shared by every line item
        total_amount: Sum of quantity * unit price over the items
        status: Current order status
        payment_status: Settlement state
        tracking_updates: Append-only list of {status, message, timestamp,
            location} entries
        version: Optimistic concurrency counter
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="User who placed the order",
    )

    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Seller fulfilling the order",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Order total",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="LKR",
        comment="ISO currency code",
    )

    status: Mapped[OrderStatus] = mapped_column(
        enum_type(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        enum_type(OrderPaymentStatus, "order_payment_status"),
        nullable=False,
        default=OrderPaymentStatus.PENDING,
        comment="Current payment status",
    )

    payment_method: Mapped[OrderPaymentMethod] = mapped_column(
        enum_type(OrderPaymentMethod, "order_payment_method"),
        nullable=False,
        default=OrderPaymentMethod.CASH_ON_DELIVERY,
        comment="Payment method chosen by the buyer",
    )

    delivery_method: Mapped[DeliveryMethod] = mapped_column(
        enum_type(DeliveryMethod, "delivery_method"),
        nullable=False,
        default=DeliveryMethod.PICKUP,
        comment="Delivery method",
    )

    shipping_address: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Shipping address",
    )

    buyer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seller_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Reason given when the order was cancelled",
    )

    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the order was delivered",
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the order was cancelled",
    )

    tracking_updates: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Append-only tracking updates",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency version",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
        Index("ix_orders_buyer_status", "buyer_id", "status"),
        Index("ix_orders_seller_status", "seller_id", "status"),
    )

    @validates("tracking_updates")
    def _validate_tracking_updates(self, key: str, value: Any) -> list[dict[str, Any]]:
        return ensure_append_only(self, key, value)

    def is_party(self, user_id: uuid.UUID) -> bool:
        """Check if the user is the buyer or the seller."""
        return user_id in (self.buyer_id, self.seller_id)


class OrderItem(BaseModel):
    """
    Line item snapshot taken when the order was placed.

    Attributes:
        product_id: Ordered product
        seller_id: Product seller at placement time
        product_name: Product name at placement time
        quantity: Units ordered, at least one
        unit_price: Unit price at placement time
        unit: Unit the price refers to
        position: Ordering of the item within the order
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
    )

    product_name: Mapped[str] = mapped_column(String(200), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price_non_negative"),
    )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
