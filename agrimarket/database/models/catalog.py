"""
Catalog models: product listings and bookable service listings.

Products carry the stock that order placement and cancellation adjust;
service listings carry the pricing snapshot copied onto each booking.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from agrimarket.database.base import BaseModel, enum_type
from agrimarket.services.lifecycle.enums import PricingType, ProductStatus


class Product(BaseModel):
    """
    Product listing offered by a seller.

    Attributes:
        seller_id: Selling user
        name: Product name
        status: Catalog availability
        price_amount: Unit price
        price_unit: Unit the price refers to (kg, bag, ...)
        currency: ISO currency code
        quantity_available: Units in stock, never negative
    """

    __tablename__ = "products"

    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Seller offering the product",
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Product name",
    )

    status: Mapped[ProductStatus] = mapped_column(
        enum_type(ProductStatus, "product_status"),
        nullable=False,
        default=ProductStatus.AVAILABLE,
        comment="Catalog availability",
    )

    price_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Unit price",
    )

    price_unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="kg",
        comment="Unit the price refers to",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="LKR",
        comment="ISO currency code",
    )

    quantity_available: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        comment="Units currently in stock",
    )

    __table_args__ = (
        CheckConstraint("quantity_available >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price_amount >= 0", name="ck_products_price_non_negative"),
        Index("ix_products_seller_status", "seller_id", "status"),
    )

    @property
    def is_available(self) -> bool:
        return self.status == ProductStatus.AVAILABLE


class ServiceListing(BaseModel):
    """
    Bookable agricultural service offered by a provider.

    Attributes:
        provider_id: Providing user
        title: Listing title
        service_type: Free-form service category (ploughing, harvesting, ...)
        pricing_type: How the base price scales to a booking
        price_amount: Base price
        currency: ISO currency code
        is_active: Whether new bookings are accepted
    """

    __tablename__ = "service_listings"

    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Provider offering the service",
    )

    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Listing title",
    )

    service_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Service category",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Listing description",
    )

    pricing_type: Mapped[PricingType] = mapped_column(
        enum_type(PricingType, "pricing_type"),
        nullable=False,
        default=PricingType.FIXED,
        comment="Pricing model",
    )

    price_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Base price",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="LKR",
        comment="ISO currency code",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the listing accepts bookings",
    )

    __table_args__ = (
        CheckConstraint("price_amount >= 0", name="ck_service_listings_price_non_negative"),
    )
