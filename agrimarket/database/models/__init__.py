"""
Database models package initialization.

Models are imported here so they register with the Base metadata for
Alembic and for relationship resolution.
"""

from agrimarket.database.base import Base, BaseModel, LifecycleModel
from agrimarket.database.models.booking import ServiceBooking
from agrimarket.database.models.catalog import Product, ServiceListing
from agrimarket.database.models.order import Order, OrderItem
from agrimarket.database.models.outbox import RefundRequest
from agrimarket.database.models.ticket import Ticket
from agrimarket.database.models.user import User

__all__ = [
    "Base",
    "BaseModel",
    "LifecycleModel",
    "User",
    "Product",
    "ServiceListing",
    "Order",
    "OrderItem",
    "ServiceBooking",
    "Ticket",
    "RefundRequest",
]
