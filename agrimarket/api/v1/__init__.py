"""
API v1 package initialization.

This module collects the v1 routers of the lifecycle API.
"""

from agrimarket.api.v1.bookings import router as bookings_router
from agrimarket.api.v1.orders import router as orders_router
from agrimarket.api.v1.tickets import router as tickets_router

__all__ = ["bookings_router", "orders_router", "tickets_router"]
