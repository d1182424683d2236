"""
Entity lifecycle subsystem.

Status rules, audit trails, side effects and orchestration shared by
orders, service bookings and support tickets. Import the service from
``agrimarket.services.lifecycle.service``; this package only re-exports the
leaf types to avoid import cycles with the ORM models.
"""

from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.enums import EntityKind, UserRole
from agrimarket.services.lifecycle.errors import LifecycleError

__all__ = ["Actor", "EntityKind", "UserRole", "LifecycleError"]
