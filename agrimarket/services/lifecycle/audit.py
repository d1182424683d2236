"""Audit trail recording for lifecycle entities.

Each entity keeps its trail embedded on its own row: orders have tracking
updates, bookings a timeline and tickets a change history plus comments.
Entries are appended by replacing the list with an extended copy so the
ORM detects the change and the append-only validator can inspect it.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union
from uuid import UUID

from agrimarket.core.logging import get_logger
from agrimarket.database.models.booking import ServiceBooking
from agrimarket.database.models.order import Order
from agrimarket.database.models.ticket import Ticket
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.enums import TicketAction

logger = get_logger(__name__)

AuditEntry = Dict[str, Any]


def _plain(value: Any) -> Any:
    """Render enum and UUID values as strings for JSON storage."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AuditTrailRecorder:
    """
    Appends immutable entries to an entity's embedded trail.

    Every append also moves the entity's ``last_activity_at`` to the
    recorder's clock.
    """

    def __init__(self, clock: Callable[[], datetime]):
        self._clock = clock

    def record(
        self,
        entity: Any,
        action: Union[TicketAction, str],
        actor: Optional[Actor],
        previous_value: Any = None,
        new_value: Any = None,
        message: Optional[str] = None,
        location: Optional[str] = None,
    ) -> AuditEntry:
        """
        Append one entry describing a logical change.

        Args:
            entity: Order, ServiceBooking or Ticket
            action: Kind of change (ticket history action)
            actor: User responsible for the change
            previous_value: Value before the change, None on creation
            new_value: Value after the change
            message: Human readable description
            location: Order tracking location

        Returns:
            The appended entry

        Raises:
            TypeError: If the entity has no embedded trail
        """
        now = self._clock()
        timestamp = now.isoformat()
        actor_id = str(actor.id) if actor else None

        if isinstance(entity, Order):
            entry = {
                "status": _plain(new_value if new_value is not None else entity.status),
                "message": message,
                "timestamp": timestamp,
                "location": location,
            }
            entity.tracking_updates = [*(entity.tracking_updates or []), entry]
        elif isinstance(entity, ServiceBooking):
            entry = {
                "status": _plain(new_value if new_value is not None else entity.status),
                "message": message,
                "timestamp": timestamp,
                "actor": actor_id,
            }
            entity.timeline = [*(entity.timeline or []), entry]
        elif isinstance(entity, Ticket):
            entry = {
                "action": _plain(action),
                "description": message,
                "actor": actor_id,
                "previous_value": _plain(previous_value),
                "new_value": _plain(new_value),
                "timestamp": timestamp,
            }
            entity.history = [*(entity.history or []), entry]
        else:
            raise TypeError(f"{type(entity).__name__} has no audit trail")

        entity.last_activity_at = now

        logger.debug(
            "Audit entry recorded",
            entity=type(entity).__name__,
            entity_id=str(entity.id) if entity.id else None,
            action=_plain(action),
        )
        return entry

    def record_created(
        self, entity: Any, actor: Optional[Actor], message: str
    ) -> AuditEntry:
        """Record the synthetic creation entry, which has no previous value."""
        return self.record(
            entity,
            TicketAction.CREATED,
            actor,
            previous_value=None,
            new_value=entity.status,
            message=message,
        )

    def add_comment(
        self,
        ticket: Ticket,
        message: str,
        author: Actor,
        is_internal: bool = False,
    ) -> AuditEntry:
        """
        Append a comment to a ticket and a matching history entry.

        Returns:
            The appended comment
        """
        comment = {
            "message": message,
            "author": str(author.id),
            "timestamp": self._clock().isoformat(),
            "is_internal": is_internal,
        }
        ticket.comments = [*(ticket.comments or []), comment]
        self.record(
            ticket,
            TicketAction.COMMENT_ADDED,
            author,
            message="Internal note added" if is_internal else "Comment added",
        )
        return comment

    def attach_note(
        self,
        ticket: Ticket,
        message: str,
        author: Actor,
        is_internal: bool = True,
    ) -> AuditEntry:
        """Attach a note that accompanies another change, without its own history entry."""
        comment = {
            "message": message,
            "author": str(author.id),
            "timestamp": self._clock().isoformat(),
            "is_internal": is_internal,
        }
        ticket.comments = [*(ticket.comments or []), comment]
        return comment
