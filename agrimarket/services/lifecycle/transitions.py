"""Transition validation for lifecycle entities.

Answers whether a requested status is reachable from the current one for a
given entity kind and actor, using the tables in
:mod:`agrimarket.services.lifecycle.enums`. Illegal requests are reported,
never coerced to a nearby legal status.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from agrimarket.core.logging import get_logger
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.enums import (
    BOOKING_STATUS_TRANSITIONS,
    ORDER_STATUS_TRANSITIONS,
    TICKET_STAFF_TRANSITIONS,
    TICKET_SUBMITTER_TRANSITIONS,
    BookingStatus,
    EntityKind,
    OrderStatus,
    TicketStatus,
)
from agrimarket.services.lifecycle.errors import InvalidTransition

logger = get_logger(__name__)

_STATUS_TYPES = {
    EntityKind.ORDER: OrderStatus,
    EntityKind.SERVICE_BOOKING: BookingStatus,
    EntityKind.TICKET: TicketStatus,
}


def coerce_status(entity_kind: EntityKind, value) -> Enum:
    """
    Parse a status value for an entity kind.

    Args:
        entity_kind: Kind of entity the status belongs to
        value: Enum member or its string value

    Returns:
        Status enum member

    Raises:
        ValueError: If the value is not a status of that kind
    """
    status_type = _STATUS_TYPES[entity_kind]
    if isinstance(value, status_type):
        return value
    return status_type.from_string(str(value))


def _transition_table(
    entity_kind: EntityKind,
    actor: Optional[Actor],
    is_submitter: bool,
) -> Dict[Enum, FrozenSet[Enum]]:
    if entity_kind == EntityKind.ORDER:
        return ORDER_STATUS_TRANSITIONS
    if entity_kind == EntityKind.SERVICE_BOOKING:
        return BOOKING_STATUS_TRANSITIONS
    if actor is None or actor.is_staff:
        return TICKET_STAFF_TRANSITIONS
    if is_submitter:
        return TICKET_SUBMITTER_TRANSITIONS
    return {}


def get_allowed_transitions(
    entity_kind: EntityKind,
    current,
    actor: Optional[Actor] = None,
    is_submitter: bool = False,
) -> FrozenSet[Enum]:
    """
    Get the statuses reachable from the current one.

    Args:
        entity_kind: Kind of entity
        current: Current status
        actor: Acting user; only consulted for tickets
        is_submitter: Whether the actor raised the ticket

    Returns:
        Set of reachable statuses, empty for terminal statuses
    """
    table = _transition_table(entity_kind, actor, is_submitter)
    return table.get(coerce_status(entity_kind, current), frozenset())


def can_transition(
    entity_kind: EntityKind,
    current,
    requested,
    actor: Optional[Actor] = None,
    is_submitter: bool = False,
) -> bool:
    """
    Check whether a status change is legal.

    Ticket rules depend on the actor: staff may move any non-closed ticket
    to any other status, the submitter may only close a resolved ticket.
    Order and booking rules are actor independent; role gates for those
    kinds live in the service's authorization step.

    Args:
        entity_kind: Kind of entity
        current: Current status
        requested: Requested status
        actor: Acting user
        is_submitter: Whether the actor raised the ticket

    Returns:
        True if the transition is in the table
    """
    try:
        requested_status = coerce_status(entity_kind, requested)
    except ValueError:
        return False
    return requested_status in get_allowed_transitions(
        entity_kind, current, actor, is_submitter
    )


def ensure_transition(
    entity_kind: EntityKind,
    current,
    requested,
    actor: Optional[Actor] = None,
    is_submitter: bool = False,
) -> None:
    """
    Validate a status change.

    Raises:
        InvalidTransition: If the requested status is not reachable
    """
    if can_transition(entity_kind, current, requested, actor, is_submitter):
        return

    allowed = get_allowed_transitions(entity_kind, current, actor, is_submitter)
    logger.info(
        "Rejected status transition",
        entity_kind=entity_kind.value,
        current_status=getattr(current, "value", current),
        requested_status=getattr(requested, "value", requested),
        actor_role=actor.role.value if actor else None,
    )
    raise InvalidTransition(
        current,
        requested,
        entity_kind=entity_kind.value,
        allowed_transitions=sorted(s.value for s in allowed),
    )
