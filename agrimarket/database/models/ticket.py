"""
Support ticket model.

Tickets keep their comments and their change history as append-only lists
embedded on the row.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from agrimarket.database.base import (
    JSONType,
    LifecycleModel,
    enum_type,
    ensure_append_only,
)
from agrimarket.services.lifecycle.enums import (
    IssueType,
    TicketPriority,
    TicketStatus,
)


class Ticket(LifecycleModel):
    """
    Support ticket raised by a marketplace user.

    Attributes:
        ticket_number: Human-readable ticket number (TKT-...)
        submitted_by: User who raised the ticket
        assigned_to: Staff member working the ticket, if any
        status: Current ticket status
        comments: Append-only list of {message, author, timestamp,
            is_internal}
        history: Append-only list of {action, description, actor,
            previous_value, new_value, timestamp}
        satisfaction_rating: Submitter rating 1-5, set once
        version: Optimistic concurrency counter
    """

    __tablename__ = "tickets"

    ticket_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable ticket number",
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    issue_type: Mapped[IssueType] = mapped_column(
        enum_type(IssueType, "issue_type"),
        nullable=False,
        default=IssueType.OTHER,
    )

    priority: Mapped[TicketPriority] = mapped_column(
        enum_type(TicketPriority, "ticket_priority"),
        nullable=False,
        default=TicketPriority.MEDIUM,
        index=True,
    )

    status: Mapped[TicketStatus] = mapped_column(
        enum_type(TicketStatus, "ticket_status"),
        nullable=False,
        default=TicketStatus.OPEN,
        index=True,
        comment="Current ticket status",
    )

    submitted_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    related_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
    )

    related_listing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("service_listings.id", ondelete="SET NULL"),
        nullable=True,
    )

    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    comments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Append-only comments",
    )

    history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Append-only change history",
    )

    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    satisfaction_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    satisfaction_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    satisfaction_submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    escalation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency version",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "satisfaction_rating IS NULL OR satisfaction_rating BETWEEN 1 AND 5",
            name="ck_tickets_satisfaction_rating_range",
        ),
        Index("ix_tickets_assignee_status", "assigned_to", "status"),
    )

    @validates("comments", "history")
    def _validate_trail(self, key: str, value: Any) -> list[dict[str, Any]]:
        return ensure_append_only(self, key, value)

    def visible_comments(self, include_internal: bool) -> list[dict[str, Any]]:
        """Comments visible to a reader, hiding internal notes from non-staff."""
        if include_internal:
            return list(self.comments)
        return [c for c in self.comments if not c.get("is_internal")]
