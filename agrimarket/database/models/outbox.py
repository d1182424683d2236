"""
Refund outbox.

Cancellations that owe money back write a refund request in the same
transaction; an external processor picks pending rows up.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from agrimarket.database.base import BaseModel, enum_type
from agrimarket.services.lifecycle.enums import EntityKind, RefundStatus


class RefundRequest(BaseModel):
    """
    Pending refund handed off to the payment collaborator.

    Attributes:
        entity_kind: Kind of record the refund belongs to
        entity_id: Id of that record
        transaction_reference: Original payment transaction, if any
        amount: Amount to refund
        currency: ISO currency code
        status: pending, processed or failed
        processed_at: When the refund was settled
    """

    __tablename__ = "refund_requests"

    entity_kind: Mapped[EntityKind] = mapped_column(
        enum_type(EntityKind, "entity_kind"),
        nullable=False,
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    transaction_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[RefundStatus] = mapped_column(
        enum_type(RefundStatus, "refund_request_status"),
        nullable=False,
        default=RefundStatus.PENDING,
        index=True,
    )

    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("entity_kind", "entity_id", name="uq_refund_requests_entity"),
    )
