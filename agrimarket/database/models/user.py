"""
User model for marketplace accounts.

Accounts are issued elsewhere; the lifecycle core only reads them to check
that a ticket assignee is an active staff member.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from agrimarket.database.base import BaseModel, enum_type
from agrimarket.services.lifecycle.enums import UserRole


class User(BaseModel):
    """
    Marketplace user account.

    Attributes:
        id: Unique user identifier (UUID)
        email: Login email, unique
        full_name: Display name
        role: Marketplace role
        is_active: Whether the account may act
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        comment="Display name",
    )

    role: Mapped[UserRole] = mapped_column(
        enum_type(UserRole, "user_role"),
        nullable=False,
        default=UserRole.FARMER,
        comment="Marketplace role",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the account is active",
    )

    __table_args__ = (Index("ix_users_role_active", "role", "is_active"),)

    @property
    def is_staff(self) -> bool:
        return self.is_active and self.role.is_staff()
