"""Authenticated actor handed to the lifecycle core by the identity layer."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict

from agrimarket.services.lifecycle.enums import UserRole


class Actor(BaseModel):
    """A verified caller: who is acting and in which marketplace role."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    role: UserRole

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __str__(self) -> str:
        return f"{self.role.value}:{self.id}"
