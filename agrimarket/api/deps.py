"""
FastAPI dependencies for actor resolution and service wiring.

This module provides dependency functions that verify the caller's bearer
token, bind the resulting actor to the logging context, and build the
lifecycle service for the request's database session.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from agrimarket.core.config import get_settings
from agrimarket.core.logging import get_logger, set_actor
from agrimarket.core.security import TokenError, decode_token
from agrimarket.database.connection import get_db
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.payments import PaymentGateway, SimulatedPaymentGateway
from agrimarket.services.lifecycle.service import LifecycleService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Verify the bearer token and return the calling actor.

    Args:
        credentials: HTTP Bearer token from Authorization header

    Returns:
        Actor: Verified caller identity and role

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        actor = decode_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code)
        raise credentials_exception from e

    set_actor(str(actor.id), actor.role.value)
    return actor


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Shared payment collaborator configured from settings."""
    settings = get_settings()
    return SimulatedPaymentGateway(
        success_rate=settings.payment_simulation_success_rate,
        delay_ms=settings.payment_simulation_delay_ms,
    )


async def get_lifecycle_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
) -> LifecycleService:
    return LifecycleService(db, payment_gateway=gateway, settings=get_settings())


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
LifecycleServiceDep = Annotated[LifecycleService, Depends(get_lifecycle_service)]
