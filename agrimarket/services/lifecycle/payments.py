"""
Payment collaborator used when a service booking is placed.

The lifecycle core only needs a pass/fail answer and a transaction id; card
processing happens outside this system. :class:`SimulatedPaymentGateway`
stands in for a real processor in development and tests.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from agrimarket.core.logging import get_logger

logger = get_logger(__name__)


class PaymentOutcome(BaseModel):
    """Result of a charge attempt."""

    model_config = ConfigDict(frozen=True)

    approved: bool
    transaction_id: str
    message: Optional[str] = None


class PaymentGateway(ABC):
    """Interface of the external payment collaborator."""

    @abstractmethod
    async def charge(
        self,
        amount: Decimal,
        currency: str,
        method: str,
        idempotency_key: str,
    ) -> PaymentOutcome:
        """
        Charge an amount.

        Args:
            amount: Amount to charge
            currency: ISO currency code
            method: Payment method chosen by the customer
            idempotency_key: Key that makes retries of the same charge safe;
                also used as the transaction id

        Returns:
            Outcome of the charge
        """


class SimulatedPaymentGateway(PaymentGateway):
    """
    Demo gateway that approves a configurable share of charges.

    Args:
        success_rate: Probability in [0, 1] that a charge is approved
        delay_ms: Artificial processing latency
        rng: Random source, injectable for deterministic tests
    """

    def __init__(
        self,
        success_rate: float = 0.95,
        delay_ms: int = 0,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.delay_ms = delay_ms
        self._rng = rng or random.Random()

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        method: str,
        idempotency_key: str,
    ) -> PaymentOutcome:
        if self.delay_ms:
            await asyncio.sleep(self.delay_ms / 1000)

        approved = self._rng.random() < self.success_rate

        logger.info(
            "Simulated payment processed",
            amount=str(amount),
            currency=currency,
            method=method,
            transaction_id=idempotency_key,
            approved=approved,
        )

        return PaymentOutcome(
            approved=approved,
            transaction_id=idempotency_key,
            message=None
            if approved
            else "Payment failed. Please try again with different card details.",
        )
