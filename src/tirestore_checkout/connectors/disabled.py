"""Stand-in backend used when the payment gateway cannot be initialized."""
from __future__ import annotations

import logging
from typing import Optional

from tirestore_checkout.connectors.base import PaymentBackend
from tirestore_checkout.errors import PaymentUnavailable
from tirestore_checkout.models import (
    ConfirmationResult,
    PaymentAuthorization,
    PaymentMethodDetails,
    ShippingAddress,
)

logger = logging.getLogger(__name__)

PAYMENT_UNAVAILABLE_MESSAGE = "Payment is currently unavailable. Please try again later."


class DisabledPaymentBackend(PaymentBackend):
    """Every confirmation raises PaymentUnavailable with a fixed reason."""

    def __init__(self, cause: Optional[str] = None):
        self.cause = cause

    @property
    def name(self) -> str:
        return "disabled"

    @property
    def available(self) -> bool:
        return False

    async def confirm(
        self,
        authorization: PaymentAuthorization,
        payment_method: PaymentMethodDetails,
        shipping_address: ShippingAddress,
    ) -> ConfirmationResult:
        logger.warning(f"Payment attempted while payments are disabled ({self.cause or 'no cause recorded'})")
        raise PaymentUnavailable(PAYMENT_UNAVAILABLE_MESSAGE, details={"cause": self.cause})

    async def retrieve(self, authorization: PaymentAuthorization) -> ConfirmationResult:
        raise PaymentUnavailable(PAYMENT_UNAVAILABLE_MESSAGE, details={"cause": self.cause})
