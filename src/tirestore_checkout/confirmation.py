"""Payment Confirmation: the single hand-off point to the payment gateway."""
from __future__ import annotations

import logging
from typing import Optional

from tirestore_checkout.connectors.base import PaymentBackend
from tirestore_checkout.connectors.stripe import GENERIC_FAILURE
from tirestore_checkout.errors import PaymentUnavailable, StaleAuthorizationError
from tirestore_checkout.intents import PaymentIntentManager
from tirestore_checkout.models import (
    AuthorizationStatus,
    ConfirmationOutcome,
    ConfirmationResult,
    PaymentAuthorization,
    PaymentMethodDetails,
    ShippingAddress,
)

logger = logging.getLogger(__name__)


class PaymentConfirmation:
    """
    Confirms payments through a PaymentBackend.

    A decline leaves the authorization pending so the shopper can try
    again with another payment method; only success marks it confirmed.
    """

    def __init__(self, backend: PaymentBackend, intents: PaymentIntentManager):
        self.backend = backend
        self.intents = intents
        self.in_progress = False
        self.last_result: Optional[ConfirmationResult] = None

    async def confirm(
        self,
        authorization: PaymentAuthorization,
        payment_method: PaymentMethodDetails,
        shipping_address: ShippingAddress,
    ) -> ConfirmationResult:
        """
        Submit the payment for ``authorization``.

        Raises:
            StaleAuthorizationError: if ``authorization`` is not the current one
        """
        if not self.intents.is_current(authorization.token):
            raise StaleAuthorizationError(
                "Payment authorization has been superseded",
                details={"intent_id": authorization.intent_id},
            )

        self.in_progress = True
        try:
            result = await self.backend.confirm(authorization, payment_method, shipping_address)
        except PaymentUnavailable as e:
            result = ConfirmationResult(outcome=ConfirmationOutcome.FAILED, reason=e.message)
        except Exception as e:
            logger.error(f"Payment confirmation error for {authorization.intent_id}: {e}")
            result = ConfirmationResult(outcome=ConfirmationOutcome.FAILED, reason=GENERIC_FAILURE)
        finally:
            self.in_progress = False

        if result.outcome == ConfirmationOutcome.FAILED and not result.reason:
            result.reason = GENERIC_FAILURE
        self._record(authorization, result)
        return result

    async def resume(self, authorization: PaymentAuthorization) -> ConfirmationResult:
        """Check the outcome after the shopper returns from a gateway challenge."""
        if not self.intents.is_current(authorization.token):
            raise StaleAuthorizationError("Payment authorization has been superseded")

        self.in_progress = True
        try:
            result = await self.backend.retrieve(authorization)
        except PaymentUnavailable as e:
            result = ConfirmationResult(outcome=ConfirmationOutcome.FAILED, reason=e.message)
        except Exception as e:
            logger.error(f"Payment status lookup failed for {authorization.intent_id}: {e}")
            result = ConfirmationResult(outcome=ConfirmationOutcome.FAILED, reason=GENERIC_FAILURE)
        finally:
            self.in_progress = False

        self._record(authorization, result)
        return result

    def _record(self, authorization: PaymentAuthorization, result: ConfirmationResult) -> None:
        self.last_result = result
        if result.succeeded:
            self.intents.mark(AuthorizationStatus.CONFIRMED)
            logger.info(f"Payment {authorization.intent_id} confirmed")
        elif result.outcome == ConfirmationOutcome.REQUIRES_ACTION:
            logger.info(f"Payment {authorization.intent_id} requires customer action")
        else:
            logger.info(f"Payment {authorization.intent_id} failed: {result.reason}")
