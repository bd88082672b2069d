"""Payment backend capability interface."""
from __future__ import annotations

from abc import ABC, abstractmethod

from tirestore_checkout.models import (
    ConfirmationOutcome,
    ConfirmationResult,
    PaymentAuthorization,
    PaymentMethodDetails,
    ShippingAddress,
)


class PaymentBackend(ABC):
    """Abstract interface over the hosted payment gateway.

    The checkout wizard is the same whether payments work or not; only the
    backend differs (live gateway vs. disabled stub).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the backend name."""
        pass

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether payments can actually be completed."""
        pass

    @abstractmethod
    async def confirm(
        self,
        authorization: PaymentAuthorization,
        payment_method: PaymentMethodDetails,
        shipping_address: ShippingAddress,
    ) -> ConfirmationResult:
        """
        Confirm the payment for an authorization.

        Args:
            authorization: Current authorization (its token is the client secret)
            payment_method: Payment method collected on the Payment step
            shipping_address: Address bound to the payment

        Returns:
            ConfirmationResult; declines are results, not exceptions
        """
        pass

    async def retrieve(self, authorization: PaymentAuthorization) -> ConfirmationResult:
        """
        Look up the outcome after returning from a gateway redirect.

        Backends without a lookup report the payment as not completed.
        """
        return ConfirmationResult(
            outcome=ConfirmationOutcome.FAILED,
            reason="Payment status could not be determined",
        )

    async def close(self) -> None:
        """Release resources."""
        return None
