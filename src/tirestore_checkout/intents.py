"""
Payment Intent Manager.

Owns the single "current" payment authorization of a checkout session.
Billing details are bound into an authorization when it is created, so any
material change to the cart or address retires the current token and a new
one must be requested. Retired tokens are remembered and never handed out
again.

Calls must not overlap: the Step Controller only triggers a refresh on the
Address -> Payment transition (or on an explicit retry), and a second call
while one is in flight raises AuthorizationInProgress.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Set

import httpx

from tirestore_checkout.api import PaymentIntentAPI
from tirestore_checkout.errors import (
    APIError,
    AuthenticationRequired,
    AuthorizationError,
    AuthorizationInProgress,
)
from tirestore_checkout.models import (
    AuthorizationStatus,
    CartItem,
    CustomerIdentity,
    PaymentAuthorization,
    ShippingAddress,
    cart_fingerprint,
)
from tirestore_checkout.retry import RetryConfig, RetryExhausted, retry_async

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Network errors and 5xx responses are worth retrying; 4xx are not."""
    if isinstance(exc, AuthenticationRequired):
        return False
    if isinstance(exc, APIError):
        return exc.status_code >= 500
    return isinstance(exc, httpx.TransportError)


DEFAULT_INTENT_RETRY = RetryConfig(max_retries=2, base_delay=0.5, retry_condition=is_transient)


class PaymentIntentManager:
    """Requests and tracks payment authorizations for one checkout session."""

    def __init__(
        self,
        intent_api: PaymentIntentAPI,
        customer: Optional[CustomerIdentity] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.intent_api = intent_api
        self.customer = customer
        self.retry_config = retry_config or DEFAULT_INTENT_RETRY
        self.current: Optional[PaymentAuthorization] = None
        self.in_flight = False
        self.last_error: Optional[str] = None
        self.request_count = 0
        self._retired: Set[str] = set()
        self._last_inputs: Optional[tuple[List[CartItem], Optional[ShippingAddress]]] = None

    @property
    def ready(self) -> bool:
        """True when a usable token exists and no refresh is pending."""
        return (
            self.current is not None
            and not self.in_flight
            and self.current.status == AuthorizationStatus.PENDING
        )

    @property
    def token(self) -> Optional[str]:
        return self.current.token if self.current is not None else None

    def is_current(self, token: Optional[str]) -> bool:
        return token is not None and self.current is not None and self.current.token == token

    def is_retired(self, token: str) -> bool:
        return token in self._retired

    def needs_refresh(
        self,
        cart: List[CartItem],
        address: Optional[ShippingAddress] = None,
    ) -> bool:
        """True unless the current authorization was issued for exactly these inputs."""
        if self.current is None or self.current.status != AuthorizationStatus.PENDING:
            return True
        return (
            self.current.cart_fingerprint != cart_fingerprint(cart)
            or self.current.address_fingerprint != (address.fingerprint() if address else None)
        )

    def invalidate(self, reason: str = "inputs changed") -> None:
        """Retire the current authorization so it can no longer be confirmed."""
        if self.current is None:
            return
        self._retired.add(self.current.token)
        logger.info(f"Retired payment authorization {self.current.intent_id}: {reason}")
        self.current = None

    async def create_or_refresh(
        self,
        cart: List[CartItem],
        address: Optional[ShippingAddress] = None,
    ) -> PaymentAuthorization:
        """
        Return an authorization for (cart, address), creating one if needed.

        Identical inputs reuse the current authorization without a network
        call. Different inputs retire the current one before requesting a
        replacement, so a stale token is never usable, even if the request
        fails.

        Raises:
            AuthorizationInProgress: if another call is in flight
            AuthorizationError: if the cart is empty or the backend could not issue a token
        """
        if self.in_flight:
            raise AuthorizationInProgress("A payment authorization request is already in progress")
        if not cart:
            raise AuthorizationError("Cannot authorize a payment for an empty cart")

        if not self.needs_refresh(cart, address):
            logger.debug(f"Reusing payment authorization {self.current.intent_id}")
            return self.current

        self.invalidate("cart or address changed")
        self._last_inputs = (list(cart), address)
        self.in_flight = True
        self.last_error = None
        self.request_count += 1
        try:
            token = await retry_async(
                self.intent_api.create_payment_intent,
                cart,
                customer=self.customer,
                shipping_address=address,
                billing_address=address,
                config=self.retry_config,
            )
        except Exception as e:
            cause = e.original_exception if isinstance(e, RetryExhausted) else e
            self.last_error = self._describe(cause)
            logger.warning(f"Payment authorization failed: {self.last_error}")
            raise AuthorizationError(self.last_error) from cause
        finally:
            self.in_flight = False

        if token in self._retired:
            self.last_error = "Payment provider returned a token that was already used"
            logger.error(self.last_error)
            raise AuthorizationError(self.last_error)

        self.current = PaymentAuthorization(
            token=token,
            cart_fingerprint=cart_fingerprint(cart),
            address_fingerprint=address.fingerprint() if address else None,
        )
        logger.info(f"Created payment authorization {self.current.intent_id}")
        return self.current

    async def retry(self) -> PaymentAuthorization:
        """Manual retry with the inputs of the last request."""
        if self._last_inputs is None:
            raise AuthorizationError("Nothing to retry")
        cart, address = self._last_inputs
        return await self.create_or_refresh(cart, address)

    def mark(self, status: AuthorizationStatus) -> None:
        if self.current is not None:
            self.current.status = status

    @staticmethod
    def _describe(exc: BaseException) -> str:
        if isinstance(exc, APIError):
            return exc.message
        if isinstance(exc, httpx.TransportError):
            return "Could not reach the payment service. Check your connection and retry."
        return "Failed to initialize payment"
