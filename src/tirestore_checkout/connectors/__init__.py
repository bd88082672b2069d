"""Payment backends (live gateway and degraded stand-in)."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from tirestore_checkout.config import CheckoutSettings
from tirestore_checkout.connectors.base import PaymentBackend
from tirestore_checkout.connectors.disabled import (
    PAYMENT_UNAVAILABLE_MESSAGE,
    DisabledPaymentBackend,
)
from tirestore_checkout.connectors.stripe import StripePaymentBackend

logger = logging.getLogger(__name__)


def create_payment_backend(
    settings: CheckoutSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PaymentBackend:
    """
    Build the live backend, or the disabled one if the gateway is misconfigured.

    Never raises: a broken gateway degrades payments, not the whole checkout.
    """
    if not settings.payments_configured:
        logger.warning("Stripe publishable key missing or invalid, payments disabled")
        return DisabledPaymentBackend(cause="missing publishable key")
    try:
        return StripePaymentBackend(
            publishable_key=settings.stripe_publishable_key,
            return_url=settings.return_url,
            api_base=settings.stripe_api_base,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )
    except Exception as e:
        logger.warning(f"Could not initialize Stripe backend ({e}), payments disabled")
        return DisabledPaymentBackend(cause=str(e))


__all__ = [
    "PaymentBackend",
    "StripePaymentBackend",
    "DisabledPaymentBackend",
    "PAYMENT_UNAVAILABLE_MESSAGE",
    "create_payment_backend",
]
