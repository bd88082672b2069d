"""Stripe payment backend.

Confirms PaymentIntents the way Stripe.js does from the browser: with the
publishable key and the intent's client secret, against the public
``/payment_intents/{id}/confirm`` endpoint.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from tirestore_checkout.connectors.base import PaymentBackend
from tirestore_checkout.models import (
    ConfirmationOutcome,
    ConfirmationResult,
    PaymentAuthorization,
    PaymentMethodDetails,
    ShippingAddress,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Payment failed"


def flatten_form(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """Encode nested dicts the way Stripe expects (``a[b][c]=v``). None values are dropped."""
    flat: Dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(flatten_form(value, name))
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


class StripePaymentBackend(PaymentBackend):
    """Live payment backend over the Stripe REST API."""

    def __init__(
        self,
        publishable_key: str,
        return_url: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not publishable_key.startswith("pk_"):
            raise ValueError("Stripe publishable key must start with 'pk_'")
        self.publishable_key = publishable_key
        self.return_url = return_url
        self.api_base = api_base.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {publishable_key}"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "stripe"

    @property
    def available(self) -> bool:
        return True

    def _confirm_payload(
        self,
        authorization: PaymentAuthorization,
        payment_method: PaymentMethodDetails,
        shipping_address: ShippingAddress,
    ) -> Dict[str, str]:
        payload: Dict[str, Any] = {
            "client_secret": authorization.token,
            "return_url": self.return_url,
            "shipping": shipping_address.to_dict(),
        }
        # A reusable payment method id, or raw method data tokenized by the gateway
        method_id = payment_method.data.get("id")
        if method_id:
            payload["payment_method"] = method_id
        else:
            payload["payment_method_data"] = {
                "type": payment_method.type,
                payment_method.type: {
                    k: v for k, v in payment_method.data.items() if k != "billing_details"
                },
                "billing_details": {
                    "name": shipping_address.name,
                    "address": shipping_address.to_dict()["address"],
                },
            }
        return flatten_form(payload)

    @staticmethod
    def _interpret(data: Dict[str, Any]) -> ConfirmationResult:
        status = data.get("status")
        payment_id = data.get("id")

        if status == "succeeded":
            return ConfirmationResult(outcome=ConfirmationOutcome.SUCCEEDED, payment_id=payment_id)

        if status == "requires_action":
            next_action = data.get("next_action") or {}
            redirect = (next_action.get("redirect_to_url") or {}).get("url")
            return ConfirmationResult(
                outcome=ConfirmationOutcome.REQUIRES_ACTION,
                redirect_url=redirect,
                payment_id=payment_id,
            )

        last_error = data.get("last_payment_error") or {}
        reason = last_error.get("message") or f"Payment was not completed (status: {status})"
        return ConfirmationResult(
            outcome=ConfirmationOutcome.FAILED,
            reason=reason,
            payment_id=payment_id,
        )

    @staticmethod
    def _error_result(response: httpx.Response) -> ConfirmationResult:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            error = {}
        reason = error.get("message") or GENERIC_FAILURE
        return ConfirmationResult(outcome=ConfirmationOutcome.FAILED, reason=reason)

    async def confirm(
        self,
        authorization: PaymentAuthorization,
        payment_method: PaymentMethodDetails,
        shipping_address: ShippingAddress,
    ) -> ConfirmationResult:
        """Confirm a PaymentIntent with Stripe."""
        response = await self._client.post(
            f"/payment_intents/{authorization.intent_id}/confirm",
            data=self._confirm_payload(authorization, payment_method, shipping_address),
        )
        if response.status_code >= 400:
            result = self._error_result(response)
            logger.info(f"Stripe declined {authorization.intent_id}: {result.reason}")
            return result
        return self._interpret(response.json())

    async def retrieve(self, authorization: PaymentAuthorization) -> ConfirmationResult:
        """Get the PaymentIntent status after a redirect-based challenge."""
        response = await self._client.get(
            f"/payment_intents/{authorization.intent_id}",
            params={"client_secret": authorization.token},
        )
        if response.status_code >= 400:
            return self._error_result(response)
        return self._interpret(response.json())

    async def close(self):
        """Close HTTP client."""
        await self._client.aclose()
