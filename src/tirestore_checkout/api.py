"""Backend REST client and the endpoints the checkout consumes."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from tirestore_checkout.errors import APIError, AuthenticationRequired
from tirestore_checkout.models import (
    CartItem,
    CustomerIdentity,
    Order,
    ShippingAddress,
)

logger = logging.getLogger(__name__)


def extract_error_message(response: httpx.Response) -> tuple[str, Any]:
    """Build a human-readable message from an error response.

    Validation errors arrive as ``{"details": [{"field", "message"}, ...]}``;
    other errors carry ``message``, ``detail`` or ``error``.
    """
    fallback = f"API Error: {response.status_code} {response.reason_phrase}"
    try:
        data = response.json()
    except ValueError:
        return (response.text or fallback), None

    if not isinstance(data, dict):
        return fallback, data

    details = data.get("details")
    if isinstance(details, list) and details:
        parts = [
            f"{d.get('field')}: {d.get('message')}"
            for d in details
            if isinstance(d, dict)
        ]
        if parts:
            return f"Validation Error: {', '.join(parts)}", data

    for key in ("message", "detail", "error"):
        if isinstance(data.get(key), str) and data[key]:
            return data[key], data
    return fallback, data


class BackendClient:
    """Async HTTP client for the storefront backend."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def _auth_headers(token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _handle_response(self, response: httpx.Response) -> Any:
        """Return the decoded body or raise APIError."""
        if response.status_code == 401:
            raise AuthenticationRequired()
        if response.status_code >= 400:
            message, body = extract_error_message(response)
            raise APIError(response.status_code, message, body)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Any:
        """Make GET request. ``None`` params are dropped."""
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        response = await self.client.get(path, params=params, headers=self._auth_headers(token))
        return self._handle_response(response)

    async def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Any:
        """Make POST request."""
        response = await self.client.post(path, json=data, headers=self._auth_headers(token))
        return self._handle_response(response)

    async def close(self):
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class AddressAPI:
    """Saved addresses of an authenticated customer."""

    def __init__(self, client: BackendClient):
        self.client = client

    async def default_shipping_address(self, auth_token: str) -> Optional[ShippingAddress]:
        data = await self.client.get(
            "/settings/addresses/default",
            params={"type": "shipping"},
            token=auth_token,
        )
        address = (data or {}).get("address")
        if not address:
            return None
        return ShippingAddress.from_saved(address)


class PaymentIntentAPI:
    """Creates payment intents for a cart."""

    def __init__(self, client: BackendClient):
        self.client = client

    async def create_payment_intent(
        self,
        cart: List[CartItem],
        customer: Optional[CustomerIdentity] = None,
        shipping_address: Optional[ShippingAddress] = None,
        billing_address: Optional[ShippingAddress] = None,
    ) -> str:
        """Returns the intent's client secret."""
        payload: Dict[str, Any] = {"cart": [item.to_dict() for item in cart]}
        if customer is not None:
            if customer.user_id:
                payload["userId"] = customer.user_id
            if customer.email:
                payload["userEmail"] = customer.email
            if customer.name:
                payload["userName"] = customer.name
        if shipping_address is not None:
            payload["shippingAddress"] = shipping_address.to_dict()
        if billing_address is not None:
            payload["billingAddress"] = billing_address.to_dict()

        data = await self.client.post(
            "/stripe/create-payment-intent",
            payload,
            token=customer.auth_token if customer else None,
        )
        secret = (data or {}).get("clientSecret")
        if not secret:
            raise APIError(502, "Payment intent response did not include a client secret", data)
        return secret


class OrderAPI:
    """Records completed orders."""

    def __init__(self, client: BackendClient):
        self.client = client

    async def create_order(self, order: Order, auth_token: Optional[str] = None) -> Optional[str]:
        data = await self.client.post("/orders", order.to_payload(), token=auth_token)
        order_id = (data or {}).get("orderId") or (data or {}).get("id")
        return str(order_id) if order_id is not None else None
