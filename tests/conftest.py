"""Shared fixtures for tirestore_checkout tests."""
from __future__ import annotations

import asyncio
import itertools
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

# Add source to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tirestore_checkout.address import AddressCollector
from tirestore_checkout.cart import CartStore
from tirestore_checkout.connectors.base import PaymentBackend
from tirestore_checkout.finalizer import OrderFinalizer
from tirestore_checkout.intents import PaymentIntentManager
from tirestore_checkout.models import (
    CartItem,
    ConfirmationOutcome,
    ConfirmationResult,
    CustomerIdentity,
    PaymentAuthorization,
    PaymentMethodDetails,
    ShippingAddress,
)
from tirestore_checkout.orchestrator import CheckoutSession
from tirestore_checkout.retry import NO_RETRY
from tirestore_checkout.storage import InMemoryStorage


class RecordingNavigator:
    """Navigator that remembers every route it was sent to."""

    def __init__(self):
        self.routes: List[str] = []

    async def __call__(self, route: str) -> None:
        self.routes.append(route)


class ScriptedPaymentBackend(PaymentBackend):
    """Payment backend returning queued outcomes; succeeds when the queue is empty."""

    def __init__(self, outcomes: Optional[List[ConfirmationResult]] = None):
        self.outcomes = list(outcomes or [])
        self.confirmed_tokens: List[str] = []
        self.retrieve_result: Optional[ConfirmationResult] = None

    @property
    def name(self) -> str:
        return "scripted"

    @property
    def available(self) -> bool:
        return True

    async def confirm(
        self,
        authorization: PaymentAuthorization,
        payment_method: PaymentMethodDetails,
        shipping_address: ShippingAddress,
    ) -> ConfirmationResult:
        self.confirmed_tokens.append(authorization.token)
        if self.outcomes:
            return self.outcomes.pop(0)
        return ConfirmationResult(
            outcome=ConfirmationOutcome.SUCCEEDED,
            payment_id=authorization.intent_id,
        )

    async def retrieve(self, authorization: PaymentAuthorization) -> ConfirmationResult:
        if self.retrieve_result is not None:
            return self.retrieve_result
        return await super().retrieve(authorization)


class FakePubSub:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.queue: asyncio.Queue = asyncio.Queue()

    async def subscribe(self, channel: str) -> None:
        self.redis.subscribers.setdefault(channel, []).append(self.queue)

    async def unsubscribe(self, channel: str) -> None:
        queues = self.redis.subscribers.get(channel, [])
        if self.queue in queues:
            queues.remove(self.queue)

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        while True:
            yield await self.queue.get()


class FakeRedis:
    """The subset of redis.asyncio.Redis used by RedisStorage."""

    def __init__(self):
        self.data = {}
        self.subscribers = {}
        self.published = []
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def publish(self, channel, message):
        self.published.append((channel, message))
        for queue in self.subscribers.get(channel, []):
            queue.put_nowait({"type": "message", "data": message})
        return len(self.subscribers.get(channel, []))

    def pubsub(self):
        return FakePubSub(self)

    async def aclose(self):
        self.closed = True


def make_intent_api() -> AsyncMock:
    """Intent API issuing a new client secret per call."""
    counter = itertools.count(1)
    api = AsyncMock()

    async def create_payment_intent(cart, customer=None, shipping_address=None, billing_address=None):
        n = next(counter)
        return f"pi_{n}_secret_{n}"

    api.create_payment_intent.side_effect = create_payment_intent
    return api


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def tab(storage):
    return storage.context()


@pytest.fixture
def cart_store(tab):
    return CartStore(tab)


@pytest.fixture
def tires():
    return [
        CartItem(id=82, name="Pilot Sport 5", brand="Michelin", size="225/45R17", unit_price=Decimal("110"), quantity=1),
        CartItem(id=17, name="Turanza 6", brand="Bridgestone", size="205/55R16", unit_price=Decimal("89.95"), quantity=4),
    ]


@pytest.fixture
def address():
    return ShippingAddress(
        name="Sanne de Vries",
        line1="Keizersgracht 123",
        city="Amsterdam",
        postal_code="1015 CJ",
        country="NL",
    )


@pytest.fixture
def navigator():
    return RecordingNavigator()


@pytest.fixture
def intent_api():
    return make_intent_api()


@pytest.fixture
def order_api():
    api = AsyncMock()
    api.create_order.return_value = "ord_1001"
    return api


@pytest.fixture
def payment_backend():
    return ScriptedPaymentBackend()


@pytest.fixture
def make_session(cart_store, intent_api, order_api, payment_backend, navigator):
    """Build a CheckoutSession over fakes; keyword arguments override collaborators."""

    def factory(
        store: Optional[CartStore] = None,
        intents_api=None,
        backend: Optional[PaymentBackend] = None,
        orders=None,
        address_api=None,
        customer: Optional[CustomerIdentity] = None,
        navigate=None,
        guest_email: Optional[str] = None,
    ) -> CheckoutSession:
        store = store or cart_store
        navigate = navigate or navigator
        intents = PaymentIntentManager(intents_api or intent_api, customer, NO_RETRY)
        return CheckoutSession(
            cart_store=store,
            address=AddressCollector(address_api, allowed_countries=["NL", "BE", "DE", "FR"]),
            intents=intents,
            payment_backend=backend or payment_backend,
            finalizer=OrderFinalizer(
                orders or order_api,
                store,
                navigate,
                auth_token=customer.auth_token if customer else None,
            ),
            navigate=navigate,
            customer=customer,
            guest_email=guest_email,
        )

    return factory


@pytest.fixture
def fake_redis():
    return FakeRedis()
