"""Checkout data models."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional


CART_UPDATED_EVENT = "cart-updated"
STORAGE_EVENT = "storage"
CENTS = Decimal("0.01")


class StepId(int, Enum):
    """Wizard steps, in order."""
    ADDRESS = 1
    PAYMENT = 2
    REVIEW = 3


class AuthorizationStatus(str, Enum):
    """Payment authorization status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    """Payment status recorded on the order."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class ConfirmationOutcome(str, Enum):
    """Result of handing the payment to the gateway."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"


def _to_decimal(value: Any) -> Decimal:
    """Coerce a persisted price to Decimal; string prices may carry a euro sign."""
    if isinstance(value, Decimal):
        price = value
    else:
        if isinstance(value, str):
            value = value.replace("€", "").strip()
        try:
            price = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid price: {value!r}")
    if not price.is_finite():
        raise ValueError(f"Price must be a finite number: {value!r}")
    return price


@dataclass
class CartItem:
    """A line in the cart snapshot. Identity key is (id, size)."""
    id: int
    name: str
    brand: str = ""
    size: str = ""
    unit_price: Decimal = Decimal("0")
    quantity: int = 1
    image_ref: Optional[str] = None

    def __post_init__(self):
        self.unit_price = _to_decimal(self.unit_price)
        if self.unit_price < 0:
            raise ValueError("unit_price must be >= 0")
        if int(self.quantity) < 1:
            raise ValueError("quantity must be >= 1")
        self.quantity = int(self.quantity)

    @property
    def key(self) -> tuple[int, str]:
        return (self.id, self.size)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Storage/wire form, using the storefront's JSON field names."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "size": self.size,
            "price": float(self.unit_price),
            "quantity": self.quantity,
        }
        if self.image_ref:
            data["image"] = self.image_ref
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartItem":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            brand=data.get("brand", ""),
            size=str(data.get("size", "")),
            unit_price=data.get("price", data.get("unit_price", 0)),
            quantity=data.get("quantity", 1),
            image_ref=data.get("image") or data.get("image_ref"),
        )


def cart_total(items: List[CartItem]) -> Decimal:
    """Sum of unit_price x quantity. Shipping is always zero."""
    return sum((item.line_total for item in items), Decimal("0"))


def cart_fingerprint(items: List[CartItem]) -> tuple:
    """Order-insensitive identity of a cart's contents and prices."""
    return tuple(sorted(
        (item.id, item.size, item.quantity, item.unit_price) for item in items
    ))


@dataclass
class ShippingAddress:
    """Shipping address, also used as billing address."""
    name: str = ""
    line1: str = ""
    line2: Optional[str] = None
    city: str = ""
    state: Optional[str] = None
    postal_code: str = ""
    country: str = ""

    REQUIRED_FIELDS = ("name", "line1", "city", "postal_code", "country")

    def missing_fields(self) -> List[str]:
        return [
            name for name in self.REQUIRED_FIELDS
            if not (getattr(self, name) or "").strip()
        ]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def fingerprint(self) -> tuple:
        """Normalized value used to detect material address changes."""
        return tuple(
            (getattr(self, name) or "").strip().casefold()
            for name in ("name", "line1", "line2", "city", "state", "postal_code", "country")
        )

    def to_dict(self) -> Dict[str, Any]:
        """Gateway-style address payload."""
        return {
            "name": self.name,
            "address": {
                "line1": self.line1,
                "line2": self.line2,
                "city": self.city,
                "state": self.state,
                "postal_code": self.postal_code,
                "country": self.country,
            },
        }

    @classmethod
    def from_saved(cls, data: Dict[str, Any]) -> "ShippingAddress":
        """Map a saved address from the account API (street/zipCode naming)."""
        return cls(
            name=data.get("name") or "",
            line1=data.get("street") or data.get("line1") or "",
            line2=data.get("street2") or data.get("line2"),
            city=data.get("city") or "",
            state=data.get("state"),
            postal_code=data.get("zipCode") or data.get("postal_code") or "",
            country=(data.get("country") or "").upper(),
        )


@dataclass
class CheckoutStep:
    """One wizard step and its completion flag."""
    id: StepId
    title: str
    description: str
    completed: bool = False


def default_steps() -> List[CheckoutStep]:
    return [
        CheckoutStep(StepId.ADDRESS, "Address", "Shipping information"),
        CheckoutStep(StepId.PAYMENT, "Payment", "Payment method"),
        CheckoutStep(StepId.REVIEW, "Review", "Review & place order"),
    ]


@dataclass
class PaymentAuthorization:
    """Server-issued payment authorization ("payment intent")."""
    token: str
    status: AuthorizationStatus = AuthorizationStatus.PENDING
    cart_fingerprint: tuple = ()
    address_fingerprint: Optional[tuple] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def intent_id(self) -> str:
        """Intent id embedded in the client secret (``pi_xxx_secret_yyy``)."""
        return self.token.split("_secret_")[0]


@dataclass
class PaymentMethodDetails:
    """Payment method collected on the Payment step."""
    type: str = "card"
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConfirmationResult:
    """Outcome of a payment confirmation attempt."""
    outcome: ConfirmationOutcome
    reason: Optional[str] = None
    redirect_url: Optional[str] = None
    payment_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == ConfirmationOutcome.SUCCEEDED


@dataclass
class CustomerIdentity:
    """Who is checking out. All fields are empty for guests."""
    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    auth_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)


@dataclass
class OrderSummary:
    """Price breakdown shown beside every step. Prices include VAT."""
    subtotal: Decimal
    vat: Decimal
    shipping: Decimal
    total: Decimal
    currency: str = "EUR"

    @classmethod
    def for_cart(
        cls,
        items: List[CartItem],
        vat_rate: Decimal = Decimal("0.21"),
        currency: str = "EUR",
    ) -> "OrderSummary":
        total = cart_total(items)
        vat = (total * vat_rate / (1 + vat_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
        return cls(
            subtotal=total,
            vat=vat,
            shipping=Decimal("0"),
            total=total,
            currency=currency,
        )


@dataclass
class Order:
    """Order record handed to the backend order API. Write-once."""
    cart: List[CartItem]
    shipping_address: ShippingAddress
    billing_address: ShippingAddress
    total: Decimal
    payment_status: PaymentStatus = PaymentStatus.PAID
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    payment_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "cart": [item.to_dict() for item in self.cart],
            "total": float(self.total),
            "shippingAddress": asdict(self.shipping_address),
            "billingAddress": asdict(self.billing_address),
            "paymentStatus": self.payment_status.value,
        }
        if self.user_id:
            payload["userId"] = self.user_id
        if self.guest_email:
            payload["guestEmail"] = self.guest_email
        if self.payment_id:
            payload["paymentIntentId"] = self.payment_id
        return payload
