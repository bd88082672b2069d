"""Address Collector: shipping address form state and best-effort pre-fill."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from tirestore_checkout.api import AddressAPI
from tirestore_checkout.models import CustomerIdentity, ShippingAddress

logger = logging.getLogger(__name__)


class AddressCollector:
    """
    Holds the address being entered and whether it is complete.

    Completeness is syntactic only: required fields must be non-empty and,
    when an allow-list is configured, the country must be on it.
    """

    EDITABLE_FIELDS = ("name", "line1", "line2", "city", "state", "postal_code", "country")

    def __init__(
        self,
        address_api: Optional[AddressAPI] = None,
        allowed_countries: Iterable[str] = (),
        initial: Optional[ShippingAddress] = None,
    ):
        self.address_api = address_api
        self.allowed_countries = [c.upper() for c in allowed_countries]
        self._value = initial or ShippingAddress()
        self.loading = False
        self.revision = 0

    @property
    def value(self) -> ShippingAddress:
        return replace(self._value)

    @property
    def is_complete(self) -> bool:
        return not self.problems()

    def problems(self) -> List[str]:
        """Missing required fields, plus ``country`` if it is not allowed."""
        problems = self._value.missing_fields()
        country = (self._value.country or "").upper()
        if country and self.allowed_countries and country not in self.allowed_countries:
            problems.append("country")
        return problems

    def update(self, **fields) -> ShippingAddress:
        """Apply a field edit. Unknown field names raise ValueError."""
        unknown = set(fields) - set(self.EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown address field(s): {', '.join(sorted(unknown))}")
        if "country" in fields and fields["country"]:
            fields["country"] = fields["country"].strip().upper()

        before = self._value.fingerprint()
        self._value = replace(self._value, **fields)
        if self._value.fingerprint() != before:
            self.revision += 1
        return self.value

    def replace_value(self, address: ShippingAddress) -> ShippingAddress:
        before = self._value.fingerprint()
        self._value = replace(address, country=(address.country or "").upper())
        if self._value.fingerprint() != before:
            self.revision += 1
        return self.value

    async def prefill(self, customer: Optional[CustomerIdentity]) -> bool:
        """
        Seed the form with the customer's saved default shipping address.

        Only for authenticated customers, and only if the shopper has not
        started typing yet. Any failure leaves the form as it is.
        Returns True if the form was seeded.
        """
        if self.address_api is None or customer is None or not customer.is_authenticated:
            return False

        revision_at_start = self.revision
        self.loading = True
        try:
            saved = await self.address_api.default_shipping_address(customer.auth_token)
        except Exception as e:
            logger.debug(f"Default address pre-fill skipped: {e}")
            return False
        finally:
            self.loading = False

        if saved is None:
            return False
        if self.revision != revision_at_start:
            logger.debug("Discarding saved address, form was edited meanwhile")
            return False

        self.replace_value(saved)
        logger.info("Pre-filled shipping address from saved default")
        return True
