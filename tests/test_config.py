"""Tests for tirestore_checkout.config."""
from __future__ import annotations

import os
from decimal import Decimal

import pytest

from tirestore_checkout.config import CheckoutSettings, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run every test without TIRESTORE_ variables or a local .env file."""
    for name in list(os.environ):
        if name.startswith("TIRESTORE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


class TestCheckoutSettings:
    """Tests for CheckoutSettings."""

    def test_defaults(self):
        """Should default to a local backend with payments disabled."""
        settings = CheckoutSettings()
        assert settings.api_base_url == "http://localhost:3001/api"
        assert settings.allowed_countries == ["NL", "BE", "DE", "FR"]
        assert settings.vat_rate == Decimal("0.21")
        assert settings.currency == "EUR"
        assert not settings.payments_configured

    def test_env_prefix(self, monkeypatch):
        """Should read TIRESTORE_ variables."""
        monkeypatch.setenv("TIRESTORE_API_BASE_URL", "https://api.tirestore.test/api/")
        monkeypatch.setenv("TIRESTORE_STRIPE_PUBLISHABLE_KEY", "pk_live_abc")
        monkeypatch.setenv("TIRESTORE_INTENT_MAX_RETRIES", "4")
        settings = CheckoutSettings()
        assert settings.api_base_url == "https://api.tirestore.test/api"
        assert settings.payments_configured
        assert settings.intent_max_retries == 4

    def test_comma_separated_countries(self, monkeypatch):
        """Should parse a comma-separated country list."""
        monkeypatch.setenv("TIRESTORE_ALLOWED_COUNTRIES", "nl, be ,lu")
        assert CheckoutSettings().allowed_countries == ["NL", "BE", "LU"]

    def test_secret_key_is_not_a_publishable_key(self):
        """Should not treat a secret key as payment configuration."""
        assert not CheckoutSettings(stripe_publishable_key="sk_test_123").payments_configured

    def test_env_file(self, tmp_path):
        """Should load values from an explicit env file."""
        env_file = tmp_path / "checkout.env"
        env_file.write_text("TIRESTORE_CURRENCY=USD\nTIRESTORE_VAT_RATE=0.09\n")
        settings = load_settings(str(env_file))
        assert settings.currency == "USD"
        assert settings.vat_rate == Decimal("0.09")

    def test_load_settings_cached(self):
        """Should return the same settings object within a process."""
        assert load_settings() is load_settings()
