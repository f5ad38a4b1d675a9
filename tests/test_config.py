"""Tests for settings normalisation and derived flags."""
from app.config import PAYPAL_LIVE_URL, PAYPAL_SANDBOX_URL, Settings


def test_empty_secrets_normalise_to_none():
    settings = Settings(STRIPE_WEBHOOK_SECRET="   ", COINBASE_API_KEY="")

    assert settings.STRIPE_WEBHOOK_SECRET is None
    assert settings.COINBASE_API_KEY is None


def test_fallback_defaults_off_in_prod_only():
    assert Settings(app_env="prod").fallback_enabled is False
    assert Settings(app_env="staging").fallback_enabled is True
    assert Settings(app_env="dev").fallback_enabled is True


def test_explicit_fallback_flag_wins():
    assert Settings(app_env="prod", PAYMENT_FALLBACK_ENABLED=True).fallback_enabled is True
    assert Settings(app_env="dev", PAYMENT_FALLBACK_ENABLED=False).fallback_enabled is False


def test_paypal_base_url_follows_sandbox_flag():
    assert Settings(PAYPAL_SANDBOX=True).paypal_base_url == PAYPAL_SANDBOX_URL
    assert Settings(PAYPAL_SANDBOX=False).paypal_base_url == PAYPAL_LIVE_URL
