from __future__ import annotations

from bookmarket.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from bookmarket.integrations.payments.base import PaymentsProvider
from bookmarket.integrations.payments.mock_provider import MockPaymentsProvider
from bookmarket.integrations.payments.paystack_provider import PaystackPaymentsProvider


def build_payments_provider(settings) -> PaymentsProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if provider == "mock":
        if mode == "live":
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock payments provider in live mode")
        return MockPaymentsProvider()

    if provider != "paystack":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (getattr(settings, "paystack_secret_key", "") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing PAYSTACK_SECRET_KEY")

    return PaystackPaymentsProvider(secret_key=secret_key, callback_url=getattr(settings, "paystack_callback_url", "") or "")


def payment_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()
    missing = []
    if mode != "disabled" and provider == "paystack" and not (getattr(settings, "paystack_secret_key", "") or "").strip():
        missing.append("PAYSTACK_SECRET_KEY")
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
