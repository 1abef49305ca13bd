from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, has_app_context


@dataclass(frozen=True)
class IntegrationSettings:
    integrations_mode: str = "disabled"
    payments_provider: str = "mock"
    paystack_secret_key: str = ""
    paystack_callback_url: str = ""
    paystack_webhook_secret: str = ""
    courier_provider: str = "mock"
    courier_guy_api_key: str = ""
    courier_guy_api_url: str = ""
    reschedule_fee: float = 65.0
    platform_fee_rate: float = 0.05


def _cfg(key: str, default):
    if not has_app_context():
        return default
    value = current_app.config.get(key)
    return default if value is None or value == "" else value


def get_settings() -> IntegrationSettings:
    """Snapshot of the integration/business settings copied into app.config."""
    return IntegrationSettings(
        integrations_mode=str(_cfg("INTEGRATIONS_MODE", "disabled")).strip().lower(),
        payments_provider=str(_cfg("PAYMENTS_PROVIDER", "mock")).strip().lower(),
        paystack_secret_key=str(_cfg("PAYSTACK_SECRET_KEY", "")).strip(),
        paystack_callback_url=str(_cfg("PAYSTACK_CALLBACK_URL", "")).strip(),
        paystack_webhook_secret=str(_cfg("PAYSTACK_WEBHOOK_SECRET", "") or _cfg("PAYSTACK_SECRET_KEY", "")).strip(),
        courier_provider=str(_cfg("COURIER_PROVIDER", "mock")).strip().lower(),
        courier_guy_api_key=str(_cfg("COURIER_GUY_API_KEY", "")).strip(),
        courier_guy_api_url=str(_cfg("COURIER_GUY_API_URL", "")).strip().rstrip("/"),
        reschedule_fee=float(_cfg("RESCHEDULE_FEE", 65.0)),
        platform_fee_rate=float(_cfg("PLATFORM_FEE_RATE", 0.05)),
    )
