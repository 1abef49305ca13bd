from __future__ import annotations

from bookmarket.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from bookmarket.integrations.courier.base import CourierProvider
from bookmarket.integrations.courier.courier_guy_provider import CourierGuyProvider
from bookmarket.integrations.courier.mock_provider import MockCourierProvider


def build_courier_provider(settings) -> CourierProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "courier_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:courier")

    if provider == "mock":
        if mode == "live":
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock courier provider in live mode")
        return MockCourierProvider()

    if provider != "courier_guy":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:courier_provider={provider}")

    api_key = (getattr(settings, "courier_guy_api_key", "") or "").strip()
    if not api_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing COURIER_GUY_API_KEY")
    return CourierGuyProvider(api_key=api_key, base_url=getattr(settings, "courier_guy_api_url", "") or "")
