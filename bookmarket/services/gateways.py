from __future__ import annotations

from contextlib import contextmanager

import requests

from bookmarket.errors import UpstreamFailed
from bookmarket.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from bookmarket.integrations.courier.base import CourierProvider
from bookmarket.integrations.courier.factory import build_courier_provider
from bookmarket.integrations.payments.base import PaymentsProvider
from bookmarket.integrations.payments.factory import build_payments_provider
from bookmarket.utils.settings import get_settings


def payments_provider() -> PaymentsProvider:
    return build_payments_provider(get_settings())


def courier_provider() -> CourierProvider:
    return build_courier_provider(get_settings())


@contextmanager
def upstream(service: str):
    """Translate provider failures into ``UpstreamFailed``.

    Integration configuration errors pass through untouched so the API can
    report them as 503 rather than 502.
    """
    try:
        yield
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except (RuntimeError, requests.RequestException, ValueError) as e:
        raise UpstreamFailed(service, str(e) or e.__class__.__name__) from e
