from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


def raise_for_paystack(r, j: dict, code: str) -> None:
    """Paystack signals failure with a non-2xx status or ``status: false``."""
    if r.status_code < 200 or r.status_code >= 300 or j.get("status") is not True:
        msg = (j.get("message") or f"HTTP {r.status_code}").strip()
        raise RuntimeError(f"{code}:{msg}")


def to_minor(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_minor(value) -> float:
    try:
        return float(value or 0) / 100.0
    except (TypeError, ValueError):
        return 0.0
