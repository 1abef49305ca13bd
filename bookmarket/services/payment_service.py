from __future__ import annotations

import uuid

from bookmarket.errors import ValidationFailed, require_fields
from bookmarket.services import gateways

CHECKOUT_PURPOSE = "checkout"


def initialize_payment(actor, data: dict) -> dict:
    require_fields(data, ["email", "amount"])
    try:
        amount = float(data.get("amount"))
    except (TypeError, ValueError):
        raise ValidationFailed("Amount must be a number", fields=["amount"])
    if amount <= 0:
        raise ValidationFailed("Amount must be positive", fields=["amount"])
    reference = str(data.get("reference") or "").strip() or f"bm_{uuid.uuid4().hex[:20]}"
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationFailed("Metadata must be an object", fields=["metadata"])
    metadata = dict(metadata)
    metadata["purpose"] = CHECKOUT_PURPOSE
    if actor is not None and actor.user_id is not None:
        metadata["user_id"] = int(actor.user_id)

    with gateways.upstream("paystack"):
        result = gateways.payments_provider().initialize(
            amount=round(amount, 2),
            email=str(data.get("email")).strip(),
            reference=reference,
            currency=str(data.get("currency") or "ZAR").strip().upper(),
            metadata=metadata,
        )
    return {
        "authorization_url": result.authorization_url,
        "access_code": result.access_code,
        "reference": result.reference,
        "provider": result.provider,
    }


def verify_payment(reference: str) -> dict:
    reference = (reference or "").strip()
    if not reference:
        raise ValidationFailed("Payment reference is required", fields=["reference"])
    with gateways.upstream("paystack"):
        result = gateways.payments_provider().verify(reference)
    return {
        "reference": result.reference or reference,
        "status": result.status,
        "amount": result.amount,
        "currency": result.currency,
        "customer": result.customer,
        "paid": result.status == "success",
    }
