from __future__ import annotations

from flask import Blueprint, request

from bookmarket.services import payment_service, payout_service, webhook_service
from bookmarket.utils.auth import resolve_actor
from bookmarket.utils.responses import ok, unauthorized

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api")


@payments_bp.post("/payments/initialize")
def initialize_payment():
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    return ok(payment_service.initialize_payment(actor, data if isinstance(data, dict) else {}))


@payments_bp.get("/payments/verify/<reference>")
def verify_payment(reference: str):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    return ok(payment_service.verify_payment(reference))


@payments_bp.post("/payouts/<int:order_id>")
def pay_seller(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    payout = payout_service.pay_seller(actor, order_id)
    return ok(payout.to_dict(), 201)


@payments_bp.post("/payments/webhook")
def paystack_webhook():
    raw = request.get_data() or b""
    verified = webhook_service.check_signature(raw, request.headers.get("X-Paystack-Signature"))
    payload = request.get_json(silent=True)
    result = webhook_service.process_paystack_event(payload)
    result["verified"] = verified
    return ok(result)
