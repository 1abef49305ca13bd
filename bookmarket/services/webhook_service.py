from __future__ import annotations

import logging

from bookmarket.errors import InvalidSignature, ValidationFailed
from bookmarket.integrations.common import IntegrationMisconfiguredError
from bookmarket.integrations.payments.paystack_provider import verify_webhook_signature
from bookmarket.models import Refund, SellerPayout
from bookmarket.services.order_service import transaction
from bookmarket.utils.notify import notify_user
from bookmarket.utils.settings import get_settings

logger = logging.getLogger(__name__)

REFUND_EVENTS = {
    "refund.pending": "pending",
    "refund.processing": "pending",
    "refund.processed": "processed",
    "refund.failed": "failed",
}

TRANSFER_EVENTS = {
    "transfer.success": "success",
    "transfer.failed": "failed",
    "transfer.reversed": "reversed",
}

# Statuses a webhook may still move a row out of, and where to.
REFUND_MOVES = {"pending": {"processed", "failed"}}
PAYOUT_MOVES = {"pending": {"success", "failed", "reversed"}, "success": {"reversed"}}


def check_signature(raw_body: bytes, signature: str | None) -> bool:
    """Verify ``X-Paystack-Signature``; returns whether the body was verified.

    With no secret configured the sandbox accepts unsigned events, but live
    mode refuses to process anything it cannot verify.
    """
    settings = get_settings()
    secret = settings.paystack_webhook_secret
    if not secret:
        if settings.integrations_mode == "live":
            raise IntegrationMisconfiguredError("PAYSTACK_WEBHOOK_SECRET (or PAYSTACK_SECRET_KEY) is not set")
        return False
    if not verify_webhook_signature(raw_body, signature, secret):
        raise InvalidSignature("Webhook signature is missing or invalid")
    return True


def process_paystack_event(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationFailed("Webhook payload must be an object", fields=["event"])
    event = str(payload.get("event") or "").strip()
    if not event:
        raise ValidationFailed("Webhook event is required", fields=["event"])
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationFailed("Webhook data must be an object", fields=["data"])

    if event in TRANSFER_EVENTS:
        return _reconcile_transfer(event, data)
    if event in REFUND_EVENTS:
        return _reconcile_refund(event, data)
    # Orders are only created from a verified charge, so charge events need no action.
    logger.info("paystack_webhook_ignored event=%s reference=%s", event, data.get("reference") or "")
    return {"event": event, "handled": False}


def _reconcile_transfer(event: str, data: dict) -> dict:
    target = TRANSFER_EVENTS[event]
    reference = str(data.get("reference") or "").strip()
    transfer_code = str(data.get("transfer_code") or "").strip()
    payout = None
    if reference:
        payout = SellerPayout.query.filter_by(transfer_reference=reference).first()
    if payout is None and transfer_code:
        payout = SellerPayout.query.filter_by(transfer_code=transfer_code).first()
    if payout is None:
        logger.warning("paystack_transfer_unmatched event=%s reference=%s", event, reference)
        return {"event": event, "handled": False}

    current = payout.status or "pending"
    if target == current or target not in PAYOUT_MOVES.get(current, set()):
        return {"event": event, "handled": True, "payout_id": int(payout.id), "status": current}

    with transaction():
        payout.status = target
        if transfer_code and not payout.transfer_code:
            payout.transfer_code = transfer_code
        if target in ("failed", "reversed"):
            reason = str(data.get("reason") or data.get("failure_reason") or "").strip()
            notify_user(
                payout.seller_id,
                kind="payout_failed",
                title="Payout did not go through",
                message=(
                    f"The transfer for order #{int(payout.order_id)} was {target}. "
                    "Our team will follow up with you."
                ),
                order_id=payout.order_id,
                meta={"transfer_reference": payout.transfer_reference, "reason": reason},
            )
    if target == "success":
        logger.info("seller_payout_confirmed order_id=%s reference=%s", payout.order_id, payout.transfer_reference)
    else:
        logger.warning("seller_payout_%s order_id=%s reference=%s", target, payout.order_id, payout.transfer_reference)
    return {"event": event, "handled": True, "payout_id": int(payout.id), "status": target}


def _reconcile_refund(event: str, data: dict) -> dict:
    target = REFUND_EVENTS[event]
    provider_ref = str(data.get("id") or "").strip()
    txn = data.get("transaction") if isinstance(data.get("transaction"), dict) else {}
    transaction_reference = str(data.get("transaction_reference") or txn.get("reference") or "").strip()
    refund = None
    if provider_ref:
        refund = Refund.query.filter_by(provider_ref=provider_ref).first()
    if refund is None and transaction_reference:
        refund = Refund.query.filter_by(transaction_reference=transaction_reference).first()
    if refund is None:
        logger.warning("paystack_refund_unmatched event=%s transaction=%s", event, transaction_reference)
        return {"event": event, "handled": False}

    current = refund.status or "pending"
    if target == current or target not in REFUND_MOVES.get(current, set()):
        return {"event": event, "handled": True, "refund_id": int(refund.id), "status": current}

    with transaction():
        refund.status = target
        if provider_ref and not refund.provider_ref:
            refund.provider_ref = provider_ref
        if target == "failed":
            notify_user(
                refund.buyer_id,
                kind="refund_failed",
                title="Refund delayed",
                message=(
                    f"Your refund of {refund.currency} {float(refund.amount or 0.0):.2f} could not be completed yet. "
                    "Our team will follow up with you."
                ),
                order_id=refund.order_id,
            )
    logger.info("refund_reconciled order_id=%s status=%s", refund.order_id, target)
    return {"event": event, "handled": True, "refund_id": int(refund.id), "status": target}
