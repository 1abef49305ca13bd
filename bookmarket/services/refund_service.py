from __future__ import annotations

import logging
from datetime import datetime

from bookmarket.errors import StateConflict, ValidationFailed
from bookmarket.extensions import db
from bookmarket.models import Order, Refund
from bookmarket.services import gateways
from bookmarket.services.order_lifecycle import claim_settlement

logger = logging.getLogger(__name__)


def issue_refund(order: Order, *, reason: str, now: datetime | None = None) -> Refund:
    """Refund the order's full total to the buyer.

    Runs inside the caller's transaction: the settlement claim and the refund
    row are only durable if the caller commits, and a gateway failure raises
    ``UpstreamFailed`` so the caller can roll the whole change back.
    """
    reference = (order.payment_reference or "").strip()
    if not reference:
        raise ValidationFailed("Order has no payment reference to refund", fields=["payment_reference"])
    if not claim_settlement(order, "refunded"):
        raise StateConflict("Order has already been settled", current_status=order.settlement)

    amount = round(float(order.total_amount or 0.0), 2)
    with gateways.upstream("paystack"):
        provider = gateways.payments_provider()
        result = provider.refund(transaction_reference=reference, amount=amount, reason=reason)

    row = Refund(
        order_id=int(order.id),
        buyer_id=int(order.buyer_id),
        amount=amount,
        currency=order.currency or "ZAR",
        transaction_reference=reference,
        provider=provider.name,
        provider_ref=result.provider_ref or None,
        status=result.status or "pending",
        reason=(reason or "")[:400] or None,
        created_at=now or datetime.utcnow(),
    )
    db.session.add(row)
    logger.info("refund_issued order_id=%s amount=%.2f provider=%s status=%s", order.id, amount, provider.name, row.status)
    return row
