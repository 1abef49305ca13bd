from __future__ import annotations

import logging
from datetime import datetime

from bookmarket.errors import Forbidden, StateConflict, ValidationFailed
from bookmarket.extensions import db
from bookmarket.models import BankingSubaccount, SellerPayout
from bookmarket.services import gateways
from bookmarket.services.order_lifecycle import OrderStatus, claim_settlement
from bookmarket.services.order_service import load_order, transaction
from bookmarket.utils.notify import notify_user
from bookmarket.utils.settings import get_settings

logger = logging.getLogger(__name__)


def payout_breakdown(gross: float, fee_rate: float) -> tuple[float, float]:
    """Return ``(platform_fee, net)`` for a gross book subtotal."""
    gross = round(float(gross or 0.0), 2)
    fee = round(gross * float(fee_rate), 2)
    return fee, round(gross - fee, 2)


def pay_seller(actor, order_id, *, now: datetime | None = None) -> SellerPayout:
    """Transfer the seller's share of a delivered order.

    Delivery fees stay with the platform; the seller receives the book
    subtotal less the platform fee. Claiming ``settlement`` first makes a
    payout and a refund mutually exclusive.
    """
    now = now or datetime.utcnow()
    if actor is None or not actor.is_admin:
        raise Forbidden("Only admins can release seller payouts")
    order = load_order(order_id)
    if order.status != OrderStatus.DELIVERED.value:
        raise StateConflict(
            "Seller can only be paid for delivered orders",
            current_status=order.status,
            expected=[OrderStatus.DELIVERED.value],
        )
    banking = BankingSubaccount.query.filter_by(seller_id=int(order.seller_id)).first()
    if banking is None or not banking.recipient_code:
        raise ValidationFailed("Seller has no banking details on file", fields=["recipient_code"])

    fee, net = payout_breakdown(order.items_subtotal(), get_settings().platform_fee_rate)
    reference = f"payout_{int(order.id)}_{now.strftime('%Y%m%d%H%M%S')}"

    with transaction():
        if not claim_settlement(order, "paid_out"):
            raise StateConflict("Order has already been settled", current_status=order.settlement)
        with gateways.upstream("paystack"):
            result = gateways.payments_provider().transfer(
                recipient_code=banking.recipient_code,
                amount=net,
                reference=reference,
                reason=f"Payment for order #{int(order.id)}",
                currency=order.currency or "ZAR",
            )
        payout = SellerPayout(
            order_id=int(order.id),
            seller_id=int(order.seller_id),
            gross_amount=order.items_subtotal(),
            platform_fee=fee,
            net_amount=net,
            currency=order.currency or "ZAR",
            transfer_reference=result.reference or reference,
            transfer_code=result.transfer_code or None,
            status=result.status or "pending",
            triggered_by=actor.actor_type,
            created_at=now,
        )
        db.session.add(payout)
        notify_user(
            order.seller_id,
            kind="payout_sent",
            title="Payout on its way",
            message=f"{payout.currency} {net:.2f} has been sent to your bank account for order #{int(order.id)}.",
            order_id=order.id,
            meta={"net_amount": net, "platform_fee": fee, "transfer_reference": payout.transfer_reference},
        )
    logger.info("seller_paid order_id=%s seller_id=%s net=%.2f", order.id, order.seller_id, net)
    return payout
