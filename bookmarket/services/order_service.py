from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import or_

from bookmarket.errors import Forbidden, NotFound, StateConflict, ValidationFailed, require_fields
from bookmarket.extensions import db
from bookmarket.integrations.courier.base import Party
from bookmarket.models import Order, OrderEvent, User
from bookmarket.services import gateways
from bookmarket.services.order_lifecycle import (
    DELIVERY_TRANSITIONS,
    SHIPPED_DELIVERY_STATUSES,
    DeliveryStatus,
    OrderStatus,
    transition_delivery,
    transition_order,
)
from bookmarket.services.refund_service import issue_refund
from bookmarket.utils.notify import notify_user
from bookmarket.utils.settings import get_settings

logger = logging.getLogger(__name__)

DELIVERY_METHODS = ("home", "locker")
DEFAULT_DECLINE_REASON = "Seller declined to commit"
DEFAULT_BUYER_CANCEL_REASON = "Cancelled by buyer"
DEFAULT_MISSED_PICKUP_REASON = "Seller missed the courier pickup"

LOCKER_PAYMENT_DAYS = 4
HOME_PAYMENT_DAYS = 7

PICKUP_WINDOW_HOURS = (9, 13)
PICKUP_DAYS_AHEAD = 5

# Fixed: expires_at is always created_at + 48h.
COMMIT_WINDOW_HOURS = 48
COMMIT_WINDOW = timedelta(hours=COMMIT_WINDOW_HOURS)

RESCHEDULE_FEE_PURPOSE = "reschedule_fee"


def _now():
    return datetime.utcnow()


@contextmanager
def transaction():
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def load_order(order_id) -> Order:
    try:
        oid = int(order_id)
    except (TypeError, ValueError):
        raise NotFound("Order not found")
    order = db.session.get(Order, oid)
    if order is None:
        raise NotFound("Order not found")
    return order


def _reference_in_use(reference: str) -> bool:
    """A Paystack reference pays for exactly one thing: a checkout or a reschedule fee."""
    hit = Order.query.filter(
        or_(Order.payment_reference == reference, Order.reschedule_payment_reference == reference)
    ).first()
    if hit is not None:
        return True
    # A second reschedule overwrites the order column; earlier fees stay in the event ledger.
    needle = json.dumps({"payment_reference": reference})[1:-1]
    spent = OrderEvent.query.filter(
        OrderEvent.to_status == DeliveryStatus.RESCHEDULED_BY_SELLER.value,
        OrderEvent.metadata_json.contains(needle, autoescape=True),
    ).first()
    return spent is not None


def _as_seller(actor, order: Order) -> None:
    # Ownership is not revealed to non-owners.
    if actor is None or actor.user_id is None or int(order.seller_id) != int(actor.user_id):
        raise NotFound("Order not found")


def _as_buyer(actor, order: Order) -> None:
    if actor is None or actor.user_id is None or int(order.buyer_id) != int(actor.user_id):
        raise NotFound("Order not found")


def _party(user_id: int) -> Party:
    user = db.session.get(User, int(user_id))
    if user is None:
        return Party(name="")
    return Party(name=user.name or "", phone=user.phone or "", email=user.email or "")


def _round(value) -> float:
    return round(float(value or 0.0), 2)


def get_order(actor, order_id) -> Order:
    order = load_order(order_id)
    if actor is not None and actor.is_admin:
        return order
    if actor is None or actor.user_id not in (order.buyer_id, order.seller_id):
        raise NotFound("Order not found")
    return order


def create_order(actor, data: dict, *, now: datetime | None = None) -> Order:
    """Record a paid checkout as an order awaiting the seller's commitment."""
    now = now or _now()
    if actor is None or actor.user_id is None or actor.role not in ("buyer", "seller"):
        raise Forbidden("Only marketplace users can place orders")
    require_fields(data, ["items", "payment_reference"])

    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationFailed("Order must contain at least one book", fields=["items"])

    seller_ids = set()
    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationFailed("Invalid order item", fields=["items"])
        try:
            price = float(item.get("price"))
        except (TypeError, ValueError):
            raise ValidationFailed("Item price must be a number", fields=["items"])
        if price < 0:
            raise ValidationFailed("Item price cannot be negative", fields=["items"])
        seller_id = item.get("seller_id") or data.get("seller_id")
        if seller_id is None:
            raise ValidationFailed("Item seller is required", fields=["items"])
        try:
            seller_id = int(seller_id)
        except (TypeError, ValueError):
            raise ValidationFailed("Item seller must be a user id", fields=["items"])
        seller_ids.add(seller_id)
        cleaned.append(
            {
                "book_id": item.get("book_id"),
                "title": str(item.get("title") or "").strip(),
                "price": _round(price),
                "seller_id": seller_id,
            }
        )
    if len(seller_ids) != 1:
        raise ValidationFailed("All books in an order must come from one seller", fields=["items"])
    seller_id = seller_ids.pop()
    if seller_id == int(actor.user_id):
        raise ValidationFailed("Sellers cannot buy their own books", fields=["items"])
    if db.session.get(User, seller_id) is None:
        raise ValidationFailed("Seller not found", fields=["seller_id"])

    delivery_method = str(data.get("delivery_method") or "home").strip().lower()
    if delivery_method not in DELIVERY_METHODS:
        raise ValidationFailed("Unsupported delivery method", fields=["delivery_method"])
    try:
        delivery_price = float(data.get("delivery_price") or 0.0)
    except (TypeError, ValueError):
        raise ValidationFailed("Delivery price must be a number", fields=["delivery_price"])
    if delivery_price < 0:
        raise ValidationFailed("Delivery price cannot be negative", fields=["delivery_price"])

    reference = str(data.get("payment_reference")).strip()
    if _reference_in_use(reference):
        raise ValidationFailed("Payment reference already used", fields=["payment_reference"])

    total = _round(sum(i["price"] for i in cleaned) + delivery_price)
    with gateways.upstream("paystack"):
        verification = gateways.payments_provider().verify(reference)
    if verification.status != "success":
        raise ValidationFailed("Payment has not been completed", fields=["payment_reference"])
    if (verification.metadata or {}).get("purpose") == RESCHEDULE_FEE_PURPOSE:
        raise ValidationFailed("Reschedule fee payments cannot pay for an order", fields=["payment_reference"])
    if verification.amount and verification.amount + 0.005 < total:
        raise ValidationFailed("Payment amount does not cover the order total", fields=["payment_reference"])

    order = Order(
        buyer_id=int(actor.user_id),
        seller_id=seller_id,
        delivery_method=delivery_method,
        delivery_price=_round(delivery_price),
        total_amount=total,
        currency=str(data.get("currency") or "ZAR").strip().upper(),
        payment_reference=reference,
        status=OrderStatus.PENDING_COMMIT.value,
        delivery_status=DeliveryStatus.PENDING.value,
        created_at=now,
        paid_at=now,
        updated_at=now,
        expires_at=now + COMMIT_WINDOW,
    )
    order.set_items(cleaned)
    with transaction():
        db.session.add(order)
        db.session.flush()
        db.session.add(
            OrderEvent(
                order_id=order.id,
                from_status="",
                to_status=order.status,
                actor_type=actor.actor_type,
                actor_id=actor.user_id,
                reason="checkout",
                created_at=now,
            )
        )
        notify_user(
            seller_id,
            kind="order_awaiting_commit",
            title="New order awaiting your commitment",
            message=(
                f"You have a new order for {order.book_titles() or 'your book'}. "
                f"Commit within {COMMIT_WINDOW_HOURS} hours or it will be cancelled and refunded."
            ),
            order_id=order.id,
            meta={"expires_at": order.expires_at.isoformat()},
        )
    logger.info("order_created order_id=%s buyer_id=%s seller_id=%s total=%.2f", order.id, order.buyer_id, seller_id, total)
    return order


def commit_order(
    actor,
    order_id,
    *,
    seller_id=None,
    delivery_method: str | None = None,
    locker_id: str | None = None,
    now: datetime | None = None,
) -> Order:
    """Seller commits to the sale.

    The status claim happens first; a locker shipment is booked while the
    claim is held, and a courier failure rolls the claim back so the order is
    left exactly as it was.
    """
    now = now or _now()
    order = load_order(order_id)
    _as_seller(actor, order)
    if seller_id is not None and str(seller_id) != str(order.seller_id):
        raise NotFound("Order not found")

    method = str(delivery_method or order.delivery_method or "home").strip().lower()
    if method not in DELIVERY_METHODS:
        raise ValidationFailed("Unsupported delivery method", fields=["delivery_method"])
    locker_id = (locker_id or "").strip() or None
    if method == "locker" and not locker_id:
        raise ValidationFailed("Locker ID is required for locker delivery", fields=["locker_id"])
    if order.status == OrderStatus.PENDING_COMMIT.value and order.expires_at and now >= order.expires_at:
        raise StateConflict(
            "Commit window has closed",
            current_status=order.status,
            expected=[OrderStatus.PENDING_COMMIT.value],
        )

    payment_days = LOCKER_PAYMENT_DAYS if method == "locker" else HOME_PAYMENT_DAYS
    with transaction():
        transition_order(
            order,
            OrderStatus.COMMITTED,
            actor=actor,
            from_statuses=[OrderStatus.PENDING_COMMIT],
            values={
                "delivery_method": method,
                "locker_id": locker_id,
                "committed_at": now,
                "estimated_payment_date": now + timedelta(days=payment_days),
            },
            metadata={"delivery_method": method, "locker_id": locker_id},
            now=now,
        )

        shipment = None
        if method == "locker":
            with gateways.upstream("courier"):
                shipment = gateways.courier_provider().create_locker_shipment(
                    reference=f"order-{order.id}",
                    locker_id=locker_id,
                    sender=_party(order.seller_id),
                    receiver=_party(order.buyer_id),
                )
            order.tracking_number = shipment.tracking_number
            order.courier_reference = shipment.shipment_id or None
            order.qr_code_url = shipment.qr_code_url or None
            order.waybill_url = shipment.waybill_url or None

        if shipment is not None:
            message = (
                f"Your order for {order.book_titles() or 'your book'} has been committed with locker delivery. "
                f"Tracking: {shipment.tracking_number}"
            )
        else:
            message = f"Your order for {order.book_titles() or 'your book'} has been committed. The seller will arrange delivery."
        notify_user(
            order.buyer_id,
            kind="order_committed",
            title="Order committed",
            message=message,
            order_id=order.id,
            meta={
                "delivery_method": method,
                "tracking_number": order.tracking_number,
                "qr_code_url": order.qr_code_url,
            },
        )
    logger.info("order_committed order_id=%s method=%s tracking=%s", order.id, method, order.tracking_number or "")
    return order


def decline_order(actor, order_id, *, reason: str | None = None, now: datetime | None = None) -> Order:
    now = now or _now()
    order = load_order(order_id)
    _as_seller(actor, order)
    reason = (reason or "").strip() or DEFAULT_DECLINE_REASON

    with transaction():
        transition_order(
            order,
            OrderStatus.DECLINED_BY_SELLER,
            actor=actor,
            from_statuses=[OrderStatus.PENDING_COMMIT],
            values={"declined_at": now, "status_reason": reason},
            reason=reason,
            now=now,
        )
        refund = issue_refund(order, reason=reason, now=now)
        notify_user(
            order.buyer_id,
            kind="order_declined",
            title="Order declined",
            message=f"The seller declined your order. Reason: {reason}. A refund of {refund.currency} {refund.amount:.2f} has been issued.",
            order_id=order.id,
            meta={"reason": reason, "refund_amount": refund.amount},
        )
    logger.info("order_declined order_id=%s", order.id)
    return order


def cancel_by_buyer(actor, order_id, *, reason: str | None = None, now: datetime | None = None) -> Order:
    now = now or _now()
    order = load_order(order_id)
    _as_buyer(actor, order)
    reason = (reason or "").strip() or DEFAULT_BUYER_CANCEL_REASON
    shipped = [s.value for s in SHIPPED_DELIVERY_STATUSES]
    if order.delivery_status in shipped:
        raise StateConflict(
            f"Order can no longer be cancelled: parcel is {order.delivery_status}",
            current_status=order.status,
        )

    with transaction():
        transition_order(
            order,
            OrderStatus.CANCELLED_BY_BUYER,
            actor=actor,
            from_statuses=[OrderStatus.PENDING_COMMIT, OrderStatus.COMMITTED],
            where=(Order.delivery_status.notin_(shipped),),
            values={"cancelled_at": now, "status_reason": reason},
            reason=reason,
            now=now,
        )
        refund = issue_refund(order, reason=reason, now=now)
        notify_user(
            order.seller_id,
            kind="order_cancelled",
            title="Order cancelled by buyer",
            message=f"The buyer cancelled the order for {order.book_titles() or 'your book'}.",
            order_id=order.id,
            meta={"reason": reason},
        )
        notify_user(
            order.buyer_id,
            kind="order_refunded",
            title="Order cancelled",
            message=f"Your order has been cancelled and {refund.currency} {refund.amount:.2f} refunded.",
            order_id=order.id,
            meta={"refund_amount": refund.amount},
        )
    logger.info("order_cancelled_by_buyer order_id=%s", order.id)
    return order


def cancel_after_missed_pickup(actor, order_id, *, reason: str | None = None, now: datetime | None = None) -> Order:
    now = now or _now()
    order = load_order(order_id)
    _as_seller(actor, order)
    reason = (reason or "").strip() or DEFAULT_MISSED_PICKUP_REASON
    if order.delivery_status != DeliveryStatus.PICKUP_FAILED.value:
        raise StateConflict(
            "Only orders with a failed pickup can be cancelled this way",
            current_status=order.status,
        )

    with transaction():
        transition_order(
            order,
            OrderStatus.CANCELLED_AFTER_MISSED_PICKUP,
            actor=actor,
            from_statuses=[OrderStatus.COMMITTED],
            where=(Order.delivery_status == DeliveryStatus.PICKUP_FAILED.value,),
            values={"cancelled_at": now, "status_reason": reason},
            reason=reason,
            now=now,
        )
        refund = issue_refund(order, reason=reason, now=now)
        notify_user(
            order.buyer_id,
            kind="order_cancelled",
            title="Order cancelled",
            message=(
                f"The seller missed the courier pickup and cancelled your order. "
                f"A refund of {refund.currency} {refund.amount:.2f} has been issued."
            ),
            order_id=order.id,
            meta={"reason": reason, "refund_amount": refund.amount},
        )
    logger.info("order_cancelled_after_missed_pickup order_id=%s", order.id)
    return order


def mark_collected(actor, order_id, *, tracking_number: str | None = None, now: datetime | None = None) -> Order:
    """Courier has the parcel: committed -> collected, delivery -> picked_up."""
    now = now or _now()
    order = load_order(order_id)
    if actor is None or not actor.is_admin:
        _as_seller(actor, order)
    values = {"collected_at": now}
    tracking_number = (tracking_number or "").strip()
    if tracking_number:
        values["tracking_number"] = tracking_number

    with transaction():
        transition_order(
            order,
            OrderStatus.COLLECTED,
            actor=actor,
            from_statuses=[OrderStatus.COMMITTED],
            values=values,
            now=now,
        )
        transition_delivery(
            order,
            DeliveryStatus.PICKED_UP,
            actor=actor,
            from_statuses=[DeliveryStatus.PENDING, DeliveryStatus.RESCHEDULED_BY_SELLER],
            now=now,
        )
        meta = {"tracking_number": order.tracking_number}
        notify_user(
            order.buyer_id,
            kind="order_collected",
            title="Your book is on its way",
            message=f"The courier has collected your order. Tracking: {order.tracking_number or 'N/A'}",
            order_id=order.id,
            meta=meta,
        )
        notify_user(
            order.seller_id,
            kind="order_collected",
            title="Parcel collected",
            message="The courier has collected the parcel. Payment follows once it is delivered.",
            order_id=order.id,
            meta=meta,
        )
    logger.info("order_collected order_id=%s", order.id)
    return order


def update_delivery_status(actor, order_id, target: str, *, note: str = "", now: datetime | None = None) -> Order:
    """Advance the delivery sub-state from a courier event.

    ``picked_up`` also moves a committed order to collected, and ``delivered``
    moves a collected order to delivered.
    """
    now = now or _now()
    if actor is None or not actor.is_admin:
        raise Forbidden("Only admins can update delivery status")
    try:
        target = DeliveryStatus(str(target or "").strip().lower())
    except ValueError:
        raise ValidationFailed("Unknown delivery status", fields=["delivery_status"])
    order = load_order(order_id)
    if order.status not in (OrderStatus.COMMITTED.value, OrderStatus.COLLECTED.value):
        raise StateConflict(
            "Delivery can only change on committed or collected orders",
            current_status=order.status,
            expected=[OrderStatus.COMMITTED.value, OrderStatus.COLLECTED.value],
        )
    if order.delivery_status == target.value:
        return order
    if target not in DELIVERY_TRANSITIONS[DeliveryStatus(order.delivery_status)]:
        raise StateConflict(
            f"Delivery cannot move to {target.value} from {order.delivery_status}",
            current_status=order.delivery_status,
        )

    with transaction():
        if target == DeliveryStatus.PICKED_UP and order.status == OrderStatus.COMMITTED.value:
            transition_order(
                order,
                OrderStatus.COLLECTED,
                actor=actor,
                from_statuses=[OrderStatus.COMMITTED],
                values={"collected_at": now},
                reason=note,
                now=now,
            )
        transition_delivery(order, target, actor=actor, reason=note, now=now)
        if target == DeliveryStatus.DELIVERED:
            transition_order(
                order,
                OrderStatus.DELIVERED,
                actor=actor,
                from_statuses=[OrderStatus.COLLECTED],
                values={"delivered_at": now},
                reason=note,
                now=now,
            )
            notify_user(
                order.buyer_id,
                kind="order_delivered",
                title="Order delivered",
                message=f"Your order for {order.book_titles() or 'your book'} has been delivered.",
                order_id=order.id,
            )
            notify_user(
                order.seller_id,
                kind="order_delivered",
                title="Order delivered",
                message="Your parcel was delivered. Your payout will be processed shortly.",
                order_id=order.id,
                meta={"estimated_payment_date": order.estimated_payment_date.isoformat() if order.estimated_payment_date else None},
            )
        elif target == DeliveryStatus.PICKUP_FAILED:
            settings = get_settings()
            notify_user(
                order.seller_id,
                kind="pickup_failed",
                title="Courier pickup missed",
                message=(
                    "The courier could not collect your parcel. Reschedule the pickup "
                    f"(fee {order.currency or 'ZAR'} {settings.reschedule_fee:.2f}) or cancel the order."
                ),
                order_id=order.id,
                meta={"reschedule_fee": settings.reschedule_fee},
            )
    logger.info("delivery_status_updated order_id=%s delivery_status=%s", order.id, target.value)
    return order


def available_pickup_times(now: datetime) -> list[str]:
    """Upcoming weekday pickup windows, starting tomorrow."""
    slots = []
    day = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    while len(slots) < PICKUP_DAYS_AHEAD * len(PICKUP_WINDOW_HOURS):
        if day.weekday() < 5:
            for hour in PICKUP_WINDOW_HOURS:
                slots.append(day.replace(hour=hour).strftime("%Y-%m-%dT%H:%M"))
        day += timedelta(days=1)
    return slots


def _require_missed_pickup(order: Order) -> None:
    if order.status != OrderStatus.COMMITTED.value or order.delivery_status != DeliveryStatus.PICKUP_FAILED.value:
        raise StateConflict(
            "Reschedule is only available after a missed pickup",
            current_status=order.status,
            expected=[OrderStatus.COMMITTED.value],
        )


def get_reschedule_quote(actor, order_id, *, now: datetime | None = None) -> dict:
    now = now or _now()
    order = load_order(order_id)
    _as_seller(actor, order)
    _require_missed_pickup(order)
    settings = get_settings()
    return {
        "order_id": int(order.id),
        "reschedule_fee": _round(settings.reschedule_fee),
        "currency": order.currency or "ZAR",
        "available_times": available_pickup_times(now),
    }


def start_reschedule_payment(actor, order_id) -> dict:
    """Open a Paystack charge for the reschedule fee, tagged with this order."""
    order = load_order(order_id)
    _as_seller(actor, order)
    _require_missed_pickup(order)
    seller = db.session.get(User, int(order.seller_id))
    fee = _round(get_settings().reschedule_fee)
    reference = f"resched_{int(order.id)}_{uuid.uuid4().hex[:12]}"
    with gateways.upstream("paystack"):
        result = gateways.payments_provider().initialize(
            amount=fee,
            email=seller.email,
            reference=reference,
            currency=order.currency or "ZAR",
            metadata={
                "purpose": RESCHEDULE_FEE_PURPOSE,
                "order_id": int(order.id),
                "user_id": int(order.seller_id),
            },
        )
    logger.info("reschedule_payment_started order_id=%s reference=%s", order.id, result.reference)
    return {
        "order_id": int(order.id),
        "reschedule_fee": fee,
        "currency": order.currency or "ZAR",
        "authorization_url": result.authorization_url,
        "access_code": result.access_code,
        "reference": result.reference,
    }


def confirm_reschedule(
    actor,
    order_id,
    *,
    pickup_slot: str,
    payment_reference: str,
    now: datetime | None = None,
) -> Order:
    now = now or _now()
    order = load_order(order_id)
    _as_seller(actor, order)
    _require_missed_pickup(order)

    pickup_slot = (pickup_slot or "").strip()
    payment_reference = (payment_reference or "").strip()
    require_fields({"pickup_slot": pickup_slot, "payment_reference": payment_reference}, ["pickup_slot", "payment_reference"])
    if pickup_slot not in available_pickup_times(now):
        raise ValidationFailed("Pickup slot is not available", fields=["pickup_slot"])

    if _reference_in_use(payment_reference):
        raise ValidationFailed("Payment reference already used", fields=["payment_reference"])

    fee = _round(get_settings().reschedule_fee)
    with gateways.upstream("paystack"):
        verification = gateways.payments_provider().verify(payment_reference)
    if verification.status != "success":
        raise ValidationFailed("Reschedule fee payment has not been completed", fields=["payment_reference"])
    meta = verification.metadata or {}
    if meta.get("purpose") != RESCHEDULE_FEE_PURPOSE or str(meta.get("order_id") or "") != str(order.id):
        raise ValidationFailed("Payment is not a reschedule fee for this order", fields=["payment_reference"])
    if verification.amount and verification.amount + 0.005 < fee:
        raise ValidationFailed("Reschedule fee payment is short", fields=["payment_reference"])

    with transaction():
        transition_delivery(
            order,
            DeliveryStatus.RESCHEDULED_BY_SELLER,
            actor=actor,
            from_statuses=[DeliveryStatus.PICKUP_FAILED],
            where=(Order.status == OrderStatus.COMMITTED.value,),
            values={
                "pickup_slot": pickup_slot,
                "reschedule_fee": fee,
                "reschedule_payment_reference": payment_reference,
                "rescheduled_at": now,
            },
            metadata={"pickup_slot": pickup_slot, "payment_reference": payment_reference},
            now=now,
        )
        notify_user(
            order.buyer_id,
            kind="pickup_rescheduled",
            title="Pickup rescheduled",
            message=f"The seller rescheduled the courier pickup for {pickup_slot.replace('T', ' ')}.",
            order_id=order.id,
            meta={"pickup_slot": pickup_slot},
        )
    logger.info("pickup_rescheduled order_id=%s slot=%s", order.id, pickup_slot)
    return order


def get_tracking(actor, order_id) -> dict:
    order = get_order(actor, order_id)
    if not order.tracking_number:
        raise NotFound("Order has no tracking number yet")
    with gateways.upstream("courier"):
        result = gateways.courier_provider().track(order.tracking_number)
    return {
        "order_id": int(order.id),
        "tracking_number": result.tracking_number,
        "courier_status": result.status,
        "delivery_status": result.delivery_status or order.delivery_status,
        "events": result.events,
    }
