from __future__ import annotations

from flask import Blueprint, current_app, request

from bookmarket.extensions import db
from bookmarket.services import order_service
from bookmarket.utils.auth import resolve_actor
from bookmarket.utils.responses import ok, unauthorized

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")

_INIT_DONE = False


@orders_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    if current_app.config.get("BOOKMARKET_ENV") not in ("prod", "production"):
        try:
            db.create_all()
        except Exception as e:
            current_app.logger.warning("create_all_failed err=%s", e)
    _INIT_DONE = True


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@orders_bp.post("")
def create_order():
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    order = order_service.create_order(actor, _body())
    return ok(order.to_dict(), 201)


@orders_bp.get("/<int:order_id>")
def get_order(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    return ok(order_service.get_order(actor, order_id).to_dict())


@orders_bp.post("/<int:order_id>/commit")
def commit_order(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    data = _body()
    order = order_service.commit_order(
        actor,
        order_id,
        seller_id=data.get("seller_id"),
        delivery_method=data.get("delivery_method"),
        locker_id=data.get("locker_id"),
    )
    return ok(order.to_dict())


@orders_bp.post("/<int:order_id>/decline")
def decline_order(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    order = order_service.decline_order(actor, order_id, reason=_body().get("reason"))
    return ok(order.to_dict())


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    order = order_service.cancel_by_buyer(actor, order_id, reason=_body().get("reason"))
    return ok(order.to_dict())


@orders_bp.post("/<int:order_id>/cancel-missed-pickup")
def cancel_missed_pickup(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    order = order_service.cancel_after_missed_pickup(actor, order_id, reason=_body().get("reason"))
    return ok(order.to_dict())


@orders_bp.post("/<int:order_id>/collected")
def mark_collected(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    order = order_service.mark_collected(actor, order_id, tracking_number=_body().get("tracking_number"))
    return ok(order.to_dict())


@orders_bp.post("/<int:order_id>/delivery-status")
def update_delivery_status(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    data = _body()
    order = order_service.update_delivery_status(
        actor,
        order_id,
        data.get("delivery_status") or "",
        note=str(data.get("note") or ""),
    )
    return ok(order.to_dict())


@orders_bp.get("/<int:order_id>/reschedule-quote")
def reschedule_quote(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    return ok(order_service.get_reschedule_quote(actor, order_id))


@orders_bp.post("/<int:order_id>/reschedule-payment")
def reschedule_payment(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    return ok(order_service.start_reschedule_payment(actor, order_id), 201)


@orders_bp.post("/<int:order_id>/reschedule")
def confirm_reschedule(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    data = _body()
    order = order_service.confirm_reschedule(
        actor,
        order_id,
        pickup_slot=str(data.get("pickup_slot") or ""),
        payment_reference=str(data.get("payment_reference") or ""),
    )
    return ok(order.to_dict())


@orders_bp.get("/<int:order_id>/tracking")
def tracking(order_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    return ok(order_service.get_tracking(actor, order_id))
