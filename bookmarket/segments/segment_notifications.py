from __future__ import annotations

from flask import Blueprint, request

from bookmarket.errors import NotFound
from bookmarket.extensions import db
from bookmarket.models import Notification
from bookmarket.utils.auth import resolve_actor
from bookmarket.utils.responses import ok, unauthorized

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")


@notifications_bp.get("/notifications")
def list_notifications():
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    query = Notification.query.filter_by(user_id=actor.user_id)
    if (request.args.get("unread") or "").strip().lower() in ("1", "true", "yes"):
        query = query.filter(Notification.read_at.is_(None))
    rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(80).all()
    return ok({"items": [x.to_dict() for x in rows]})


@notifications_bp.post("/notifications/<int:notification_id>/read")
def mark_notification_read(notification_id: int):
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    row = Notification.query.filter_by(id=notification_id, user_id=actor.user_id).first()
    if row is None:
        raise NotFound("Notification not found")
    try:
        row.mark_read()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return ok(row.to_dict())
