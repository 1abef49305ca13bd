from __future__ import annotations

import json
import logging

from bookmarket.extensions import db
from bookmarket.models import Notification

logger = logging.getLogger(__name__)


def notify_user(
    user_id: int,
    *,
    kind: str,
    title: str,
    message: str,
    order_id: int | None = None,
    meta: dict | None = None,
) -> Notification:
    """Queue an in-app notification in the caller's transaction.

    Nothing is committed here: the row lands or rolls back together with the
    state change that produced it.
    """
    payload = dict(meta or {})
    if order_id is not None:
        payload.setdefault("order_id", int(order_id))
    row = Notification(
        user_id=int(user_id),
        kind=(kind or "general")[:48],
        title=(title or "")[:160],
        message=message or "",
        order_id=int(order_id) if order_id is not None else None,
        meta=json.dumps(payload, default=str),
    )
    db.session.add(row)
    logger.debug("notification_queued user_id=%s kind=%s order_id=%s", user_id, kind, order_id)
    return row
