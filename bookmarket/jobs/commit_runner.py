from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import update

from bookmarket.errors import StateConflict
from bookmarket.extensions import db
from bookmarket.models import Order
from bookmarket.services.order_lifecycle import OrderStatus, transition_order
from bookmarket.services.order_service import COMMIT_WINDOW_HOURS, transaction
from bookmarket.services.refund_service import issue_refund
from bookmarket.utils.auth import Actor
from bookmarket.utils.job_runs import record_job_run
from bookmarket.utils.notify import notify_user

logger = logging.getLogger(__name__)

EXPIRY_REASON = f"Order expired - seller did not commit within {COMMIT_WINDOW_HOURS} hours"
REMINDER_AFTER = timedelta(hours=24)
URGENT_WITHIN = timedelta(hours=12)


def _now():
    return datetime.utcnow()


def _expire_one(order: Order, now: datetime) -> None:
    with transaction():
        transition_order(
            order,
            OrderStatus.EXPIRED,
            actor=Actor.system(),
            from_statuses=[OrderStatus.PENDING_COMMIT],
            where=(Order.expires_at < now,),
            values={"expired_at": now, "status_reason": EXPIRY_REASON},
            reason=EXPIRY_REASON,
            now=now,
        )
        refund = issue_refund(order, reason=EXPIRY_REASON, now=now)
        notify_user(
            order.buyer_id,
            kind="order_expired",
            title="Order expired",
            message=(
                f"The seller did not commit to your order in time. "
                f"A full refund of {refund.currency} {refund.amount:.2f} has been issued."
            ),
            order_id=order.id,
            meta={"refund_amount": refund.amount},
        )
        notify_user(
            order.seller_id,
            kind="order_expired",
            title="Order expired",
            message=f"You did not commit to this order within {COMMIT_WINDOW_HOURS} hours, so it was cancelled and the buyer refunded.",
            order_id=order.id,
        )


def run_commit_expiry(*, now: datetime | None = None, limit: int = 500) -> dict:
    """Expire and refund orders whose commit deadline has passed.

    Each order is handled in its own transaction; one failure is counted and
    rolled back without stopping the sweep. An order committed between the
    select and the update is skipped.
    """
    started_at = _now()
    now = now or started_at
    processed = 0
    expired = 0
    skipped = 0
    errors = 0
    failed_ids = []

    rows = (
        Order.query.filter(
            Order.status == OrderStatus.PENDING_COMMIT.value,
            Order.expires_at.isnot(None),
            Order.expires_at < now,
        )
        .order_by(Order.expires_at.asc(), Order.id.asc())
        .limit(int(limit))
        .all()
    )
    ids = [int(o.id) for o in rows]

    for oid in ids:
        processed += 1
        order = db.session.get(Order, oid)
        if order is None:
            skipped += 1
            continue
        try:
            _expire_one(order, now)
            expired += 1
        except StateConflict:
            skipped += 1
        except Exception as e:
            errors += 1
            failed_ids.append(oid)
            logger.warning("commit_expiry_failed order_id=%s err=%s", oid, e)

    result = {
        "ok": errors == 0,
        "processed": processed,
        "expired": expired,
        "skipped": skipped,
        "errors": errors,
        "ts": _now().isoformat(),
    }
    record_job_run(
        job_name="commit_expiry",
        ok=errors == 0,
        started_at=started_at,
        processed=processed,
        failed=errors,
        summary={**result, "failed_order_ids": failed_ids},
        error=None if errors == 0 else f"errors={errors}",
    )
    logger.info("commit_expiry_done processed=%s expired=%s skipped=%s errors=%s", processed, expired, skipped, errors)
    return result


def run_commit_reminders(*, now: datetime | None = None, limit: int = 500) -> dict:
    """Remind sellers once about orders that have waited more than 24 hours."""
    started_at = _now()
    now = now or started_at
    processed = 0
    reminded = 0
    errors = 0

    rows = (
        Order.query.filter(
            Order.status == OrderStatus.PENDING_COMMIT.value,
            Order.created_at <= now - REMINDER_AFTER,
            Order.expires_at > now,
            Order.reminder_sent_at.is_(None),
        )
        .order_by(Order.expires_at.asc(), Order.id.asc())
        .limit(int(limit))
        .all()
    )
    ids = [int(o.id) for o in rows]

    for oid in ids:
        processed += 1
        try:
            with transaction():
                claimed = db.session.execute(
                    update(Order)
                    .where(
                        Order.id == oid,
                        Order.status == OrderStatus.PENDING_COMMIT.value,
                        Order.reminder_sent_at.is_(None),
                    )
                    .values(reminder_sent_at=now)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if claimed != 1:
                    continue
                order = db.session.get(Order, oid)
                db.session.refresh(order)
                remaining = order.expires_at - now
                hours_left = max(0, int(remaining.total_seconds() // 3600))
                urgent = remaining <= URGENT_WITHIN
                notify_user(
                    order.seller_id,
                    kind="commit_reminder",
                    title=("URGENT: " if urgent else "") + "Commit to your order",
                    message=(
                        f"You have {hours_left} hours left to commit to the order for "
                        f"{order.book_titles() or 'your book'}. Uncommitted orders are cancelled and refunded."
                    ),
                    order_id=order.id,
                    meta={"hours_remaining": hours_left, "urgent": urgent},
                )
            reminded += 1
        except Exception as e:
            errors += 1
            logger.warning("commit_reminder_failed order_id=%s err=%s", oid, e)

    result = {
        "ok": errors == 0,
        "processed": processed,
        "reminded": reminded,
        "errors": errors,
        "ts": _now().isoformat(),
    }
    record_job_run(
        job_name="commit_reminders",
        ok=errors == 0,
        started_at=started_at,
        processed=processed,
        failed=errors,
        summary=result,
        error=None if errors == 0 else f"errors={errors}",
    )
    return result
