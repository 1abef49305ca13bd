from __future__ import annotations

import logging
from datetime import datetime

from bookmarket.errors import OrderFlowError
from bookmarket.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from bookmarket.models import Order
from bookmarket.services import gateways
from bookmarket.services.order_lifecycle import DELIVERY_TRANSITIONS, DeliveryStatus, OrderStatus
from bookmarket.services.order_service import update_delivery_status
from bookmarket.utils.auth import Actor
from bookmarket.utils.job_runs import record_job_run

logger = logging.getLogger(__name__)


def _now():
    return datetime.utcnow()


def _awaiting_rescheduled_pickup(current: str, pickup_slot: str | None, now: datetime) -> bool:
    # The courier keeps reporting the earlier failure until the new slot comes round.
    if current != DeliveryStatus.RESCHEDULED_BY_SELLER.value or not pickup_slot:
        return False
    try:
        slot = datetime.strptime(pickup_slot, "%Y-%m-%dT%H:%M")
    except ValueError:
        return False
    return now < slot


def run_tracking_sync(*, now: datetime | None = None, limit: int = 200) -> dict:
    """Poll the courier for committed and collected orders and apply delivery progress.

    Committed orders with a tracking number are locker shipments waiting for
    the courier, so a missed pickup shows up here as ``pickup_failed``.
    """
    started_at = _now()
    now = now or started_at
    processed = 0
    updated = 0
    skipped = 0
    errors = 0

    try:
        courier = gateways.courier_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        record_job_run(job_name="tracking_sync", ok=False, started_at=started_at, error=str(e))
        return {"ok": False, "disabled": True, "processed": 0, "updated": 0, "skipped": 0, "errors": 0, "ts": _now().isoformat()}

    rows = (
        Order.query.filter(
            Order.status.in_((OrderStatus.COMMITTED.value, OrderStatus.COLLECTED.value)),
            Order.tracking_number.isnot(None),
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    pending = [(int(o.id), o.tracking_number, o.delivery_status, o.pickup_slot) for o in rows]

    actor = Actor.system()
    for oid, tracking_number, current, pickup_slot in pending:
        processed += 1
        try:
            result = courier.track(tracking_number)
        except Exception as e:
            errors += 1
            logger.warning("tracking_lookup_failed order_id=%s err=%s", oid, e)
            continue
        target = result.delivery_status
        if not target or target == current or DeliveryStatus(target) not in DELIVERY_TRANSITIONS[DeliveryStatus(current)]:
            skipped += 1
            continue
        if target == DeliveryStatus.PICKUP_FAILED.value and _awaiting_rescheduled_pickup(current, pickup_slot, now):
            skipped += 1
            continue
        try:
            update_delivery_status(actor, oid, target, note=f"courier:{result.status}", now=now)
            updated += 1
        except OrderFlowError as e:
            skipped += 1
            logger.info("tracking_update_skipped order_id=%s reason=%s", oid, e.message)
        except Exception as e:
            errors += 1
            logger.warning("tracking_update_failed order_id=%s err=%s", oid, e)

    result = {
        "ok": errors == 0,
        "processed": processed,
        "updated": updated,
        "skipped": skipped,
        "errors": errors,
        "ts": _now().isoformat(),
    }
    record_job_run(
        job_name="tracking_sync",
        ok=errors == 0,
        started_at=started_at,
        processed=processed,
        failed=errors,
        summary=result,
        error=None if errors == 0 else f"errors={errors}",
    )
    return result
