"""Order state machine.

Every status change goes through :func:`transition_order` or
:func:`transition_delivery`. Both issue a single conditional UPDATE guarded by
the expected source status, so two requests racing on the same order cannot
both win: the loser sees zero affected rows and gets a ``StateConflict``.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum

from sqlalchemy import update

from bookmarket.errors import StateConflict
from bookmarket.extensions import db
from bookmarket.models import Order, OrderEvent


class OrderStatus(str, Enum):
    PENDING_COMMIT = "pending_commit"
    COMMITTED = "committed"
    DECLINED_BY_SELLER = "declined_by_seller"
    CANCELLED_BY_BUYER = "cancelled_by_buyer"
    CANCELLED_AFTER_MISSED_PICKUP = "cancelled_by_seller_after_missed_pickup"
    EXPIRED = "expired"
    COLLECTED = "collected"
    DELIVERED = "delivered"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    PICKUP_FAILED = "pickup_failed"
    RESCHEDULED_BY_SELLER = "rescheduled_by_seller"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_COMMIT: frozenset(
        {
            OrderStatus.COMMITTED,
            OrderStatus.DECLINED_BY_SELLER,
            OrderStatus.CANCELLED_BY_BUYER,
            OrderStatus.EXPIRED,
        }
    ),
    OrderStatus.COMMITTED: frozenset(
        {
            OrderStatus.COLLECTED,
            OrderStatus.CANCELLED_BY_BUYER,
            OrderStatus.CANCELLED_AFTER_MISSED_PICKUP,
        }
    ),
    OrderStatus.COLLECTED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DECLINED_BY_SELLER: frozenset(),
    OrderStatus.CANCELLED_BY_BUYER: frozenset(),
    OrderStatus.CANCELLED_AFTER_MISSED_PICKUP: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
    OrderStatus.DELIVERED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)

# Statuses whose entry refunds the buyer in full.
REFUNDING_STATUSES = frozenset(
    {
        OrderStatus.DECLINED_BY_SELLER,
        OrderStatus.CANCELLED_BY_BUYER,
        OrderStatus.CANCELLED_AFTER_MISSED_PICKUP,
        OrderStatus.EXPIRED,
    }
)

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.PICKED_UP, DeliveryStatus.PICKUP_FAILED}),
    DeliveryStatus.PICKUP_FAILED: frozenset({DeliveryStatus.RESCHEDULED_BY_SELLER}),
    DeliveryStatus.RESCHEDULED_BY_SELLER: frozenset({DeliveryStatus.PICKED_UP, DeliveryStatus.PICKUP_FAILED}),
    DeliveryStatus.PICKED_UP: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED}),
    DeliveryStatus.IN_TRANSIT: frozenset({DeliveryStatus.DELIVERED}),
    DeliveryStatus.DELIVERED: frozenset(),
}

# Once the parcel has left the seller the buyer can no longer cancel.
SHIPPED_DELIVERY_STATUSES = frozenset(
    {DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED}
)


def can_transition(current, target) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def sources_for(target) -> frozenset[OrderStatus]:
    target = OrderStatus(target)
    return frozenset(s for s, targets in ORDER_TRANSITIONS.items() if target in targets)


def is_terminal(status) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def _actor_fields(actor) -> tuple[str, int | None]:
    if actor is None:
        return "system", None
    return (getattr(actor, "actor_type", None) or "system")[:32], getattr(actor, "user_id", None)


def _resolve_sources(target, from_statuses, table) -> list:
    allowed = frozenset(s for s, targets in table.items() if target in targets)
    if from_statuses is None:
        sources = allowed
    else:
        sources = frozenset(type(target)(s) for s in from_statuses)
        illegal = sources - allowed
        if illegal:
            names = ", ".join(sorted(s.value for s in illegal))
            raise ValueError(f"illegal_transition {names}->{target.value}")
    if not sources:
        raise ValueError(f"illegal_transition (none)->{target.value}")
    return sorted(sources, key=lambda s: s.value)


def _record_event(order_id: int, *, field: str, from_status: str, to_status: str, actor, reason: str, metadata: dict | None, now: datetime) -> None:
    actor_type, actor_id = _actor_fields(actor)
    db.session.add(
        OrderEvent(
            order_id=int(order_id),
            field=field,
            from_status=from_status,
            to_status=to_status,
            actor_type=actor_type,
            actor_id=actor_id,
            reason=(reason or "")[:400] or None,
            metadata_json=json.dumps(metadata or {}, default=str)[:4000],
            created_at=now,
        )
    )


def transition_order(
    order: Order,
    target,
    *,
    actor=None,
    from_statuses=None,
    values: dict | None = None,
    where=(),
    reason: str = "",
    metadata: dict | None = None,
    now: datetime | None = None,
) -> Order:
    """Move ``order`` to ``target`` with a conditional update.

    ``from_statuses`` narrows the accepted source statuses; every one of them
    must be a legal edge into ``target`` or ``ValueError`` is raised. ``where``
    adds extra guard clauses evaluated in the same statement. Nothing is
    committed; the caller owns the transaction.
    """
    target = OrderStatus(target)
    sources = _resolve_sources(target, from_statuses, ORDER_TRANSITIONS)
    now = now or datetime.utcnow()
    changes = dict(values or {})
    changes["status"] = target.value
    changes["updated_at"] = now

    matched = None
    for source in sources:
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status == source.value, *where)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 1:
            matched = source
            break

    db.session.refresh(order)
    if matched is None:
        raise StateConflict(
            f"Order cannot move to {target.value} from {order.status}",
            current_status=order.status,
            expected=[s.value for s in sources],
        )

    _record_event(
        order.id,
        field="status",
        from_status=matched.value,
        to_status=target.value,
        actor=actor,
        reason=reason,
        metadata=metadata,
        now=now,
    )
    return order


def transition_delivery(
    order: Order,
    target,
    *,
    actor=None,
    from_statuses=None,
    values: dict | None = None,
    where=(),
    reason: str = "",
    metadata: dict | None = None,
    now: datetime | None = None,
) -> Order:
    """Same contract as :func:`transition_order`, for the delivery sub-state."""
    target = DeliveryStatus(target)
    sources = _resolve_sources(target, from_statuses, DELIVERY_TRANSITIONS)
    now = now or datetime.utcnow()
    changes = dict(values or {})
    changes["delivery_status"] = target.value
    changes["updated_at"] = now

    matched = None
    for source in sources:
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.delivery_status == source.value, *where)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 1:
            matched = source
            break

    db.session.refresh(order)
    if matched is None:
        raise StateConflict(
            f"Delivery cannot move to {target.value} from {order.delivery_status}",
            current_status=order.delivery_status,
            expected=[s.value for s in sources],
        )

    _record_event(
        order.id,
        field="delivery_status",
        from_status=matched.value,
        to_status=target.value,
        actor=actor,
        reason=reason,
        metadata=metadata,
        now=now,
    )
    return order


def claim_settlement(order: Order, outcome: str) -> bool:
    """Flip ``settlement`` from ``none`` to ``outcome``. False if already settled."""
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.settlement == "none")
        .values(settlement=outcome)
        .execution_options(synchronize_session=False)
    )
    claimed = db.session.execute(stmt).rowcount == 1
    db.session.refresh(order)
    return claimed
