from __future__ import annotations

import unittest
from datetime import timedelta

from bookmarket.errors import StateConflict, UpstreamFailed
from bookmarket.models import Notification, Refund
from bookmarket.services.order_service import (
    DEFAULT_DECLINE_REASON,
    cancel_after_missed_pickup,
    cancel_by_buyer,
    decline_order,
)
from flow_base import OrderFlowTestCase


class DeclineOrderTestCase(OrderFlowTestCase):
    def test_decline_refunds_full_total(self):
        order = self.make_order()
        decline_order(self.actor(self.seller), order.id, reason="Book damaged", now=self.t0 + timedelta(hours=2))

        order = self.reload(order)
        self.assertEqual(order.status, "declined_by_seller")
        self.assertEqual(order.status_reason, "Book damaged")
        self.assertEqual(order.settlement, "refunded")
        self.payments.refund.assert_called_once_with(
            transaction_reference=order.payment_reference,
            amount=250.0,
            reason="Book damaged",
        )
        refund = Refund.query.filter_by(order_id=order.id).one()
        self.assertEqual(refund.amount, 250.0)
        self.assertEqual(refund.provider_ref, "rf_1001")

        note = Notification.query.filter_by(user_id=self.buyer.id, kind="order_declined").one()
        self.assertIn("Book damaged", note.message)

    def test_decline_uses_default_reason(self):
        order = self.make_order()
        decline_order(self.actor(self.seller), order.id, now=self.t0)
        self.assertEqual(self.reload(order).status_reason, DEFAULT_DECLINE_REASON)

    def test_refund_failure_keeps_order_pending(self):
        order = self.make_order()
        self.payments.refund.side_effect = RuntimeError("PAYSTACK_REFUND_FAILED:Transaction not found")
        with self.assertRaises(UpstreamFailed) as ctx:
            decline_order(self.actor(self.seller), order.id, now=self.t0)
        self.assertEqual(ctx.exception.service, "paystack")

        order = self.reload(order)
        self.assertEqual(order.status, "pending_commit")
        self.assertEqual(order.settlement, "none")
        self.assertEqual(Refund.query.count(), 0)
        self.assertEqual(Notification.query.count(), 0)

    def test_committed_order_cannot_be_declined(self):
        order = self.make_order(status="committed")
        with self.assertRaises(StateConflict):
            decline_order(self.actor(self.seller), order.id, now=self.t0)
        self.payments.refund.assert_not_called()


class CancelByBuyerTestCase(OrderFlowTestCase):
    def test_cancel_committed_order_before_pickup(self):
        order = self.make_order(status="committed")
        cancel_by_buyer(self.actor(self.buyer), order.id, reason="Found it cheaper", now=self.t0)

        order = self.reload(order)
        self.assertEqual(order.status, "cancelled_by_buyer")
        self.assertIsNotNone(order.cancelled_at)
        self.assertEqual(Refund.query.filter_by(order_id=order.id).count(), 1)
        self.assertEqual(Notification.query.filter_by(user_id=self.seller.id, kind="order_cancelled").count(), 1)
        self.assertEqual(Notification.query.filter_by(user_id=self.buyer.id, kind="order_refunded").count(), 1)

    def test_cancel_pending_order(self):
        order = self.make_order()
        cancel_by_buyer(self.actor(self.buyer), order.id, now=self.t0)
        self.assertEqual(self.reload(order).status, "cancelled_by_buyer")

    def test_cannot_cancel_shipped_order(self):
        order = self.make_order(status="collected", delivery_status="in_transit")
        with self.assertRaises(StateConflict):
            cancel_by_buyer(self.actor(self.buyer), order.id, now=self.t0)
        self.payments.refund.assert_not_called()

    def test_cannot_cancel_delivered_order(self):
        order = self.make_order(status="delivered", delivery_status="delivered")
        with self.assertRaises(StateConflict):
            cancel_by_buyer(self.actor(self.buyer), order.id, now=self.t0)
        self.payments.refund.assert_not_called()
        self.assertEqual(self.reload(order).status, "delivered")
        self.assertEqual(Refund.query.count(), 0)

    def test_cancelled_order_is_refunded_once(self):
        order = self.make_order()
        cancel_by_buyer(self.actor(self.buyer), order.id, now=self.t0)
        with self.assertRaises(StateConflict):
            cancel_by_buyer(self.actor(self.buyer), order.id, now=self.t0)
        self.assertEqual(self.payments.refund.call_count, 1)


class MissedPickupCancelTestCase(OrderFlowTestCase):
    def test_cancel_after_missed_pickup(self):
        order = self.make_order(status="committed", delivery_status="pickup_failed")
        cancel_after_missed_pickup(self.actor(self.seller), order.id, now=self.t0)

        order = self.reload(order)
        self.assertEqual(order.status, "cancelled_by_seller_after_missed_pickup")
        self.assertEqual(order.settlement, "refunded")
        self.assertEqual(Notification.query.filter_by(user_id=self.buyer.id, kind="order_cancelled").count(), 1)

    def test_requires_a_failed_pickup(self):
        order = self.make_order(status="committed")
        with self.assertRaises(StateConflict):
            cancel_after_missed_pickup(self.actor(self.seller), order.id, now=self.t0)
        self.payments.refund.assert_not_called()


if __name__ == "__main__":
    unittest.main()
