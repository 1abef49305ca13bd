from __future__ import annotations

import unittest
from datetime import timedelta

from sqlalchemy import update

from bookmarket.errors import NotFound, StateConflict, UpstreamFailed, ValidationFailed
from bookmarket.extensions import db
from bookmarket.integrations.payments.base import PaymentVerifyResult
from bookmarket.models import Notification, Order, OrderEvent
from bookmarket.services.order_service import commit_order, create_order, get_order
from flow_base import OrderFlowTestCase


class CreateOrderTestCase(OrderFlowTestCase):
    def _checkout(self, **overrides):
        data = {
            "items": [
                {"book_id": "bk-1", "title": "Organic Chemistry", "price": 320.0, "seller_id": self.seller.id},
                {"book_id": "bk-2", "title": "Linear Algebra", "price": 180.0, "seller_id": self.seller.id},
            ],
            "delivery_method": "locker",
            "delivery_price": 60.0,
            "payment_reference": "ps_ref_001",
        }
        data.update(overrides)
        return data

    def test_checkout_creates_pending_order_with_deadline(self):
        order = create_order(self.actor(self.buyer), self._checkout(), now=self.t0)
        self.assertEqual(order.status, "pending_commit")
        self.assertEqual(order.delivery_status, "pending")
        self.assertEqual(order.total_amount, 560.0)
        self.assertEqual(order.expires_at, self.t0 + timedelta(hours=48))
        self.payments.verify.assert_called_once_with("ps_ref_001")

        note = Notification.query.filter_by(user_id=self.seller.id).one()
        self.assertEqual(note.kind, "order_awaiting_commit")
        self.assertEqual(note.meta_dict()["order_id"], order.id)
        event = OrderEvent.query.filter_by(order_id=order.id).one()
        self.assertEqual((event.from_status, event.to_status), ("", "pending_commit"))

    def test_reused_payment_reference_is_rejected(self):
        create_order(self.actor(self.buyer), self._checkout(), now=self.t0)
        with self.assertRaises(ValidationFailed) as ctx:
            create_order(self.actor(self.buyer), self._checkout(), now=self.t0)
        self.assertEqual(ctx.exception.fields, ["payment_reference"])

    def test_unpaid_checkout_is_rejected(self):
        self.payments.verify.return_value = PaymentVerifyResult(status="abandoned", amount=0.0, currency="ZAR", customer="")
        with self.assertRaises(ValidationFailed):
            create_order(self.actor(self.buyer), self._checkout(), now=self.t0)
        self.assertEqual(Order.query.count(), 0)

    def test_reschedule_fee_charge_cannot_pay_for_checkout(self):
        self.payments.verify.return_value = PaymentVerifyResult(
            status="success",
            amount=0.0,
            currency="ZAR",
            customer="",
            metadata={"purpose": "reschedule_fee", "order_id": 7},
        )
        with self.assertRaises(ValidationFailed):
            create_order(self.actor(self.buyer), self._checkout(), now=self.t0)
        self.assertEqual(Order.query.count(), 0)

    def test_commit_window_is_not_configurable(self):
        self.app.config["COMMIT_WINDOW_HOURS"] = 2
        self.addCleanup(self.app.config.pop, "COMMIT_WINDOW_HOURS", None)
        order = create_order(self.actor(self.buyer), self._checkout(), now=self.t0)
        self.assertEqual(order.expires_at - order.created_at, timedelta(hours=48))

    def test_malformed_seller_id_is_a_validation_error(self):
        data = self._checkout()
        data["items"][0]["seller_id"] = "abc"
        with self.assertRaises(ValidationFailed) as ctx:
            create_order(self.actor(self.buyer), data, now=self.t0)
        self.assertEqual(ctx.exception.fields, ["items"])

    def test_books_from_two_sellers_are_rejected(self):
        other = self.make_user("seller", "Other Seller")
        data = self._checkout()
        data["items"][1]["seller_id"] = other.id
        with self.assertRaises(ValidationFailed):
            create_order(self.actor(self.buyer), data, now=self.t0)

    def test_seller_cannot_buy_own_books(self):
        with self.assertRaises(ValidationFailed):
            create_order(self.actor(self.seller), self._checkout(), now=self.t0)


class CommitOrderTestCase(OrderFlowTestCase):
    def test_commit_within_window(self):
        order = self.make_order()
        committed = commit_order(self.actor(self.seller), order.id, delivery_method="home", now=self.t0 + timedelta(hours=1))

        order = self.reload(committed)
        self.assertEqual(order.status, "committed")
        self.assertEqual(order.committed_at, self.t0 + timedelta(hours=1))
        self.assertEqual(order.estimated_payment_date, self.t0 + timedelta(hours=1, days=7))
        self.courier.create_locker_shipment.assert_not_called()

        note = Notification.query.filter_by(user_id=self.buyer.id, kind="order_committed").one()
        self.assertEqual(note.meta_dict()["order_id"], order.id)

    def test_locker_commit_books_shipment(self):
        order = self.make_order(delivery_method="locker")
        commit_order(self.actor(self.seller), order.id, delivery_method="locker", locker_id="LKR-CPT-01", now=self.t0)

        order = self.reload(order)
        self.assertEqual(order.tracking_number, "TCG100200")
        self.assertEqual(order.qr_code_url, "https://courier.test/qr/TCG100200.png")
        self.assertEqual(order.locker_id, "LKR-CPT-01")
        self.assertEqual(order.estimated_payment_date, self.t0 + timedelta(days=4))
        kwargs = self.courier.create_locker_shipment.call_args.kwargs
        self.assertEqual(kwargs["locker_id"], "LKR-CPT-01")
        self.assertEqual(kwargs["reference"], f"order-{order.id}")

    def test_second_commit_conflicts_without_second_shipment(self):
        order = self.make_order()
        commit_order(self.actor(self.seller), order.id, delivery_method="locker", locker_id="LKR-1", now=self.t0)
        with self.assertRaises(StateConflict) as ctx:
            commit_order(self.actor(self.seller), order.id, delivery_method="locker", locker_id="LKR-1", now=self.t0)
        self.assertEqual(ctx.exception.current_status, "committed")
        self.assertEqual(self.courier.create_locker_shipment.call_count, 1)
        self.assertEqual(Notification.query.filter_by(kind="order_committed").count(), 1)

    def test_stale_commit_books_nothing(self):
        order = self.make_order()
        db.session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(status="declined_by_seller")
            .execution_options(synchronize_session=False)
        )
        with self.assertRaises(StateConflict):
            commit_order(self.actor(self.seller), order.id, delivery_method="locker", locker_id="LKR-1", now=self.t0)
        self.courier.create_locker_shipment.assert_not_called()

    def test_courier_failure_leaves_order_pending(self):
        order = self.make_order()
        self.courier.create_locker_shipment.side_effect = RuntimeError("LOCKER_SHIPMENT_FAILED:HTTP 500")
        with self.assertRaises(UpstreamFailed) as ctx:
            commit_order(self.actor(self.seller), order.id, delivery_method="locker", locker_id="LKR-1", now=self.t0)
        self.assertEqual(ctx.exception.service, "courier")

        order = self.reload(order)
        self.assertEqual(order.status, "pending_commit")
        self.assertIsNone(order.committed_at)
        self.assertEqual(Notification.query.count(), 0)
        self.assertEqual(OrderEvent.query.count(), 0)

    def test_locker_requires_locker_id(self):
        order = self.make_order()
        with self.assertRaises(ValidationFailed) as ctx:
            commit_order(self.actor(self.seller), order.id, delivery_method="locker", now=self.t0)
        self.assertEqual(ctx.exception.fields, ["locker_id"])

    def test_commit_after_deadline_is_rejected(self):
        order = self.make_order()
        with self.assertRaises(StateConflict):
            commit_order(self.actor(self.seller), order.id, delivery_method="home", now=self.t0 + timedelta(hours=49))
        self.assertEqual(self.reload(order).status, "pending_commit")

    def test_other_users_cannot_commit(self):
        order = self.make_order()
        with self.assertRaises(NotFound):
            commit_order(self.actor(self.buyer), order.id, delivery_method="home", now=self.t0)
        with self.assertRaises(NotFound):
            commit_order(self.actor(self.seller), order.id, seller_id=self.buyer.id, delivery_method="home", now=self.t0)

    def test_get_order_visibility(self):
        order = self.make_order()
        stranger = self.make_user("buyer", "Stranger")
        self.assertEqual(get_order(self.actor(self.buyer), order.id).id, order.id)
        self.assertEqual(get_order(self.actor(self.admin), order.id).id, order.id)
        with self.assertRaises(NotFound):
            get_order(self.actor(stranger), order.id)


if __name__ == "__main__":
    unittest.main()
