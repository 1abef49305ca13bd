from __future__ import annotations

import unittest
from datetime import timedelta

from bookmarket.integrations.payments.base import RefundResult
from bookmarket.jobs.commit_runner import EXPIRY_REASON, run_commit_expiry, run_commit_reminders
from bookmarket.models import JobRun, Notification, Refund
from bookmarket.services.order_service import commit_order
from flow_base import OrderFlowTestCase


class CommitExpirySweepTestCase(OrderFlowTestCase):
    def test_expires_overdue_orders_only(self):
        overdue = self.make_order(created_at=self.t0)
        fresh = self.make_order(created_at=self.t0 + timedelta(hours=10))

        result = run_commit_expiry(now=self.t0 + timedelta(hours=49))
        self.assertTrue(result["ok"])
        self.assertEqual(result["expired"], 1)
        self.assertEqual(result["errors"], 0)

        overdue = self.reload(overdue)
        self.assertEqual(overdue.status, "expired")
        self.assertEqual(overdue.status_reason, EXPIRY_REASON)
        self.assertEqual(overdue.settlement, "refunded")
        self.assertEqual(self.reload(fresh).status, "pending_commit")

        self.payments.refund.assert_called_once()
        self.assertEqual(self.payments.refund.call_args.kwargs["amount"], 250.0)
        self.assertEqual(Refund.query.filter_by(order_id=overdue.id).one().amount, 250.0)
        self.assertEqual(Notification.query.filter_by(order_id=overdue.id, kind="order_expired").count(), 2)

    def test_does_not_touch_orders_before_deadline(self):
        order = self.make_order(created_at=self.t0)
        result = run_commit_expiry(now=self.t0 + timedelta(hours=47))
        self.assertEqual(result["processed"], 0)
        self.assertEqual(self.reload(order).status, "pending_commit")
        self.payments.refund.assert_not_called()

    def test_committed_orders_are_never_expired(self):
        order = self.make_order(created_at=self.t0)
        commit_order(self.actor(self.seller), order.id, delivery_method="home", now=self.t0 + timedelta(hours=1))
        result = run_commit_expiry(now=self.t0 + timedelta(hours=49))
        self.assertEqual(result["expired"], 0)
        self.assertEqual(self.reload(order).status, "committed")

    def test_one_failure_does_not_block_the_rest(self):
        first = self.make_order(created_at=self.t0)
        second = self.make_order(created_at=self.t0 + timedelta(minutes=5))
        self.payments.refund.side_effect = [
            RuntimeError("PAYSTACK_REFUND_FAILED:Gateway timeout"),
            RefundResult(status="processed", provider_ref="rf_2002", amount=250.0),
        ]

        result = run_commit_expiry(now=self.t0 + timedelta(hours=50))
        self.assertFalse(result["ok"])
        self.assertEqual(result["processed"], 2)
        self.assertEqual(result["expired"], 1)
        self.assertEqual(result["errors"], 1)

        first = self.reload(first)
        self.assertEqual(first.status, "pending_commit")
        self.assertEqual(first.settlement, "none")
        self.assertEqual(self.reload(second).status, "expired")

        run = JobRun.query.filter_by(job_name="commit_expiry").one()
        self.assertFalse(run.ok)
        self.assertEqual(run.failed, 1)
        self.assertEqual(run.summary()["failed_order_ids"], [first.id])

    def test_failed_order_is_retried_on_next_run(self):
        order = self.make_order(created_at=self.t0)
        self.payments.refund.side_effect = [
            RuntimeError("PAYSTACK_REFUND_FAILED:Gateway timeout"),
            RefundResult(status="processed", provider_ref="rf_3003", amount=250.0),
        ]
        run_commit_expiry(now=self.t0 + timedelta(hours=49))
        result = run_commit_expiry(now=self.t0 + timedelta(hours=50))
        self.assertEqual(result["expired"], 1)
        self.assertEqual(self.reload(order).status, "expired")


class CommitReminderSweepTestCase(OrderFlowTestCase):
    def test_reminds_once_after_a_day(self):
        order = self.make_order(created_at=self.t0)
        result = run_commit_reminders(now=self.t0 + timedelta(hours=30))
        self.assertEqual(result["reminded"], 1)

        note = Notification.query.filter_by(user_id=self.seller.id, kind="commit_reminder").one()
        self.assertFalse(note.title.startswith("URGENT"))
        self.assertEqual(note.meta_dict()["hours_remaining"], 18)
        self.assertIsNotNone(self.reload(order).reminder_sent_at)

        again = run_commit_reminders(now=self.t0 + timedelta(hours=31))
        self.assertEqual(again["reminded"], 0)
        self.assertEqual(Notification.query.filter_by(kind="commit_reminder").count(), 1)

    def test_urgent_when_deadline_is_close(self):
        self.make_order(created_at=self.t0)
        run_commit_reminders(now=self.t0 + timedelta(hours=40))
        note = Notification.query.filter_by(kind="commit_reminder").one()
        self.assertTrue(note.title.startswith("URGENT: "))
        self.assertTrue(note.meta_dict()["urgent"])

    def test_young_orders_are_not_reminded(self):
        self.make_order(created_at=self.t0 + timedelta(hours=10))
        result = run_commit_reminders(now=self.t0 + timedelta(hours=30))
        self.assertEqual(result["reminded"], 0)

    def test_committed_orders_are_not_reminded(self):
        self.make_order(created_at=self.t0, status="committed")
        result = run_commit_reminders(now=self.t0 + timedelta(hours=30))
        self.assertEqual(result["processed"], 0)


if __name__ == "__main__":
    unittest.main()
