from __future__ import annotations

import unittest

from bookmarket.errors import Forbidden, StateConflict, UpstreamFailed, ValidationFailed
from bookmarket.extensions import db
from bookmarket.integrations.payments.base import SubaccountResult
from bookmarket.models import BankingSubaccount, Notification, SellerPayout
from bookmarket.services.banking_service import mask_account_number, register_seller_banking
from bookmarket.services.order_service import decline_order
from bookmarket.services.payout_service import pay_seller, payout_breakdown
from bookmarket.services.refund_service import issue_refund
from flow_base import OrderFlowTestCase


class PayoutBreakdownTestCase(unittest.TestCase):
    def test_fee_and_net(self):
        self.assertEqual(payout_breakdown(200.0, 0.05), (10.0, 190.0))
        self.assertEqual(payout_breakdown(150.0, 0.05), (7.5, 142.5))
        self.assertEqual(payout_breakdown(0, 0.05), (0.0, 0.0))


class SellerPayoutTestCase(OrderFlowTestCase):
    def setUp(self):
        super().setUp()
        db.session.add(
            BankingSubaccount(
                seller_id=self.seller.id,
                business_name="Sipho Books",
                bank_code="250655",
                account_number_masked="******7890",
                subaccount_code="ACCT_sipho",
                recipient_code="RCP_sipho",
            )
        )
        db.session.commit()

    def test_pays_book_subtotal_less_fee(self):
        order = self.make_order(status="delivered", delivery_status="delivered")
        payout = pay_seller(self.actor(self.admin), order.id, now=self.t0)

        kwargs = self.payments.transfer.call_args.kwargs
        self.assertEqual(kwargs["recipient_code"], "RCP_sipho")
        self.assertEqual(kwargs["amount"], 190.0)
        self.assertTrue(kwargs["reference"].startswith(f"payout_{order.id}_"))

        self.assertEqual((payout.gross_amount, payout.platform_fee, payout.net_amount), (200.0, 10.0, 190.0))
        self.assertEqual(self.reload(order).settlement, "paid_out")
        self.assertEqual(SellerPayout.query.count(), 1)
        self.assertEqual(Notification.query.filter_by(user_id=self.seller.id, kind="payout_sent").count(), 1)

    def test_pays_only_once(self):
        order = self.make_order(status="delivered", delivery_status="delivered")
        pay_seller(self.actor(self.admin), order.id, now=self.t0)
        with self.assertRaises(StateConflict):
            pay_seller(self.actor(self.admin), order.id, now=self.t0)
        self.assertEqual(self.payments.transfer.call_count, 1)

    def test_undelivered_orders_are_not_paid(self):
        order = self.make_order(status="collected", delivery_status="in_transit")
        with self.assertRaises(StateConflict):
            pay_seller(self.actor(self.admin), order.id, now=self.t0)
        self.payments.transfer.assert_not_called()

    def test_refunded_order_cannot_be_paid_out(self):
        order = self.make_order()
        decline_order(self.actor(self.seller), order.id, now=self.t0)
        with self.assertRaises(StateConflict):
            pay_seller(self.actor(self.admin), order.id, now=self.t0)
        self.payments.transfer.assert_not_called()

    def test_paid_out_order_cannot_be_refunded(self):
        order = self.make_order(status="delivered", delivery_status="delivered")
        pay_seller(self.actor(self.admin), order.id, now=self.t0)
        with self.assertRaises(StateConflict):
            issue_refund(self.reload(order), reason="Chargeback", now=self.t0)
        self.payments.refund.assert_not_called()

    def test_transfer_failure_releases_claim(self):
        order = self.make_order(status="delivered", delivery_status="delivered")
        self.payments.transfer.side_effect = RuntimeError("PAYSTACK_TRANSFER_FAILED:Insufficient balance")
        with self.assertRaises(UpstreamFailed):
            pay_seller(self.actor(self.admin), order.id, now=self.t0)
        self.assertEqual(self.reload(order).settlement, "none")
        self.assertEqual(SellerPayout.query.count(), 0)

    def test_only_admins_release_payouts(self):
        order = self.make_order(status="delivered", delivery_status="delivered")
        with self.assertRaises(Forbidden):
            pay_seller(self.actor(self.seller), order.id, now=self.t0)

    def test_requires_banking_details(self):
        BankingSubaccount.query.delete()
        db.session.commit()
        order = self.make_order(status="delivered", delivery_status="delivered")
        with self.assertRaises(ValidationFailed):
            pay_seller(self.actor(self.admin), order.id, now=self.t0)


class SellerBankingTestCase(OrderFlowTestCase):
    def test_mask_account_number(self):
        self.assertEqual(mask_account_number("62001234567"), "*******4567")
        self.assertEqual(mask_account_number("123"), "***")

    def test_register_creates_subaccount(self):
        self.payments.create_subaccount.return_value = SubaccountResult(subaccount_code="ACCT_new", recipient_code="RCP_new")
        row = register_seller_banking(
            self.actor(self.seller),
            {"business_name": "Sipho Books", "bank_code": "250655", "account_number": "62001234567"},
        )
        self.assertEqual(row.recipient_code, "RCP_new")
        self.assertEqual(row.account_number_masked, "*******4567")
        self.assertEqual(self.payments.create_subaccount.call_args.kwargs["percentage_charge"], 5.0)

    def test_buyers_cannot_register_banking(self):
        with self.assertRaises(Forbidden):
            register_seller_banking(
                self.actor(self.buyer),
                {"business_name": "X", "bank_code": "250655", "account_number": "62001234567"},
            )

    def test_account_number_must_be_numeric(self):
        with self.assertRaises(ValidationFailed):
            register_seller_banking(
                self.actor(self.seller),
                {"business_name": "X", "bank_code": "250655", "account_number": "62-00"},
            )


if __name__ == "__main__":
    unittest.main()
