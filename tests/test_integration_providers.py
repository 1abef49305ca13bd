from __future__ import annotations

import hashlib
import hmac
import unittest
from unittest.mock import Mock, patch

from bookmarket.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from bookmarket.integrations.courier.base import Party, map_courier_status
from bookmarket.integrations.courier.courier_guy_provider import CourierGuyProvider
from bookmarket.integrations.courier.factory import build_courier_provider
from bookmarket.integrations.courier.mock_provider import MockCourierProvider
from bookmarket.integrations.payments.factory import build_payments_provider, payment_health
from bookmarket.integrations.payments.mock_provider import MockPaymentsProvider
from bookmarket.integrations.payments.paystack_provider import PaystackPaymentsProvider, verify_webhook_signature
from bookmarket.utils.settings import IntegrationSettings


def _response(status_code: int, body: dict):
    res = Mock()
    res.status_code = status_code
    res.content = b"{}"
    res.json.return_value = body
    return res


class PaystackProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = PaystackPaymentsProvider(secret_key="sk_test_abc")

    @patch("bookmarket.integrations.payments.paystack_provider.requests.post")
    def test_refund_sends_transaction_and_minor_amount(self, post):
        post.return_value = _response(200, {"status": True, "data": {"id": 8812, "status": "pending", "amount": 25000}})
        result = self.provider.refund(transaction_reference="ps_ref_001", amount=250.0, reason="Seller declined")

        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        self.assertEqual(url, "https://api.paystack.co/refund")
        self.assertEqual(payload["transaction"], "ps_ref_001")
        self.assertEqual(payload["amount"], 25000)
        self.assertEqual(payload["merchant_note"], "Seller declined")
        self.assertEqual(post.call_args.kwargs["headers"]["Authorization"], "Bearer sk_test_abc")
        self.assertEqual(result.provider_ref, "8812")
        self.assertEqual(result.amount, 250.0)

    @patch("bookmarket.integrations.payments.paystack_provider.requests.post")
    def test_refund_failure_raises_with_code(self, post):
        post.return_value = _response(400, {"status": False, "message": "Transaction not found"})
        with self.assertRaises(RuntimeError) as ctx:
            self.provider.refund(transaction_reference="missing", amount=10.0)
        self.assertEqual(str(ctx.exception), "PAYSTACK_REFUND_FAILED:Transaction not found")

    @patch("bookmarket.integrations.payments.paystack_provider.requests.post")
    def test_transfer_payload(self, post):
        post.return_value = _response(
            200,
            {"status": True, "data": {"transfer_code": "TRF_x1", "reference": "payout_7_1", "status": "success", "amount": 19000}},
        )
        result = self.provider.transfer(recipient_code="RCP_1", amount=190.0, reference="payout_7_1", reason="Payment for order #7")
        payload = post.call_args.kwargs["json"]
        self.assertEqual(post.call_args.args[0], "https://api.paystack.co/transfer")
        self.assertEqual(payload["source"], "balance")
        self.assertEqual(payload["recipient"], "RCP_1")
        self.assertEqual(payload["amount"], 19000)
        self.assertEqual(payload["currency"], "ZAR")
        self.assertEqual(result.transfer_code, "TRF_x1")

    @patch("bookmarket.integrations.payments.paystack_provider.requests.get")
    def test_verify_converts_amount(self, get):
        get.return_value = _response(
            200,
            {"status": True, "data": {"status": "success", "amount": 56000, "currency": "zar", "customer": {"email": "b@x.test"}}},
        )
        result = self.provider.verify("ps_ref_001")
        self.assertEqual(get.call_args.args[0], "https://api.paystack.co/transaction/verify/ps_ref_001")
        self.assertEqual(result.status, "success")
        self.assertEqual(result.amount, 560.0)
        self.assertEqual(result.currency, "ZAR")

    @patch("bookmarket.integrations.payments.paystack_provider.requests.post")
    def test_initialize_sends_minor_amount_and_metadata(self, post):
        provider = PaystackPaymentsProvider(secret_key="sk_test_abc", callback_url="https://bookmarket.test/paid")
        post.return_value = _response(
            200,
            {"status": True, "data": {"authorization_url": "https://checkout.paystack.com/xyz", "access_code": "ac_9", "reference": "bm_1"}},
        )
        result = provider.initialize(amount=65.0, email="s@x.test", reference="bm_1", metadata={"purpose": "reschedule_fee", "order_id": 3})

        payload = post.call_args.kwargs["json"]
        self.assertEqual(post.call_args.args[0], "https://api.paystack.co/transaction/initialize")
        self.assertEqual(payload["amount"], 6500)
        self.assertEqual(payload["currency"], "ZAR")
        self.assertEqual(payload["callback_url"], "https://bookmarket.test/paid")
        self.assertEqual(payload["metadata"], {"purpose": "reschedule_fee", "order_id": 3})
        self.assertEqual(result.authorization_url, "https://checkout.paystack.com/xyz")
        self.assertEqual(result.access_code, "ac_9")
        self.assertEqual(result.provider, "paystack")

    @patch("bookmarket.integrations.payments.paystack_provider.requests.get")
    def test_verify_reads_metadata_object_or_string(self, get):
        get.return_value = _response(200, {"status": True, "data": {"status": "success", "amount": 6500, "metadata": {"purpose": "reschedule_fee"}}})
        self.assertEqual(self.provider.verify("r1").metadata, {"purpose": "reschedule_fee"})

        get.return_value = _response(200, {"status": True, "data": {"status": "success", "amount": 6500, "metadata": '{"order_id": 4}'}})
        self.assertEqual(self.provider.verify("r2").metadata, {"order_id": 4})

        get.return_value = _response(200, {"status": True, "data": {"status": "success", "amount": 6500, "metadata": ""}})
        self.assertEqual(self.provider.verify("r3").metadata, {})

    def test_webhook_signature(self):
        body = b'{"event":"transfer.success"}'
        good = hmac.new(b"sk_test_abc", body, hashlib.sha512).hexdigest()
        self.assertTrue(verify_webhook_signature(body, good, "sk_test_abc"))
        self.assertFalse(verify_webhook_signature(body + b" ", good, "sk_test_abc"))
        self.assertFalse(verify_webhook_signature(body, None, "sk_test_abc"))
        self.assertFalse(verify_webhook_signature(body, good, ""))

    @patch("bookmarket.integrations.payments.paystack_provider.requests.post")
    def test_subaccount_creates_transfer_recipient(self, post):
        post.side_effect = [
            _response(200, {"status": True, "data": {"subaccount_code": "ACCT_1"}}),
            _response(200, {"status": True, "data": {"recipient_code": "RCP_1"}}),
        ]
        result = self.provider.create_subaccount(
            business_name="Sipho Books",
            bank_code="250655",
            account_number="62001234567",
            email="s@x.test",
            percentage_charge=5.0,
        )
        self.assertEqual((result.subaccount_code, result.recipient_code), ("ACCT_1", "RCP_1"))
        self.assertEqual(post.call_args_list[1].kwargs["json"]["type"], "basa")


class CourierGuyProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = CourierGuyProvider(api_key="cg_key")
        self.sender = Party(name="Sipho", phone="0820000000")
        self.receiver = Party(name="Thandi", phone="0830000000")

    @patch("bookmarket.integrations.courier.courier_guy_provider.requests.post")
    def test_locker_shipment_maps_response(self, post):
        post.return_value = _response(
            201,
            {"trackingNumber": "PUDO123", "qrCodeUrl": "https://qr/1.png", "waybillUrl": "https://wb/1.pdf"},
        )
        result = self.provider.create_locker_shipment(
            reference="order-9", locker_id="LKR-1", sender=self.sender, receiver=self.receiver
        )
        self.assertEqual(result.tracking_number, "PUDO123")
        self.assertEqual(result.qr_code_url, "https://qr/1.png")
        self.assertEqual(post.call_args.kwargs["headers"]["ApiKey"], "cg_key")
        self.assertEqual(post.call_args.kwargs["json"]["lockerId"], "LKR-1")

    @patch("bookmarket.integrations.courier.courier_guy_provider.requests.post")
    def test_locker_shipment_failure(self, post):
        post.return_value = _response(500, {"message": "Locker full"})
        with self.assertRaises(RuntimeError) as ctx:
            self.provider.create_locker_shipment(reference="order-9", locker_id="LKR-1", sender=self.sender, receiver=self.receiver)
        self.assertEqual(str(ctx.exception), "LOCKER_SHIPMENT_FAILED:Locker full")

    @patch("bookmarket.integrations.courier.courier_guy_provider.requests.get")
    def test_track_maps_status(self, get):
        get.return_value = _response(200, {"data": {"status": "Out for delivery", "events": [{"status": "COLLECTED"}]}})
        result = self.provider.track("TCG1")
        self.assertEqual(result.delivery_status, "in_transit")
        self.assertEqual(len(result.events), 1)


class CourierStatusMappingTestCase(unittest.TestCase):
    def test_known_statuses(self):
        self.assertEqual(map_courier_status("collected"), "picked_up")
        self.assertEqual(map_courier_status("IN_TRANSIT"), "in_transit")
        self.assertEqual(map_courier_status("delivered-to-recipient"), "delivered")
        self.assertEqual(map_courier_status("Collection failed"), "pickup_failed")

    def test_unknown_status(self):
        self.assertIsNone(map_courier_status("AT_HUB"))
        self.assertIsNone(map_courier_status(""))


class MockPaymentsProviderTestCase(unittest.TestCase):
    def test_verify_echoes_initialize_metadata(self):
        provider = MockPaymentsProvider()
        provider.initialize(amount=65.0, email="s@x.test", reference="mock_fee_1", metadata={"purpose": "reschedule_fee", "order_id": 12})
        result = MockPaymentsProvider().verify("mock_fee_1")
        self.assertEqual(result.status, "success")
        self.assertEqual(result.metadata, {"purpose": "reschedule_fee", "order_id": 12})
        self.assertEqual(MockPaymentsProvider().verify("never_initialized").metadata, {})


class ProviderFactoryTestCase(unittest.TestCase):
    def test_disabled_mode(self):
        settings = IntegrationSettings(integrations_mode="disabled")
        with self.assertRaises(IntegrationDisabledError):
            build_payments_provider(settings)
        with self.assertRaises(IntegrationDisabledError):
            build_courier_provider(settings)

    def test_sandbox_allows_mocks(self):
        settings = IntegrationSettings(integrations_mode="sandbox")
        self.assertIsInstance(build_payments_provider(settings), MockPaymentsProvider)
        self.assertIsInstance(build_courier_provider(settings), MockCourierProvider)

    def test_live_mode_rejects_mocks(self):
        settings = IntegrationSettings(integrations_mode="live")
        with self.assertRaises(IntegrationMisconfiguredError):
            build_payments_provider(settings)
        with self.assertRaises(IntegrationMisconfiguredError):
            build_courier_provider(settings)

    def test_paystack_requires_secret(self):
        settings = IntegrationSettings(integrations_mode="live", payments_provider="paystack")
        with self.assertRaises(IntegrationMisconfiguredError):
            build_payments_provider(settings)
        self.assertEqual(payment_health(settings)["missing"], ["PAYSTACK_SECRET_KEY"])

    def test_paystack_configured(self):
        settings = IntegrationSettings(integrations_mode="live", payments_provider="paystack", paystack_secret_key="sk_live_x")
        self.assertIsInstance(build_payments_provider(settings), PaystackPaymentsProvider)
        self.assertEqual(payment_health(settings)["status"], "configured")


if __name__ == "__main__":
    unittest.main()
