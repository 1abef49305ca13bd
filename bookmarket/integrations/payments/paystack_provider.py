from __future__ import annotations

import hashlib
import hmac
import json

import requests

from bookmarket.integrations.common import from_minor, raise_for_paystack, to_minor
from bookmarket.integrations.payments.base import (
    PaymentInitializeResult,
    PaymentsProvider,
    PaymentVerifyResult,
    RefundResult,
    ResolvedAccount,
    SubaccountResult,
    TransferResult,
)

PAYSTACK_BASE = "https://api.paystack.co"


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Paystack signs the raw request body with HMAC-SHA512 of the secret key."""
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body or b"", hashlib.sha512).hexdigest()
    return hmac.compare_digest(digest, signature.strip())


def _metadata(value) -> dict:
    # Paystack echoes metadata back as an object or as the JSON string it was sent as.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return value if isinstance(value, dict) else {}


class PaystackPaymentsProvider(PaymentsProvider):
    name = "paystack"

    def __init__(self, secret_key: str, callback_url: str = ""):
        self.secret_key = secret_key
        self.callback_url = callback_url

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: dict, code: str) -> dict:
        r = requests.post(f"{PAYSTACK_BASE}{path}", headers=self._headers(), json=payload, timeout=25)
        j = r.json() if r.content else {}
        raise_for_paystack(r, j, code)
        return j

    def _get(self, path: str, code: str, params: dict | None = None) -> dict:
        r = requests.get(f"{PAYSTACK_BASE}{path}", headers=self._headers(), params=params, timeout=25)
        j = r.json() if r.content else {}
        raise_for_paystack(r, j, code)
        return j

    def initialize(self, *, amount: float, email: str, reference: str, currency: str = "ZAR", metadata: dict | None = None) -> PaymentInitializeResult:
        payload = {
            "email": email,
            "amount": to_minor(amount),
            "reference": reference,
            "currency": currency,
            "metadata": metadata or {},
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url
        j = self._post("/transaction/initialize", payload, "PAYSTACK_INIT_FAILED")
        data = j.get("data") or {}
        return PaymentInitializeResult(
            authorization_url=(data.get("authorization_url") or "").strip(),
            reference=(data.get("reference") or reference).strip(),
            access_code=(data.get("access_code") or "").strip(),
            provider=self.name,
            raw=j,
        )

    def verify(self, reference: str) -> PaymentVerifyResult:
        ref = (reference or "").strip()
        j = self._get(f"/transaction/verify/{ref}", "PAYSTACK_VERIFY_FAILED")
        data = j.get("data") or {}
        return PaymentVerifyResult(
            status=(data.get("status") or "").strip().lower(),
            amount=from_minor(data.get("amount")),
            currency=(data.get("currency") or "ZAR").strip().upper(),
            customer=((data.get("customer") or {}).get("email") or "").strip(),
            reference=(data.get("reference") or ref).strip(),
            raw=j,
            metadata=_metadata(data.get("metadata")),
        )

    def refund(self, *, transaction_reference: str, amount: float, reason: str = "") -> RefundResult:
        payload = {
            "transaction": transaction_reference,
            "amount": to_minor(amount),
        }
        if reason:
            payload["merchant_note"] = reason[:200]
        j = self._post("/refund", payload, "PAYSTACK_REFUND_FAILED")
        data = j.get("data") or {}
        return RefundResult(
            status=(data.get("status") or "pending").strip().lower(),
            provider_ref=str(data.get("id") or ""),
            amount=from_minor(data.get("amount")) or float(amount),
            raw=j,
        )

    def transfer(self, *, recipient_code: str, amount: float, reference: str, reason: str, currency: str = "ZAR") -> TransferResult:
        payload = {
            "source": "balance",
            "amount": to_minor(amount),
            "recipient": recipient_code,
            "reason": reason,
            "reference": reference,
            "currency": currency,
        }
        j = self._post("/transfer", payload, "PAYSTACK_TRANSFER_FAILED")
        data = j.get("data") or {}
        return TransferResult(
            status=(data.get("status") or "pending").strip().lower(),
            transfer_code=(data.get("transfer_code") or "").strip(),
            reference=(data.get("reference") or reference).strip(),
            amount=from_minor(data.get("amount")) or float(amount),
            raw=j,
        )

    def list_banks(self, *, country: str = "south africa") -> list[dict]:
        j = self._get("/bank", "PAYSTACK_BANKS_FAILED", params={"country": country, "perPage": 100})
        banks = []
        for row in j.get("data") or []:
            banks.append({"name": row.get("name") or "", "code": row.get("code") or "", "active": bool(row.get("active", True))})
        return banks

    def resolve_account(self, *, account_number: str, bank_code: str) -> ResolvedAccount:
        j = self._get(
            "/bank/resolve",
            "PAYSTACK_RESOLVE_FAILED",
            params={"account_number": account_number, "bank_code": bank_code},
        )
        data = j.get("data") or {}
        return ResolvedAccount(
            account_number=(data.get("account_number") or account_number).strip(),
            account_name=(data.get("account_name") or "").strip(),
            bank_code=bank_code,
        )

    def create_subaccount(
        self,
        *,
        business_name: str,
        bank_code: str,
        account_number: str,
        email: str,
        percentage_charge: float,
    ) -> SubaccountResult:
        sub = self._post(
            "/subaccount",
            {
                "business_name": business_name,
                "settlement_bank": bank_code,
                "account_number": account_number,
                "percentage_charge": percentage_charge,
                "primary_contact_email": email,
            },
            "PAYSTACK_SUBACCOUNT_FAILED",
        )
        rec = self._post(
            "/transferrecipient",
            {
                "type": "basa",
                "name": business_name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": "ZAR",
            },
            "PAYSTACK_RECIPIENT_FAILED",
        )
        return SubaccountResult(
            subaccount_code=((sub.get("data") or {}).get("subaccount_code") or "").strip(),
            recipient_code=((rec.get("data") or {}).get("recipient_code") or "").strip(),
            raw={"subaccount": sub, "recipient": rec},
        )
