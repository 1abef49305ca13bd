from __future__ import annotations

import hashlib

from bookmarket.integrations.payments.base import (
    PaymentInitializeResult,
    PaymentsProvider,
    PaymentVerifyResult,
    RefundResult,
    ResolvedAccount,
    SubaccountResult,
    TransferResult,
)


def _short(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:10]


class MockPaymentsProvider(PaymentsProvider):
    """Deterministic sandbox provider. Verification always reports success.

    ``verify`` reports amount 0.0 because the mock never saw the charge; callers
    that compare amounts treat a zero from the mock as "not checked". Metadata
    sent to ``initialize`` is kept per reference so ``verify`` can echo it back.
    """

    name = "mock"
    _initialized: dict[str, dict] = {}

    def initialize(self, *, amount: float, email: str, reference: str, currency: str = "ZAR", metadata: dict | None = None) -> PaymentInitializeResult:
        MockPaymentsProvider._initialized[reference] = dict(metadata or {})
        return PaymentInitializeResult(
            authorization_url=f"https://example.com/mock/pay?reference={reference}",
            reference=reference,
            access_code=f"mock_{_short(reference)}",
            provider=self.name,
            raw={"amount": amount, "email": email, "currency": currency, "metadata": metadata or {}},
        )

    def verify(self, reference: str) -> PaymentVerifyResult:
        return PaymentVerifyResult(
            status="success",
            amount=0.0,
            currency="ZAR",
            customer="mock",
            reference=reference,
            raw={"reference": reference, "provider": self.name},
            metadata=dict(MockPaymentsProvider._initialized.get(reference) or {}),
        )

    def refund(self, *, transaction_reference: str, amount: float, reason: str = "") -> RefundResult:
        return RefundResult(
            status="processed",
            provider_ref=f"mock_rf_{_short(transaction_reference)}",
            amount=float(amount),
            raw={"transaction": transaction_reference, "reason": reason},
        )

    def transfer(self, *, recipient_code: str, amount: float, reference: str, reason: str, currency: str = "ZAR") -> TransferResult:
        return TransferResult(
            status="success",
            transfer_code=f"mock_trf_{_short(reference)}",
            reference=reference,
            amount=float(amount),
            raw={"recipient": recipient_code, "reason": reason, "currency": currency},
        )

    def list_banks(self, *, country: str = "south africa") -> list[dict]:
        return [
            {"name": "ABSA Bank", "code": "632005", "active": True},
            {"name": "Capitec Bank", "code": "470010", "active": True},
            {"name": "First National Bank", "code": "250655", "active": True},
            {"name": "Nedbank", "code": "198765", "active": True},
            {"name": "Standard Bank", "code": "051001", "active": True},
        ]

    def resolve_account(self, *, account_number: str, bank_code: str) -> ResolvedAccount:
        return ResolvedAccount(account_number=account_number, account_name="MOCK ACCOUNT HOLDER", bank_code=bank_code)

    def create_subaccount(
        self,
        *,
        business_name: str,
        bank_code: str,
        account_number: str,
        email: str,
        percentage_charge: float,
    ) -> SubaccountResult:
        key = f"{bank_code}:{account_number}"
        return SubaccountResult(
            subaccount_code=f"ACCT_mock{_short(key)}",
            recipient_code=f"RCP_mock{_short(key)}",
            raw={"business_name": business_name, "percentage_charge": percentage_charge},
        )
