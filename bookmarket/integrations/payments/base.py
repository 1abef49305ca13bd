from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PaymentInitializeResult:
    authorization_url: str
    reference: str
    provider: str
    access_code: str = ""
    raw: dict | None = None


@dataclass
class PaymentVerifyResult:
    status: str
    amount: float
    currency: str
    customer: str
    reference: str = ""
    raw: dict | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class RefundResult:
    status: str
    provider_ref: str
    amount: float
    raw: dict | None = None


@dataclass
class TransferResult:
    status: str
    transfer_code: str
    reference: str
    amount: float
    raw: dict | None = None


@dataclass
class ResolvedAccount:
    account_number: str
    account_name: str
    bank_code: str


@dataclass
class SubaccountResult:
    subaccount_code: str
    recipient_code: str
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def initialize(self, *, amount: float, email: str, reference: str, currency: str = "ZAR", metadata: dict | None = None) -> PaymentInitializeResult:
        raise NotImplementedError

    def verify(self, reference: str) -> PaymentVerifyResult:
        raise NotImplementedError

    def refund(self, *, transaction_reference: str, amount: float, reason: str = "") -> RefundResult:
        raise NotImplementedError

    def transfer(self, *, recipient_code: str, amount: float, reference: str, reason: str, currency: str = "ZAR") -> TransferResult:
        raise NotImplementedError

    def list_banks(self, *, country: str = "south africa") -> list[dict]:
        raise NotImplementedError

    def resolve_account(self, *, account_number: str, bank_code: str) -> ResolvedAccount:
        raise NotImplementedError

    def create_subaccount(
        self,
        *,
        business_name: str,
        bank_code: str,
        account_number: str,
        email: str,
        percentage_charge: float,
    ) -> SubaccountResult:
        raise NotImplementedError
