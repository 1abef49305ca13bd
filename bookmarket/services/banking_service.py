from __future__ import annotations

import logging
from datetime import datetime

from bookmarket.errors import Forbidden, ValidationFailed, require_fields
from bookmarket.extensions import db
from bookmarket.models import BankingSubaccount, User
from bookmarket.services import gateways
from bookmarket.utils.settings import get_settings

logger = logging.getLogger(__name__)


def mask_account_number(account_number: str) -> str:
    digits = (account_number or "").strip()
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def list_banks() -> list[dict]:
    with gateways.upstream("paystack"):
        return gateways.payments_provider().list_banks()


def resolve_account(data: dict) -> dict:
    require_fields(data, ["account_number", "bank_code"])
    account_number = str(data.get("account_number")).strip()
    if not account_number.isdigit():
        raise ValidationFailed("Account number must be numeric", fields=["account_number"])
    with gateways.upstream("paystack"):
        resolved = gateways.payments_provider().resolve_account(
            account_number=account_number,
            bank_code=str(data.get("bank_code")).strip(),
        )
    return {
        "account_number": mask_account_number(resolved.account_number),
        "account_name": resolved.account_name,
        "bank_code": resolved.bank_code,
    }


def register_seller_banking(actor, data: dict) -> BankingSubaccount:
    """Create or replace the seller's Paystack subaccount and transfer recipient."""
    if actor is None or actor.user_id is None or actor.role not in ("seller", "admin"):
        raise Forbidden("Only sellers can register banking details")
    require_fields(data, ["business_name", "bank_code", "account_number"])
    account_number = str(data.get("account_number")).strip()
    if not account_number.isdigit():
        raise ValidationFailed("Account number must be numeric", fields=["account_number"])

    seller_id = int(actor.user_id)
    if actor.role == "admin" and data.get("seller_id") is not None:
        try:
            seller_id = int(data.get("seller_id"))
        except (TypeError, ValueError):
            raise ValidationFailed("Seller id must be a number", fields=["seller_id"])
    seller = db.session.get(User, seller_id)
    if seller is None:
        raise ValidationFailed("Seller not found", fields=["seller_id"])

    business_name = str(data.get("business_name")).strip()[:160]
    bank_code = str(data.get("bank_code")).strip()
    with gateways.upstream("paystack"):
        result = gateways.payments_provider().create_subaccount(
            business_name=business_name,
            bank_code=bank_code,
            account_number=account_number,
            email=seller.email,
            percentage_charge=round(get_settings().platform_fee_rate * 100, 2),
        )

    row = BankingSubaccount.query.filter_by(seller_id=seller_id).first()
    if row is None:
        row = BankingSubaccount(seller_id=seller_id)
        db.session.add(row)
    row.business_name = business_name
    row.bank_code = bank_code
    row.bank_name = (str(data.get("bank_name") or "").strip() or None)
    row.account_number_masked = mask_account_number(account_number)
    row.subaccount_code = result.subaccount_code or None
    row.recipient_code = result.recipient_code or None
    row.status = "active"
    row.updated_at = datetime.utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("seller_banking_registered seller_id=%s subaccount=%s", seller_id, row.subaccount_code or "")
    return row
