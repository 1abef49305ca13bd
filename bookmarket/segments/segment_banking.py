from __future__ import annotations

from flask import Blueprint, request

from bookmarket.services import banking_service
from bookmarket.utils.auth import resolve_actor
from bookmarket.utils.responses import ok, unauthorized

banking_bp = Blueprint("banking_bp", __name__, url_prefix="/api/banking")


@banking_bp.get("/banks")
def list_banks():
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    return ok({"banks": banking_service.list_banks()})


@banking_bp.post("/resolve")
def resolve_account():
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    return ok(banking_service.resolve_account(data if isinstance(data, dict) else {}))


@banking_bp.post("/subaccount")
def register_subaccount():
    actor = resolve_actor()
    if actor is None:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    row = banking_service.register_seller_banking(actor, data if isinstance(data, dict) else {})
    return ok(row.to_dict(), 201)
