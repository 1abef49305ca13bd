from __future__ import annotations

from flask import jsonify

from bookmarket.utils.observability import get_request_id


def ok(data=None, status: int = 200):
    payload = {"success": True}
    if data is not None:
        payload["data"] = data
    return jsonify(payload), status


def fail(message: str, status: int, *, code: str = "", details: dict | None = None):
    payload = {"success": False, "error": message}
    if code:
        payload["code"] = code
    if details:
        payload["details"] = details
    rid = (get_request_id() or "").strip()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), status


def unauthorized():
    return fail("Unauthorized", 401, code="UNAUTHORIZED")
