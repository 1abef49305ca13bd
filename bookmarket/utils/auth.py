from __future__ import annotations

from dataclasses import dataclass

from flask import g, request

from bookmarket.extensions import db
from bookmarket.models import User
from bookmarket.utils.jwt_utils import decode_token, get_bearer_token

ROLES = ("buyer", "seller", "admin", "system")


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation. Passed explicitly into services."""

    user_id: int | None
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "system")

    @property
    def actor_type(self) -> str:
        return self.role or "system"

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role="system")


def resolve_actor() -> Actor | None:
    """Build an Actor from the request's bearer token, or None when unauthenticated.

    The role comes from the token's ``role`` claim when present, else from the
    stored user profile.
    """
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    role = str(payload.get("role") or "").strip().lower()
    if role not in ROLES or role == "system":
        user = db.session.get(User, uid)
        if user is None:
            return None
        role = (user.role or "buyer").strip().lower()
    g.auth_user_id = uid
    g.auth_role = role
    return Actor(user_id=uid, role=role)
