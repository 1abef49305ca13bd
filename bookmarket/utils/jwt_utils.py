import os
import time
import logging
from typing import Optional, Dict, Any

import jwt

logger = logging.getLogger(__name__)


def _secret() -> str:
    return os.getenv("JWT_SECRET") or os.getenv("SECRET_KEY") or "dev-secret-change-me"


def create_token(user_id: int, role: Optional[str] = None, ttl_seconds: int = 60 * 60) -> str:
    """Mint an HS256 access token.

    Tokens are normally issued by the external auth provider; this exists so
    that local tooling and tests can produce tokens the API accepts.
    """
    now = int(time.time())
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + ttl_seconds,
        "type": "access",
    }
    if role:
        payload["role"] = role.strip().lower()
    return jwt.encode(payload, _secret(), algorithm="HS256")


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        logger.info("jwt_expired")
        return None
    except jwt.InvalidTokenError:
        return None


def get_bearer_token(auth_header: str) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None
