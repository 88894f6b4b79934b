"""
JWT access token utilities.

Tokens are issued by the auth service and carry `sub`, `user_id` and `role`.
This service only validates them; `create_access_token` produces the same
format for tooling and tests.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from payments_backend.app.core.config import settings

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("user_id", "role")


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Example payload:
        {
            "sub": "jane@example.com",
            "user_id": "u-123",
            "role": "CUSTOMER",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    User ids are normalised to strings, since the auth service has issued
    both numeric and string ids and ownership checks compare them as text.

    Returns:
        Decoded payload, or None if the signature, expiry or required claims are invalid
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.debug("Rejected access token: %s", e)
        return None

    missing = [claim for claim in REQUIRED_CLAIMS if payload.get(claim) in (None, "")]
    if missing:
        logger.debug("Access token missing claims: %s", ", ".join(missing))
        return None

    payload["user_id"] = str(payload["user_id"])
    return payload
