"""Caller identity: validate access tokens issued by the platform's auth service."""

from __future__ import annotations

import logging
from typing import Any

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def decode_access_token(token: str, secret_key: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token. Returns None when invalid."""
    try:
        payload: dict[str, Any] = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        logger.debug("Failed to decode access token", exc_info=True)
        return None
