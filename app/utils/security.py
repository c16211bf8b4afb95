"""
Great Pearl Coffee Finance - Security Utilities

JWT token handling, answer/code digests and one-time code generation.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.config import settings


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing token payload (``sub`` is the employee email)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.access_token_expire_minutes
        )

    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm
    )


def decode_token(token: str) -> Optional[dict]:
    """
    Decode and verify a JWT token.

    Returns:
        Token payload dict or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict]:
    """Verify an access token and return payload, or None."""
    payload = decode_token(token)
    if payload and payload.get("type") == "access":
        return payload
    return None


def sha256_hex(value: str) -> str:
    """Hex SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_security_answer(answer: str) -> str:
    """
    Digest a security answer.

    Normalisation (lowercase, then trim) and algorithm must match digests
    already stored by earlier clients.
    """
    return sha256_hex(answer.lower().strip())


def digests_match(a: str, b: str) -> bool:
    """Constant-time digest comparison."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def generate_numeric_code(length: int = 6) -> str:
    """Random numeric one-time code, zero padded."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"
