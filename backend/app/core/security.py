"""Security utilities for authentication and hashing."""

import hashlib
from datetime import timedelta
from typing import Any, Optional

from jose import jwt
from passlib.context import CryptContext

from app.config import settings
from app.utils.datetime_utils import utc_now

# Password hashing context using Argon2
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# Verification codes only span 10^6 values, so they get the same slow salted
# hash as passwords; a fast digest would be brute-forced offline in seconds.
code_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2.

    Args:
        password: Plain text password

    Returns:
        Hashed password
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        True if password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a high-entropy random token."""
    return hashlib.sha256(token.encode()).hexdigest()


def hash_verification_code(code: str) -> str:
    """Hash a 6-digit verification code with a per-hash salt."""
    return code_context.hash(code)


def verify_verification_code(code: str, code_hash: str) -> bool:
    """
    Check a submitted verification code against its stored hash.

    Returns False (rather than raising) when the stored hash is malformed.
    """
    try:
        return code_context.verify(code, code_hash)
    except ValueError:
        return False


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Data to encode in token
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = utc_now() + expires_delta
    else:
        expire = utc_now() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    return encoded_jwt


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and verify a JWT token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded token payload

    Raises:
        JWTError: If token is invalid or expired
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    return payload
