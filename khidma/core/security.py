"""
Security Module
Password/OTP hashing, random codes and JWT access tokens.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from khidma.core.config import settings

# Used for passwords, OTP codes and refresh tokens
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a secret against its bcrypt hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a secret with bcrypt."""
    return pwd_context.hash(password)


def generate_secure_token(nbytes: int = 32) -> str:
    """Hex token from a CSPRNG; 32 bytes gives 64 characters."""
    return secrets.token_hex(nbytes)


def generate_numeric_code(digits: int) -> str:
    """Random numeric code without a leading zero, e.g. 4 digits -> 1000..9999."""
    lower = 10 ** (digits - 1)
    return str(lower + secrets.randbelow(9 * lower))


def create_access_token(
    subject: str,
    expires_delta: timedelta | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The user ID
        expires_delta: Token lifetime, defaults to the session lifetime
        extra_claims: Additional claims (session id, user type)

    Returns:
        Encoded JWT token string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.session_expire_hours))

    to_encode: dict[str, Any] = {
        "exp": expire,
        "sub": str(subject),
        "iat": now,
    }
    if extra_claims:
        to_encode.update(extra_claims)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> dict[str, Any] | None:
    """Decode a JWT token. Returns None if invalid or expired."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
        )
    except JWTError:
        return None
