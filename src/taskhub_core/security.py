"""Password hashing and bearer token handling."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import get_settings
from .errors import AuthenticationError

logger = logging.getLogger("taskhub-core.security")

settings = get_settings()

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: Optional[str]) -> bool:
    """Check a password; accounts without a stored hash never match."""
    if not password_hash:
        return False
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(user_id: UUID, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a token identifying a user.

    Args:
        user_id: Subject user ID, stored under the `id` claim
        expires_delta: Lifetime override (defaults to settings.jwt_expires_minutes)

    Returns:
        Encoded JWT
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expires_minutes)
    )
    payload = {"id": str(user_id), "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> UUID:
    """
    Verify a token and return the user ID it carries.

    Raises:
        AuthenticationError: If the token is malformed, forged or expired
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"Rejected token: {e}")
        raise AuthenticationError("Not authorized, token failed") from e

    user_id = payload.get("id")
    if not user_id:
        raise AuthenticationError("Not authorized, token failed")
    try:
        return UUID(user_id)
    except ValueError as e:
        raise AuthenticationError("Not authorized, token failed") from e
