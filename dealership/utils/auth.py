from dealership.models.models import Role
from dealership.models.schemas import TokenData
from dealership.config import get_settings
from jose import JWTError, jwt
from pydantic import ValidationError
import sys
import io
import logging
from typing import Optional
from datetime import datetime, timedelta, timezone

# Suppress bcrypt version warning during passlib import
# This is a known compatibility issue between passlib 1.7.4 and bcrypt 4.x
_stderr = sys.stderr
try:
    sys.stderr = io.StringIO()
    from passlib.context import CryptContext
finally:
    sys.stderr = _stderr

logger = logging.getLogger(__name__)

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(subject_id: int, role: Role, name: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a JWT whose claims identify the subject and its role."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {
        "sub": str(subject_id),
        "role": Role(role).value,
        "name": name,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[TokenData]:
    """
    Verify a bearer token and return its claims.

    Returns None for a bad signature, an expired token, or claims that do
    not carry an integer subject and a known role.
    """
    try:
        payload = jwt.decode(token, settings.secret_key,
                             algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None

    subject = payload.get("sub")
    role = payload.get("role")
    if subject is None or role is None:
        return None

    try:
        exp = payload.get("exp")
        return TokenData(
            subject_id=int(subject),
            role=Role(role),
            display_name=payload.get("name"),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
        )
    except (ValueError, TypeError, ValidationError):
        return None
