from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings
from app.models.user import STAFF_ROLES

# PBKDF2 avoids bcrypt backend/version issues and the 72-byte bcrypt input limit.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGO = "HS256"

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _encode(claims: dict, expires_in: timedelta) -> str:
    payload = {**claims, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def create_access_token(user_id: str, role: str, expires_minutes: int | None = None) -> str:
    """Short-lived token for a staff user. Carries the role it was issued for."""
    if role not in STAFF_ROLES:
        raise ValueError(f"not a staff role: {role}")
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    return _encode({"sub": user_id, "role": role, "type": ACCESS}, timedelta(minutes=expires_minutes))


def create_refresh_token(user_id: str, expires_days: int | None = None) -> str:
    if expires_days is None:
        expires_days = settings.REFRESH_TOKEN_EXPIRE_DAYS
    return _encode({"sub": user_id, "type": REFRESH}, timedelta(days=expires_days))


def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    """Verify signature and expiry, then check the token kind and subject.

    Raises JWTError for anything a caller should answer with 401.
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
    if payload.get("type") != expected_type:
        raise JWTError(f"expected a {expected_type} token")
    if not payload.get("sub"):
        raise JWTError("token has no subject")
    if expected_type == ACCESS and payload.get("role") not in STAFF_ROLES:
        raise JWTError("token has no staff role")
    return payload
