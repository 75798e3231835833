import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from guestgate.core.config import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
settings = get_settings()

CHECKIN_TOKEN_TYPE = "checkin"


def verify_override_password(password: str | None) -> bool:
    if not password:
        return False
    if settings.OVERRIDE_PASSWORD_HASH:
        return pwd_context.verify(password, settings.OVERRIDE_PASSWORD_HASH)
    if not settings.OVERRIDE_PASSWORD:
        # Nothing configured: overrides are impossible rather than open.
        return False
    return hmac.compare_digest(password.encode("utf-8"), settings.OVERRIDE_PASSWORD.encode("utf-8"))


def _create_token(
    subject: str,
    expires_delta: timedelta,
    token_type: str,
    secret: str,
    extra: Optional[Dict[str, Any]] = None,
    issued_at: datetime | None = None,
) -> str:
    now = issued_at or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": subject,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(subject: str, role: str) -> str:
    return _create_token(
        subject=subject,
        expires_delta=timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        token_type="access",
        secret=settings.JWT_SECRET_KEY,
        extra={"role": role},
    )


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        raise ValueError("Invalid or expired token") from exc


def create_checkin_token(
    invitation_id: str,
    guest_email: str,
    guest_name: str,
    host_id: str,
    issued_at: datetime,
    expires_at: datetime,
) -> str:
    return _create_token(
        subject=invitation_id,
        expires_delta=expires_at - issued_at,
        token_type=CHECKIN_TOKEN_TYPE,
        secret=settings.QR_SIGNING_SECRET,
        extra={"email": guest_email, "name": guest_name, "host": host_id},
        issued_at=issued_at,
    )


def decode_checkin_token(token: str, now: datetime) -> Dict[str, Any]:
    """Verify a check-in token against ``now`` rather than the wall clock.

    Raises ``jose.ExpiredSignatureError`` for expired tokens and
    ``jose.JWTError`` for anything else that fails verification, so callers
    can tell the two apart.
    """
    claims = jwt.decode(
        token,
        settings.QR_SIGNING_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        options={"verify_exp": False},
    )
    if claims.get("type") != CHECKIN_TOKEN_TYPE:
        raise JWTError("Not a check-in token")
    exp = claims.get("exp")
    if exp is None or int(now.timestamp()) >= int(exp):
        raise ExpiredSignatureError("Signature has expired.")
    return claims
