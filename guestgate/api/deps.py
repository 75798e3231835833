from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from guestgate.core.clock import Clock
from guestgate.core.policy import AdmissionPolicy
from guestgate.core.security import decode_token
from guestgate.db.models import Host
from guestgate.db.session import get_db
from guestgate.services.policy_service import load_policy

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Host | None:
    """Resolves the bearer token to a host, or None for anonymous kiosks."""
    if not credentials:
        return None

    try:
        payload = decode_token(credentials.credentials)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    if payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")

    host = db.get(Host, payload.get("sub"))
    if not host or not host.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Host not found")
    return host


def get_current_host(actor: Host | None = Depends(get_current_actor)) -> Host:
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return actor


def require_roles(*roles: str):
    def dependency(host: Host = Depends(get_current_host)) -> Host:
        if host.role.value not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return host

    return dependency


def get_clock() -> Clock:
    return Clock()


def get_admission_policy(db: Session = Depends(get_db)) -> AdmissionPolicy:
    return load_policy(db)
