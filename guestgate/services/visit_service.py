from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from guestgate.core.clock import as_utc
from guestgate.core.exceptions import AppException
from guestgate.db.models import Host, HostRole, Visit
from guestgate.db.types import utcnow


def serialize_visit(visit: Visit) -> dict[str, Any]:
    return {
        "id": visit.id,
        "guestId": visit.guest_id,
        "hostId": visit.host_id,
        "locationId": visit.location_id,
        "invitationId": visit.invitation_id,
        "checkedInAt": visit.checked_in_at.isoformat(),
        "checkedOutAt": visit.checked_out_at.isoformat() if visit.checked_out_at else None,
        "expiresAt": visit.expires_at.isoformat(),
        "overrideReason": visit.override_reason,
        "overrideBy": visit.override_by,
    }


def check_out_visit(db: Session, visit_id: str, actor: Host | None, now: datetime | None = None) -> dict[str, Any]:
    visit = db.get(Visit, visit_id)
    if not visit:
        raise AppException("Visit not found", status_code=404)
    if actor is not None and actor.role == HostRole.host and visit.host_id != actor.id:
        raise AppException("Visit belongs to another host", status_code=403)
    if visit.checked_out_at is not None:
        raise AppException("Guest is already checked out", status_code=400)

    now = as_utc(now or utcnow())
    # A visit past its window is closed at the expiry instant, not at the late checkout.
    visit.checked_out_at = min(now, as_utc(visit.expires_at))
    db.commit()
    db.refresh(visit)
    return serialize_visit(visit)
