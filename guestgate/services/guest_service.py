import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from guestgate.core.exceptions import AppException
from guestgate.db.models import Acceptance, Guest
from guestgate.db.types import utcnow
from guestgate.services.audit_service import write_audit_log

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def find_guest_by_email(db: Session, email: str) -> Guest | None:
    return db.query(Guest).filter(Guest.email == normalize_email(email)).first()


def get_or_create_guest(db: Session, email: str, name: str, phone: str | None = None) -> Guest:
    key = normalize_email(email)
    display_name = (name or "").strip() or key
    guest = db.query(Guest).filter(Guest.email == key).first()
    if guest:
        changed = False
        if guest.name != display_name:
            guest.name = display_name
            changed = True
        if phone and guest.phone != phone:
            guest.phone = phone
            changed = True
        if changed:
            db.commit()
        return guest

    guest = Guest(email=key, name=display_name, phone=phone)
    db.add(guest)
    try:
        db.commit()
    except IntegrityError:
        # Another kiosk created the same guest between our read and insert.
        db.rollback()
        guest = db.query(Guest).filter(Guest.email == key).first()
        if guest is None:
            raise
        return guest
    db.refresh(guest)
    logger.info("guest created email=%s", key)
    return guest


def record_acceptance(
    db: Session,
    email: str,
    name: str | None = None,
    terms_version: str = "1.0",
    visitor_agreement_version: str = "1.0",
    source: str = "invitation",
    accepted_at: datetime | None = None,
) -> Acceptance:
    guest = find_guest_by_email(db, email)
    if guest is None:
        if not name:
            raise AppException("Guest not found", status_code=404)
        guest = get_or_create_guest(db, email=email, name=name)

    row = Acceptance(
        guest_id=guest.id,
        accepted_at=accepted_at or utcnow(),
        terms_version=terms_version,
        visitor_agreement_version=visitor_agreement_version,
        source=source,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def set_blacklisted(db: Session, guest_id: str, action: str, actor_id: str | None) -> dict[str, Any]:
    if action not in {"blacklist", "unblacklist"}:
        raise AppException('Invalid action. Must be "blacklist" or "unblacklist"', status_code=400)

    guest = db.query(Guest).filter(Guest.id == guest_id).first()
    if not guest:
        raise AppException("Guest not found", status_code=404)

    if action == "blacklist":
        if guest.blacklisted_at:
            raise AppException("Guest is already blacklisted", status_code=400)
        guest.blacklisted_at = utcnow()
        message = f"{guest.name} has been blacklisted"
    else:
        if not guest.blacklisted_at:
            raise AppException("Guest is not blacklisted", status_code=400)
        guest.blacklisted_at = None
        message = f"{guest.name} has been removed from blacklist"

    db.commit()
    write_audit_log(
        db,
        actor_id=actor_id,
        action=f"guest.{action}",
        resource_type="guest",
        resource_id=guest.id,
        meta={"email": guest.email},
    )
    return {
        "id": guest.id,
        "email": guest.email,
        "name": guest.name,
        "blacklistedAt": guest.blacklisted_at.isoformat() if guest.blacklisted_at else None,
        "message": message,
    }
