import logging
from typing import Any

from sqlalchemy.orm import Session

from guestgate.core.clock import Clock
from guestgate.core.exceptions import AppException
from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import Host, HostRole, Invitation, InvitationStatus, Location
from guestgate.services.admission_store import SqlAdmissionStore
from guestgate.services.gates import AcceptanceGate, BlacklistGate, RollingWindowLimiter
from guestgate.services.guest_service import get_or_create_guest
from guestgate.services.qr_service import issue_checkin_token

logger = logging.getLogger(__name__)


def serialize_invitation(invitation: Invitation) -> dict[str, Any]:
    return {
        "id": invitation.id,
        "guestId": invitation.guest_id,
        "hostId": invitation.host_id,
        "locationId": invitation.location_id,
        "status": invitation.status.value,
        "qrToken": invitation.qr_token,
        "qrIssuedAt": invitation.qr_issued_at.isoformat() if invitation.qr_issued_at else None,
        "qrExpiresAt": invitation.qr_expires_at.isoformat() if invitation.qr_expires_at else None,
    }


def _get_owned_invitation(db: Session, invitation_id: str, actor: Host) -> Invitation:
    invitation = db.get(Invitation, invitation_id)
    if not invitation:
        raise AppException("Invitation not found", status_code=404)
    if actor.role == HostRole.host and invitation.host_id != actor.id:
        raise AppException("Invitation belongs to another host", status_code=403)
    return invitation


def create_invitation(
    db: Session,
    host: Host,
    guest_email: str,
    guest_name: str,
    guest_phone: str | None = None,
    location_id: str | None = None,
) -> dict[str, Any]:
    location_id = location_id or host.location_id
    if location_id and not db.get(Location, location_id):
        raise AppException("Location not found", status_code=404)

    guest = get_or_create_guest(db, email=guest_email, name=guest_name, phone=guest_phone)
    invitation = Invitation(
        guest_id=guest.id,
        host_id=host.id,
        location_id=location_id,
        status=InvitationStatus.PENDING,
    )
    db.add(invitation)
    db.commit()
    db.refresh(invitation)
    logger.info("invitation created id=%s guest=%s host=%s", invitation.id, guest.email, host.id)
    return serialize_invitation(invitation)


def activate_invitation(
    db: Session, invitation_id: str, actor: Host, policy: AdmissionPolicy, clock: Clock
) -> dict[str, Any]:
    invitation = _get_owned_invitation(db, invitation_id, actor)
    if invitation.status not in {InvitationStatus.PENDING, InvitationStatus.ACTIVATED}:
        raise AppException(f"Invitation is {invitation.status.value.lower()}", status_code=400)

    now = clock.now()
    store = SqlAdmissionStore(db)
    guest = invitation.guest

    # Cold activation never renews consent on the guest's behalf.
    for result in (
        BlacklistGate().check(guest),
        AcceptanceGate(store, policy).check(guest.id, now),
        RollingWindowLimiter(store, policy, clock).check(guest.id, now),
    ):
        if not result.passed:
            logger.info("invitation activation refused id=%s reason=%s", invitation.id, result.kind.value)
            raise AppException(result.message, status_code=409 if result.next_eligible_at else 400)

    token, expires_at = issue_checkin_token(
        invitation_id=invitation.id,
        guest_email=guest.email,
        guest_name=guest.name,
        host_id=invitation.host_id,
        issued_at=now,
    )
    invitation.qr_token = token
    invitation.qr_issued_at = now
    invitation.qr_expires_at = expires_at
    invitation.status = InvitationStatus.ACTIVATED
    db.commit()
    db.refresh(invitation)
    return serialize_invitation(invitation)


def expire_invitation(db: Session, invitation_id: str, actor: Host) -> dict[str, Any]:
    invitation = _get_owned_invitation(db, invitation_id, actor)
    if invitation.status == InvitationStatus.CHECKED_IN:
        raise AppException("Invitation already used for check-in", status_code=400)
    invitation.status = InvitationStatus.EXPIRED
    db.commit()
    db.refresh(invitation)
    return serialize_invitation(invitation)
