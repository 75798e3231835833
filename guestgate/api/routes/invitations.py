from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from guestgate.api.deps import get_admission_policy, get_clock, require_roles
from guestgate.core.clock import Clock
from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import Host
from guestgate.db.session import get_db
from guestgate.schemas.invitation import InvitationCreate
from guestgate.services.invitation_service import activate_invitation, create_invitation, expire_invitation

router = APIRouter()
any_staff = require_roles("host", "security", "admin")


@router.post("")
def create(payload: InvitationCreate, db: Session = Depends(get_db), host: Host = Depends(any_staff)):
    return {
        "data": create_invitation(
            db,
            host=host,
            guest_email=str(payload.guestEmail),
            guest_name=payload.guestName,
            guest_phone=payload.guestPhone,
            location_id=payload.locationId,
        )
    }


@router.post("/{invitation_id}/activate")
def activate(
    invitation_id: str,
    db: Session = Depends(get_db),
    host: Host = Depends(any_staff),
    policy: AdmissionPolicy = Depends(get_admission_policy),
    clock: Clock = Depends(get_clock),
):
    return {"data": activate_invitation(db, invitation_id, host, policy, clock)}


@router.post("/{invitation_id}/expire")
def expire(invitation_id: str, db: Session = Depends(get_db), host: Host = Depends(any_staff)):
    return {"data": expire_invitation(db, invitation_id, host)}
