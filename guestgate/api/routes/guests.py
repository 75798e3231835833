from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from guestgate.api.deps import get_clock
from guestgate.core.clock import Clock
from guestgate.db.session import get_db
from guestgate.schemas.invitation import AcceptTermsRequest
from guestgate.services.guest_service import record_acceptance

router = APIRouter()


@router.post("/{email}/accept-terms")
def accept_terms(
    email: str,
    payload: AcceptTermsRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    row = record_acceptance(
        db,
        email=email,
        name=payload.name,
        terms_version=payload.termsVersion,
        visitor_agreement_version=payload.visitorAgreementVersion,
        source="kiosk",
        accepted_at=clock.now(),
    )
    return {
        "data": {
            "guestId": row.guest_id,
            "acceptedAt": row.accepted_at.isoformat(),
            "termsVersion": row.terms_version,
            "visitorAgreementVersion": row.visitor_agreement_version,
        }
    }
