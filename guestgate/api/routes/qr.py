import json

from fastapi import APIRouter, Depends

from guestgate.api.deps import get_clock, require_roles
from guestgate.core.clock import Clock
from guestgate.db.models import Host
from guestgate.schemas.qr import QRBatchIssueRequest, QRValidateRequest
from guestgate.services.qr_service import QRTokenValidator, sign_batch_payload

router = APIRouter()


@router.post("/batch")
def issue_batch(
    payload: QRBatchIssueRequest,
    host: Host = Depends(require_roles("host", "security", "admin")),
):
    signed = sign_batch_payload(
        guests=[{"e": str(item.e).lower(), "n": item.n, "p": item.p} for item in payload.guests],
        host_id=host.id,
        event_id=payload.eventId,
        expires_at=payload.expiresAt,
    )
    return {"data": {"payload": signed, "qrData": json.dumps(signed, separators=(",", ":"))}}


@router.post("/validate")
def validate_qr(payload: QRValidateRequest, clock: Clock = Depends(get_clock)):
    result = QRTokenValidator().validate(payload.qrData, clock.now())
    return {
        "data": {
            "valid": all(entry.ok for entry in result.entries),
            "source": result.source,
            "hostId": result.host_id,
            "eventId": result.event_id,
            "entries": [
                {
                    "valid": entry.ok,
                    "guestEmail": entry.email,
                    "guestName": entry.name,
                    "hostId": entry.guest.host_id if entry.guest else None,
                    "invitationId": entry.guest.invitation_id if entry.guest else None,
                    "reason": entry.kind.value if entry.kind else None,
                    "message": entry.message or None,
                }
                for entry in result.entries
            ],
        }
    }
