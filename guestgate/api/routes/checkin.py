import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from guestgate.api.deps import get_admission_policy, get_clock, get_current_actor, get_current_host
from guestgate.core.clock import Clock
from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import Host
from guestgate.db.session import get_db
from guestgate.schemas.checkin import CheckInRequest
from guestgate.services.admission_store import SqlAdmissionStore
from guestgate.services.checkin_service import CheckInCommand, CheckInOrchestrator
from guestgate.services.notification_service import DiscountNotifier
from guestgate.services.override_service import OverrideRequest
from guestgate.services.visit_service import check_out_visit
from guestgate.socket.events import broadcast_checkin
from guestgate.socket.server import sio

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("")
async def check_in(
    payload: CheckInRequest,
    db: Session = Depends(get_db),
    actor: Host | None = Depends(get_current_actor),
    policy: AdmissionPolicy = Depends(get_admission_policy),
    clock: Clock = Depends(get_clock),
):
    orchestrator = CheckInOrchestrator(
        SqlAdmissionStore(db),
        policy,
        clock,
        notifier=DiscountNotifier(db),
    )
    command = CheckInCommand(
        payload=payload.scan_payload(),
        location_id=payload.locationId,
        override=OverrideRequest(reason=payload.overrideReason, password=payload.overridePassword),
    )
    report = orchestrator.run(command, actor)
    body = report.to_dict()
    logger.info(
        "checkin request actor=%s status=%s summary=%s",
        actor.id if actor else "-",
        report.status,
        report.summary,
    )
    await broadcast_checkin(sio, body["results"])
    return JSONResponse(status_code=report.http_status, content=body)


@router.post("/visits/{visit_id}/checkout")
def check_out(
    visit_id: str,
    db: Session = Depends(get_db),
    host: Host = Depends(get_current_host),
    clock: Clock = Depends(get_clock),
):
    return {"data": check_out_visit(db, visit_id, host, now=clock.now())}
