from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from guestgate.api.deps import require_roles
from guestgate.db.models import Host
from guestgate.db.session import get_db
from guestgate.schemas.admin import BlacklistRequest, LocationUpdate, PolicyUpdate
from guestgate.services.audit_service import list_audit_logs
from guestgate.services.guest_service import set_blacklisted
from guestgate.services.policy_service import get_policy_row, serialize_policy, update_location, update_policy

router = APIRouter()
admin_only = require_roles("admin")


@router.get("/policies")
def get_policies(db: Session = Depends(get_db), _: Host = Depends(admin_only)):
    return {"data": serialize_policy(get_policy_row(db))}


@router.put("/policies")
def put_policies(payload: PolicyUpdate, db: Session = Depends(get_db), admin: Host = Depends(admin_only)):
    return {
        "data": update_policy(
            db,
            actor_id=admin.id,
            guest_monthly_limit=payload.guestMonthlyLimit,
            host_concurrent_limit=payload.hostConcurrentLimit,
        )
    }


@router.put("/locations/{location_id}")
def put_location(
    location_id: str,
    payload: LocationUpdate,
    db: Session = Depends(get_db),
    admin: Host = Depends(admin_only),
):
    return {"data": update_location(db, location_id, admin.id, payload.model_dump(exclude_unset=True))}


@router.post("/guests/{guest_id}/blacklist")
def toggle_blacklist(
    guest_id: str,
    payload: BlacklistRequest,
    db: Session = Depends(get_db),
    admin: Host = Depends(admin_only),
):
    return {"data": set_blacklisted(db, guest_id, payload.action, admin.id)}


@router.get("/audit-logs")
def audit_logs(
    action: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: Host = Depends(admin_only),
):
    return {"data": list_audit_logs(db, action=action, limit=limit)}
