from typing import Any

from sqlalchemy.orm import Session

from guestgate.core.exceptions import AppException
from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import POLICY_ROW_ID, AdmissionPolicyRow, Location
from guestgate.services.audit_service import write_audit_log


def get_policy_row(db: Session) -> AdmissionPolicyRow:
    row = db.get(AdmissionPolicyRow, POLICY_ROW_ID)
    if row is None:
        defaults = AdmissionPolicy.from_settings()
        row = AdmissionPolicyRow(
            id=POLICY_ROW_ID,
            guest_monthly_limit=defaults.guest_monthly_limit,
            host_concurrent_limit=defaults.host_concurrent_limit,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def load_policy(db: Session) -> AdmissionPolicy:
    row = db.get(AdmissionPolicyRow, POLICY_ROW_ID)
    policy = AdmissionPolicy.from_settings()
    if row is None:
        return policy
    return policy.with_limits(row.guest_monthly_limit, row.host_concurrent_limit)


def serialize_policy(row: AdmissionPolicyRow) -> dict[str, Any]:
    effective = AdmissionPolicy.from_settings().with_limits(row.guest_monthly_limit, row.host_concurrent_limit)
    return {
        "guestMonthlyLimit": effective.guest_monthly_limit,
        "hostConcurrentLimit": effective.host_concurrent_limit,
        "updatedBy": row.updated_by,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def update_policy(
    db: Session,
    actor_id: str,
    guest_monthly_limit: int | None = None,
    host_concurrent_limit: int | None = None,
) -> dict[str, Any]:
    if guest_monthly_limit is None and host_concurrent_limit is None:
        raise AppException("Nothing to update", status_code=400)

    row = get_policy_row(db)
    before = {"guestMonthlyLimit": row.guest_monthly_limit, "hostConcurrentLimit": row.host_concurrent_limit}
    if guest_monthly_limit is not None:
        row.guest_monthly_limit = guest_monthly_limit
    if host_concurrent_limit is not None:
        row.host_concurrent_limit = host_concurrent_limit
    row.updated_by = actor_id
    db.commit()
    db.refresh(row)

    write_audit_log(
        db,
        actor_id=actor_id,
        action="policy.update",
        resource_type="admission_policy",
        resource_id=str(row.id),
        meta={
            "before": before,
            "after": {"guestMonthlyLimit": row.guest_monthly_limit, "hostConcurrentLimit": row.host_concurrent_limit},
        },
    )
    return serialize_policy(row)


def serialize_location(location: Location) -> dict[str, Any]:
    return {
        "id": location.id,
        "name": location.name,
        "isActive": location.is_active,
        "dailyVisitCapacity": location.daily_visit_capacity,
        "checkInCutoffHour": location.check_in_cutoff_hour,
        "hostConcurrentLimit": location.host_concurrent_limit,
    }


def update_location(db: Session, location_id: str, actor_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    location = db.get(Location, location_id)
    if not location:
        raise AppException("Location not found", status_code=404)

    columns = {
        "name": "name",
        "isActive": "is_active",
        "dailyVisitCapacity": "daily_visit_capacity",
        "checkInCutoffHour": "check_in_cutoff_hour",
        "hostConcurrentLimit": "host_concurrent_limit",
    }
    applied = {}
    for key, value in changes.items():
        column = columns.get(key)
        if column is None:
            continue
        setattr(location, column, value)
        applied[key] = value
    if not applied:
        raise AppException("Nothing to update", status_code=400)
    db.commit()
    db.refresh(location)

    write_audit_log(
        db,
        actor_id=actor_id,
        action="location.update",
        resource_type="location",
        resource_id=location.id,
        meta=applied,
    )
    return serialize_location(location)
