import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from guestgate.core.clock import Clock, as_utc
from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import Guest, Location
from guestgate.services.admission_store import AdmissionStore

logger = logging.getLogger(__name__)


class RejectionKind(str, Enum):
    BLACKLISTED = "blacklisted"
    MONTHLY_LIMIT_EXCEEDED = "monthly_limit_exceeded"
    HOST_AT_CAPACITY = "host_at_capacity"
    LOCATION_AT_CAPACITY = "location_at_capacity"
    LOCATION_CLOSED = "location_closed"
    CONSENT_MISSING = "consent_missing"
    CONSENT_EXPIRED_RENEWAL_FAILED = "consent_expired_renewal_failed"
    INVALID_QR_FORMAT = "invalid_qr_format"
    INVALID_SIGNATURE = "invalid_signature"
    QR_EXPIRED = "qr_expired"
    OVERRIDE_PASSWORD_INCORRECT = "override_password_incorrect"
    OVERRIDE_NOT_PERMITTED = "override_not_permitted"
    OVERRIDE_REASON_INVALID = "override_reason_invalid"
    UNKNOWN_HOST = "unknown_host"
    SYSTEM_ERROR = "system_error"


OVERRIDABLE_KINDS = frozenset({RejectionKind.HOST_AT_CAPACITY, RejectionKind.LOCATION_AT_CAPACITY})
SYSTEM_KINDS = frozenset({RejectionKind.CONSENT_EXPIRED_RENEWAL_FAILED, RejectionKind.SYSTEM_ERROR})

REJECTION_MESSAGES = {
    RejectionKind.BLACKLISTED: "This guest is not permitted to enter. Please contact security.",
    RejectionKind.MONTHLY_LIMIT_EXCEEDED: "Guest has reached the monthly visit limit.",
    RejectionKind.HOST_AT_CAPACITY: "Host already has the maximum number of guests checked in.",
    RejectionKind.LOCATION_AT_CAPACITY: "Location has reached its daily visit capacity.",
    RejectionKind.LOCATION_CLOSED: "Location is closed for check-in.",
    RejectionKind.CONSENT_MISSING: "Guest must accept the terms and visitor agreement before checking in.",
    RejectionKind.CONSENT_EXPIRED_RENEWAL_FAILED: "Guest consent has expired and could not be renewed. Please try again.",
    RejectionKind.INVALID_QR_FORMAT: "QR code could not be read. Please re-scan.",
    RejectionKind.INVALID_SIGNATURE: "QR code signature is invalid.",
    RejectionKind.QR_EXPIRED: "QR code has expired. Please request a new one.",
    RejectionKind.OVERRIDE_PASSWORD_INCORRECT: "Override password incorrect.",
    RejectionKind.OVERRIDE_NOT_PERMITTED: "Only security or admin staff can override capacity limits.",
    RejectionKind.OVERRIDE_REASON_INVALID: "Override reason must be between 10 and 500 characters.",
    RejectionKind.UNKNOWN_HOST: "Host could not be found for this check-in.",
    RejectionKind.SYSTEM_ERROR: "Check-in failed due to a system error. Please retry.",
}


def message_for(kind: RejectionKind) -> str:
    return REJECTION_MESSAGES[kind]


@dataclass
class GateResult:
    passed: bool
    kind: RejectionKind | None = None
    message: str = ""
    current_count: int | None = None
    max_count: int | None = None
    next_eligible_at: datetime | None = None
    renewed: bool = False

    @property
    def overridable(self) -> bool:
        return not self.passed and self.kind in OVERRIDABLE_KINDS

    @classmethod
    def ok(cls, renewed: bool = False) -> "GateResult":
        return cls(passed=True, renewed=renewed)

    @classmethod
    def reject(cls, kind: RejectionKind, message: str | None = None, **extra) -> "GateResult":
        return cls(passed=False, kind=kind, message=message or message_for(kind), **extra)


class BlacklistGate:
    def check(self, guest: Guest | None) -> GateResult:
        # Guests we have never seen cannot be blacklisted yet.
        if guest is None or guest.blacklisted_at is None:
            return GateResult.ok()
        return GateResult.reject(RejectionKind.BLACKLISTED)


class AcceptanceGate:
    """Latest consent must be younger than the validity period.

    With ``renew_expired`` a returning guest whose consent lapsed is re-issued
    a fresh record instead of being turned away.
    """

    def __init__(self, store: AdmissionStore, policy: AdmissionPolicy):
        self.store = store
        self.policy = policy

    def check(self, guest_id: str, now: datetime, renew_expired: bool = False) -> GateResult:
        latest = self.store.find_latest_consent(guest_id)
        if latest is None:
            return GateResult.reject(RejectionKind.CONSENT_MISSING)

        age = now - as_utc(latest)
        if age < timedelta(days=self.policy.consent_validity_days):
            return GateResult.ok()

        if not renew_expired:
            return GateResult.reject(
                RejectionKind.CONSENT_MISSING,
                message="Guest consent has expired. Please accept the terms again.",
            )

        try:
            self.store.record_consent(guest_id, now, source="renewal")
        except Exception:
            logger.exception("consent renewal failed guest=%s", guest_id)
            return GateResult.reject(RejectionKind.CONSENT_EXPIRED_RENEWAL_FAILED)

        logger.info("consent renewed guest=%s", guest_id)
        return GateResult.ok(renewed=True)


class RollingWindowLimiter:
    def __init__(self, store: AdmissionStore, policy: AdmissionPolicy, clock: Clock):
        self.store = store
        self.policy = policy
        self.clock = clock

    def check(self, guest_id: str, now: datetime) -> GateResult:
        limit = self.policy.effective_guest_monthly_limit
        window_days = self.policy.rolling_window_days
        # Strictly younger than the window: a visit exactly window_days old drops out.
        visits = self.store.recent_check_ins(guest_id, self.clock.window_start(now, window_days))
        if len(visits) < limit:
            return GateResult.ok()

        oldest = min(as_utc(v) for v in visits)
        next_eligible = self.clock.next_eligible(oldest, window_days)
        return GateResult.reject(
            RejectionKind.MONTHLY_LIMIT_EXCEEDED,
            message=f"Guest has reached the limit of {limit} visits in {window_days} days. "
            f"Next eligible {next_eligible.isoformat()}.",
            current_count=len(visits),
            max_count=limit,
            next_eligible_at=next_eligible,
        )


class ConcurrencyLimiter:
    def __init__(self, store: AdmissionStore, policy: AdmissionPolicy):
        self.store = store
        self.policy = policy

    def check(self, host_id: str, location: Location | None = None) -> GateResult:
        location_limit = location.host_concurrent_limit if location is not None else None
        limit = self.policy.concurrent_limit_for(location_limit)
        # A location with its own limit only counts the host's guests at that site.
        scoped_location = location.id if location is not None and location_limit and location_limit > 0 else None
        active = self.store.count_active_visits_for_host(host_id, scoped_location)
        if active < limit:
            return GateResult.ok()
        return GateResult.reject(
            RejectionKind.HOST_AT_CAPACITY,
            message=f"Host has {active}/{limit} guests checked in.",
            current_count=active,
            max_count=limit,
        )


class CapacityGate:
    def __init__(self, store: AdmissionStore, policy: AdmissionPolicy, clock: Clock):
        self.store = store
        self.policy = policy
        self.clock = clock

    def check_open(self, location: Location) -> GateResult:
        if not location.is_active:
            return GateResult.reject(RejectionKind.LOCATION_CLOSED, message=f"{location.name} is not accepting visits.")
        return GateResult.ok()

    def check(self, location: Location, now: datetime) -> GateResult:
        closed = self.check_open(location)
        if not closed.passed:
            return closed

        capacity = self.policy.daily_capacity_for(location.daily_visit_capacity)
        start, end = self.clock.day_bounds(now)
        today = self.store.count_visits_for_location(location.id, start, end)
        if today < capacity:
            return GateResult.ok()
        return GateResult.reject(
            RejectionKind.LOCATION_AT_CAPACITY,
            message=f"{location.name} is at capacity ({today}/{capacity}) for today.",
            current_count=today,
            max_count=capacity,
        )


class TimeCutoffGate:
    def __init__(self, policy: AdmissionPolicy, clock: Clock):
        self.policy = policy
        self.clock = clock

    def check(self, now: datetime, location: Location | None = None) -> GateResult:
        hour = self.policy.cutoff_hour_for(location.check_in_cutoff_hour if location is not None else None)
        boundary = self.clock.cutoff_boundary(now, hour, self.policy.cutoff_minute)
        if boundary is None or now < boundary:
            return GateResult.ok()
        local = self.clock.local(boundary)
        return GateResult.reject(
            RejectionKind.LOCATION_CLOSED,
            message=f"Check-in closes at {local.strftime('%H:%M')}.",
        )
