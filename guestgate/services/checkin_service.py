import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from guestgate.core.clock import Clock, as_utc
from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import Guest, Host, HostRole, Invitation, InvitationStatus, Location
from guestgate.services.admission_store import AdmissionStore
from guestgate.services.discount_service import DiscountNotifierFn, DiscountTrigger
from guestgate.services.gates import (
    SYSTEM_KINDS,
    AcceptanceGate,
    BlacklistGate,
    CapacityGate,
    ConcurrencyLimiter,
    GateResult,
    RejectionKind,
    RollingWindowLimiter,
    TimeCutoffGate,
    message_for,
)
from guestgate.services.override_service import OverrideAuthorizer, OverrideRequest
from guestgate.services.qr_service import QRTokenValidator, ScanEntry, ScanResult
from guestgate.services.reentry_service import ReEntryDetector

logger = logging.getLogger(__name__)


class CheckInState(str, Enum):
    RECEIVED = "RECEIVED"
    IDENTITY_RESOLVED = "IDENTITY_RESOLVED"
    REENTRY_CHECK = "REENTRY_CHECK"
    GATES_RUNNING = "GATES_RUNNING"
    ADMITTED = "ADMITTED"
    NEEDS_OVERRIDE = "NEEDS_OVERRIDE"
    REJECTED = "REJECTED"
    VISIT_PERSISTED = "VISIT_PERSISTED"
    DISCOUNT_EVAL = "DISCOUNT_EVAL"
    DONE = "DONE"


@dataclass
class CheckInCommand:
    payload: dict[str, Any] | str | None
    location_id: str | None = None
    override: OverrideRequest = field(default_factory=OverrideRequest)


@dataclass
class GuestOutcome:
    success: bool
    guest_email: str
    guest_name: str
    state: CheckInState
    message: str
    reason: RejectionKind | None = None
    visit_id: str | None = None
    checked_in_at: datetime | None = None
    expires_at: datetime | None = None
    discount_sent: bool | None = None
    re_entry: bool | None = None
    host_id: str | None = None
    current_host_id: str | None = None
    current_host_name: str | None = None
    current_count: int | None = None
    max_count: int | None = None
    next_eligible_at: datetime | None = None
    override_applied: bool | None = None
    consent_renewed: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "success": self.success,
            "guestEmail": self.guest_email,
            "guestName": self.guest_name,
            "state": self.state.value,
            "message": self.message,
            "reason": self.reason.value if self.reason else None,
            "visitId": self.visit_id,
            "checkedInAt": self.checked_in_at.isoformat() if self.checked_in_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "discountSent": self.discount_sent,
            "hostId": self.host_id,
            "reEntry": self.re_entry,
            "currentHostId": self.current_host_id,
            "currentHostName": self.current_host_name,
            "currentCount": self.current_count,
            "maxCount": self.max_count,
            "nextEligibleDate": self.next_eligible_at.isoformat() if self.next_eligible_at else None,
            "overrideApplied": self.override_applied,
            "consentRenewed": self.consent_renewed,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class CheckInReport:
    outcomes: list[GuestOutcome] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def summary(self) -> dict[str, int]:
        total = len(self.outcomes)
        return {"total": total, "successful": self.successful, "failed": total - self.successful}

    @property
    def status(self) -> str:
        if self.outcomes and self.successful == len(self.outcomes):
            return "success"
        if self.successful:
            return "partial"
        return "failure"

    @property
    def http_status(self) -> int:
        if self.status == "success":
            return 200
        if self.status == "partial":
            return 207
        reasons = {outcome.reason for outcome in self.outcomes}
        if reasons & SYSTEM_KINDS:
            return 500
        if RejectionKind.OVERRIDE_PASSWORD_INCORRECT in reasons:
            return 401
        if any(outcome.state == CheckInState.NEEDS_OVERRIDE for outcome in self.outcomes):
            return 409
        return 400

    @property
    def message(self) -> str:
        total = len(self.outcomes)
        if self.status == "success":
            return "Check-in successful" if total == 1 else f"All {total} guests checked in"
        if self.status == "partial":
            return f"{self.successful} of {total} guests checked in"
        if total == 1:
            return self.outcomes[0].message
        return "No guests were checked in"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.status == "success",
            "message": self.message,
            "status": self.status,
            "results": [outcome.to_dict() for outcome in self.outcomes],
            "summary": self.summary,
        }


class CheckInOrchestrator:
    """Runs every scanned guest through identity, re-entry, gates and override.

    Guests are handled one after another; each gets its own admission scope
    so a rejection or a database failure never affects the others.
    """

    def __init__(
        self,
        store: AdmissionStore,
        policy: AdmissionPolicy,
        clock: Clock,
        authorizer: OverrideAuthorizer | None = None,
        notifier: DiscountNotifierFn | None = None,
        validator: QRTokenValidator | None = None,
    ):
        self.store = store
        self.policy = policy
        self.clock = clock
        self.validator = validator or QRTokenValidator()
        self.authorizer = authorizer or OverrideAuthorizer()
        self.reentry = ReEntryDetector(store)
        self.blacklist = BlacklistGate()
        self.acceptance = AcceptanceGate(store, policy)
        self.cutoff = TimeCutoffGate(policy, clock)
        self.capacity = CapacityGate(store, policy, clock)
        self.rolling_window = RollingWindowLimiter(store, policy, clock)
        self.concurrency = ConcurrencyLimiter(store, policy)
        self.discounts = DiscountTrigger(store, policy, notifier)

    def run(self, command: CheckInCommand, actor: Host | None = None) -> CheckInReport:
        scan = self.validator.validate(command.payload, self.clock.now())
        report = CheckInReport()
        for entry in scan.entries:
            started = time.perf_counter()
            outcome = self._run_entry(entry, scan, command, actor)
            report.outcomes.append(outcome)
            logger.info(
                "checkin decision guest=%s state=%s reason=%s elapsed_ms=%.1f",
                outcome.guest_email or "-",
                outcome.state.value,
                outcome.reason.value if outcome.reason else "-",
                (time.perf_counter() - started) * 1000,
            )
        return report

    def _run_entry(
        self, entry: ScanEntry, scan: ScanResult, command: CheckInCommand, actor: Host | None
    ) -> GuestOutcome:
        if not entry.ok:
            return self._rejected(entry.email, entry.name, entry.kind, entry.message)
        try:
            return self._admit(entry, scan, command, actor)
        except SQLAlchemyError:
            logger.exception("checkin failed guest=%s", entry.email)
            self.store.rollback()
            return self._rejected(entry.email, entry.name, RejectionKind.SYSTEM_ERROR)

    def _admit(self, entry: ScanEntry, scan: ScanResult, command: CheckInCommand, actor: Host | None) -> GuestOutcome:
        scanned = entry.guest
        now = self.clock.now()
        guest = self.store.get_or_create_guest(scanned.email, scanned.name, scanned.phone)
        email, name = guest.email, guest.name

        invitation: Invitation | None = None
        if scanned.invitation_id:
            invitation = self.store.get_invitation(scanned.invitation_id)
            if invitation is None or invitation.guest_id != guest.id:
                return self._rejected(
                    email, name, RejectionKind.INVALID_QR_FORMAT, "QR code does not match an invitation for this guest."
                )
            if invitation.status == InvitationStatus.EXPIRED:
                return self._rejected(email, name, RejectionKind.QR_EXPIRED, "This invitation has expired.")

        host = self._resolve_host(scanned.host_id, scan, invitation, actor)
        if host is None:
            return self._rejected(email, name, RejectionKind.UNKNOWN_HOST)

        location_id = command.location_id or (invitation.location_id if invitation else None) or host.location_id
        location: Location | None = None
        if location_id:
            location = self.store.get_location(location_id)
            if location is None:
                return self._rejected(email, name, RejectionKind.LOCATION_CLOSED, "Unknown check-in location.")

        keys = [f"guest:{guest.id}", f"host:{host.id}"]
        if location is not None:
            keys.append(f"location:{location.id}")

        with self.store.admission_scope(keys):
            self.store.close_expired_visits(now, guest_id=guest.id, host_id=host.id)

            reentry = self.reentry.detect(guest.id, host.id)
            if reentry is not None:
                return self._reentry_outcome(email, name, reentry)

            blocking, quota, renewed = self._run_gates(guest, host, location, now)
            if blocking is not None:
                return self._rejected(email, name, blocking.kind, blocking.message, gate=blocking)

            override_reason = override_by = None
            if quota:
                decision = None
                if command.override.attempted:
                    decision = self.authorizer.authorize(quota, actor, command.override)
                if decision is None or not decision.approved:
                    return self._override_refused(email, name, quota, decision)
                override_reason, override_by = decision.reason, decision.actor_id

            visit = self.store.create_visit(
                guest_id=guest.id,
                host_id=host.id,
                location_id=location.id if location else None,
                invitation_id=invitation.id if invitation else None,
                checked_in_at=now,
                expires_at=self.clock.visit_expiration(now),
                override_reason=override_reason,
                override_by=override_by,
            )
            if override_by:
                self.store.record_audit(
                    actor_id=override_by,
                    action="checkin.override",
                    resource_type="visit",
                    resource_id=visit.id,
                    meta={
                        "guestEmail": email,
                        "hostId": host.id,
                        "reason": override_reason,
                        "kinds": [failure.kind.value for failure in quota],
                    },
                )
            if invitation is not None:
                self.store.mark_invitation_checked_in(invitation)

        outcome = GuestOutcome(
            success=True,
            guest_email=email,
            guest_name=name,
            state=CheckInState.VISIT_PERSISTED,
            message=f"{name} checked in" + (" with override" if override_by else ""),
            visit_id=visit.id,
            host_id=host.id,
            checked_in_at=as_utc(visit.checked_in_at),
            expires_at=as_utc(visit.expires_at),
            override_applied=bool(override_by) or None,
            consent_renewed=renewed or None,
        )

        outcome.state = CheckInState.DISCOUNT_EVAL
        try:
            discount = self.discounts.evaluate(guest, now)
            outcome.discount_sent = discount.triggered
        except Exception:
            # The visit is already committed; a reward failure must not undo it.
            logger.exception("discount evaluation failed guest=%s", email)
            self.store.rollback()
            outcome.discount_sent = False
        outcome.state = CheckInState.DONE
        return outcome

    def _resolve_host(
        self, entry_host_id: str | None, scan: ScanResult, invitation: Invitation | None, actor: Host | None
    ) -> Host | None:
        # An invitation pins its host; a scanned h or hostId cannot move it.
        host_id = (invitation.host_id if invitation else None) or entry_host_id or scan.host_id
        if not host_id and actor is not None and actor.role == HostRole.host:
            host_id = actor.id
        if not host_id:
            return None
        host = self.store.get_host(host_id)
        if host is None or host.is_active is False:
            return None
        return host

    def _run_gates(
        self, guest: Guest, host: Host, location: Location | None, now: datetime
    ) -> tuple[GateResult | None, list[GateResult], bool]:
        """Returns (first blocking failure, overridable failures, consent renewed)."""
        checks = [
            lambda: self.blacklist.check(guest),
            lambda: self.acceptance.check(guest.id, now, renew_expired=True),
            lambda: self.cutoff.check(now, location),
        ]
        if location is not None:
            checks.append(lambda: self.capacity.check_open(location))
        checks.append(lambda: self.rolling_window.check(guest.id, now))
        checks.append(lambda: self.concurrency.check(host.id, location))
        if location is not None:
            checks.append(lambda: self.capacity.check(location, now))

        quota: list[GateResult] = []
        renewed = False
        for check in checks:
            result = check()
            renewed = renewed or result.renewed
            if result.passed:
                continue
            if not result.overridable:
                return result, quota, renewed
            quota.append(result)
        return None, quota, renewed

    def _reentry_outcome(self, email: str, name: str, reentry) -> GuestOutcome:
        visit = reentry.visit
        owner = self.store.get_host(visit.host_id)
        owner_name = owner.name if owner else None
        if reentry.same_host:
            message = f"{name} is already checked in"
        else:
            message = f"{name} is already checked in with {owner_name or 'another host'}"
        return GuestOutcome(
            success=True,
            guest_email=email,
            guest_name=name,
            state=CheckInState.DONE,
            message=message,
            visit_id=visit.id,
            checked_in_at=as_utc(visit.checked_in_at),
            expires_at=as_utc(visit.expires_at),
            host_id=visit.host_id,
            re_entry=True,
            current_host_id=visit.host_id,
            current_host_name=owner_name,
        )

    def _override_refused(self, email: str, name: str, quota: list[GateResult], decision) -> GuestOutcome:
        primary = quota[0]
        if decision is not None and decision.kind == RejectionKind.OVERRIDE_PASSWORD_INCORRECT:
            return self._rejected(email, name, decision.kind, decision.message, gate=primary)
        kind = decision.kind if decision is not None else primary.kind
        message = decision.message if decision is not None else " ".join(f.message for f in quota)
        return GuestOutcome(
            success=False,
            guest_email=email,
            guest_name=name,
            state=CheckInState.NEEDS_OVERRIDE,
            message=message,
            reason=kind,
            current_count=primary.current_count,
            max_count=primary.max_count,
        )

    @staticmethod
    def _rejected(
        email: str, name: str, kind: RejectionKind, message: str | None = None, gate: GateResult | None = None
    ) -> GuestOutcome:
        return GuestOutcome(
            success=False,
            guest_email=email,
            guest_name=name,
            state=CheckInState.REJECTED,
            message=message or message_for(kind),
            reason=kind,
            current_count=gate.current_count if gate else None,
            max_count=gate.max_count if gate else None,
            next_eligible_at=gate.next_eligible_at if gate else None,
        )
