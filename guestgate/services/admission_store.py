import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, ContextManager, Iterable, Iterator, Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from guestgate.db.models import (
    Acceptance,
    AuditLog,
    Discount,
    Guest,
    Host,
    Invitation,
    InvitationStatus,
    Location,
    Visit,
)
from guestgate.services import guest_service

logger = logging.getLogger(__name__)


class AdmissionStore(Protocol):
    """Everything the check-in pipeline reads or writes.

    Gates only use the count/find methods; the orchestrator owns the writes.
    """

    def get_or_create_guest(self, email: str, name: str, phone: str | None = None) -> Guest: ...

    def get_host(self, host_id: str) -> Host | None: ...

    def get_location(self, location_id: str) -> Location | None: ...

    def get_invitation(self, invitation_id: str) -> Invitation | None: ...

    def recent_check_ins(self, guest_id: str, after: datetime) -> list[datetime]: ...

    def count_active_visits_for_host(self, host_id: str, location_id: str | None = None) -> int: ...

    def count_visits_for_location(self, location_id: str, start: datetime, end: datetime) -> int: ...

    def find_latest_consent(self, guest_id: str) -> datetime | None: ...

    def record_consent(self, guest_id: str, accepted_at: datetime, source: str = "renewal") -> None: ...

    def find_open_visit(self, guest_id: str) -> Visit | None: ...

    def count_lifetime_visits(self, guest_id: str) -> int: ...

    def close_expired_visits(self, now: datetime, guest_id: str | None = None, host_id: str | None = None) -> int: ...

    def create_visit(
        self,
        guest_id: str,
        host_id: str,
        location_id: str | None,
        invitation_id: str | None,
        checked_in_at: datetime,
        expires_at: datetime,
        override_reason: str | None = None,
        override_by: str | None = None,
    ) -> Visit: ...

    def mark_invitation_checked_in(self, invitation: Invitation) -> None: ...

    def record_audit(
        self,
        actor_id: str | None,
        action: str,
        resource_type: str,
        resource_id: str | None,
        meta: dict[str, Any] | None = None,
    ) -> None: ...

    def create_discount(self, guest_id: str, triggered_at: datetime) -> Discount | None: ...

    def admission_scope(self, keys: Iterable[str]) -> ContextManager[None]: ...

    def rollback(self) -> None: ...


class KeyedLocks:
    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[list[str]]:
        # Sorted acquisition keeps two overlapping key sets from deadlocking.
        ordered = sorted(set(keys))
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()


admission_locks = KeyedLocks()

_LOCK_TARGETS = {"guest": Guest, "host": Host, "location": Location}


class SqlAdmissionStore:
    def __init__(self, db: Session, locks: KeyedLocks | None = None):
        self.db = db
        self.locks = locks or admission_locks

    def get_or_create_guest(self, email: str, name: str, phone: str | None = None) -> Guest:
        return guest_service.get_or_create_guest(self.db, email=email, name=name, phone=phone)

    def get_host(self, host_id: str) -> Host | None:
        return self.db.get(Host, host_id)

    def get_location(self, location_id: str) -> Location | None:
        return self.db.get(Location, location_id)

    def get_invitation(self, invitation_id: str) -> Invitation | None:
        return self.db.get(Invitation, invitation_id)

    def recent_check_ins(self, guest_id: str, after: datetime) -> list[datetime]:
        rows = self.db.execute(
            select(Visit.checked_in_at)
            .where(Visit.guest_id == guest_id, Visit.checked_in_at > after)
            .order_by(Visit.checked_in_at.asc())
        ).scalars()
        return list(rows)

    def count_active_visits_for_host(self, host_id: str, location_id: str | None = None) -> int:
        stmt = select(func.count(Visit.id)).where(
            Visit.host_id == host_id,
            Visit.checked_in_at.is_not(None),
            Visit.checked_out_at.is_(None),
        )
        if location_id:
            stmt = stmt.where(Visit.location_id == location_id)
        return int(self.db.execute(stmt).scalar_one())

    def count_visits_for_location(self, location_id: str, start: datetime, end: datetime) -> int:
        stmt = select(func.count(Visit.id)).where(
            Visit.location_id == location_id,
            Visit.checked_in_at >= start,
            Visit.checked_in_at < end,
        )
        return int(self.db.execute(stmt).scalar_one())

    def find_latest_consent(self, guest_id: str) -> datetime | None:
        return self.db.execute(
            select(Acceptance.accepted_at)
            .where(Acceptance.guest_id == guest_id)
            .order_by(Acceptance.accepted_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record_consent(self, guest_id: str, accepted_at: datetime, source: str = "renewal") -> None:
        with self.db.begin_nested():
            self.db.add(Acceptance(guest_id=guest_id, accepted_at=accepted_at, source=source))
            self.db.flush()

    def find_open_visit(self, guest_id: str) -> Visit | None:
        return (
            self.db.query(Visit)
            .filter(Visit.guest_id == guest_id, Visit.checked_out_at.is_(None))
            .order_by(Visit.checked_in_at.desc())
            .first()
        )

    def count_lifetime_visits(self, guest_id: str) -> int:
        return int(
            self.db.execute(
                select(func.count(Visit.id)).where(Visit.guest_id == guest_id, Visit.checked_in_at.is_not(None))
            ).scalar_one()
        )

    def close_expired_visits(self, now: datetime, guest_id: str | None = None, host_id: str | None = None) -> int:
        stmt = select(Visit).where(Visit.checked_out_at.is_(None), Visit.expires_at <= now)
        owners = []
        if guest_id:
            owners.append(Visit.guest_id == guest_id)
        if host_id:
            owners.append(Visit.host_id == host_id)
        if owners:
            stmt = stmt.where(or_(*owners))
        # Id order keeps overlapping sweeps from locking rows in opposite orders.
        stale = self.db.execute(stmt.order_by(Visit.id).with_for_update()).scalars().all()
        for visit in stale:
            visit.checked_out_at = visit.expires_at
        if stale:
            self.db.flush()
            logger.info("closed %s expired visit(s)", len(stale))
        return len(stale)

    def create_visit(
        self,
        guest_id: str,
        host_id: str,
        location_id: str | None,
        invitation_id: str | None,
        checked_in_at: datetime,
        expires_at: datetime,
        override_reason: str | None = None,
        override_by: str | None = None,
    ) -> Visit:
        visit = Visit(
            guest_id=guest_id,
            host_id=host_id,
            location_id=location_id,
            invitation_id=invitation_id,
            checked_in_at=checked_in_at,
            expires_at=expires_at,
            override_reason=override_reason,
            override_by=override_by,
        )
        self.db.add(visit)
        self.db.flush()
        return visit

    def mark_invitation_checked_in(self, invitation: Invitation) -> None:
        invitation.status = InvitationStatus.CHECKED_IN
        self.db.flush()

    def record_audit(
        self,
        actor_id: str | None,
        action: str,
        resource_type: str,
        resource_id: str | None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        self.db.add(
            AuditLog(
                actor_id=actor_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                meta_json=json.dumps(meta or {}, ensure_ascii=True, default=str),
            )
        )
        self.db.flush()

    def create_discount(self, guest_id: str, triggered_at: datetime) -> Discount | None:
        discount = Discount(guest_id=guest_id, triggered_at=triggered_at)
        try:
            with self.db.begin_nested():
                self.db.add(discount)
                self.db.flush()
        except IntegrityError:
            # A concurrent check-in already created it.
            return None
        self.db.commit()
        return discount

    def rollback(self) -> None:
        self.db.rollback()

    def _lock_rows(self, keys: list[str]) -> None:
        for key in keys:
            kind, _, ident = key.partition(":")
            model = _LOCK_TARGETS.get(kind)
            if model is None or not ident:
                continue
            # Row lock on backends that support it; SQLite ignores FOR UPDATE
            # and relies on the process-local locks.
            self.db.execute(select(model.id).where(model.id == ident).with_for_update())

    @contextmanager
    def admission_scope(self, keys: Iterable[str]) -> Iterator[None]:
        # End the read transaction opened by the lookups so the scope sees
        # every admission committed while it waited for the locks.
        self.db.commit()
        with self.locks.hold(keys) as ordered:
            try:
                self._lock_rows(ordered)
                yield
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
