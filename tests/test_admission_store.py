from datetime import timedelta

from guestgate.db.models import Acceptance, Discount, Guest, Visit
from guestgate.services.admission_store import KeyedLocks, SqlAdmissionStore


def _visit(db_session, guest, host, checked_in_at, expires_at, location=None):
    visit = Visit(
        guest_id=guest.id,
        host_id=host.id,
        location_id=location.id if location else None,
        checked_in_at=checked_in_at,
        expires_at=expires_at,
    )
    db_session.add(visit)
    db_session.commit()
    return visit


def test_get_or_create_guest_is_keyed_by_lowercase_email(db_session):
    store = SqlAdmissionStore(db_session)
    first = store.get_or_create_guest("Ann@Example.com", "Ann")
    second = store.get_or_create_guest("ann@example.com", "Ann B.")
    assert first.id == second.id
    assert second.name == "Ann B."
    assert db_session.query(Guest).count() == 1


def test_counts(db_session, host, location, make_guest, now):
    store = SqlAdmissionStore(db_session)
    ann = make_guest("ann@example.com")
    bob = make_guest("bob@example.com")
    _visit(db_session, ann, host, now - timedelta(hours=1), now + timedelta(hours=5), location)
    closed = _visit(db_session, bob, host, now - timedelta(hours=2), now + timedelta(hours=5), location)
    closed.checked_out_at = now - timedelta(minutes=5)
    db_session.commit()

    assert store.count_active_visits_for_host(host.id) == 1
    assert store.count_active_visits_for_host(host.id, "elsewhere") == 0
    assert store.count_visits_for_location(location.id, now - timedelta(hours=3), now) == 2
    assert store.recent_check_ins(ann.id, now - timedelta(days=30)) == [now - timedelta(hours=1)]
    assert store.find_open_visit(ann.id).id is not None
    assert store.find_open_visit(bob.id) is None
    assert store.count_lifetime_visits(bob.id) == 1


def test_latest_consent_and_renewal(db_session, make_guest, now):
    store = SqlAdmissionStore(db_session)
    guest = make_guest("ann@example.com", consent_age=timedelta(days=400))
    store.record_consent(guest.id, now)
    db_session.commit()
    assert store.find_latest_consent(guest.id) == now
    assert db_session.query(Acceptance).filter(Acceptance.source == "renewal").count() == 1


def test_close_expired_visits(db_session, host, make_guest, now):
    store = SqlAdmissionStore(db_session)
    guest = make_guest("ann@example.com")
    stale = _visit(db_session, guest, host, now - timedelta(days=2), now - timedelta(days=1))
    assert store.close_expired_visits(now) == 1
    db_session.commit()
    db_session.refresh(stale)
    assert stale.checked_out_at == stale.expires_at


def test_create_discount_is_idempotent(db_session, make_guest, now):
    store = SqlAdmissionStore(db_session)
    guest = make_guest("ann@example.com")
    assert store.create_discount(guest.id, now) is not None
    assert store.create_discount(guest.id, now) is None
    assert db_session.query(Discount).count() == 1


def test_admission_scope_rolls_back_on_error(db_session, host, make_guest, now):
    store = SqlAdmissionStore(db_session)
    guest = make_guest("ann@example.com")
    try:
        with store.admission_scope([f"guest:{guest.id}", f"host:{host.id}"]):
            store.create_visit(guest.id, host.id, None, None, now, now + timedelta(hours=1))
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert db_session.query(Visit).count() == 0


def test_keyed_locks_acquire_in_sorted_order():
    locks = KeyedLocks()
    with locks.hold(["host:b", "guest:a", "host:b"]) as ordered:
        assert ordered == ["guest:a", "host:b"]


def test_close_expired_visits_scoped_to_guest_and_host(db_session, host, security, make_guest, now):
    store = SqlAdmissionStore(db_session)
    ann = make_guest("ann@example.com")
    bob = make_guest("bob@example.com")
    own = _visit(db_session, ann, security, now - timedelta(days=2), now - timedelta(days=1))
    hosted = _visit(db_session, bob, host, now - timedelta(days=2), now - timedelta(days=1))
    unrelated = _visit(db_session, bob, security, now - timedelta(days=2), now - timedelta(days=1))

    assert store.close_expired_visits(now, guest_id=ann.id, host_id=host.id) == 2
    db_session.commit()
    for visit in (own, hosted, unrelated):
        db_session.refresh(visit)

    assert own.checked_out_at == own.expires_at
    assert hosted.checked_out_at == hosted.expires_at
    assert unrelated.checked_out_at is None

