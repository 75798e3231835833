import threading
from datetime import timedelta

import pytest

from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import HostRole
from guestgate.services.discount_service import DiscountTrigger
from guestgate.services.gates import GateResult, RejectionKind
from guestgate.services.override_service import OverrideAuthorizer, OverrideRequest

REASON = "Board meeting overflow, approved by facilities"


def _guest_with_visits(store, count, now):
    host = store.add_host()
    guest = store.add_guest("ann@example.com")
    for index in range(count):
        store.add_visit(guest, host, now - timedelta(days=40 + index), now - timedelta(days=40 + index, hours=-1))
    return guest


class TestDiscountTrigger:
    @pytest.mark.parametrize("visits", [1, 2, 4])
    def test_off_milestone_is_a_no_op(self, store, now, visits):
        guest = _guest_with_visits(store, visits, now)
        assert not DiscountTrigger(store, AdmissionPolicy()).evaluate(guest, now).triggered
        assert store.discounts == {}

    def test_fires_on_milestone(self, store, now):
        guest = _guest_with_visits(store, 3, now)
        outcome = DiscountTrigger(store, AdmissionPolicy()).evaluate(guest, now)
        assert outcome.triggered
        assert outcome.discount_id == store.discounts[guest.id].id

    def test_existing_discount_is_not_repeated(self, store, now):
        guest = _guest_with_visits(store, 3, now)
        trigger = DiscountTrigger(store, AdmissionPolicy())
        trigger.evaluate(guest, now)
        assert not trigger.evaluate(guest, now).triggered

    def test_concurrent_evaluations_trigger_once(self, store, now):
        guest = _guest_with_visits(store, 3, now)
        results = []
        barrier = threading.Barrier(2)

        def worker():
            barrier.wait()
            results.append(DiscountTrigger(store, AdmissionPolicy()).evaluate(guest, now).triggered)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == [False, True]
        assert len(store.discounts) == 1


class TestOverrideAuthorizer:
    @pytest.fixture
    def capacity_failure(self):
        return [GateResult.reject(RejectionKind.HOST_AT_CAPACITY, current_count=3, max_count=3)]

    def authorizer(self):
        return OverrideAuthorizer(verify_password=lambda password: password == "open-sesame")

    def test_identity_failures_cannot_be_overridden(self, store):
        actor = store.add_host(role=HostRole.admin)
        with pytest.raises(ValueError):
            self.authorizer().authorize(
                [GateResult.reject(RejectionKind.BLACKLISTED)], actor, OverrideRequest(REASON, "open-sesame")
            )

    @pytest.mark.parametrize("reason", [None, "", "   too short  ", "x" * 501])
    def test_reason_bounds(self, store, capacity_failure, reason):
        actor = store.add_host(role=HostRole.security)
        decision = self.authorizer().authorize(capacity_failure, actor, OverrideRequest(reason, "open-sesame"))
        assert decision.kind == RejectionKind.OVERRIDE_REASON_INVALID

    def test_anonymous_actor_not_permitted(self, capacity_failure):
        decision = self.authorizer().authorize(capacity_failure, None, OverrideRequest(REASON, "open-sesame"))
        assert decision.kind == RejectionKind.OVERRIDE_NOT_PERMITTED

    def test_wrong_password(self, store, capacity_failure):
        actor = store.add_host(role=HostRole.security)
        decision = self.authorizer().authorize(capacity_failure, actor, OverrideRequest(REASON, "guess"))
        assert decision.kind == RejectionKind.OVERRIDE_PASSWORD_INCORRECT

    @pytest.mark.parametrize("role", [HostRole.security, HostRole.admin])
    def test_approved(self, store, capacity_failure, role):
        actor = store.add_host(role=role)
        decision = self.authorizer().authorize(capacity_failure, actor, OverrideRequest(f"  {REASON}  ", "open-sesame"))
        assert decision.approved
        assert decision.reason == REASON
        assert decision.actor_id == actor.id
