import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from guestgate.core.policy import AdmissionPolicy
from guestgate.db.models import Discount, Guest
from guestgate.services.admission_store import AdmissionStore

logger = logging.getLogger(__name__)

DiscountNotifierFn = Callable[[Guest, Discount, datetime], None]


@dataclass
class DiscountOutcome:
    triggered: bool = False
    notified: bool = False
    discount_id: str | None = None


class DiscountTrigger:
    """One-time reward on the guest's milestone visit.

    The unique guest_id on discounts decides concurrent races; whoever loses
    sees ``create_discount`` return None and does nothing.
    """

    def __init__(self, store: AdmissionStore, policy: AdmissionPolicy, notifier: DiscountNotifierFn | None = None):
        self.store = store
        self.policy = policy
        self.notifier = notifier

    def evaluate(self, guest: Guest, now: datetime) -> DiscountOutcome:
        visits = self.store.count_lifetime_visits(guest.id)
        if visits != self.policy.discount_milestone:
            return DiscountOutcome()

        discount = self.store.create_discount(guest.id, now)
        if discount is None:
            return DiscountOutcome()

        logger.info("discount triggered guest=%s visits=%s", guest.email, visits)
        outcome = DiscountOutcome(triggered=True, discount_id=discount.id)
        if self.notifier is None:
            return outcome
        try:
            self.notifier(guest, discount, now)
            outcome.notified = True
        except Exception:
            logger.exception("discount notification failed guest=%s", guest.email)
            # The discount row is already committed; drop only the half-written outbox entry.
            self.store.rollback()
        return outcome
