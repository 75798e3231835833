import json
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from guestgate.db.models import Discount, Guest, Notification
from guestgate.db.types import utcnow

logger = logging.getLogger(__name__)


def create_notification(db: Session, recipient: str, kind: str, payload: dict) -> Notification:
    notification = Notification(
        recipient=recipient,
        kind=kind,
        payload=json.dumps(payload, default=str),
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


class DiscountNotifier:
    """Queues the milestone reward message in the notification outbox."""

    def __init__(self, db: Session):
        self.db = db

    def __call__(self, guest: Guest, discount: Discount, now: datetime | None = None) -> None:
        create_notification(
            self.db,
            recipient=guest.email,
            kind="discount.earned",
            payload={
                "message": f"Thanks for visiting again, {guest.name}! Your visit reward is ready.",
                "guestId": guest.id,
                "discountId": discount.id,
            },
        )
        discount.notified_at = now or utcnow()
        self.db.commit()
        logger.info("discount notification queued guest=%s discount=%s", guest.email, discount.id)
