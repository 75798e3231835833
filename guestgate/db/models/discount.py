import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from guestgate.db.base import Base
from guestgate.db.types import UTCDateTime, utcnow


class Discount(Base):
    __tablename__ = "discounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # One reward per guest, ever: the unique index is the idempotency guard.
    guest_id: Mapped[str] = mapped_column(String(36), ForeignKey("guests.id"), nullable=False, unique=True, index=True)
    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
