import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from guestgate.db.base import Base
from guestgate.db.types import UTCDateTime, utcnow


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # None falls back to the policy default capacity.
    daily_visit_capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # 24 means the location runs around the clock.
    check_in_cutoff_hour: Mapped[int] = mapped_column(Integer, default=23)
    host_concurrent_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
