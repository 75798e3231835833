import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guestgate.db.base import Base
from guestgate.db.types import UTCDateTime


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        Index("ix_visits_host_open", "host_id", "checked_out_at"),
        Index("ix_visits_location_checked_in", "location_id", "checked_in_at"),
        Index("ix_visits_guest_checked_in", "guest_id", "checked_in_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    guest_id: Mapped[str] = mapped_column(String(36), ForeignKey("guests.id"), nullable=False)
    host_id: Mapped[str] = mapped_column(String(36), ForeignKey("hosts.id"), nullable=False)
    location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    invitation_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("invitations.id"), nullable=True)
    checked_in_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    checked_out_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    override_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    override_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("hosts.id"), nullable=True)

    guest = relationship("Guest")
    host = relationship("Host", foreign_keys=[host_id])
