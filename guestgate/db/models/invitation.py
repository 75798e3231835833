import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SqlEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guestgate.db.base import Base
from guestgate.db.types import UTCDateTime, utcnow


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVATED = "ACTIVATED"
    CHECKED_IN = "CHECKED_IN"
    EXPIRED = "EXPIRED"


class Invitation(Base):
    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    guest_id: Mapped[str] = mapped_column(String(36), ForeignKey("guests.id"), nullable=False, index=True)
    host_id: Mapped[str] = mapped_column(String(36), ForeignKey("hosts.id"), nullable=False, index=True)
    location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    status: Mapped[InvitationStatus] = mapped_column(
        SqlEnum(InvitationStatus), nullable=False, default=InvitationStatus.PENDING
    )
    qr_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_issued_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    qr_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    guest = relationship("Guest")
    host = relationship("Host")
