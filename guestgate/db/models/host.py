import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Enum as SqlEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guestgate.db.base import Base
from guestgate.db.types import UTCDateTime, utcnow


class HostRole(str, Enum):
    host = "host"
    security = "security"
    admin = "admin"


OVERRIDE_ROLES = frozenset({HostRole.security, HostRole.admin})


class Host(Base):
    __tablename__ = "hosts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[HostRole] = mapped_column(SqlEnum(HostRole), nullable=False, default=HostRole.host)
    location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    location = relationship("Location")

    @property
    def can_override(self) -> bool:
        return self.role in OVERRIDE_ROLES
