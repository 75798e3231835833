from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from guestgate.db.base import Base
from guestgate.db.types import UTCDateTime, utcnow

POLICY_ROW_ID = 1


class AdmissionPolicyRow(Base):
    __tablename__ = "admission_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=POLICY_ROW_ID)
    guest_monthly_limit: Mapped[int] = mapped_column(Integer, default=3)
    host_concurrent_limit: Mapped[int] = mapped_column(Integer, default=3)
    updated_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("hosts.id"), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)
