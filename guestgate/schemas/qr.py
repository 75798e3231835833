from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class QRGuestEntry(BaseModel):
    """One guest as it appears inside scanned QR data."""

    e: EmailStr
    n: str = Field(min_length=1, max_length=120)
    p: str | None = None
    h: str | None = None
    t: str | None = None

    @field_validator("n")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value


class QRBatchIssueRequest(BaseModel):
    guests: list[QRGuestEntry] = Field(min_length=1, max_length=50)
    eventId: str | None = None
    expiresAt: datetime | None = None


class QRValidateRequest(BaseModel):
    qrData: str | dict = Field(...)
