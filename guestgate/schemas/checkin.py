from typing import Any

from pydantic import BaseModel, Field, model_validator


class CheckInRequest(BaseModel):
    token: str | None = None
    guest: dict[str, Any] | None = None
    guests: list[Any] | None = None
    qrData: str | None = None

    # Batch metadata; kept as raw strings so the signature covers what was signed.
    hostId: str | None = None
    eventId: str | None = None
    expiresAt: str | None = None
    signature: str | None = None

    locationId: str | None = None
    overrideReason: str | None = Field(default=None, max_length=2000)
    overridePassword: str | None = None

    @model_validator(mode="after")
    def _exactly_one_form(self):
        forms = [self.token, self.guest, self.guests, self.qrData]
        if sum(1 for value in forms if value is not None) != 1:
            raise ValueError("Provide exactly one of token, guest, guests or qrData")
        return self

    def scan_payload(self) -> dict[str, Any] | str:
        if self.qrData is not None:
            return self.qrData
        if self.token is not None:
            return {"token": self.token}
        if self.guest is not None:
            payload = dict(self.guest)
            payload.setdefault("h", self.hostId)
            return {"guest": payload}
        return self.model_dump(include={"guests", "hostId", "eventId", "expiresAt", "signature"}, exclude_unset=True)
