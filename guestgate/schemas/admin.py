from typing import Literal

from pydantic import BaseModel, Field


class PolicyUpdate(BaseModel):
    guestMonthlyLimit: int | None = Field(default=None, ge=1, le=100)
    hostConcurrentLimit: int | None = Field(default=None, ge=1, le=50)


class LocationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    isActive: bool | None = None
    dailyVisitCapacity: int | None = Field(default=None, ge=1)
    checkInCutoffHour: int | None = Field(default=None, ge=0, le=24)
    hostConcurrentLimit: int | None = Field(default=None, ge=1, le=50)


class BlacklistRequest(BaseModel):
    action: Literal["blacklist", "unblacklist"]
