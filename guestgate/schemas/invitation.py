from pydantic import BaseModel, EmailStr, Field


class InvitationCreate(BaseModel):
    guestEmail: EmailStr
    guestName: str = Field(min_length=1, max_length=120)
    guestPhone: str | None = Field(default=None, max_length=40)
    locationId: str | None = None


class AcceptTermsRequest(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    termsVersion: str = Field(default="1.0", max_length=20)
    visitorAgreementVersion: str = Field(default="1.0", max_length=20)
