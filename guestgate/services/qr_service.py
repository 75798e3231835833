"""Parsing and authentication of scanned QR data.

Three shapes are understood: a signed single-guest check-in token, a direct
single-guest object and a multi-guest batch. Problems are reported per entry
so one bad guest never hides the others.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError

from guestgate.core.clock import as_utc
from guestgate.core.config import get_settings
from guestgate.core.security import create_checkin_token, decode_checkin_token
from guestgate.schemas.qr import QRGuestEntry
from guestgate.services.gates import RejectionKind, message_for

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class ScannedGuest:
    email: str
    name: str
    phone: str | None = None
    host_id: str | None = None
    invitation_id: str | None = None


@dataclass
class ScanEntry:
    guest: ScannedGuest | None = None
    kind: RejectionKind | None = None
    message: str = ""
    raw_email: str = ""
    raw_name: str = ""

    @property
    def ok(self) -> bool:
        return self.guest is not None and self.kind is None

    @property
    def email(self) -> str:
        return self.guest.email if self.guest else self.raw_email

    @property
    def name(self) -> str:
        return self.guest.name if self.guest else self.raw_name

    @classmethod
    def failed(cls, kind: RejectionKind, raw: Any = None, message: str | None = None) -> "ScanEntry":
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            kind=kind,
            message=message or message_for(kind),
            raw_email=str(raw.get("e") or raw.get("email") or ""),
            raw_name=str(raw.get("n") or raw.get("name") or ""),
        )


@dataclass
class ScanResult:
    entries: list[ScanEntry] = field(default_factory=list)
    source: str = "unknown"
    host_id: str | None = None
    event_id: str | None = None
    error: RejectionKind | None = None


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)


def compute_signature(fields: dict[str, Any], secret: str | None = None) -> str:
    key = (secret or settings.QR_SIGNING_SECRET).encode("utf-8")
    return hmac.new(key, canonical_json(fields).encode("utf-8"), hashlib.sha256).hexdigest()


def _signed_fields(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k != "signature" and v is not None}


def _format_instant(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("expiresAt must be an ISO-8601 string")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def sign_batch_payload(
    guests: list[dict[str, Any]],
    host_id: str | None = None,
    event_id: str | None = None,
    expires_at: datetime | None = None,
    secret: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "guests": [{k: v for k, v in guest.items() if v is not None} for guest in guests],
        "hostId": host_id,
        "eventId": event_id,
        "expiresAt": _format_instant(expires_at) if expires_at else None,
    }
    payload["signature"] = compute_signature(_signed_fields(payload), secret)
    return payload


def issue_checkin_token(
    invitation_id: str,
    guest_email: str,
    guest_name: str,
    host_id: str,
    issued_at: datetime,
    ttl_minutes: int | None = None,
) -> tuple[str, datetime]:
    expires_at = issued_at + timedelta(minutes=ttl_minutes or settings.QR_TOKEN_EXPIRE_MINUTES)
    token = create_checkin_token(
        invitation_id=invitation_id,
        guest_email=guest_email.lower(),
        guest_name=guest_name,
        host_id=host_id,
        issued_at=issued_at,
        expires_at=expires_at,
    )
    return token, expires_at


class QRTokenValidator:
    def validate(self, payload: dict[str, Any] | str | None, now: datetime) -> ScanResult:
        if isinstance(payload, str):
            return self._validate_text(payload, now)
        if not isinstance(payload, dict):
            return self._format_error()

        if isinstance(payload.get("token"), str):
            return ScanResult(entries=[self._entry_from_token(payload["token"], now)], source="token")
        if "guests" in payload:
            return self._validate_batch(payload, now)
        if "guest" in payload:
            return ScanResult(entries=[self._entry_from_object(payload["guest"], now)], source="guest")
        if "e" in payload or "n" in payload:
            return ScanResult(entries=[self._entry_from_object(payload, now)], source="guest")
        return self._format_error()

    def _validate_text(self, text: str, now: datetime) -> ScanResult:
        text = text.strip()
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            if text.count(".") == 2:
                return ScanResult(entries=[self._entry_from_token(text, now)], source="token")
            return self._format_error()
        if not isinstance(decoded, dict):
            return self._format_error()
        return self.validate(decoded, now)

    def _format_error(self) -> ScanResult:
        kind = RejectionKind.INVALID_QR_FORMAT
        return ScanResult(entries=[ScanEntry.failed(kind)], error=kind)

    def _entry_from_token(self, token: str, now: datetime, raw: Any = None) -> ScanEntry:
        if not isinstance(token, str) or token.count(".") != 2:
            return ScanEntry.failed(RejectionKind.INVALID_QR_FORMAT, raw)
        try:
            claims = decode_checkin_token(token, now)
        except ExpiredSignatureError:
            return ScanEntry.failed(RejectionKind.QR_EXPIRED, raw)
        except JWTError:
            return ScanEntry.failed(RejectionKind.INVALID_SIGNATURE, raw)

        email = str(claims.get("email") or "").strip().lower()
        name = str(claims.get("name") or "").strip()
        if not email or not name:
            return ScanEntry.failed(RejectionKind.INVALID_QR_FORMAT, raw)
        return ScanEntry(
            guest=ScannedGuest(
                email=email,
                name=name,
                host_id=claims.get("host"),
                invitation_id=claims.get("sub"),
            )
        )

    def _entry_from_object(self, raw: Any, now: datetime) -> ScanEntry:
        if not isinstance(raw, dict):
            return ScanEntry.failed(RejectionKind.INVALID_QR_FORMAT)
        try:
            entry = QRGuestEntry.model_validate(raw)
        except ValidationError as exc:
            logger.debug("rejected QR guest entry: %s", exc.errors())
            return ScanEntry.failed(RejectionKind.INVALID_QR_FORMAT, raw)

        guest = ScannedGuest(email=str(entry.e).lower(), name=entry.n, phone=entry.p, host_id=entry.h)
        if entry.t:
            from_token = self._entry_from_token(entry.t, now, raw)
            if not from_token.ok:
                return from_token
            if from_token.guest.email != guest.email:
                return ScanEntry.failed(
                    RejectionKind.INVALID_QR_FORMAT, raw, message="QR token does not belong to this guest."
                )
            guest.invitation_id = from_token.guest.invitation_id
            guest.host_id = from_token.guest.host_id or guest.host_id
        return ScanEntry(guest=guest)

    def _validate_batch(self, payload: dict[str, Any], now: datetime) -> ScanResult:
        guests = payload.get("guests")
        host_id = payload.get("hostId") if isinstance(payload.get("hostId"), str) else None
        event_id = payload.get("eventId") if isinstance(payload.get("eventId"), str) else None
        if not isinstance(guests, list) or not guests:
            result = self._format_error()
            result.source = "batch"
            return result

        entries = [self._entry_from_object(raw, now) for raw in guests]
        error = self._batch_error(payload, now)
        if error is not None:
            # A payload-level failure applies to every guest it carries.
            entries = [ScanEntry.failed(error, raw) for raw in guests]
        return ScanResult(entries=entries, source="batch", host_id=host_id, event_id=event_id, error=error)

    def _batch_error(self, payload: dict[str, Any], now: datetime) -> RejectionKind | None:
        signature = payload.get("signature")
        if signature is not None:
            expected = compute_signature(_signed_fields(payload))
            if not isinstance(signature, str) or not hmac.compare_digest(
                signature.strip().lower().encode("utf-8"), expected.encode("utf-8")
            ):
                return RejectionKind.INVALID_SIGNATURE

        expires_at = payload.get("expiresAt")
        if expires_at is None:
            return None
        try:
            expires = _parse_instant(expires_at)
        except ValueError:
            return RejectionKind.INVALID_QR_FORMAT
        if now >= expires:
            return RejectionKind.QR_EXPIRED
        return None
