import logging
from dataclasses import dataclass
from typing import Callable

from guestgate.core.security import verify_override_password
from guestgate.db.models import Host
from guestgate.services.gates import GateResult, RejectionKind, message_for

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10
MAX_REASON_LENGTH = 500


@dataclass
class OverrideRequest:
    reason: str | None = None
    password: str | None = None

    @property
    def attempted(self) -> bool:
        return bool((self.reason or "").strip() or self.password)

    @property
    def clean_reason(self) -> str:
        return (self.reason or "").strip()


@dataclass
class OverrideDecision:
    approved: bool
    kind: RejectionKind | None = None
    message: str = ""
    reason: str | None = None
    actor_id: str | None = None


class OverrideAuthorizer:
    def __init__(self, verify_password: Callable[[str | None], bool] | None = None):
        self.verify_password = verify_password or verify_override_password

    def authorize(self, failures: list[GateResult], actor: Host | None, request: OverrideRequest) -> OverrideDecision:
        if not failures or any(not failure.overridable for failure in failures):
            raise ValueError("Only capacity and concurrency rejections can be overridden")

        reason = request.clean_reason
        if not MIN_REASON_LENGTH <= len(reason) <= MAX_REASON_LENGTH:
            return self._refuse(RejectionKind.OVERRIDE_REASON_INVALID)

        if actor is None or actor.is_active is False or not actor.can_override:
            return self._refuse(RejectionKind.OVERRIDE_NOT_PERMITTED)

        if not self.verify_password(request.password):
            logger.warning("override password rejected actor=%s", actor.id)
            return self._refuse(RejectionKind.OVERRIDE_PASSWORD_INCORRECT)

        logger.info("override approved actor=%s kinds=%s", actor.id, [f.kind.value for f in failures])
        return OverrideDecision(approved=True, reason=reason, actor_id=actor.id, message="Override approved.")

    @staticmethod
    def _refuse(kind: RejectionKind) -> OverrideDecision:
        return OverrideDecision(approved=False, kind=kind, message=message_for(kind))
