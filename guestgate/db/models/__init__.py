from guestgate.db.models.audit import AuditLog
from guestgate.db.models.discount import Discount
from guestgate.db.models.guest import Acceptance, Guest
from guestgate.db.models.host import OVERRIDE_ROLES, Host, HostRole
from guestgate.db.models.invitation import Invitation, InvitationStatus
from guestgate.db.models.location import Location
from guestgate.db.models.notification import Notification
from guestgate.db.models.policy import POLICY_ROW_ID, AdmissionPolicyRow
from guestgate.db.models.visit import Visit

__all__ = [
    "Acceptance",
    "AdmissionPolicyRow",
    "AuditLog",
    "Discount",
    "Guest",
    "Host",
    "HostRole",
    "Invitation",
    "InvitationStatus",
    "Location",
    "Notification",
    "OVERRIDE_ROLES",
    "POLICY_ROW_ID",
    "Visit",
]
