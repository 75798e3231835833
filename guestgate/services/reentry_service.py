from dataclasses import dataclass

from guestgate.db.models import Visit
from guestgate.services.admission_store import AdmissionStore


@dataclass
class ReEntry:
    visit: Visit
    same_host: bool

    @property
    def current_host_id(self) -> str:
        return self.visit.host_id


class ReEntryDetector:
    """Finds a guest's open visit so a repeat scan never creates a second row.

    A guest still inside under another host is also admitted; the caller gets
    the owning host back for display.
    """

    def __init__(self, store: AdmissionStore):
        self.store = store

    def detect(self, guest_id: str, host_id: str) -> ReEntry | None:
        visit = self.store.find_open_visit(guest_id)
        if visit is None:
            return None
        return ReEntry(visit=visit, same_host=visit.host_id == host_id)
