"""Single active dashboard session per local store."""
import uuid
import logging
from typing import Optional

from notam_dashboard.database import NotamStore

logger = logging.getLogger(__name__)


class SessionGate:
    """
    Tracks whether this process still owns the dashboard session.

    Starting a second dashboard against the same database claims the session,
    and the first one's scheduler stops at its next step.
    """

    def __init__(self, store: NotamStore, session_id: Optional[str] = None):
        self.store = store
        self.session_id = session_id or uuid.uuid4().hex
        self._was_active = False

    def claim(self) -> str:
        self.store.claim_session(self.session_id)
        self._was_active = True
        return self.session_id

    def is_active(self) -> bool:
        active = self.store.active_session_id() == self.session_id
        if self._was_active and not active:
            logger.warning("Session claimed by another dashboard; pausing fetches")
        self._was_active = active
        return active
