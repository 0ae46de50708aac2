"""Notification module: user-facing messages for change events, with optional ntfy push."""
import asyncio
import requests
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set

from notam_dashboard.config import Config
from notam_dashboard.models.notam import ChangeEvent, NotamRecord
from notam_dashboard.parser import parse_date

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """One message shown to the user."""
    code: str
    message: str
    level: str = "info"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """
    Consumes change events from the orchestrator.

    Silent (auto-refresh) events produce no messages; the highlight markers
    for them are created by the orchestrator regardless. Pushes to ntfy.sh
    only when NTFY_URL is configured.
    """

    def __init__(self, config: Optional[Config] = None, session: Optional[requests.Session] = None):
        self.config = config or Config()
        self.url = self.config.NTFY_URL
        self.session = session or requests.Session()
        self.notifications: List[Notification] = []
        self._sending: Set[asyncio.Task] = set()

    def is_recent(self, record: NotamRecord, now: Optional[datetime] = None) -> bool:
        """Issued within the recency window. Undated records count as recent."""
        issued = parse_date(record.issued or record.valid_from)
        if issued is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - issued <= timedelta(hours=self.config.NOTIFICATION_RECENCY_HOURS)

    def publish(self, event: ChangeEvent) -> List[Notification]:
        """
        Turn a change event into notifications.

        Args:
            event: Result of one successful fetch

        Returns:
            Notifications emitted for this event (empty for silent events)
        """
        if event.silent:
            if event.added or event.removed:
                logger.debug(f"{event.code}: silent refresh, {len(event.added)} added, "
                             f"{len(event.removed)} removed")
            return []

        emitted = []
        recent = [r for r in event.added if self.is_recent(r, event.detected_at)]
        if recent:
            emitted.append(self._notify(event.code, f"{event.code}: {len(recent)} new NOTAM(s) detected!"))
        if event.removed:
            emitted.append(self._notify(
                event.code, f"{event.code}: {len(event.removed)} NOTAM(s) cancelled/expired"
            ))
        return emitted

    def failure(self, code: str, error: Optional[str] = None) -> Notification:
        """Notify that a code permanently failed to load."""
        message = f"Failed to load NOTAMs for {code}."
        if error:
            logger.error(f"{code}: {error}")
        return self._notify(code, message, level="error")

    def _notify(self, code: str, message: str, level: str = "info") -> Notification:
        notification = Notification(code=code, message=message, level=level)
        self.notifications.insert(0, notification)
        del self.notifications[self.config.MAX_NOTIFICATIONS:]

        if level == "error":
            logger.error(message)
        else:
            logger.info(message)

        self._dispatch(notification)
        return notification

    def _dispatch(self, notification: Notification) -> None:
        """Push from a worker thread when called inside the event loop."""
        if not self.url:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._push(notification)
            return
        task = loop.create_task(asyncio.to_thread(self._push, notification))
        self._sending.add(task)
        task.add_done_callback(self._sent)

    def _sent(self, task: asyncio.Task) -> None:
        self._sending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"ntfy push failed: {task.exception()}")

    async def wait_sent(self) -> None:
        """Wait for pushes still in flight."""
        if self._sending:
            await asyncio.gather(*list(self._sending), return_exceptions=True)

    def _push(self, notification: Notification) -> bool:
        """
        Send a notification to ntfy.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.url:
            return False

        headers = {
            # Title goes out as an HTTP header and must be Latin-1
            "Title": f"NOTAM {notification.code}".encode('latin-1', errors='ignore').decode('latin-1'),
            "Priority": "high" if notification.level == "error" else "default",
            "Tags": "warning" if notification.level == "error" else "airplane",
        }

        try:
            response = self.session.post(
                self.url,
                data=notification.message.encode('utf-8'),
                headers=headers,
                timeout=10
            )
            response.raise_for_status()
            return True

        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send ntfy notification: {e}")
            return False
