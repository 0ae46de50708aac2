"""
Refresh orchestrator.

Owns per-code fetch status, the record store, highlight markers and the
timers (auto-refresh, countdown, marker sweep). Every state change goes
through the transition methods below; the scheduler calls them as its owner.
"""
import asyncio
import time
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from notam_dashboard.changes import diff
from notam_dashboard.config import Config
from notam_dashboard.database import NotamStore
from notam_dashboard.models.notam import (
    ChangeEvent,
    FetchStatus,
    NewNotamMarker,
    NotamRecord,
    normalize_code,
    validate_codes,
)
from notam_dashboard.scheduler import RateLimitedScheduler

logger = logging.getLogger(__name__)


class RefreshOrchestrator:
    """Keeps status and records for the configured airport codes consistent."""

    def __init__(self, gateway: Any, store: Optional[NotamStore] = None, notifier: Any = None,
                 session_gate: Any = None, config: Optional[Config] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.config = config or Config()
        self.gateway = gateway
        self.store = store
        self.notifier = notifier
        self.session_gate = session_gate
        self._clock = clock
        self._sleep = sleep

        self.codes: List[str] = []
        self.status: Dict[str, FetchStatus] = {}
        self.errors: Dict[str, Optional[str]] = {}
        self.code_to_records: Dict[str, List[NotamRecord]] = {}
        self.new_markers: Dict[str, NewNotamMarker] = {}
        self.countdown = self.config.AUTO_REFRESH_INTERVAL_SECONDS
        self.last_updated: Optional[datetime] = None

        self.scheduler = RateLimitedScheduler.from_config(
            self, gateway.fetch_records, self.config,
            is_active=self.is_session_active, clock=clock, sleep=sleep
        )
        self._timers: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    def is_session_active(self) -> bool:
        if self.session_gate is None:
            return True
        return self.session_gate.is_active()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, codes: Iterable[str]) -> List[str]:
        """
        Replace the configured codes.

        Removed codes are pruned, added codes are queued.

        Raises:
            InvalidAirportCodeError: before any state changes

        Returns:
            Codes newly added
        """
        codes = validate_codes(codes)
        for code in [c for c in self.codes if c not in codes]:
            self._forget(code)
        added = [c for c in codes if c not in self.codes]
        self.codes = list(codes)
        self._register(added)
        return added

    def add_codes(self, codes: Iterable[str]) -> List[str]:
        codes = validate_codes(codes)
        added = [c for c in codes if c not in self.codes]
        self.codes.extend(added)
        self._register(added)
        return added

    def remove_code(self, code: str) -> bool:
        """Stop tracking a code. A fetch already in flight for it is discarded when it returns."""
        code = normalize_code(code)
        if code not in self.codes:
            return False
        self.codes.remove(code)
        self._forget(code)
        logger.info(f"Removed {code}")
        return True

    def _register(self, codes: List[str], silent: bool = False) -> None:
        for code in codes:
            if code not in self.status:
                self.status[code] = FetchStatus.QUEUED
        self.scheduler.enqueue(codes, silent=silent)
        self._kick()

    def _forget(self, code: str) -> None:
        self.status.pop(code, None)
        self.errors.pop(code, None)
        self.code_to_records.pop(code, None)
        for record_id in [rid for rid, m in self.new_markers.items() if m.code == code]:
            del self.new_markers[record_id]
        self.scheduler.discard(code)

    def _kick(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; start() drains the queue
            return
        self.scheduler.start()

    # ------------------------------------------------------------------
    # Transitions (scheduler owner interface)
    # ------------------------------------------------------------------

    def status_of(self, code: str) -> Optional[FetchStatus]:
        return self.status.get(code)

    def mark_loading(self, code: str) -> None:
        if code in self.status:
            self.status[code] = FetchStatus.LOADING

    def mark_queued(self, code: str) -> None:
        if code in self.status:
            self.status[code] = FetchStatus.QUEUED

    def mark_failed(self, code: str, error: Optional[str] = None) -> None:
        if code not in self.status:
            return
        self.status[code] = FetchStatus.FAILED
        self.errors[code] = error
        if self.notifier:
            try:
                self.notifier.failure(code, error)
            except Exception as e:
                logger.error(f"Failure notification for {code} failed: {e}", exc_info=True)

    def apply_success(self, code: str, records: List[NotamRecord], silent: bool = False) -> Optional[ChangeEvent]:
        """
        Store a successful fetch: diff, replace records, mark loaded, publish.

        Returns:
            The published ChangeEvent, or None if the code is no longer configured
        """
        if code not in self.status:
            logger.info(f"Ignoring records for {code}: no longer configured")
            return None

        changes = diff(self.code_to_records.get(code), records)
        self.code_to_records[code] = list(records)
        self.status[code] = FetchStatus.LOADED
        self.errors.pop(code, None)
        self.last_updated = datetime.now(timezone.utc)

        now = self._clock()
        for record in changes.added:
            self.new_markers[record.id] = NewNotamMarker(record_id=record.id, code=code, detected_at=now)
        for record in changes.removed:
            self.new_markers.pop(record.id, None)

        logger.info(f"{code}: {len(records)} NOTAM(s) loaded "
                    f"({len(changes.added)} new, {len(changes.removed)} removed)")

        event = ChangeEvent(code=code, added=changes.added, removed=changes.removed, silent=silent)
        if self.notifier:
            try:
                self.notifier.publish(event)
            except Exception as e:
                logger.error(f"Publishing changes for {code} failed: {e}", exc_info=True)
        if self.store:
            self._in_background(f"cache write for {code}", self.store.save_records, code, list(records))
        return event

    def _in_background(self, what: str, func: Callable[..., Any], *args: Any) -> None:
        """Run a blocking side effect off the event loop; failures are logged."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                func(*args)
            except Exception as e:
                logger.error(f"{what} failed: {e}", exc_info=True)
            return

        def done(task: asyncio.Task) -> None:
            self._background.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"{what} failed: {task.exception()}")

        task = loop.create_task(asyncio.to_thread(func, *args))
        self._background.add(task)
        task.add_done_callback(done)

    # ------------------------------------------------------------------
    # Refresh operations
    # ------------------------------------------------------------------

    def auto_refresh(self) -> List[str]:
        """Silently re-fetch every loaded code and restart the countdown."""
        loaded = [code for code in self.codes if self.status.get(code) == FetchStatus.LOADED]
        for code in loaded:
            self.status[code] = FetchStatus.QUEUED
        self.countdown = self.config.AUTO_REFRESH_INTERVAL_SECONDS
        if loaded:
            logger.info(f"Auto-refresh: {len(loaded)} code(s)")
            self._register(loaded, silent=True)
        return loaded

    def reload_all(self) -> List[str]:
        """Drop cache and state and load every configured code again."""
        if self.store:
            self.store.clear_cache()
        self.scheduler.reset()
        self.status.clear()
        self.errors.clear()
        self.code_to_records.clear()
        self.new_markers.clear()
        self.countdown = self.config.AUTO_REFRESH_INTERVAL_SECONDS
        self._restart_refresh_timer()
        logger.info(f"Reloading {len(self.codes)} code(s)")
        self._register(list(self.codes))
        return list(self.codes)

    def restore_from_cache(self) -> List[str]:
        """
        Pre-populate records from a fresh local cache.

        Restored codes start as loaded; the rest stay queued.

        Returns:
            Codes restored
        """
        if self.store is None:
            return []
        cached = self.store.get_cached_records(self.config.CACHE_MAX_AGE_SECONDS)
        restored = []
        for code in self.codes:
            if code not in cached or self.status.get(code) != FetchStatus.QUEUED:
                continue
            self.code_to_records[code] = cached[code]
            self.status[code] = FetchStatus.LOADED
            self.scheduler.discard(code)
            restored.append(code)
        if restored:
            logger.info(f"Restored {len(restored)} code(s) from cache")
        return restored

    def sweep_markers(self, now: Optional[float] = None) -> int:
        """Remove highlight markers older than the highlight window."""
        now = self._clock() if now is None else now
        expired = [rid for rid, marker in self.new_markers.items()
                   if now - marker.detected_at > self.config.HIGHLIGHT_WINDOW_SECONDS]
        for record_id in expired:
            del self.new_markers[record_id]
        return len(expired)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def is_new(self, record_id: str) -> bool:
        return record_id in self.new_markers

    def records(self, codes: Optional[Iterable[str]] = None) -> List[NotamRecord]:
        """Records for the given codes (all configured codes by default)."""
        result = []
        for code in (codes if codes is not None else self.codes):
            result.extend(self.code_to_records.get(code, []))
        return result

    def counts(self) -> Dict[str, int]:
        """Progress summary by status."""
        counts = {status.value: 0 for status in FetchStatus}
        for status in self.status.values():
            counts[status.value] += 1
        counts['total'] = len(self.codes)
        return counts

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start draining the queue and the timers."""
        if self._timers:
            return
        self.scheduler.start()
        self._timers = {
            'refresh': self._refresh_timer(),
            'countdown': asyncio.create_task(self._every(1, self._tick_countdown)),
            'sweep': asyncio.create_task(self._every(self.config.MARKER_SWEEP_INTERVAL_SECONDS, self.sweep_markers)),
        }
        logger.info("Orchestrator started")

    async def stop(self) -> None:
        """Cancel the timers and the scheduler."""
        timers, self._timers = list(self._timers.values()), {}
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        await self.scheduler.stop()
        await self._wait_background()
        logger.info("Orchestrator stopped")

    async def wait_idle(self) -> None:
        """Wait until the scheduler queue is drained and pending cache writes are done."""
        await self.scheduler.join()
        await self._wait_background()

    async def _wait_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _refresh_timer(self) -> asyncio.Task:
        return asyncio.create_task(self._every(self.config.AUTO_REFRESH_INTERVAL_SECONDS, self.auto_refresh))

    def _restart_refresh_timer(self) -> None:
        """Realign the auto-refresh timer with a countdown that was just reset."""
        task = self._timers.get('refresh')
        if task is None:
            return
        task.cancel()
        self._timers['refresh'] = self._refresh_timer()

    def _tick_countdown(self) -> None:
        self.countdown = max(self.countdown - 1, 0)

    async def _every(self, interval: float, callback: Callable[[], Any]) -> None:
        while True:
            await self._sleep(interval)
            try:
                callback()
            except Exception as e:
                logger.error(f"Timer callback {getattr(callback, '__name__', callback)} failed: {e}",
                             exc_info=True)
