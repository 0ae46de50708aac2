"""
Rate-limited fetch scheduler.

One code is fetched at a time. Calls are limited by a sliding window
(``calls_per_window`` per ``window_seconds``) and spaced by a fixed interval.
Failed fetches go back to the end of the queue until the retry cap is hit.
"""
import asyncio
import time
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional

from notam_dashboard.config import Config
from notam_dashboard.models.notam import FetchResult, FetchStatus, ScheduleQueueEntry

logger = logging.getLogger(__name__)

BUSY_STATUSES = (FetchStatus.LOADING, FetchStatus.LOADED)


class RateLimitedScheduler:
    """
    Drain a FIFO queue of airport codes through the Fetch Gateway.

    The ``owner`` holds per-code status and applies results; it must provide
    ``status_of``, ``mark_loading``, ``mark_queued``, ``mark_failed`` and
    ``apply_success``. ``status_of`` returns None for codes that are no
    longer configured.
    """

    def __init__(self, owner: Any, fetch: Callable[[str], Awaitable[FetchResult]],
                 is_active: Optional[Callable[[], bool]] = None,
                 calls_per_window: int = 25, window_seconds: float = 65.0,
                 interval_seconds: float = 3.0, retry_cap: int = 2,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 margin: float = 0.5, skip_delay: float = 0.05):
        self.owner = owner
        self._fetch = fetch
        self._is_active = is_active or (lambda: True)
        self.calls_per_window = calls_per_window
        self.window_seconds = window_seconds
        self.interval_seconds = interval_seconds
        self.retry_cap = retry_cap
        self.margin = margin
        self.skip_delay = skip_delay
        self._clock = clock
        self._sleep = sleep

        self.queue: Deque[ScheduleQueueEntry] = deque()
        self.call_times: Deque[float] = deque()
        self.generation = 0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, owner: Any, fetch: Callable[[str], Awaitable[FetchResult]],
                    config: Config, **kwargs) -> 'RateLimitedScheduler':
        """Build a scheduler with the rate settings from ``config``."""
        return cls(
            owner,
            fetch,
            calls_per_window=config.CALLS_PER_WINDOW,
            window_seconds=config.RATE_WINDOW_SECONDS,
            interval_seconds=config.BATCH_INTERVAL_SECONDS,
            retry_cap=config.RETRY_CAP,
            **kwargs
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return len(self.queue)

    def queued_codes(self) -> List[str]:
        return [entry.code for entry in self.queue]

    def enqueue(self, codes: Iterable[str], silent: bool = False) -> List[str]:
        """
        Append codes to the back of the queue.

        Codes already queued, or whose status is loading/loaded, are skipped.

        Returns:
            The codes actually added
        """
        queued = set(self.queued_codes())
        added = []
        for code in codes:
            if code in queued or self.owner.status_of(code) in BUSY_STATUSES:
                continue
            self.queue.append(ScheduleQueueEntry(code=code, silent=silent, generation=self.generation))
            queued.add(code)
            added.append(code)

        if added:
            logger.info(f"Queued {len(added)} code(s){' (silent)' if silent else ''}: {', '.join(added)}")
        return added

    def discard(self, code: str) -> None:
        """Drop a code from the queue (it stays in flight if currently loading)."""
        self.queue = deque(entry for entry in self.queue if entry.code != code)

    def reset(self) -> None:
        """Clear the queue; results of fetches started before the reset are discarded."""
        self.queue.clear()
        self.generation += 1
        logger.info(f"Scheduler queue reset (generation {self.generation})")

    def start(self) -> bool:
        """
        Begin draining if idle, the queue is non-empty and the session is active.

        Must be called from a running event loop.

        Returns:
            True if a drain task was started
        """
        if self.running or not self.queue:
            return False
        if not self._is_active():
            logger.info("Session not active; scheduler not started")
            return False
        self._task = asyncio.get_running_loop().create_task(self._drain())
        return True

    async def stop(self) -> None:
        """Cancel the drain task. An in-flight fetch is abandoned."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler stopped")

    async def join(self) -> None:
        """Wait until the queue has drained and the scheduler is idle."""
        while self.running:
            await asyncio.wait({self._task})

    async def _drain(self) -> None:
        logger.debug(f"Scheduler draining {len(self.queue)} code(s)")
        while True:
            try:
                delay = await self._step()
            except Exception as e:
                logger.error(f"Scheduler step failed: {e}", exc_info=True)
                delay = self.interval_seconds
            if delay is None:
                break
            await self._sleep(delay)
        logger.debug("Scheduler idle")

    def _evict(self, now: float) -> None:
        while self.call_times and now - self.call_times[0] >= self.window_seconds:
            self.call_times.popleft()

    async def _step(self) -> Optional[float]:
        """
        Run one drain step.

        Returns:
            Seconds to wait before the next step, or None to go idle
        """
        if not self._is_active():
            logger.info("Session no longer active; scheduler stopping")
            return None

        now = self._clock()
        self._evict(now)

        if not self.queue:
            return None

        if len(self.call_times) >= self.calls_per_window:
            wait = self.call_times[0] + self.window_seconds - now + self.margin
            logger.info(f"Rate window full ({len(self.call_times)}/{self.calls_per_window}); "
                        f"waiting {wait:.1f}s")
            return max(wait, 0.0)

        entry = self.queue.popleft()
        status = self.owner.status_of(entry.code)
        if status is None or status in BUSY_STATUSES:
            logger.debug(f"Skipping {entry.code} (status: {status.value if status else 'untracked'})")
            return self.skip_delay

        self.owner.mark_loading(entry.code)
        self.call_times.append(now)

        try:
            result = await self._fetch(entry.code)
        except Exception as e:
            logger.warning(f"Fetch raised for {entry.code}: {e}")
            result = FetchResult.failure("Unexpected error", str(e))

        if entry.generation != self.generation:
            logger.info(f"Discarding result for {entry.code} from before a reload")
            return self.interval_seconds
        if self.owner.status_of(entry.code) is None:
            logger.info(f"Discarding result for {entry.code}: no longer configured")
            return self.interval_seconds

        try:
            self._apply(entry, result)
        except Exception as e:
            logger.error(f"Applying result for {entry.code} failed: {e}", exc_info=True)
        return self.interval_seconds

    def _apply(self, entry: ScheduleQueueEntry, result: FetchResult) -> None:
        if result.ok:
            self.owner.apply_success(entry.code, result.records, silent=entry.silent)
            return

        entry.retries += 1
        if entry.retries <= self.retry_cap:
            logger.warning(f"Fetch failed for {entry.code} ({result.error}); "
                           f"retry {entry.retries}/{self.retry_cap}")
            self.queue.append(entry)
            self.owner.mark_queued(entry.code)
        else:
            logger.error(f"Giving up on {entry.code} after {entry.retries} failed attempt(s): "
                         f"{result.error}")
            self.owner.mark_failed(entry.code, result.error)

    def snapshot(self) -> Dict[str, Any]:
        """Inspectable copy of the scheduler state."""
        return {
            'queue': [entry.to_dict() for entry in self.queue],
            'call_times': list(self.call_times),
            'generation': self.generation,
            'running': self.running,
        }
