"""Unit tests for the rate-limited scheduler."""
import asyncio
import pytest
from notam_dashboard.models.notam import FetchResult, FetchStatus, NotamRecord
from notam_dashboard.scheduler import RateLimitedScheduler


class FakeClock:
    """Monotonic clock advanced only by the scheduler's sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeOwner:
    """Minimal status holder standing in for the orchestrator."""

    def __init__(self, codes):
        self.status = {code: FetchStatus.QUEUED for code in codes}
        self.applied = []
        self.failed = []

    def status_of(self, code):
        return self.status.get(code)

    def mark_loading(self, code):
        self.status[code] = FetchStatus.LOADING

    def mark_queued(self, code):
        self.status[code] = FetchStatus.QUEUED

    def mark_failed(self, code, error=None):
        self.status[code] = FetchStatus.FAILED
        self.failed.append((code, error))

    def apply_success(self, code, records, silent=False):
        self.status[code] = FetchStatus.LOADED
        self.applied.append((code, len(records), silent))


class BrokenOwner(FakeOwner):
    """Owner whose apply_success raises for the codes in ``broken``."""

    def __init__(self, codes, broken=()):
        super().__init__(codes)
        self.broken = set(broken)

    def apply_success(self, code, records, silent=False):
        if code in self.broken:
            raise OSError("disk full")
        super().apply_success(code, records, silent)


class FakeGateway:
    """Records call times; fails the codes listed in ``failing``."""

    def __init__(self, clock, failing=()):
        self.clock = clock
        self.failing = set(failing)
        self.calls = []

    async def fetch_records(self, code):
        self.calls.append((code, self.clock()))
        if code in self.failing:
            return FetchResult.failure("Network error")
        return FetchResult.success([NotamRecord(id=f"{code}-1", code=code, body='TEST')])


def make_scheduler(owner, gateway, clock, **kwargs):
    options = dict(calls_per_window=25, window_seconds=65.0, interval_seconds=3.0, retry_cap=2)
    options.update(kwargs)
    return RateLimitedScheduler(owner, gateway.fetch_records, clock=clock, sleep=clock.sleep, **options)


class TestEnqueue:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    def test_enqueue_is_idempotent(self, clock):
        owner = FakeOwner(['KJFK', 'KBOS', 'CYYZ'])
        scheduler = make_scheduler(owner, FakeGateway(clock), clock)

        assert scheduler.enqueue(['KJFK', 'KBOS']) == ['KJFK', 'KBOS']
        assert scheduler.enqueue(['KJFK', 'CYYZ']) == ['CYYZ']
        assert scheduler.queued_codes() == ['KJFK', 'KBOS', 'CYYZ']

    def test_enqueue_skips_loading_and_loaded(self, clock):
        owner = FakeOwner(['KJFK', 'KBOS', 'CYYZ'])
        owner.status['KJFK'] = FetchStatus.LOADING
        owner.status['KBOS'] = FetchStatus.LOADED
        scheduler = make_scheduler(owner, FakeGateway(clock), clock)

        assert scheduler.enqueue(['KJFK', 'KBOS', 'CYYZ']) == ['CYYZ']

    def test_discard_and_reset(self, clock):
        owner = FakeOwner(['KJFK', 'KBOS'])
        scheduler = make_scheduler(owner, FakeGateway(clock), clock)
        scheduler.enqueue(['KJFK', 'KBOS'], silent=True)

        scheduler.discard('KJFK')
        snapshot = scheduler.snapshot()
        assert [e['code'] for e in snapshot['queue']] == ['KBOS']
        assert snapshot['queue'][0]['silent'] is True

        scheduler.reset()
        assert scheduler.pending == 0
        assert scheduler.generation == 1

    def test_start_outside_loop_needs_queue(self, clock):
        scheduler = make_scheduler(FakeOwner([]), FakeGateway(clock), clock)
        assert scheduler.start() is False


class TestDrain:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_drains_in_fifo_order(self, clock):
        codes = ['KJFK', 'KBOS', 'CYYZ']
        owner = FakeOwner(codes)
        gateway = FakeGateway(clock)
        scheduler = make_scheduler(owner, gateway, clock)

        scheduler.enqueue(codes)
        assert scheduler.start() is True
        await scheduler.join()

        assert [code for code, _ in gateway.calls] == codes
        assert [t for _, t in gateway.calls] == [0.0, 3.0, 6.0]
        assert all(owner.status[c] == FetchStatus.LOADED for c in codes)
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_never_exceeds_rate_window(self, clock):
        codes = [f"K{chr(65 + i)}AA" for i in range(10)]
        owner = FakeOwner(codes)
        gateway = FakeGateway(clock)
        scheduler = make_scheduler(owner, gateway, clock, calls_per_window=3,
                                   window_seconds=10.0, interval_seconds=1.0)

        scheduler.enqueue(codes)
        scheduler.start()
        await scheduler.join()

        times = [t for _, t in gateway.calls]
        assert len(times) == 10
        for i in range(len(times) - 3):
            assert times[i + 3] - times[i] >= 10.0

    @pytest.mark.asyncio
    async def test_retry_then_fail(self, clock):
        """A code failing beyond the retry cap is failed and not re-queued."""
        owner = FakeOwner(['KBAD', 'KJFK'])
        gateway = FakeGateway(clock, failing=['KBAD'])
        scheduler = make_scheduler(owner, gateway, clock, retry_cap=2)

        scheduler.enqueue(['KBAD', 'KJFK'])
        scheduler.start()
        await scheduler.join()

        assert [code for code, _ in gateway.calls] == ['KBAD', 'KJFK', 'KBAD', 'KBAD']
        assert owner.status['KBAD'] == FetchStatus.FAILED
        assert owner.failed == [('KBAD', 'Network error')]
        assert owner.status['KJFK'] == FetchStatus.LOADED
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_gateway_exception_is_a_failure(self, clock):
        owner = FakeOwner(['KJFK'])

        async def broken(code):
            raise RuntimeError("boom")

        scheduler = RateLimitedScheduler(owner, broken, retry_cap=0, clock=clock, sleep=clock.sleep)
        scheduler.enqueue(['KJFK'])
        scheduler.start()
        await scheduler.join()

        assert owner.status['KJFK'] == FetchStatus.FAILED

    @pytest.mark.asyncio
    async def test_skips_codes_loaded_meanwhile(self, clock):
        owner = FakeOwner(['KJFK', 'KBOS'])
        gateway = FakeGateway(clock)
        scheduler = make_scheduler(owner, gateway, clock)

        scheduler.enqueue(['KJFK', 'KBOS'])
        owner.status['KJFK'] = FetchStatus.LOADED
        scheduler.start()
        await scheduler.join()

        assert [code for code, _ in gateway.calls] == ['KBOS']
        assert clock.sleeps[0] == scheduler.skip_delay

    @pytest.mark.asyncio
    async def test_inactive_session_stops(self, clock):
        owner = FakeOwner(['KJFK'])
        gateway = FakeGateway(clock)
        scheduler = make_scheduler(owner, gateway, clock, is_active=lambda: False)

        scheduler.enqueue(['KJFK'])
        assert scheduler.start() is False
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_session_lost_mid_drain_stops(self, clock):
        codes = ['KJFK', 'KBOS', 'CYYZ']
        owner = FakeOwner(codes)
        gateway = FakeGateway(clock)
        scheduler = make_scheduler(owner, gateway, clock, is_active=lambda: not gateway.calls)

        scheduler.enqueue(codes)
        assert scheduler.start() is True
        await scheduler.join()

        assert [code for code, _ in gateway.calls] == ['KJFK']
        assert scheduler.queued_codes() == ['KBOS', 'CYYZ']
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_owner_error_does_not_stop_drain(self, clock):
        codes = ['KJFK', 'KBOS', 'KLAX']
        owner = BrokenOwner(codes, broken=['KJFK'])
        gateway = FakeGateway(clock)
        scheduler = make_scheduler(owner, gateway, clock)

        scheduler.enqueue(codes)
        scheduler.start()
        await scheduler.join()

        assert [code for code, _ in gateway.calls] == codes
        assert owner.status['KBOS'] == FetchStatus.LOADED
        assert owner.status['KLAX'] == FetchStatus.LOADED
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_result_after_reset_is_discarded(self, clock):
        owner = FakeOwner(['KJFK'])
        release = asyncio.Event()

        async def slow_fetch(code):
            await release.wait()
            return FetchResult.success([])

        scheduler = RateLimitedScheduler(owner, slow_fetch, clock=clock, sleep=clock.sleep)
        scheduler.enqueue(['KJFK'])
        scheduler.start()
        await asyncio.sleep(0)
        assert owner.status['KJFK'] == FetchStatus.LOADING

        scheduler.reset()
        owner.status['KJFK'] = FetchStatus.QUEUED
        release.set()
        await scheduler.join()

        assert owner.applied == []

    @pytest.mark.asyncio
    async def test_stop_cancels_drain(self, clock):
        owner = FakeOwner(['KJFK'])
        never = asyncio.Event()

        async def hanging_fetch(code):
            await never.wait()

        scheduler = RateLimitedScheduler(owner, hanging_fetch, clock=clock, sleep=clock.sleep)
        scheduler.enqueue(['KJFK'])
        scheduler.start()
        await asyncio.sleep(0)

        await scheduler.stop()

        assert not scheduler.running
