"""
Tests for the in-process trigger scheduler and the sync tick lock.
"""

from datetime import datetime, timedelta, timezone

from kairan_bridge.locking import FileLock
from kairan_bridge.scheduler import Scheduler, next_daily_run, register_default_jobs

from conftest import FakeDiscord, FakeLine, FixedClock, jst


class TestNextDailyRun:
    def test_later_today(self):
        now = jst(2026, 10, 19, 6, 0)
        assert next_daily_run(now, (7, 5), "Asia/Tokyo") == jst(2026, 10, 19, 7, 5)

    def test_tomorrow_when_passed(self):
        now = jst(2026, 10, 19, 7, 5)
        assert next_daily_run(now, (7, 5), "Asia/Tokyo") == jst(2026, 10, 20, 7, 5)

    def test_result_is_utc(self):
        result = next_daily_run(jst(2026, 10, 19, 12), (7, 5), "Asia/Tokyo")
        assert result.tzinfo == timezone.utc
        assert result == datetime(2026, 10, 19, 22, 5, tzinfo=timezone.utc)


class TestScheduler:
    def setup_method(self):
        self.clock = FixedClock(jst(2026, 10, 19, 12))
        self.scheduler = Scheduler(clock=self.clock)
        self.calls = []

    def test_interval_job_runs_when_due(self):
        self.scheduler.register_interval("tick", 10, lambda: self.calls.append("tick"))
        assert self.scheduler.run_pending() == []
        self.clock.now += timedelta(minutes=10)
        assert self.scheduler.run_pending() == ["tick"]
        assert self.scheduler.run_pending() == []
        assert self.calls == ["tick"]
        assert self.scheduler.get("tick").next_run == self.clock.now + timedelta(minutes=10)

    def test_registering_again_replaces(self):
        self.scheduler.register_interval("tick", 10, lambda: self.calls.append("old"))
        self.scheduler.register_interval("tick", 10, lambda: self.calls.append("new"))
        assert len(self.scheduler.jobs) == 1
        self.clock.now += timedelta(minutes=10)
        self.scheduler.run_pending()
        assert self.calls == ["new"]

    def test_daily_job(self):
        self.scheduler.register_daily("release", 7, 5, lambda: self.calls.append("r"), tz="Asia/Tokyo")
        assert self.scheduler.get("release").next_run == jst(2026, 10, 20, 7, 5)
        assert self.scheduler.run_pending(now=jst(2026, 10, 20, 7, 4)) == []
        assert self.scheduler.run_pending(now=jst(2026, 10, 20, 7, 5)) == ["release"]
        assert self.scheduler.get("release").next_run == jst(2026, 10, 21, 7, 5)

    def test_failing_job_is_rescheduled(self):
        def boom():
            raise RuntimeError("fail")

        self.scheduler.register_interval("boom", 1, boom)
        self.clock.now += timedelta(minutes=1)
        assert self.scheduler.run_pending() == ["boom"]
        assert self.scheduler.get("boom").next_run > self.clock.now

    def test_unregister(self):
        self.scheduler.register_interval("tick", 5, lambda: None)
        assert self.scheduler.unregister("tick") is True
        assert self.scheduler.unregister("tick") is False

    def test_describe(self):
        self.scheduler.register_interval("tick", 10, lambda: None)
        self.scheduler.register_daily("release", 7, 5, lambda: None, tz="Asia/Tokyo")
        assert self.scheduler.get("tick").describe() == "every 10 min"
        assert self.scheduler.get("release").describe() == "daily at 07:05 Asia/Tokyo"


class TestDefaultJobs:
    def test_installs_poll_and_release_once(self, make_app):
        app = make_app(FakeLine(), FakeDiscord())
        scheduler = Scheduler(clock=FixedClock(jst(2026, 10, 19, 12)))
        register_default_jobs(scheduler, app)
        register_default_jobs(scheduler, app)

        assert sorted(j.name for j in scheduler.jobs) == ["flush_queue", "sync_relay"]
        assert scheduler.get("sync_relay").every == timedelta(minutes=10)
        assert scheduler.get("flush_queue").at == (7, 5)
        assert scheduler.get("flush_queue").tz == "Asia/Tokyo"


class TestFileLock:
    def test_second_holder_is_refused(self, tmp_path):
        path = tmp_path / "locks" / "sync.lock"
        first, second = FileLock(path), FileLock(path)
        with first.hold(timeout=0) as acquired:
            assert acquired
            with second.hold(timeout=0) as other:
                assert not other
        with second.hold(timeout=0) as acquired:
            assert acquired

    def test_polls_until_timeout(self, tmp_path):
        sleeps = []
        path = tmp_path / "sync.lock"
        waiter = FileLock(path, poll_seconds=0.01, sleep=sleeps.append)
        with FileLock(path).hold(timeout=0):
            with waiter.hold(timeout=0.02) as acquired:
                assert not acquired
        assert sleeps
        assert set(sleeps) == {0.01}
