from datetime import timedelta

from stockhold.db import SessionLocal
from stockhold.repositories.reservation_repo import ReservationStore
from stockhold.services.expiry_sweeper import JOB_ID, ExpirySweeper
from stockhold.services.reservation_engine import ReservationEngine
from stockhold.utils.clock import utcnow


def _reserve(variant_id, quantity, hold_minutes, now):
    db = SessionLocal()
    try:
        return ReservationEngine(db).reserve(
            variant_id, quantity, hold_minutes=hold_minutes, now=now
        ).reservation.id
    finally:
        db.close()


class FakeScheduler:
    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger, **kwargs):
        self.jobs.append((func, trigger, kwargs))


def test_run_once_releases_only_expired(make_variant, counters):
    vid = make_variant(on_hand=10)
    t0 = utcnow()
    _reserve(vid, 2, 1, t0)
    _reserve(vid, 3, 1, t0)
    keep = _reserve(vid, 1, 30, t0)

    report = ExpirySweeper().run_once(now=t0 + timedelta(minutes=2))
    assert report.examined == 2
    assert report.released == 2
    assert report.failed == 0
    assert counters(vid) == (10, 1)

    db = SessionLocal()
    try:
        assert ReservationEngine(db).get_reservation(keep).status.value == "active"
    finally:
        db.close()


def test_run_once_with_nothing_to_do(make_variant):
    make_variant(on_hand=1)
    sweeper = ExpirySweeper()
    report = sweeper.run_once()
    assert report.examined == 0
    assert sweeper.last_report is report
    assert sweeper.last_run_at is not None


def test_batch_size_limits_one_run(make_variant, counters):
    vid = make_variant(on_hand=10)
    t0 = utcnow()
    for _ in range(5):
        _reserve(vid, 1, 1, t0)

    sweeper = ExpirySweeper(batch_size=3)
    assert sweeper.run_once(now=t0 + timedelta(minutes=2)).released == 3
    assert sweeper.run_once(now=t0 + timedelta(minutes=2)).released == 2
    assert counters(vid) == (10, 0)


def test_one_failure_does_not_stop_the_batch(make_variant, counters, monkeypatch):
    vid = make_variant(on_hand=10)
    t0 = utcnow()
    bad = _reserve(vid, 1, 1, t0)
    _reserve(vid, 2, 1, t0)
    _reserve(vid, 3, 1, t0)

    original = ReservationStore.transition
    calls = []

    def flaky(self, reservation_id, *args, **kwargs):
        if reservation_id == bad:
            calls.append(reservation_id)
            raise RuntimeError("database hiccup")
        return original(self, reservation_id, *args, **kwargs)

    monkeypatch.setattr(ReservationStore, "transition", flaky)

    report = ExpirySweeper().run_once(now=t0 + timedelta(minutes=2))
    assert report.released == 2
    assert report.failed_ids == [bad]
    assert len(calls) == 3  # first try plus two retries
    assert counters(vid) == (10, 1)


def test_stats_and_healthy(make_variant):
    vid = make_variant(on_hand=10)
    t0 = utcnow()
    _reserve(vid, 1, 30, t0)

    health = ExpirySweeper().health(now=t0)
    assert health.status == "healthy"
    assert health.stats.active_count == 1
    assert health.issues == []
    assert health.recommendations == ["System is operating normally"]


def test_health_warns_then_goes_critical(make_variant):
    vid = make_variant(on_hand=100)
    t0 = utcnow()
    for _ in range(11):
        _reserve(vid, 1, 1, t0)

    sweeper = ExpirySweeper()
    warning = sweeper.health(now=t0 + timedelta(minutes=2))
    assert warning.status == "warning"
    assert "11 reservations need cleanup" in warning.issues

    for _ in range(40):
        _reserve(vid, 1, 1, t0)
    critical = sweeper.health(now=t0 + timedelta(minutes=2))
    assert critical.status == "critical"
    assert critical.stats.needs_cleanup_count == 51


def test_stale_schedule_is_critical(make_variant):
    make_variant(on_hand=1)
    sweeper = ExpirySweeper()
    scheduler = FakeScheduler()
    sweeper.schedule(scheduler, interval_seconds=30)

    func, trigger, kwargs = scheduler.jobs[0]
    assert trigger == "interval"
    assert kwargs["id"] == JOB_ID
    assert kwargs["seconds"] == 30
    assert kwargs["max_instances"] == 1
    assert sweeper.health().status == "healthy"

    sweeper.started_at = utcnow() - timedelta(hours=1)
    stale = sweeper.health()
    assert stale.status == "critical"
    assert "Cleanup system may not be running properly" in stale.issues

    func()  # the scheduled job itself
    assert sweeper.health().status == "healthy"
