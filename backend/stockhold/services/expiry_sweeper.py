from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache
from typing import List, Optional

from stockhold.config import settings
from stockhold.db import SessionLocal
from stockhold.outcomes import ReservationStats, SweepReport
from stockhold.services.reservation_engine import ReservationEngine
from stockhold.utils.clock import utcnow
from stockhold.utils.log import get_logger

log = get_logger("sweeper")

JOB_ID = "expire_reservations"


@dataclass
class ReservationHealth:
    status: str  # healthy, warning, critical
    stats: ReservationStats
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


class ExpirySweeper:
    """
    Periodically releases reservations whose hold has passed.

    Timing is a convenience only: confirm() already refuses expired holds, so
    a late or skipped sweep delays stock coming back but never oversells.
    Overlapping runs are safe because each expiry is a compare-and-swap.
    """

    def __init__(self, session_factory=SessionLocal, batch_size: Optional[int] = None):
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.SWEEP_BATCH_SIZE
        self.scheduled = False
        self.started_at: Optional[datetime] = None
        self.last_run_at: Optional[datetime] = None
        self.last_report: Optional[SweepReport] = None

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        db = self.session_factory()
        try:
            report = ReservationEngine(db).sweep_expired(now=now, batch_size=self.batch_size)
        finally:
            db.close()

        self.last_run_at = utcnow()
        self.last_report = report
        if report.failed:
            log.error(
                "sweep examined=%s released=%s skipped=%s failed=%s ids=%s",
                report.examined,
                report.released,
                report.skipped,
                report.failed,
                report.failed_ids,
            )
        elif report.examined:
            log.info(
                "sweep examined=%s released=%s skipped=%s",
                report.examined,
                report.released,
                report.skipped,
            )
        return report

    def _job(self):
        try:
            self.run_once()
        except Exception:
            # the scheduler would swallow this; keep it visible and keep the job alive
            log.exception("scheduled sweep failed")

    def schedule(self, scheduler, interval_seconds: Optional[int] = None):
        scheduler.add_job(
            self._job,
            "interval",
            seconds=interval_seconds or settings.SWEEP_INTERVAL_SECONDS,
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduled = True
        self.started_at = utcnow()
        log.info(
            "scheduled reservation sweep every %ss", interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        )

    def stats(self, now: Optional[datetime] = None) -> ReservationStats:
        db = self.session_factory()
        try:
            return ReservationEngine(db).stats(now=now)
        finally:
            db.close()

    def health(self, now: Optional[datetime] = None) -> ReservationHealth:
        stats = self.stats(now=now)
        health = ReservationHealth(status="healthy", stats=stats)

        def flag(level, issue, recommendation):
            if level == "critical" or health.status == "healthy":
                health.status = level
            health.issues.append(issue)
            health.recommendations.append(recommendation)

        if stats.needs_cleanup_count > 50:
            flag(
                "critical",
                f"{stats.needs_cleanup_count} reservations need immediate cleanup",
                "Run manual cleanup immediately",
            )
        elif stats.needs_cleanup_count > 10:
            flag(
                "warning",
                f"{stats.needs_cleanup_count} reservations need cleanup",
                "Consider running manual cleanup",
            )
        if stats.expiring_soon_count > 20:
            flag(
                "warning",
                f"{stats.expiring_soon_count} reservations expiring soon",
                "Monitor closely for the next few minutes",
            )
        if stats.active_count > 1000:
            flag(
                "warning",
                f"High number of active reservations ({stats.active_count})",
                "Consider monitoring system performance",
            )

        if self.scheduled:
            reference = self.last_run_at or self.started_at
            stale = timedelta(minutes=settings.SWEEP_STALE_MINUTES)
            if reference is not None and utcnow() - reference > stale:
                flag(
                    "critical",
                    "Cleanup system may not be running properly",
                    "Check scheduler configuration and logs",
                )

        if health.status == "healthy":
            health.recommendations.append("System is operating normally")
        return health


@lru_cache(maxsize=1)
def get_sweeper() -> ExpirySweeper:
    return ExpirySweeper()
