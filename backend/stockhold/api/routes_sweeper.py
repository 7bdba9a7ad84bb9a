from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from stockhold.config import settings
from stockhold.services.expiry_sweeper import ExpirySweeper, get_sweeper

router = APIRouter(prefix="/api/cron/reservations", tags=["cron"])


def require_cron_secret(authorization: Optional[str] = Header(None)):
    if not settings.CRON_SECRET:
        return
    if authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _stats_body(stats):
    body = asdict(stats)
    body["last_checked"] = stats.last_checked.isoformat()
    body["next_cleanup_recommended"] = stats.next_cleanup_recommended
    return body


@router.post(
    "/cleanup",
    summary="Release every expired reservation now",
    dependencies=[Depends(require_cron_secret)],
)
def cleanup(sweeper: ExpirySweeper = Depends(get_sweeper)):
    report = sweeper.run_once()
    return {
        "success": report.failed == 0,
        "started_at": report.started_at.isoformat(),
        "examined": report.examined,
        "released": report.released,
        "skipped": report.skipped,
        "failed": report.failed,
        "failed_ids": report.failed_ids,
    }


@router.get("/status", summary="Reservation counts", dependencies=[Depends(require_cron_secret)])
def status(sweeper: ExpirySweeper = Depends(get_sweeper)):
    return _stats_body(sweeper.stats())


@router.get("/health", summary="Reservation system health", dependencies=[Depends(require_cron_secret)])
def health(sweeper: ExpirySweeper = Depends(get_sweeper)):
    h = sweeper.health()
    return {
        "status": h.status,
        "stats": _stats_body(h.stats),
        "issues": h.issues,
        "recommendations": h.recommendations,
        "scheduled": sweeper.scheduled,
        "last_run_at": sweeper.last_run_at.isoformat() if sweeper.last_run_at else None,
    }
