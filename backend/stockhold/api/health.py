from fastapi import APIRouter
from sqlalchemy import text

from stockhold.db import engine
from stockhold.services.expiry_sweeper import get_sweeper
from stockhold.utils.log import get_logger

log = get_logger("health")

router = APIRouter()


@router.get("/health", tags=["health"])
def health():
    db_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except Exception:
        log.exception("database health check failed")
        db_ok = False

    sweeper = get_sweeper()
    return {
        "status": "ok" if db_ok else "degraded",
        "db": db_ok,
        "sweeper_scheduled": sweeper.scheduled,
        "sweeper_last_run_at": sweeper.last_run_at.isoformat() if sweeper.last_run_at else None,
    }
