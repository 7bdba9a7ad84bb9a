from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stockhold.api.health import router as health_router
from stockhold.api.routes_admin import router as admin_router
from stockhold.api.routes_inventory import router as inventory_router
from stockhold.api.routes_payments import router as payments_router
from stockhold.api.routes_sweeper import router as sweeper_router
from stockhold.config import settings
from stockhold.db import init_db
from stockhold.exceptions import InvariantViolation
from stockhold.outcomes import USER_MESSAGES, Outcome
from stockhold.services.expiry_sweeper import get_sweeper
from stockhold.utils.log import get_logger

log = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup; RESET_DB=1 in the environment drops and recreates the tables
    init_db()

    scheduler = None
    if settings.SWEEPER_ENABLED:
        scheduler = BackgroundScheduler()
        get_sweeper().schedule(scheduler)
        scheduler.start()
    else:
        log.info("reservation sweeper disabled; rely on /api/cron/reservations/cleanup")

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Stockhold - Inventory Reservations", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvariantViolation)
def invariant_violation_handler(request: Request, exc: InvariantViolation):
    log.error("invariant violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "error": Outcome.INVARIANT_VIOLATION.value,
                "message": USER_MESSAGES[Outcome.INVARIANT_VIOLATION],
            }
        },
    )


app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(inventory_router, tags=["inventory"])

app.include_router(admin_router, tags=["admin"])

app.include_router(payments_router, tags=["payments"])

app.include_router(sweeper_router, tags=["cron"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("stockhold.main:app", host=settings.APP_HOST, port=settings.APP_PORT)
