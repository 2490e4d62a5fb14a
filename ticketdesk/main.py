# ticketdesk/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ticketdesk import settings
from ticketdesk.errors import TicketdeskError
from ticketdesk.storage.db import Base, engine, SessionLocal
from ticketdesk.storage import models  # noqa: F401  (registers tables)
from ticketdesk.services.dispatch import Dispatcher
from ticketdesk.services.lifecycle import sweep_sla
from ticketdesk.services.notifier import ConnectionManager
from ticketdesk.util.logger import get_logger

# Routers
from ticketdesk.routers.customers import router as customers_router
from ticketdesk.routers.dashboard import router as dashboard_router
from ticketdesk.routers.instances import router as instances_router
from ticketdesk.routers.realtime import router as realtime_router
from ticketdesk.routers.tickets import router as tickets_router
from ticketdesk.routers.webhooks import router as webhooks_router


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(level=settings.LOG_LEVEL)
log = get_logger("ticketdesk")


# -----------------------------------------------------------------------------
# SLA sweeper (optional, SLA_SWEEP_SECONDS > 0)
# -----------------------------------------------------------------------------
async def _sla_sweeper(interval: int):
    log.info("sla_sweeper_started", {"every_s": interval})
    while True:
        await asyncio.sleep(interval)
        db = SessionLocal()
        try:
            flipped = sweep_sla(db)
            if flipped:
                log.info("sla_sweep", {"breached": flipped})
        except Exception:
            db.rollback()
            log.exception("sla_sweep_failed")
        finally:
            db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    sweeper = None
    if settings.SLA_SWEEP_SECONDS > 0:
        sweeper = asyncio.create_task(_sla_sweeper(settings.SLA_SWEEP_SECONDS))
    log.info("startup", {"env": settings.APP_ENV, "dry_run": app.state.dispatcher.dry_run,
                         "strict_transitions": settings.STRICT_STATUS_TRANSITIONS})
    yield
    if sweeper:
        sweeper.cancel()


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
app = FastAPI(title="Ticketdesk", lifespan=lifespan)

app.state.env = settings.APP_ENV
app.state.dispatcher = Dispatcher()
app.state.notifier = ConnectionManager()

app.include_router(dashboard_router)
app.include_router(tickets_router)
app.include_router(customers_router)
app.include_router(instances_router)
app.include_router(webhooks_router)
app.include_router(realtime_router)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
@app.exception_handler(TicketdeskError)
async def _domain_error(request: Request, exc: TicketdeskError):
    log.info("request_rejected", {"path": request.url.path, "status": exc.status_code, "detail": exc.detail})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    log.error("unhandled_error", {"path": request.url.path, "method": request.method}, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------
@app.get("/healthz")
def healthz():
    return {"ok": True}

@app.head("/healthz")
def healthz_head():
    return {}

@app.get("/health")
def health():
    return JSONResponse({"ok": True})
