import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from atendimento.config import settings
from atendimento.database import SessionLocal, get_db
from atendimento.logging_config import get_logger, setup_logging
from atendimento.routers import conversation, message, pending, webhook
from atendimento.services.scheduler_service import process_due_responses

setup_logging(settings.log_level)

app = FastAPI(
    title="Atendimento API",
    description="Inbound messaging ingestion and deferred AI replies",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(pending.router)
app.include_router(message.router)
app.include_router(conversation.router)

pending_logger = get_logger("pending_worker")
_pending_worker_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_pending_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("PENDING_WORKER_ENABLED"), default=True)


def _get_pending_worker_settings() -> tuple[float, int, int]:
    interval_seconds = float(os.environ.get("PENDING_WORKER_INTERVAL_SECONDS", "1"))
    interval_seconds = max(interval_seconds, 0.1)
    limit = int(os.environ.get("PENDING_PROCESS_LIMIT", "10"))
    stale_seconds = int(float(os.environ.get("PENDING_STALE_SECONDS", "120")))
    return interval_seconds, limit, stale_seconds


def _run_pending_tick(limit: int, stale_seconds: int) -> dict[str, int]:
    db = SessionLocal()
    try:
        return process_due_responses(db, limit=limit, stale_seconds=stale_seconds)
    finally:
        db.close()


async def _pending_worker_loop() -> None:
    while True:
        try:
            interval_seconds, limit, stale_seconds = _get_pending_worker_settings()
            await asyncio.sleep(interval_seconds)
            # model and provider calls are blocking
            results = await asyncio.to_thread(_run_pending_tick, limit, stale_seconds)
            if results.get("claimed"):
                pending_logger.info("Pending worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            pending_logger.error(
                "Pending worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_pending_worker() -> None:
    global _pending_worker_task
    if not _is_pending_worker_enabled():
        return
    if _pending_worker_task is None or _pending_worker_task.done():
        _pending_worker_task = asyncio.create_task(_pending_worker_loop())
        pending_logger.info("Pending worker started")


@app.on_event("shutdown")
async def stop_pending_worker() -> None:
    global _pending_worker_task
    if _pending_worker_task is None:
        return
    _pending_worker_task.cancel()
    try:
        await _pending_worker_task
    except asyncio.CancelledError:
        pass
    _pending_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
