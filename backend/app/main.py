"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import get_settings
from app.db.session import SessionLocal
from app.routers import enrichment
from app.services.enrichment_cache import shutdown_hit_executor
from app.services.ephemeral_store import get_progress_tracker
from app.services.preview import get_preview_store

logger = logging.getLogger(__name__)


def _warm_backend_state() -> None:
    """Prime the DB connection at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Backend warm-up failed; continuing without startup pre-warm.")


def _sweep_ephemeral_state() -> None:
    swept_progress = get_progress_tracker().sweep()
    swept_previews = get_preview_store().sweep()
    if swept_progress or swept_previews:
        logger.info("enrichment.ephemeral_sweep progress=%d previews=%d", swept_progress, swept_previews)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _warm_backend_state()
    yield
    shutdown_hit_executor()


app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(enrichment.router, tags=["enrichment"])


@app.middleware("http")
async def sweep_expired_records(request, call_next):  # noqa: ANN001
    _sweep_ephemeral_state()
    return await call_next(request)


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
