"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from spendpipe.config import get_settings
from spendpipe.db.session import SessionLocal
from spendpipe.pipeline.worker import BackgroundMatcher, get_worker
from spendpipe.routers import pipeline

logger = logging.getLogger(__name__)


def _check_database() -> None:
    """Prime the DB connection at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database warm-up failed; continuing without startup check.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    _check_database()
    worker = get_worker()
    worker.start()
    matcher = None
    if settings.enable_background_matcher:
        matcher = BackgroundMatcher(worker, settings=settings)
        matcher.start()
    yield
    if matcher is not None:
        matcher.stop()
    worker.stop()


settings = get_settings()
app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pipeline.router, tags=["pipeline"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
