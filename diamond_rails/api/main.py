"""
diamond_rails.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn diamond_rails.api.main:app --port 8000

Set ``RUN_SCHEDULER=1`` to host the periodic jobs in the API process
instead of a separate ``python -m diamond_rails.worker``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from diamond_rails.api.deps import get_config, get_engine  # noqa: E402
from diamond_rails.api.routes.admin import router as admin_router  # noqa: E402
from diamond_rails.api.routes.escrow import router as escrow_router  # noqa: E402
from diamond_rails.api.routes.ledger import router as ledger_router  # noqa: E402
from diamond_rails.api.routes.rng import router as rng_router  # noqa: E402
from diamond_rails.api.routes.swap import router as swap_router  # noqa: E402
from diamond_rails.database.engine import init_db  # noqa: E402
from diamond_rails.worker.tasks import PeriodicTasks  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, optionally run jobs."""
    engine = get_engine()
    init_db(engine)

    tasks = None
    if os.getenv("RUN_SCHEDULER", "").strip() in ("1", "true", "yes"):
        tasks = PeriodicTasks(engine, get_config())
        tasks.start()

    logger.info("Diamond Rails API started — engine ready (%s)", engine.url.database)
    yield
    if tasks is not None:
        await tasks.stop()
    logger.info("Diamond Rails API shutting down")


app = FastAPI(
    title="Diamond Rails API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(ledger_router, prefix="/api")
app.include_router(escrow_router, prefix="/api")
app.include_router(rng_router, prefix="/api")
app.include_router(swap_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
