"""treebridge FastAPI service: main application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from treebridge import config
from treebridge.observability import initialize as initialize_observability, shutdown as shutdown_observability
from treebridge.routers.sync import sync_router
from treebridge.session_manager import session_manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("treebridge")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info(f"treebridge starting up (projects root: {config.PROJECTS_DIR})")
    initialize_observability(app)

    # Stale session sweep runs independently of any request
    app.state.cleanup_task = asyncio.create_task(
        session_manager.run_cleanup_loop(config.CLEANUP_INTERVAL_SECONDS)
    )

    yield

    logger.info("treebridge shutting down")

    app.state.cleanup_task.cancel()
    try:
        await app.state.cleanup_task
    except asyncio.CancelledError:
        pass

    await session_manager.shutdown()
    shutdown_observability(app)


app = FastAPI(
    title="treebridge API",
    description="Bidirectional sync between live editor sessions and project folders",
    version="0.1.0",
    lifespan=lifespan,
)

# Editor plugins and the local dashboard call from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(sync_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "sessions": len(session_manager.list_sessions()),
    }

