"""
FastAPI application for FlowBatch Core

Routes live in routes.py; this module wires the service container into
app.state and fails runs orphaned by a previous process on startup.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import Config
from .routes import router
from ..core.bootstrap import get_container
from ..core.execution.node_base import run_blocking
from ..utils.logger import get_logger

logger = get_logger(__name__)

VERSION = "0.1.0"

app = FastAPI(title="FlowBatch Core API", version=VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.on_event("startup")
async def startup():
    # Tests inject their own container before startup
    if getattr(app.state, 'container', None) is None:
        app.state.container = get_container(mode=Config.MODE)

    cleaned = await run_blocking(app.state.container.history.cleanup_stale, Config.STALE_RUN_MINUTES)
    if cleaned:
        logger.info(f"Marked {len(cleaned)} run(s) left running by a previous process as failed")


@app.on_event("shutdown")
async def shutdown():
    container = getattr(app.state, 'container', None)
    if container is not None:
        container.shutdown()


@app.get("/")
async def root():
    return {
        "service": "FlowBatch Core",
        "version": VERSION,
        "mode": Config.MODE,
    }


@app.get("/health")
async def health(request: Request):
    """Liveness plus the run the status view currently tracks"""
    container = getattr(request.app.state, 'container', None)
    return {
        "status": "healthy",
        "mode": Config.MODE,
        "latest_run_id": container.synchronizer.latest_run_id if container is not None else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.API_HOST, port=Config.API_PORT)
