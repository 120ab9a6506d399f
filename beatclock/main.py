"""FastAPI application - serves the analysis and transport API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beatclock.analysis.cache import AnalysisCache
from beatclock.api.upload import router as upload_router
from beatclock.api.websocket import router as ws_router
from beatclock.config import Settings

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build an app bound to its own Settings (and cache, when enabled)."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if app.state.cache is not None:
            app.state.cache.close()

    app = FastAPI(title="Beatclock", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.cache = AnalysisCache(settings.cache_dir) if settings.cache_enabled else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(upload_router, prefix="/api")
    app.include_router(ws_router, prefix="/api")

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": VERSION}

    return app


def run():
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")
    settings = Settings()
    uvicorn.run(
        "beatclock.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )
