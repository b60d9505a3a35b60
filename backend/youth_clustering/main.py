"""FastAPI entrypoint for the youth segmentation service.

Functions:
    lifespan(app): Create tables and pragmas on startup, release the engine pool on shutdown.
    clustering_error_handler(request, exc): Translate pipeline errors that escape a route into JSON.
    health_check(): Liveness check.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from youth_clustering.api import api_router
from youth_clustering.core.config import get_settings
from youth_clustering.db.session import engine, init_db
from youth_clustering.services import ClusteringError, InvalidSelector, RunNotFound

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    _LOGGER.info("%s ready (k range %d-%d)", settings.app_name, settings.cluster_k_min, settings.cluster_k_max)
    yield
    await engine.dispose()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(ClusteringError)
async def clustering_error_handler(request: Request, exc: ClusteringError) -> JSONResponse:
    if isinstance(exc, InvalidSelector):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, RunNotFound):
        code = status.HTTP_404_NOT_FOUND
    else:
        _LOGGER.error("Unhandled %s on %s", exc.__class__.__name__, request.url.path, exc_info=exc)
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": exc.__class__.__name__})


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}
