"""HTTP layer: every route group hangs off ``api_router``, which ``main`` mounts at the root."""

from fastapi import APIRouter

from youth_clustering.api.routes import clustering_router

api_router = APIRouter()
api_router.include_router(clustering_router)

__all__ = ["api_router"]
