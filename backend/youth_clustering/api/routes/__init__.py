"""Route exports for the API layer.

Re-exports the clustering router so callers can include all clustering endpoints with a single import.
"""

from .clustering import router as clustering_router

__all__ = ["clustering_router"]
