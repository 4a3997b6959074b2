"""
API v1 router assembly.

Each endpoint declares its own authentication: the dispatch webhook under
/jobs is guarded by the trigger secret instead of a bearer token.
"""

from fastapi import APIRouter

from refdesk.api.v1.endpoints import batches, exports, jobs

api_router = APIRouter()
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(
    batches.router, prefix="/mission-orders/batches", tags=["mission-orders"]
)
api_router.include_router(exports.router, prefix="/exports", tags=["exports"])
