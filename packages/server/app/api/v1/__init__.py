"""
API v1 Router

Org-scoped endpoints are prefixed with /orgs/{org_id}.
"""

from fastapi import APIRouter
from . import boards, invitations, organizations, profiles

router = APIRouter()

router.include_router(profiles.router, prefix="/me", tags=["Profile"])
router.include_router(organizations.router, prefix="/orgs", tags=["Organizations"])
router.include_router(
    invitations.router, prefix="/orgs/{org_id}/invitations", tags=["Invitations"]
)
router.include_router(invitations.accept_router, prefix="/invitations", tags=["Invitations"])
router.include_router(boards.org_router, prefix="/orgs/{org_id}/boards", tags=["Boards"])
router.include_router(boards.router, prefix="/boards", tags=["Boards"])


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/me",
            "/orgs",
            "/orgs/{org_id}/members",
            "/orgs/{org_id}/invitations",
            "/orgs/{org_id}/boards",
            "/invitations/accept",
            "/boards/{board_id}",
        ],
    }
