"""
Administrative endpoints.
"""

import logging

from fastapi import APIRouter, Request
from redis.exceptions import RedisError

from privacy_advisor.api.errors.exceptions import AuthorizationException, ServiceUnavailableException
from privacy_advisor.api.routers.scans import is_privileged

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/admin/refresh-lists",
    summary="Reseed tracker lists",
    description="Write the bundled tracker lists to the list store and reload the cache"
)
async def refresh_lists(request: Request):
    if not is_privileged(request):
        raise AuthorizationException("Admin key required")

    cache = request.app.state.list_cache
    try:
        lists = await cache.refresh()
    except RedisError as e:
        logger.error(f"List refresh failed: {e}")
        raise ServiceUnavailableException("List store", str(e))

    return {
        "ok": True,
        "sources": ["easyprivacy", "whotracks"],
        "easyprivacyDomains": len(lists.easy_privacy.domains),
        "whotracksTrackers": len(lists.who_tracks.trackers or []),
    }
