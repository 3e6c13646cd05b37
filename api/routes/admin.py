"""
FILE: api/routes/admin.py
Role: POST /api/admin/invalidate-cache drops cached category counts and search
      dropdown data after an import (admin-protected).
Dependencies: FastAPICache (in-memory backend), cache_keys.py namespaces, ADMIN_KEY env var
How to test:
  curl -s -X POST -H "X-Admin-Key: devkey" http://localhost:8000/api/admin/invalidate-cache
  # Expect: {"status": "cache cleared", "namespaces": ["categories", "search"], "cleared": N}
  curl -s -X POST -H "X-Admin-Key: devkey" \
       "http://localhost:8000/api/admin/invalidate-cache?namespace=categories"

With ADMIN_KEY unset every request is rejected; there is no open admin mode.
"""

import logging
import os
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi_cache import FastAPICache

from cache_keys import CACHE_NAMESPACES

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_admin_key(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    expected = os.environ.get("ADMIN_KEY", "")
    if not expected or not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing X-Admin-Key header")


@router.post("/admin/invalidate-cache", dependencies=[Depends(_check_admin_key)])
async def invalidate_cache(
    namespace: str | None = Query(
        None,
        pattern="^(" + "|".join(CACHE_NAMESPACES) + ")$",
        description="Clear one namespace only; all namespaces when omitted",
    ),
):
    """Clear cached responses, either one namespace or all of them."""
    namespaces = [namespace] if namespace else list(CACHE_NAMESPACES)
    cleared = 0
    for ns in namespaces:
        cleared += await FastAPICache.clear(namespace=ns) or 0
    logger.info("Cleared %d cached responses in %s", cleared, ", ".join(namespaces))
    return {"status": "cache cleared", "namespaces": namespaces, "cleared": cleared}
