"""
FILE: api/routes/search.py
Role: Search helpers for the frontend search box and filter dropdowns,
      plus best-effort search analytics.
Dependencies: db.py get_conn(); facilities, categories, search_logs tables;
              pg_trgm extension (similarity / % operator) for suggestions
Output:
  GET  /api/search/suggest?q&limit   → {data: [{name, location, category, categorySlug}]}
  GET  /api/search/states            → {data: [{state, count}]}
  GET  /api/search/cities?state      → {data: [{city, count}]}
  POST /api/search/log               → {success: bool}
How to test:
  curl "http://localhost:8000/api/search/suggest?q=union"
  curl -X POST http://localhost:8000/api/search/log \
       -H "Content-Type: application/json" -d '{"query": "grain", "resultsCount": 12}'

ARCHITECTURE RULE: /search/log must never fail the caller. Insert errors are
logged and reported as {"success": false} with a 200.
"""

import ipaddress
import logging
from typing import Any

import asyncpg
from fastapi import APIRouter, Depends, Query, Request
from fastapi_cache.decorator import cache
from pydantic import BaseModel

from cache_keys import SEARCH_NAMESPACE, request_key_builder
from db import get_conn

logger = logging.getLogger(__name__)

router = APIRouter()

STATES_CACHE_S = 300


class SearchLogEntry(BaseModel):
    query: str | None = None
    filters: dict[str, Any] | None = None
    resultsCount: int | None = None


class SearchLogResponse(BaseModel):
    success: bool


def _client_ip(request: Request) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if request.client is None:
        return None
    try:
        return ipaddress.ip_address(request.client.host)
    except ValueError:
        return None


@router.get("/search/suggest")
async def suggest(
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(10, ge=1, le=20),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """Autocomplete facility names by trigram similarity."""
    rows = await conn.fetch(
        """SELECT DISTINCT name, city, state, category_id,
               similarity(name, $1) AS sml
           FROM facilities
           WHERE name % $1
             AND is_active = true
           ORDER BY sml DESC, name ASC
           LIMIT $2""",
        q, limit,
    )

    category_ids = sorted({r["category_id"] for r in rows if r["category_id"] is not None})
    categories: dict[int, Any] = {}
    if category_ids:
        cat_rows = await conn.fetch(
            "SELECT id, name, slug FROM categories WHERE id = ANY($1::int[])",
            category_ids,
        )
        categories = {c["id"]: c for c in cat_rows}

    suggestions = []
    for r in rows:
        cat = categories.get(r["category_id"])
        suggestions.append({
            "name": r["name"],
            "location": f"{r['city']}, {r['state']}" if r["city"] and r["state"] else None,
            "category": cat["name"] if cat else None,
            "categorySlug": cat["slug"] if cat else None,
        })
    return {"data": suggestions}


@router.get("/search/states")
@cache(expire=STATES_CACHE_S, namespace=SEARCH_NAMESPACE, key_builder=request_key_builder)
async def list_states(conn: asyncpg.Connection = Depends(get_conn)):
    """States with active facility counts, busiest first."""
    rows = await conn.fetch(
        """SELECT state, COUNT(*) AS count
           FROM facilities
           WHERE is_active = true AND state IS NOT NULL
           GROUP BY state
           ORDER BY count DESC"""
    )
    return {"data": [dict(r) for r in rows]}


@router.get("/search/cities")
async def list_cities(
    state: str = Query(..., min_length=2, max_length=2, description="2-letter state code"),
    limit: int = Query(50, ge=1, le=100),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """Cities in a state with active facility counts."""
    rows = await conn.fetch(
        """SELECT city, COUNT(*) AS count
           FROM facilities
           WHERE is_active = true AND state = $1 AND city IS NOT NULL
           GROUP BY city
           ORDER BY count DESC
           LIMIT $2""",
        state.upper(), limit,
    )
    return {"data": [dict(r) for r in rows]}


@router.post("/search/log", response_model=SearchLogResponse)
async def log_search(
    entry: SearchLogEntry,
    request: Request,
    conn: asyncpg.Connection = Depends(get_conn),
) -> SearchLogResponse:
    """Record a search for analytics. Never fails the request."""
    try:
        await conn.execute(
            """INSERT INTO search_logs (query, filters, results_count, ip_address, user_agent)
               VALUES ($1, $2, $3, $4, $5)""",
            entry.query or None,
            entry.filters,
            entry.resultsCount,
            _client_ip(request),
            request.headers.get("user-agent"),
        )
    except Exception:
        logger.warning("Failed to record search log entry", exc_info=True)
        return SearchLogResponse(success=False)
    return SearchLogResponse(success=True)
