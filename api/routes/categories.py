"""
FILE: api/routes/categories.py
Role: Category listing, category detail (paginated facilities) and per-category stats.
Dependencies: db.py get_conn(); categories + facilities tables
Output:
  GET /api/categories               → {data: [{id, slug, name, description, display_order, facility_count}]}
  GET /api/categories/{slug}        → {category, facilities, pagination}
  GET /api/categories/{slug}/stats  → {category, total, byState, topCities}
How to test:
  curl http://localhost:8000/api/categories | python3 -m json.tool
  curl http://localhost:8000/api/categories/transloading/stats

Categories are static reference data seeded by database/schema.sql, so the list
response is cached. Facility counts in it can lag an import by up to CATEGORY_CACHE_S;
POST /api/admin/invalidate-cache flushes it immediately.
"""

import math

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi_cache.decorator import cache

from cache_keys import CATEGORIES_NAMESPACE, request_key_builder
from db import get_conn

router = APIRouter()

CATEGORY_CACHE_S = 300
TOP_CITIES = 20


async def _get_category(conn: asyncpg.Connection, slug: str, columns: str = "*") -> dict:
    """Fetch an active category by slug or raise 404."""
    row = await conn.fetchrow(
        f"SELECT {columns} FROM categories WHERE slug = $1 AND is_active = true",
        slug,
    )
    if not row:
        raise HTTPException(status_code=404, detail="Category not found")
    return dict(row)


@router.get("/categories")
@cache(expire=CATEGORY_CACHE_S, namespace=CATEGORIES_NAMESPACE, key_builder=request_key_builder)
async def list_categories(conn: asyncpg.Connection = Depends(get_conn)):
    """All active categories with their active facility counts."""
    rows = await conn.fetch(
        """SELECT
               c.id, c.slug, c.name, c.description, c.display_order,
               COUNT(f.id) AS facility_count
           FROM categories c
           LEFT JOIN facilities f ON f.category_id = c.id AND f.is_active = true
           WHERE c.is_active = true
           GROUP BY c.id
           ORDER BY c.display_order ASC, c.name ASC"""
    )
    return {"data": [dict(r) for r in rows]}


@router.get("/categories/{slug}")
async def get_category(
    slug: str = Path(..., max_length=100, description="Category slug"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """Category detail with a page of its facilities (name order)."""
    category = await _get_category(
        conn, slug, "id, slug, name, description, display_order, created_at, updated_at"
    )
    offset = (page - 1) * limit

    facilities = await conn.fetch(
        """SELECT
               f.id, f.name, f.address, f.city, f.state, f.zip,
               f.phone, f.email, f.website, f.latitude, f.longitude,
               f.attributes
           FROM facilities f
           WHERE f.category_id = $1 AND f.is_active = true
           ORDER BY f.name ASC
           LIMIT $2 OFFSET $3""",
        category["id"], limit, offset,
    )
    total = await conn.fetchval(
        "SELECT COUNT(*) FROM facilities WHERE category_id = $1 AND is_active = true",
        category["id"],
    ) or 0

    return {
        "category": category,
        "facilities": [dict(r) for r in facilities],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
        },
    }


@router.get("/categories/{slug}/stats")
async def get_category_stats(
    slug: str = Path(..., max_length=100, description="Category slug"),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """State distribution and top cities for one category."""
    category = await _get_category(conn, slug, "id, name, slug")

    by_state = await conn.fetch(
        """SELECT state, COUNT(*) AS count
           FROM facilities
           WHERE category_id = $1 AND is_active = true
           GROUP BY state
           ORDER BY count DESC""",
        category["id"],
    )
    top_cities = await conn.fetch(
        """SELECT city, state, COUNT(*) AS count
           FROM facilities
           WHERE category_id = $1 AND is_active = true AND city IS NOT NULL
           GROUP BY city, state
           ORDER BY count DESC
           LIMIT $2""",
        category["id"], TOP_CITIES,
    )
    total = await conn.fetchval(
        "SELECT COUNT(*) FROM facilities WHERE category_id = $1 AND is_active = true",
        category["id"],
    ) or 0

    return {
        "category": category,
        "total": total,
        "byState": [dict(r) for r in by_state],
        "topCities": [dict(r) for r in top_cities],
    }
