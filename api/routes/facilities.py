"""
FILE: api/routes/facilities.py
Role: Facility listing / search, nearby search and detail lookup.
Dependencies: db.py get_conn(); facilities + categories tables (PostGIS, tsvector)
Output:
  GET /api/facilities          → {data: [...], pagination: {page, limit, total, totalPages}}
  GET /api/facilities/nearby   → {data: [...], center: {lat, lng}, radius}
  GET /api/facilities/{id}     → single facility or 404
How to test:
  curl "http://localhost:8000/api/facilities?state=tx&q=grain" | python3 -m json.tool
  curl "http://localhost:8000/api/facilities/nearby?lat=40.71&lng=-74.00&radius=50"

Query building rules:
  - Every filter is optional; only active facilities are ever returned.
  - Values are always bound as $n parameters, never interpolated.
  - The count query shares the WHERE clause and parameters of the page query.
  - Ordering is fixed: distance (when lat/lng given) > ts_rank (when q given) > name.
  - Radius is in miles; distance uses geography (great-circle, metres).

The /facilities/nearby route is registered before /facilities/{id} so that
"nearby" is never parsed as an id.
"""

import math
from dataclasses import dataclass, field
from typing import Any

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field, field_validator

from db import get_conn

router = APIRouter()

METERS_PER_MILE = 1609.344

LIST_COLUMNS = """
    f.id, f.name, f.address, f.city, f.state, f.zip,
    f.phone, f.email, f.website, f.latitude, f.longitude,
    f.attributes, f.created_at,
    c.id AS category_id, c.name AS category_name, c.slug AS category_slug"""

DETAIL_COLUMNS = """
    f.id, f.name, f.slug, f.category_id, f.sub_category,
    f.address, f.city, f.state, f.zip, f.country,
    f.latitude, f.longitude, f.geocoded_at, f.geocoding_confidence,
    f.phone, f.email, f.website, f.attributes,
    f.source, f.source_id, f.is_verified, f.created_at, f.updated_at,
    c.name AS category_name, c.slug AS category_slug"""

FROM_JOIN = """
    FROM facilities f
    JOIN categories c ON f.category_id = c.id"""


# ── Filters ──────────────────────────────────────────────────

class FacilityFilters(BaseModel):
    q: str | None = None
    category: str | None = None
    state: str | None = None
    city: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    radius: float = Field(default=50, ge=1, le=500)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @field_validator("q", "category", "city", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("state", mode="before")
    @classmethod
    def state_upper(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        v = str(v).strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError("state must be a 2-letter code")
        return v

    @property
    def has_center(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class FacilityQuery:
    """A page query and its matching count query, each with its own args."""
    sql: str
    args: list[Any] = field(default_factory=list)
    count_sql: str = ""
    count_args: list[Any] = field(default_factory=list)


def build_facility_query(filters: FacilityFilters) -> FacilityQuery:
    """Translate filters into a parameterised page query + count query."""
    args: list[Any] = []

    def bind(value: Any) -> str:
        args.append(value)
        return f"${len(args)}"

    where = ["f.is_active = true"]
    q_ref = point = None

    if filters.q:
        q_ref = bind(filters.q)
        where.append(f"f.search_vector @@ plainto_tsquery('english', {q_ref})")

    if filters.category:
        where.append(f"c.slug = {bind(filters.category)}")

    if filters.state:
        where.append(f"f.state = {bind(filters.state)}")

    if filters.city:
        where.append(f"f.city ILIKE {bind('%' + filters.city + '%')}")

    if filters.has_center:
        lat_ref = bind(filters.lat)
        lng_ref = bind(filters.lng)
        point = f"ST_SetSRID(ST_MakePoint({lng_ref}::float8, {lat_ref}::float8), 4326)::geography"
        radius_ref = bind(filters.radius * METERS_PER_MILE)
        where.append("f.location IS NOT NULL")
        where.append(f"ST_DWithin(f.location, {point}, {radius_ref}::float8)")

    where_sql = "\n    WHERE " + "\n      AND ".join(where)
    count_sql = "SELECT COUNT(*)" + FROM_JOIN + where_sql
    count_args = list(args)

    columns = LIST_COLUMNS
    if point:
        columns += f",\n    ST_Distance(f.location, {point}) / {METERS_PER_MILE} AS distance_miles"
        order = "distance_miles ASC"
    elif q_ref:
        order = f"ts_rank(f.search_vector, plainto_tsquery('english', {q_ref})) DESC"
    else:
        order = "f.name ASC"

    limit_ref = bind(filters.limit)
    offset_ref = bind(filters.offset)
    sql = (
        "SELECT" + columns + FROM_JOIN + where_sql
        + f"\n    ORDER BY {order}"
        + f"\n    LIMIT {limit_ref} OFFSET {offset_ref}"
    )
    return FacilityQuery(sql=sql, args=args, count_sql=count_sql, count_args=count_args)


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def _require_center_pair(lat: float | None, lng: float | None) -> None:
    if (lat is None) != (lng is None):
        raise HTTPException(status_code=400, detail="lat and lng must be provided together")


# ── Endpoints ────────────────────────────────────────────────

@router.get("/facilities")
async def list_facilities(
    q: str | None = Query(None, max_length=200, description="Free-text search"),
    category: str | None = Query(None, description="Category slug"),
    state: str | None = Query(None, min_length=2, max_length=2, description="2-letter state code"),
    city: str | None = Query(None, max_length=200, description="Partial city name"),
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    radius: float = Query(50, ge=1, le=500, description="Radius in miles (with lat/lng)"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """Filtered, paginated facility listing."""
    _require_center_pair(lat, lng)
    try:
        filters = FacilityFilters(
            q=q, category=category, state=state, city=city,
            lat=lat, lng=lng, radius=radius, page=page, limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    query = build_facility_query(filters)
    rows = await conn.fetch(query.sql, *query.args)
    total = await conn.fetchval(query.count_sql, *query.count_args) or 0

    return {
        "data": [dict(r) for r in rows],
        "pagination": {
            "page": filters.page,
            "limit": filters.limit,
            "total": total,
            "totalPages": total_pages(total, filters.limit),
        },
    }


@router.get("/facilities/nearby")
async def nearby_facilities(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(50, ge=1, le=500, description="Radius in miles"),
    limit: int = Query(20, ge=1, le=100),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """Active facilities within `radius` miles of a point, nearest first."""
    query = build_facility_query(
        FacilityFilters(lat=lat, lng=lng, radius=radius, limit=limit)
    )
    rows = await conn.fetch(query.sql, *query.args)
    return {
        "data": [dict(r) for r in rows],
        "center": {"lat": lat, "lng": lng},
        "radius": radius,
    }


@router.get("/facilities/{facility_id}")
async def get_facility(
    facility_id: int = Path(..., gt=0, description="Facility primary key"),
    conn: asyncpg.Connection = Depends(get_conn),
):
    """Single active facility with its category name/slug."""
    row = await conn.fetchrow(
        "SELECT" + DETAIL_COLUMNS + FROM_JOIN + "\n    WHERE f.id = $1 AND f.is_active = true",
        facility_id,
    )
    if not row:
        raise HTTPException(status_code=404, detail="Facility not found")
    return dict(row)
