"""
api/tests/test_query_builder.py
Pure tests for the facility filter → SQL translation (no app, no DB).
Run: pytest api/tests/test_query_builder.py -v
"""

import os
import sys

import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from routes.facilities import (  # noqa: E402
    METERS_PER_MILE,
    FacilityFilters,
    build_facility_query,
    total_pages,
)


def test_no_filters_only_active_ordered_by_name():
    query = build_facility_query(FacilityFilters())
    assert "WHERE f.is_active = true" in query.sql
    assert "ORDER BY f.name ASC" in query.sql
    assert "LIMIT $1 OFFSET $2" in query.sql
    assert query.args == [20, 0]
    assert query.count_args == []
    assert query.count_sql.startswith("SELECT COUNT(*)")
    assert "ORDER BY" not in query.count_sql
    assert "LIMIT" not in query.count_sql


def test_text_query_orders_by_rank_using_its_own_placeholder():
    query = build_facility_query(FacilityFilters(q="grain elevator", state="ks"))
    assert "f.search_vector @@ plainto_tsquery('english', $1)" in query.sql
    assert "ts_rank(f.search_vector, plainto_tsquery('english', $1)) DESC" in query.sql
    assert query.args[:2] == ["grain elevator", "KS"]


def test_all_filters_bind_in_order_and_count_shares_where_clause():
    filters = FacilityFilters(
        q="coal", category="team-tracks", state="wv", city="charles",
        lat=38.35, lng=-81.63, radius=10, page=2, limit=5,
    )
    query = build_facility_query(filters)

    assert query.count_args == [
        "coal", "team-tracks", "WV", "%charles%", 38.35, -81.63,
        pytest.approx(10 * METERS_PER_MILE),
    ]
    assert query.args[:-2] == query.count_args
    assert query.args[-2:] == [5, 5]
    assert "c.slug = $2" in query.sql
    assert "f.city ILIKE $4" in query.sql
    assert "ST_MakePoint($6::float8, $5::float8)" in query.sql
    assert "ST_DWithin(f.location" in query.count_sql
    assert "LIMIT $8 OFFSET $9" in query.sql


def test_geo_center_takes_priority_over_text_rank():
    query = build_facility_query(FacilityFilters(q="tank", lat=40.71, lng=-74.0))
    assert "ORDER BY distance_miles ASC" in query.sql
    assert "ts_rank" not in query.sql
    assert "AS distance_miles" in query.sql


def test_single_coordinate_does_not_add_geo_filter():
    query = build_facility_query(FacilityFilters(lat=40.71))
    assert "ST_DWithin" not in query.sql
    assert query.args == [20, 0]


def test_zero_coordinates_are_a_valid_center():
    query = build_facility_query(FacilityFilters(lat=0, lng=0))
    assert "ST_DWithin" in query.sql


def test_blank_filters_are_ignored():
    query = build_facility_query(FacilityFilters(q="  ", city="", category=""))
    assert query.count_args == []


@pytest.mark.parametrize("raw,expected", [("tx", "TX"), ("Tx", "TX"), (" il ", "IL")])
def test_state_normalised_to_upper(raw, expected):
    assert FacilityFilters(state=raw).state == expected


@pytest.mark.parametrize("kwargs", [
    {"state": "Texas"},
    {"state": "T1"},
    {"radius": 0},
    {"radius": 501},
    {"lat": -91},
    {"lng": 180.5},
    {"page": 0},
    {"limit": 101},
])
def test_out_of_range_filters_raise(kwargs):
    with pytest.raises(ValidationError):
        FacilityFilters(**kwargs)


@pytest.mark.parametrize("page,limit,total", [(1, 20, 0), (1, 20, 45), (3, 20, 45), (5, 1, 5), (2, 100, 101)])
def test_page_window_within_total(page, limit, total):
    filters = FacilityFilters(page=page, limit=limit)
    pages = total_pages(total, limit)
    returned = max(0, min(limit, total - filters.offset))
    assert returned <= limit
    if returned:
        assert page * limit <= total + limit
    assert pages * limit >= total


def test_total_pages_rounds_up():
    assert total_pages(0, 20) == 0
    assert total_pages(20, 20) == 1
    assert total_pages(21, 20) == 2
