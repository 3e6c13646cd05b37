"""
FILE: pipeline/parsers/commtrex.py
Role: Parse the two Commtrex CSV exports into facility records.
Dependencies: pandas, normalize.py
Output: list[dict] with core fields, source_id and a nested attributes dict.

  parse_commtrex_facilities → transloading terminals
  parse_commtrex_storage    → railcar storage yards

Commtrex column names drift between exports ("Facility Name" vs "Name",
"Zip" vs "Postal Code"), so each field lists its candidate headers.
Empty attribute values are dropped so attributes stay compact.
"""

from pathlib import Path
from typing import Any, Callable

import pandas as pd

from normalize import clean_value, normalize_state, normalize_website, parse_list

CORE_COLUMNS: dict[str, tuple[str, ...]] = {
    "name": ("Facility Name", "Name", "name"),
    "address": ("Address", "address"),
    "city": ("City", "city"),
    "state": ("State", "state"),
    "zip": ("Zip", "Postal Code", "zip"),
    "phone": ("Phone", "phone"),
    "email": ("Email", "email"),
    "website": ("Website", "website"),
    "source_id": ("ID", "id"),
}

# attribute key → (candidate headers, is_list)
FACILITY_ATTRIBUTES: dict[str, tuple[tuple[str, ...], bool]] = {
    "commodities": (("Commodities", "commodities"), True),
    "railroads": (("Railroads", "railroads", "Railroad"), True),
    "description": (("Description", "description"), False),
    "services": (("Services", "services"), True),
    "terminal_type": (("Terminal Type", "terminal_type"), False),
    "storage_capacity": (("Storage Capacity", "storage_capacity"), False),
    "equipment": (("Equipment", "equipment"), True),
}

STORAGE_ATTRIBUTES: dict[str, tuple[tuple[str, ...], bool]] = {
    "storage_type": (("Storage Type", "storage_type"), False),
    "capacity": (("Capacity", "capacity"), False),
    "railroads": (("Railroads", "railroads"), True),
    "services": (("Services", "services"), True),
    "description": (("Description", "description"), False),
    "security": (("Security", "security"), False),
    "track_type": (("Track Type", "track_type"), False),
}


def _first(row: dict[str, Any], candidates: tuple[str, ...]) -> Any:
    for col in candidates:
        value = clean_value(row.get(col))
        if value is not None:
            return value
    return None


def _read_rows(path: str | Path) -> list[dict[str, Any]]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    df.columns = [str(c).strip() for c in df.columns]
    return df.to_dict(orient="records")


def _build_record(
    row: dict[str, Any],
    attribute_map: dict[str, tuple[tuple[str, ...], bool]],
) -> dict[str, Any]:
    record = {field: _first(row, cols) for field, cols in CORE_COLUMNS.items()}
    record["state"] = normalize_state(record["state"])
    record["website"] = normalize_website(record["website"])
    if record["source_id"] is not None:
        record["source_id"] = str(record["source_id"])

    attributes = {}
    for key, (cols, is_list) in attribute_map.items():
        value = _first(row, cols)
        if is_list:
            value = parse_list(value)
        if value is not None:
            attributes[key] = value
    record["attributes"] = attributes
    return record


def _parse(path: str | Path, build: Callable[[dict[str, Any]], dict[str, Any]]) -> list[dict[str, Any]]:
    records = []
    for row in _read_rows(path):
        record = build(row)
        if record["name"]:
            records.append(record)
    return records


def parse_commtrex_facilities(path: str | Path) -> list[dict[str, Any]]:
    """Parse the Commtrex transloading facilities export."""
    return _parse(path, lambda row: _build_record(row, FACILITY_ATTRIBUTES))


def parse_commtrex_storage(path: str | Path) -> list[dict[str, Any]]:
    """Parse the Commtrex railcar storage export."""
    return _parse(path, lambda row: _build_record(row, STORAGE_ATTRIBUTES))
