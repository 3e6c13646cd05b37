"""
FILE: pipeline/parsers/excel.py
Role: Parse one category spreadsheet (.xlsx, or a .csv export of one)
      into normalised facility records.
Dependencies: pandas (openpyxl engine for .xlsx), normalize.py
Output: list[dict], one dict per data row that carries a name:
  name, address, city, state (2-letter), zip, country, phone, email,
  website (with scheme), commodities/railroads (lists), description, type,
  hours, operator, fleet_size, ownership + every unrecognised column verbatim.

Spreadsheets come from many hands, so column headers are matched by keyword
(first rule wins, see HEADER_RULES). Unmatched headers become lower_snake_case
keys and are carried through to the facility's attributes.
"""

import re
from pathlib import Path
from typing import Any

import pandas as pd

from normalize import clean_value, normalize_state, normalize_website, parse_list

# Ordered (pattern, canonical field). Contact/location rules precede the
# catch-all name rule so "Facility City" → city and "Contact Email" → email.
HEADER_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"e-?mail"), "email"),
    (re.compile(r"website|web site|\bweb\b|url"), "website"),
    (re.compile(r"phone|\btel\b|telephone|contact"), "phone"),
    (re.compile(r"commodit"), "commodities"),
    (re.compile(r"railroad|served by"), "railroads"),
    (re.compile(r"fleet"), "fleet_size"),
    (re.compile(r"ownership"), "ownership"),
    (re.compile(r"type"), "type"),
    (re.compile(r"description|\bdesc\b"), "description"),
    (re.compile(r"hours"), "hours"),
    (re.compile(r"\bcity\b"), "city"),
    (re.compile(r"\bstate\b"), "state"),
    (re.compile(r"zip|postal"), "zip"),
    (re.compile(r"country"), "country"),
    (re.compile(r"address|street"), "address"),
    (re.compile(r"facility|company|operator|^name$"), "name"),
]


def normalize_header(header: Any) -> str:
    """Map a raw column header to a canonical field or a snake_case key."""
    raw = str(header).strip()
    lower = raw.lower()
    for pattern, field in HEADER_RULES:
        if pattern.search(lower):
            return field
    return re.sub(r"\s+", "_", lower)


def normalize_record(record: dict[str, Any]) -> dict[str, Any]:
    """Apply normalisation rules; keep every extra column as-is."""
    normalized: dict[str, Any] = {
        "name": record.get("name") or record.get("facility_name") or record.get("company_name"),
        "address": record.get("address"),
        "city": record.get("city"),
        "state": normalize_state(record.get("state")),
        "zip": record.get("zip"),
        "country": record.get("country"),
        "phone": record.get("phone"),
        "email": record.get("email"),
        "website": normalize_website(record.get("website")),
        "commodities": parse_list(record.get("commodities")),
        "railroads": parse_list(record.get("railroads")),
        "description": record.get("description"),
        "type": record.get("type"),
        "hours": record.get("hours"),
        "operator": record.get("operator"),
        "fleet_size": record.get("fleet_size"),
        "ownership": record.get("ownership"),
    }
    for key, value in record.items():
        if key not in normalized and value is not None:
            normalized[key] = value
    return normalized


def _free_key(record: dict[str, Any], header: str, raw_header: str) -> str:
    """
    Key for the next cell of a row. The first column mapped to a field keeps it;
    later ones fall back to their snake_case header, suffixed _2, _3, ... when
    that is taken too. An assigned key is never overwritten.
    """
    if header not in record:
        return header
    key, n = raw_header, 2
    while key in record:
        key = f"{raw_header}_{n}"
        n += 1
    return key


def _read_table(path: Path) -> pd.DataFrame:
    """Read the first sheet (or the CSV) with no header inference."""
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
    return pd.read_excel(path, sheet_name=0, header=None, dtype=object)


def parse_excel_file(path: str | Path) -> list[dict[str, Any]]:
    """
    Parse a spreadsheet into normalised records.
    Row 0 is the header row; blank rows and rows without a name are dropped.
    """
    table = _read_table(Path(path))
    if len(table) < 2:
        return []

    headers = [normalize_header(h) for h in table.iloc[0].tolist()]
    raw_headers = [re.sub(r"\s+", "_", str(h).strip().lower()) for h in table.iloc[0].tolist()]

    records = []
    for values in table.iloc[1:].itertuples(index=False, name=None):
        record: dict[str, Any] = {}
        for header, raw_header, value in zip(headers, raw_headers, values):
            value = clean_value(value)
            if value is None:
                continue
            if not isinstance(value, str):
                value = str(value)
            record[_free_key(record, header, raw_header)] = value
        if not record:
            continue

        normalized = normalize_record(record)
        if normalized["name"]:
            records.append(normalized)

    return records
