"""
FILE: pipeline/normalize.py
Role: Field normalisation shared by every import parser.
Output: normalize_state(), normalize_website(), parse_list(), clean_value()

Rules:
  - State: full US state name → 2-letter postal code; 2-letter input is
    upper-cased; anything unrecognised falls back to its first 2 characters.
  - Website: scheme-less values get an https:// prefix.
  - Lists: comma/semicolon separated text → trimmed, non-empty strings.
"""

import re
from typing import Any

import numpy as np
import pandas as pd

STATE_CODES: dict[str, str] = {
    "ALABAMA": "AL", "ALASKA": "AK", "ARIZONA": "AZ", "ARKANSAS": "AR",
    "CALIFORNIA": "CA", "COLORADO": "CO", "CONNECTICUT": "CT", "DELAWARE": "DE",
    "FLORIDA": "FL", "GEORGIA": "GA", "HAWAII": "HI", "IDAHO": "ID",
    "ILLINOIS": "IL", "INDIANA": "IN", "IOWA": "IA", "KANSAS": "KS",
    "KENTUCKY": "KY", "LOUISIANA": "LA", "MAINE": "ME", "MARYLAND": "MD",
    "MASSACHUSETTS": "MA", "MICHIGAN": "MI", "MINNESOTA": "MN", "MISSISSIPPI": "MS",
    "MISSOURI": "MO", "MONTANA": "MT", "NEBRASKA": "NE", "NEVADA": "NV",
    "NEW HAMPSHIRE": "NH", "NEW JERSEY": "NJ", "NEW MEXICO": "NM", "NEW YORK": "NY",
    "NORTH CAROLINA": "NC", "NORTH DAKOTA": "ND", "OHIO": "OH", "OKLAHOMA": "OK",
    "OREGON": "OR", "PENNSYLVANIA": "PA", "RHODE ISLAND": "RI", "SOUTH CAROLINA": "SC",
    "SOUTH DAKOTA": "SD", "TENNESSEE": "TN", "TEXAS": "TX", "UTAH": "UT",
    "VERMONT": "VT", "VIRGINIA": "VA", "WASHINGTON": "WA", "WEST VIRGINIA": "WV",
    "WISCONSIN": "WI", "WYOMING": "WY",
    "WASHINGTON DC": "DC", "DISTRICT OF COLUMBIA": "DC",
}

_LIST_SPLIT = re.compile(r"[,;]")
_TWO_LETTERS = re.compile(r"^[A-Z]{2}$")


def clean_value(val: Any) -> Any:
    """
    Convert a spreadsheet cell to a plain Python value.
    NaN/None/blank → None; numpy scalars → int/float/bool; strings stripped.
    """
    if val is None:
        return None
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(val, np.integer):
        return int(val)
    if isinstance(val, (float, np.floating)):
        f = float(val)
        return int(f) if f.is_integer() else f
    if isinstance(val, np.bool_):
        return bool(val)
    if isinstance(val, str):
        val = val.strip()
        return val or None
    return val


def normalize_state(state: Any) -> str | None:
    """Map a state name or code to its 2-letter postal code."""
    if state is None:
        return None
    s = str(state).strip().upper()
    if not s:
        return None
    if _TWO_LETTERS.match(s):
        return s
    s = re.sub(r"\s+", " ", s)
    return STATE_CODES.get(s, s[:2])


def normalize_website(url: Any) -> str | None:
    """Prefix https:// when the value carries no scheme."""
    if url is None:
        return None
    website = str(url).strip()
    if not website:
        return None
    if not website.lower().startswith("http"):
        website = "https://" + website
    return website


def parse_list(value: Any) -> list[str] | None:
    """Split comma/semicolon separated text into a list of trimmed strings."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value if v is not None]
    else:
        text = str(value)
        if not text.strip():
            return None
        items = [part.strip() for part in _LIST_SPLIT.split(text)]
    items = [i for i in items if i]
    return items or None
