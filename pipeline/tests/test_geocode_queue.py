"""
pipeline/tests/test_geocode_queue.py
Provider response handling, rate limiting and queue accounting.
HTTP is mocked at requests.get; the database at the SQLAlchemy engine.
Run: pytest pipeline/tests/ -v
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import geocode_queue  # noqa: E402
from geocode_queue import (  # noqa: E402
    GeocodeResult, GeocodeStats, GoogleGeocoder, MapboxGeocoder, NominatimGeocoder,
    format_address, get_geocoder, process_all,
)


# ── Helpers ───────────────────────────────────────────────────────────────────


def http_response(payload) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def mock_get():
    with patch.object(geocode_queue.requests, "get") as get:
        yield get


# ── Nominatim ─────────────────────────────────────────────────────────────────


def test_nominatim_returns_medium_confidence(mock_get):
    mock_get.return_value = http_response([{"lat": "29.7604", "lon": "-95.3698"}])
    geocoder = NominatimGeocoder(rate_limit_s=0, user_agent="Railhub-test")

    result = geocoder.geocode("1 Main St, Houston, TX 77001, USA")

    assert result == GeocodeResult(29.7604, -95.3698, "medium", "nominatim")
    _, kwargs = mock_get.call_args
    assert kwargs["params"]["q"] == "1 Main St, Houston, TX 77001, USA"
    assert kwargs["headers"]["User-Agent"] == "Railhub-test"


def test_nominatim_no_match_is_none(mock_get):
    mock_get.return_value = http_response([])

    assert NominatimGeocoder(rate_limit_s=0).geocode("nowhere") is None


def test_nominatim_http_error_is_none(mock_get):
    resp = http_response([])
    resp.raise_for_status.side_effect = requests.HTTPError("503 Server Error")
    mock_get.return_value = resp

    assert NominatimGeocoder(rate_limit_s=0).geocode("anywhere") is None


def test_network_error_is_none(mock_get):
    mock_get.side_effect = requests.ConnectionError("connection refused")

    assert NominatimGeocoder(rate_limit_s=0).geocode("anywhere") is None


def test_nominatim_waits_between_requests(mock_get):
    mock_get.return_value = http_response([])
    geocoder = NominatimGeocoder(rate_limit_s=1.0)

    with patch.object(geocode_queue.time, "monotonic", side_effect=[100.0, 100.25, 101.0]), \
            patch.object(geocode_queue.time, "sleep") as sleep:
        geocoder.geocode("first")
        geocoder.geocode("second")

    sleep.assert_called_once()
    assert sleep.call_args.args[0] == pytest.approx(0.75)


# ── Google ────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("location_type,confidence", [
    ("ROOFTOP", "high"),
    ("RANGE_INTERPOLATED", "medium"),
    ("GEOMETRIC_CENTER", "medium"),
    ("APPROXIMATE", "low"),
    (None, "low"),
])
def test_google_confidence_from_location_type(mock_get, location_type, confidence):
    mock_get.return_value = http_response({
        "status": "OK",
        "results": [{"geometry": {
            "location": {"lat": 41.88, "lng": -87.63},
            "location_type": location_type,
        }}],
    })

    result = GoogleGeocoder("key").geocode("Chicago, IL, USA")

    assert result == GeocodeResult(41.88, -87.63, confidence, "google")


def test_google_non_ok_status_is_none(mock_get):
    mock_get.return_value = http_response({"status": "ZERO_RESULTS", "results": []})

    assert GoogleGeocoder("key").geocode("nowhere") is None


# ── Mapbox ────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("relevance,confidence", [
    (0.95, "high"),
    (0.9, "medium"),
    (0.75, "medium"),
    (0.7, "low"),
])
def test_mapbox_confidence_from_relevance(mock_get, relevance, confidence):
    mock_get.return_value = http_response({
        "features": [{"center": [-97.33, 37.69], "relevance": relevance}],
    })

    result = MapboxGeocoder("token").geocode("Wichita, KS, USA")

    assert result == GeocodeResult(37.69, -97.33, confidence, "mapbox")


def test_mapbox_malformed_payload_is_none(mock_get):
    mock_get.return_value = http_response({"features": [{"relevance": 1.0}]})

    assert MapboxGeocoder("token").geocode("Wichita, KS, USA") is None


# ── Factory / formatting ──────────────────────────────────────────────────────


def test_get_geocoder_selects_provider():
    assert isinstance(get_geocoder("nominatim", None, 1.0), NominatimGeocoder)
    assert isinstance(get_geocoder("Google", "key", 0), GoogleGeocoder)
    assert isinstance(get_geocoder("mapbox", "token", 0), MapboxGeocoder)


@pytest.mark.parametrize("provider", ["google", "mapbox"])
def test_keyed_provider_without_key_raises(provider):
    with pytest.raises(ValueError):
        get_geocoder(provider, None, 0)


def test_unknown_provider_raises():
    with pytest.raises(ValueError):
        get_geocoder("bing", "key", 0)


def test_format_address():
    assert format_address("1 Main St", "Houston", "TX", "77001") == "1 Main St, Houston, TX 77001, USA"
    assert format_address("1 Main St", "Houston", "TX", None) == "1 Main St, Houston, TX, USA"


# ── Queue ─────────────────────────────────────────────────────────────────────


def test_fetch_ungeocoded_queries_queue():
    engine = MagicMock()
    conn = engine.connect.return_value.__enter__.return_value
    conn.execute.return_value.mappings.return_value.all.return_value = [
        {"id": 7, "name": "A", "address": "1 Rd", "city": "X", "state": "TX", "zip": None},
    ]

    rows = geocode_queue.fetch_ungeocoded(engine, limit=25)

    assert rows == [{"id": 7, "name": "A", "address": "1 Rd", "city": "X", "state": "TX", "zip": None}]
    stmt, params = conn.execute.call_args.args
    assert "location IS NULL" in str(stmt)
    assert "ORDER BY id" in str(stmt)
    assert params == {"limit": 25}


def test_save_location_writes_point():
    engine = MagicMock()
    conn = engine.begin.return_value.__enter__.return_value

    geocode_queue.save_location(engine, 7, GeocodeResult(29.76, -95.37, "high", "google"))

    stmt, params = conn.execute.call_args.args
    assert "ST_MakePoint(:lng, :lat)" in str(stmt)
    assert "geocoded_at" in str(stmt)
    assert params == {"lat": 29.76, "lng": -95.37, "confidence": "high", "id": 7}


class StubGeocoder:
    source = "stub"

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.addresses = []

    def geocode(self, address):
        self.addresses.append(address)
        outcome = self.outcomes[len(self.addresses) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_process_all_counts_success_and_failure(monkeypatch):
    queued = [
        {"id": 1, "name": "A", "address": "1 Rd", "city": "Omaha", "state": "NE", "zip": "68102"},
        {"id": 2, "name": "B", "address": "2 Rd", "city": "Omaha", "state": "NE", "zip": None},
        {"id": 3, "name": "C", "address": "3 Rd", "city": "Omaha", "state": "NE", "zip": None},
    ]
    monkeypatch.setattr(geocode_queue, "fetch_ungeocoded", lambda engine, limit: queued)
    saved = MagicMock()
    monkeypatch.setattr(geocode_queue, "save_location", saved)
    hit = GeocodeResult(41.25, -95.93, "medium", "stub")
    geocoder = StubGeocoder([hit, None, RuntimeError("boom")])

    stats = process_all(MagicMock(), geocoder, limit=10)

    assert stats == GeocodeStats(processed=3, succeeded=1, failed=2)
    saved.assert_called_once()
    assert saved.call_args.args[1:] == (1, hit)
    assert geocoder.addresses[0] == "1 Rd, Omaha, NE 68102, USA"


def test_process_all_empty_queue(monkeypatch):
    monkeypatch.setattr(geocode_queue, "fetch_ungeocoded", lambda engine, limit: [])

    assert process_all(MagicMock(), StubGeocoder([]), limit=10) == GeocodeStats()
