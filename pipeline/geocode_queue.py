"""
FILE: pipeline/geocode_queue.py
Role: Geocoding queue. Resolves street addresses of facilities with no location
      to lat/lng and writes them back (latitude, longitude, location, confidence).
Dependencies:
  - facilities rows imported by importer.py
  - config.py: GEOCODER_PROVIDER, GEOCODER_API_KEY, GEOCODER_RATE_LIMIT_S,
    NOMINATIM_USER_AGENT, GEOCODE_LIMIT
  - Network access to the chosen provider
Output: facilities.latitude/longitude/location/geocoded_at/geocoding_confidence
Run: python geocode_queue.py
     GEOCODER_PROVIDER=google GEOCODER_API_KEY=... python geocode_queue.py

Providers:
  nominatim  free, no key, 1 request/second (usage policy), confidence always 'medium'
  google     key required, confidence from geometry.location_type
  mapbox     key required, confidence from feature relevance

Queue semantics:
  Rows are picked up when location IS NULL and address, city and state are all
  present, oldest id first. A failed lookup leaves the row untouched, so it is
  retried on the next run.
"""

import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests
import sqlalchemy
from sqlalchemy import text
from tqdm import tqdm

sys.path.insert(0, str(Path(__file__).parent))
from config import (
    DB_URL, GEOCODER_PROVIDER, GEOCODER_API_KEY, GEOCODER_RATE_LIMIT_S,
    NOMINATIM_USER_AGENT, GEOCODE_LIMIT, GEOCODER_TIMEOUT_S,
)

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
GOOGLE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
MAPBOX_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"

GOOGLE_CONFIDENCE = {
    "ROOFTOP": "high",
    "RANGE_INTERPOLATED": "medium",
    "GEOMETRIC_CENTER": "medium",
}

# Errors that mean "this lookup failed", not "the queue is broken"
LOOKUP_ERRORS = (requests.RequestException, ValueError, KeyError, IndexError, TypeError)


@dataclass
class GeocodeResult:
    latitude: float
    longitude: float
    confidence: str  # 'high' | 'medium' | 'low'
    source: str


@dataclass
class GeocodeStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


# ── Providers ─────────────────────────────────────────────────────────────────

class Geocoder:
    """Base provider. Subclasses implement _lookup(); geocode() never raises on lookup errors."""

    source = ""

    def __init__(self, timeout: float = GEOCODER_TIMEOUT_S):
        self.timeout = timeout

    def geocode(self, address: str) -> GeocodeResult | None:
        try:
            return self._lookup(address)
        except LOOKUP_ERRORS as e:
            tqdm.write(f"  WARNING: {self.source} geocoding failed for '{address}': {e}")
            return None

    def _lookup(self, address: str) -> GeocodeResult | None:
        raise NotImplementedError


class NominatimGeocoder(Geocoder):
    source = "nominatim"

    def __init__(
        self,
        rate_limit_s: float = GEOCODER_RATE_LIMIT_S,
        user_agent: str = NOMINATIM_USER_AGENT,
        timeout: float = GEOCODER_TIMEOUT_S,
    ):
        super().__init__(timeout)
        self.rate_limit_s = rate_limit_s
        self.user_agent = user_agent
        self._last_request: float | None = None

    def _throttle(self) -> None:
        """Block until rate_limit_s has passed since the previous request."""
        if self._last_request is not None:
            wait = self._last_request + self.rate_limit_s - time.monotonic()
            if wait > 0:
                time.sleep(wait)
        self._last_request = time.monotonic()

    def _lookup(self, address: str) -> GeocodeResult | None:
        self._throttle()
        resp = requests.get(
            NOMINATIM_URL,
            params={"format": "json", "q": address, "limit": 1},
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        if not data:
            return None
        return GeocodeResult(
            latitude=float(data[0]["lat"]),
            longitude=float(data[0]["lon"]),
            confidence="medium",
            source=self.source,
        )


class GoogleGeocoder(Geocoder):
    source = "google"

    def __init__(self, api_key: str, timeout: float = GEOCODER_TIMEOUT_S):
        super().__init__(timeout)
        self.api_key = api_key

    def _lookup(self, address: str) -> GeocodeResult | None:
        resp = requests.get(
            GOOGLE_URL,
            params={"address": address, "key": self.api_key},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        if data.get("status") != "OK" or not data.get("results"):
            return None
        geometry = data["results"][0]["geometry"]
        return GeocodeResult(
            latitude=float(geometry["location"]["lat"]),
            longitude=float(geometry["location"]["lng"]),
            confidence=GOOGLE_CONFIDENCE.get(geometry.get("location_type"), "low"),
            source=self.source,
        )


class MapboxGeocoder(Geocoder):
    source = "mapbox"

    def __init__(self, api_key: str, timeout: float = GEOCODER_TIMEOUT_S):
        super().__init__(timeout)
        self.api_key = api_key

    def _lookup(self, address: str) -> GeocodeResult | None:
        resp = requests.get(
            MAPBOX_URL.format(query=quote(address, safe="")),
            params={"access_token": self.api_key, "limit": 1},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        features = resp.json().get("features") or []
        if not features:
            return None
        feature = features[0]
        relevance = float(feature.get("relevance", 0))
        if relevance > 0.9:
            confidence = "high"
        elif relevance > 0.7:
            confidence = "medium"
        else:
            confidence = "low"
        # Mapbox centers are [lng, lat]
        return GeocodeResult(
            latitude=float(feature["center"][1]),
            longitude=float(feature["center"][0]),
            confidence=confidence,
            source=self.source,
        )


def get_geocoder(
    provider: str = GEOCODER_PROVIDER,
    api_key: str | None = GEOCODER_API_KEY,
    rate_limit_s: float = GEOCODER_RATE_LIMIT_S,
) -> Geocoder:
    provider = (provider or "").strip().lower()
    if provider == "nominatim":
        return NominatimGeocoder(rate_limit_s=rate_limit_s)
    if provider in ("google", "mapbox"):
        if not api_key:
            raise ValueError(f"{provider} geocoding requires GEOCODER_API_KEY")
        cls = GoogleGeocoder if provider == "google" else MapboxGeocoder
        return cls(api_key)
    raise ValueError(f"Unknown geocoder provider: {provider}")


def format_address(address: str, city: str, state: str, zip_code: str | None = None) -> str:
    """'123 Main St, Houston, TX 77001, USA' (zip omitted when unknown)."""
    locality = f"{state} {zip_code}" if zip_code else state
    return f"{address}, {city}, {locality}, USA"


# ── Queue ─────────────────────────────────────────────────────────────────────

def fetch_ungeocoded(engine: sqlalchemy.Engine, limit: int = GEOCODE_LIMIT) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("""
                SELECT id, name, address, city, state, zip
                FROM facilities
                WHERE location IS NULL
                  AND address IS NOT NULL
                  AND city IS NOT NULL
                  AND state IS NOT NULL
                ORDER BY id
                LIMIT :limit
            """),
            {"limit": limit},
        ).mappings().all()
    return [dict(r) for r in rows]


def save_location(engine: sqlalchemy.Engine, facility_id: int, result: GeocodeResult) -> None:
    """Write one result in its own transaction so progress survives an interrupted run."""
    with engine.begin() as conn:
        conn.execute(
            text("""
                UPDATE facilities
                SET latitude             = :lat,
                    longitude            = :lng,
                    location             = ST_SetSRID(ST_MakePoint(:lng, :lat), 4326)::geography,
                    geocoded_at          = now(),
                    geocoding_confidence = :confidence
                WHERE id = :id
            """),
            {
                "lat": result.latitude,
                "lng": result.longitude,
                "confidence": result.confidence,
                "id": facility_id,
            },
        )


def process_all(
    engine: sqlalchemy.Engine,
    geocoder: Geocoder,
    limit: int = GEOCODE_LIMIT,
) -> GeocodeStats:
    """Geocode up to `limit` queued facilities, one at a time."""
    facilities = fetch_ungeocoded(engine, limit)
    stats = GeocodeStats(processed=len(facilities))
    if not facilities:
        print("  No facilities need geocoding")
        return stats

    print(f"  Geocoding {len(facilities)} facilities using {geocoder.source}...")
    for f in tqdm(facilities, desc="  Geocoding", unit="facility"):
        address = format_address(f["address"], f["city"], f["state"], f.get("zip"))
        try:
            result = geocoder.geocode(address)
            if result is None:
                stats.failed += 1
                continue
            save_location(engine, f["id"], result)
            stats.succeeded += 1
        except Exception as e:
            tqdm.write(f"  WARNING: error geocoding {f['name']}: {e}")
            stats.failed += 1

    print(f"  Complete: {stats.succeeded} succeeded, {stats.failed} failed")
    return stats


def run_geocoding(engine: sqlalchemy.Engine) -> GeocodeStats:
    geocoder = get_geocoder(GEOCODER_PROVIDER, GEOCODER_API_KEY, GEOCODER_RATE_LIMIT_S)
    return process_all(engine, geocoder, GEOCODE_LIMIT)


def main():
    """
    Geocoding queue.

    Run AFTER: importer.py
    Safe to re-run: only rows still missing a location are picked up.
    """
    print("=" * 60)
    print(f"Starting geocoding queue (provider={GEOCODER_PROVIDER}, limit={GEOCODE_LIMIT})...")
    print("=" * 60)

    engine = sqlalchemy.create_engine(DB_URL)
    try:
        stats = run_geocoding(engine)
    except ValueError as e:
        print(f"ERROR: {e}")
        raise SystemExit(1)

    print("\n" + "=" * 60)
    print(f"Geocoding complete: {stats.processed} processed, "
          f"{stats.succeeded} succeeded, {stats.failed} failed")
    print("=" * 60)


if __name__ == "__main__":
    main()
