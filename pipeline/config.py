"""
FILE: pipeline/config.py
Role: Central configuration for pipeline scripts: DB connection, source file paths,
      importer switches and geocoder settings.
Dependencies: DATABASE_URL env var; raw source files mounted at /data/
Output: Constants imported by importer.py and geocode_queue.py
How to test: python -c "from config import DB_URL; print(DB_URL)"

Raw spreadsheets are expected at /data/import/{filename}.xlsx (or .csv).
Only files named in FILE_TO_CATEGORY are imported; anything else in the
directory is ignored.

ARCHITECTURE RULE: Do not hardcode paths or provider keys in pipeline scripts.
This config file is where paths/settings live.
"""

import os
from pathlib import Path


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# ── Database ──────────────────────────────────────────────────
DB_URL: str = os.environ.get(
    "DATABASE_URL",
    "postgresql://railhub:railhub@db:5432/railhub"
)

# ── Data root ─────────────────────────────────────────────────
DATA_ROOT = Path(os.environ.get("DATA_ROOT", "/data"))

IMPORT_DATA_DIR = Path(os.environ.get("IMPORT_DATA_DIR", str(DATA_ROOT / "import")))

COMMTREX_FACILITIES_FILE = Path(os.environ.get(
    "COMMTREX_FACILITIES_FILE", str(DATA_ROOT / "commtrex" / "commtrex_facilities.csv")
))
COMMTREX_STORAGE_FILE = Path(os.environ.get(
    "COMMTREX_STORAGE_FILE", str(DATA_ROOT / "commtrex" / "commtrex_railcar_storage.csv")
))

# ── Importer switches ─────────────────────────────────────────
# IMPORT_FORCE: refresh rows that already exist instead of skipping them
IMPORT_FORCE: bool = _env_flag("IMPORT_FORCE")
# IMPORT_GEOCODE: run the geocoding queue after a spreadsheet import
IMPORT_GEOCODE: bool = _env_flag("IMPORT_GEOCODE")

# ── Geocoding ─────────────────────────────────────────────────
GEOCODER_PROVIDER: str = os.environ.get("GEOCODER_PROVIDER", "nominatim")
GEOCODER_API_KEY: str | None = os.environ.get("GEOCODER_API_KEY") or None
GEOCODER_RATE_LIMIT_S: float = float(os.environ.get("GEOCODER_RATE_LIMIT_S", "1.0"))
# Nominatim usage policy: max 1 req/s and an identifying User-Agent
NOMINATIM_USER_AGENT: str = os.environ.get(
    "NOMINATIM_USER_AGENT", "Railhub/1.0 (railhub@example.com)"
)
GEOCODE_LIMIT: int = int(os.environ.get("GEOCODE_LIMIT", "1000"))
GEOCODER_TIMEOUT_S: int = 15

# ── Category resolved on demand by the importer ───────────────
RAILCAR_STORAGE_CATEGORY = {
    "slug": "railcar-storage",
    "name": "Railcar Storage",
    "description": "Railcar storage facilities",
}

# ── Source spreadsheet → category slug ────────────────────────
# *_EXPANDED files carry extra rows for the same category.
FILE_TO_CATEGORY: dict[str, str] = {
    # Physical infrastructure
    "US_Bulk_Transfer_Terminals_Database.xlsx": "bulk-transfer-terminals",
    "US_Intermodal_Ramps_Terminals_Database.xlsx": "intermodal-ramps",
    "team_tracks_database.xlsx": "team-tracks",
    "private_sidings_for_lease.xlsx": "private-sidings",
    "private_sidings_for_lease_EXPANDED.xlsx": "private-sidings",
    "rail_served_warehousing.xlsx": "rail-served-warehousing",
    "rail_served_warehousing_EXPANDED.xlsx": "rail-served-warehousing",

    # Equipment & assets
    "US_Railcar_Manufacturing_Rebuilding_Database.xlsx": "railcar-manufacturing",
    "US_Railcar_Repair_Shops_Database.xlsx": "railcar-repair-shops",
    "US_Railcar_Tank_Wash_Cleaning_Stations_Database.xlsx": "tank-wash-stations",
    "railcar_leasing_companies.xlsx": "railcar-leasing",
    "railcar_leasing_companies_EXPANDED.xlsx": "railcar-leasing",
    "specialty_car_builders.xlsx": "specialty-car-builders",
    "specialty_car_builders_EXPANDED.xlsx": "specialty-car-builders",
    "railcar_lining_coating.xlsx": "railcar-lining-coating",
    "railcar_lining_coating_EXPANDED.xlsx": "railcar-lining-coating",
    "railcar_inspection_services.xlsx": "railcar-inspection",
    "railcar_brokers.xlsx": "railcar-brokers",
    "railcar_management_companies.xlsx": "railcar-management",
    "railcar_tracking_platforms.xlsx": "railcar-tracking",

    # Services
    "transloading_operators.xlsx": "transloading",
    "rail_brokers_intermediaries.xlsx": "rail-brokers",
    "freight_forwarders_rail.xlsx": "freight-forwarders",
    "customs_brokers.xlsx": "customs-brokers",
    "customs_brokers_EXPANDED.xlsx": "customs-brokers",
    "drayage_providers.xlsx": "drayage-providers",
    "chassis_providers.xlsx": "chassis-providers",
    "fumigation_facilities.xlsx": "fumigation-facilities",
    "scale_weigh_stations.xlsx": "scale-weigh-stations",
    "scale_weigh_stations_EXPANDED.xlsx": "scale-weigh-stations",

    # Technology
    "tms_platforms_rail.xlsx": "tms-platforms",
    "tms_platforms_rail_EXPANDED.xlsx": "tms-platforms",
    "yard_management_systems.xlsx": "yard-management",
    "fleet_management_tools.xlsx": "fleet-management",
    "load_planning_software.xlsx": "load-planning",
    "demurrage_management_software.xlsx": "demurrage-software",
    "edi_providers_rail.xlsx": "edi-providers",
    "car_hire_per_diem_management.xlsx": "car-hire-management",
    "aei_tag_readers_hardware.xlsx": "aei-tag-readers",

    # Maintenance & operations
    "locomotive_leasing.xlsx": "locomotive-leasing",
    "locomotive_leasing_EXPANDED.xlsx": "locomotive-leasing",
    "locomotive_shops.xlsx": "locomotive-shops",
    "mobile_repair_services.xlsx": "mobile-repair",
    "parts_component_suppliers.xlsx": "parts-suppliers",
    "rail_engineering_track_construction.xlsx": "track-construction",
    "signal_communications_contractors.xlsx": "signal-contractors",
    "demurrage_consulting.xlsx": "demurrage-consulting",

    # Railroads
    "shortline_regional_railroads.xlsx": "shortline-railroads",
    "switching_terminal_railroads.xlsx": "switching-railroads",
}
