"""
FILE: pipeline/importer.py
Role: Import facility spreadsheets and Commtrex CSV exports into the facilities table.
Dependencies:
  - categories table seeded (database/schema.sql)
  - config.py: IMPORT_DATA_DIR, FILE_TO_CATEGORY, COMMTREX_*_FILE, IMPORT_FORCE, IMPORT_GEOCODE
  - parsers/excel.py, parsers/commtrex.py
Output:
  - Inserts facilities rows (source = 'excel_import' | 'commtrex')
  - Creates the 'railcar-storage' category if it is missing
Run:
  python importer.py            # spreadsheets in IMPORT_DATA_DIR
  python importer.py excel      # same
  python importer.py commtrex   # Commtrex facilities + storage CSVs
  python importer.py geocode    # geocoding queue only (same as geocode_queue.py)
  IMPORT_FORCE=1 python importer.py   # refresh rows that already exist
  IMPORT_GEOCODE=1 python importer.py # geocode new rows afterwards

Transactions:
  Every file is imported inside one transaction (engine.begin()). Any exception
  in the row loop rolls back that whole file; import_all() reports it and moves
  on to the next file.

Duplicates:
  (name, city, state, category_id) is a unique index. Inserts use ON CONFLICT,
  so re-running an import is a no-op unless IMPORT_FORCE is set, in which case
  existing rows are refreshed in place.
"""

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import sqlalchemy
from sqlalchemy import text
from tqdm import tqdm

sys.path.insert(0, str(Path(__file__).parent))
from config import (
    DB_URL, IMPORT_DATA_DIR, FILE_TO_CATEGORY, COMMTREX_FACILITIES_FILE,
    COMMTREX_STORAGE_FILE, IMPORT_FORCE, IMPORT_GEOCODE, RAILCAR_STORAGE_CATEGORY,
)
from parsers.commtrex import parse_commtrex_facilities, parse_commtrex_storage
from parsers.excel import parse_excel_file

SOURCE_EXCEL = "excel_import"
SOURCE_COMMTREX = "commtrex"
SPREADSHEET_SUFFIXES = {".xlsx", ".csv"}

# Columns stored on the facilities row; everything else goes to attributes
CORE_FIELDS = frozenset({
    "name", "address", "city", "state", "zip", "phone", "email", "website",
    "source_id", "attributes",
})

_INSERT_COLUMNS = """
    INSERT INTO facilities (
        name, category_id, address, city, state, zip,
        phone, email, website, attributes, source, source_id
    ) VALUES (
        :name, :category_id, :address, :city, :state, :zip,
        :phone, :email, :website, CAST(:attributes AS jsonb), :source, :source_id
    )
    ON CONFLICT (name, city, state, category_id)"""

INSERT_FACILITY_SQL = _INSERT_COLUMNS + """
    DO NOTHING
    RETURNING id
"""

UPSERT_FACILITY_SQL = _INSERT_COLUMNS + """
    DO UPDATE SET
        address    = EXCLUDED.address,
        zip        = EXCLUDED.zip,
        phone      = EXCLUDED.phone,
        email      = EXCLUDED.email,
        website    = EXCLUDED.website,
        attributes = EXCLUDED.attributes,
        source     = EXCLUDED.source,
        source_id  = EXCLUDED.source_id,
        updated_at = now()
    RETURNING id
"""


class CategoryNotFoundError(LookupError):
    """Target category slug is not in the categories table."""


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0

    def __add__(self, other: "ImportResult") -> "ImportResult":
        return ImportResult(self.imported + other.imported, self.skipped + other.skipped)


# ── Categories ────────────────────────────────────────────────────────────────

def get_category_id(conn: sqlalchemy.Connection, slug: str) -> int:
    category_id = conn.execute(
        text("SELECT id FROM categories WHERE slug = :slug"), {"slug": slug}
    ).scalar()
    if category_id is None:
        raise CategoryNotFoundError(f"Category not found: {slug}")
    return category_id


def get_or_create_category(conn: sqlalchemy.Connection, category: dict[str, str]) -> int:
    """Return the category id, inserting the category first if it is absent."""
    try:
        return get_category_id(conn, category["slug"])
    except CategoryNotFoundError:
        pass
    print(f"  Creating missing category '{category['slug']}'")
    return conn.execute(
        text("""
            INSERT INTO categories (slug, name, description)
            VALUES (:slug, :name, :description)
            RETURNING id
        """),
        category,
    ).scalar_one()


def resolve_category(conn: sqlalchemy.Connection, slug: str) -> int:
    """Only railcar-storage is materialised on demand; every other slug must exist."""
    if slug == RAILCAR_STORAGE_CATEGORY["slug"]:
        return get_or_create_category(conn, RAILCAR_STORAGE_CATEGORY)
    return get_category_id(conn, slug)


# ── Rows ──────────────────────────────────────────────────────────────────────

def build_attributes(record: dict[str, Any]) -> dict[str, Any]:
    """Nested attributes (if any) plus every non-core, non-empty field."""
    attributes = {
        k: v for k, v in (record.get("attributes") or {}).items()
        if v not in (None, "", [])
    }
    for key, value in record.items():
        if key in CORE_FIELDS or value in (None, "", []):
            continue
        attributes.setdefault(key, value)
    return attributes


def facility_params(
    record: dict[str, Any],
    category_id: int,
    source: str,
    source_id: str | None,
) -> dict[str, Any]:
    return {
        "name": record["name"],
        "category_id": category_id,
        "address": record.get("address") or None,
        "city": record.get("city") or None,
        "state": record.get("state") or None,
        "zip": record.get("zip") or None,
        "phone": record.get("phone") or None,
        "email": record.get("email") or None,
        "website": record.get("website") or None,
        "attributes": json.dumps(build_attributes(record)),
        "source": source,
        "source_id": source_id,
    }


def import_records(
    conn: sqlalchemy.Connection,
    records: Iterable[dict[str, Any]],
    category_id: int,
    source: str,
    source_id_prefix: str | None = None,
    force: bool = False,
    desc: str = "Importing",
) -> ImportResult:
    """
    Insert records for one category on an open transaction.

    Rows without a name or state are skipped. Rows that collide with an
    existing (name, city, state, category) are skipped, or refreshed when
    force is set. Exceptions propagate so the caller's transaction rolls back.
    """
    sql = text(UPSERT_FACILITY_SQL if force else INSERT_FACILITY_SQL)
    result = ImportResult()

    for i, record in enumerate(tqdm(records, desc=desc, unit="row", leave=False)):
        if not record.get("name") or not record.get("state"):
            result.skipped += 1
            continue

        source_id = record.get("source_id")
        if source_id is None and source_id_prefix:
            source_id = f"{source_id_prefix}:{i}"

        row = conn.execute(sql, facility_params(record, category_id, source, source_id)).first()
        if row is None:
            result.skipped += 1
        else:
            result.imported += 1

    return result


# ── Files ─────────────────────────────────────────────────────────────────────

def category_for_file(path: Path) -> str | None:
    """Category slug for a source file; CSV exports match their .xlsx name."""
    return FILE_TO_CATEGORY.get(path.name) or FILE_TO_CATEGORY.get(path.stem + ".xlsx")


def import_file(
    engine: sqlalchemy.Engine,
    path: str | Path,
    category_slug: str,
    force: bool = False,
) -> ImportResult:
    """Import one spreadsheet in a single all-or-nothing transaction."""
    path = Path(path)
    records = parse_excel_file(path)

    with engine.begin() as conn:
        category_id = resolve_category(conn, category_slug)
        result = import_records(
            conn, records, category_id,
            source=SOURCE_EXCEL,
            source_id_prefix=path.name,
            force=force,
            desc=path.name,
        )

    print(f"  {path.name}: imported {result.imported}, skipped {result.skipped}")
    return result


def find_import_files(data_dir: str | Path) -> list[Path]:
    data_dir = Path(data_dir)
    return sorted(
        p for p in data_dir.iterdir()
        if p.is_file()
        and p.suffix.lower() in SPREADSHEET_SUFFIXES
        and not p.name.startswith("~")
        and category_for_file(p)
    )


def import_all(
    engine: sqlalchemy.Engine,
    data_dir: str | Path,
    force: bool = False,
) -> ImportResult:
    """Import every known spreadsheet in data_dir; a failed file does not stop the run."""
    files = find_import_files(data_dir)
    print(f"  Found {len(files)} spreadsheet(s) to import in {data_dir}")

    total = ImportResult()
    failed = []
    for path in files:
        try:
            total += import_file(engine, path, category_for_file(path), force=force)
        except Exception as e:
            print(f"  ERROR: {path.name} rolled back: {e}")
            failed.append(path.name)

    if failed:
        print(f"  {len(failed)} file(s) failed: {', '.join(failed)}")
    return total


def import_commtrex(
    engine: sqlalchemy.Engine,
    facilities_file: str | Path | None,
    storage_file: str | Path | None,
    force: bool = False,
) -> ImportResult:
    """
    Import the Commtrex transloading and railcar-storage exports together.
    Both files share one transaction. Missing files are skipped with a warning.
    """
    total = ImportResult()
    with engine.begin() as conn:
        if facilities_file and Path(facilities_file).exists():
            records = parse_commtrex_facilities(facilities_file)
            category_id = resolve_category(conn, "transloading")
            result = import_records(
                conn, records, category_id, source=SOURCE_COMMTREX,
                force=force, desc="Commtrex transloading",
            )
            print(f"  Transloading: imported {result.imported}, skipped {result.skipped}")
            total += result
        else:
            print(f"  WARNING: Commtrex facilities file not found: {facilities_file}")

        if storage_file and Path(storage_file).exists():
            records = parse_commtrex_storage(storage_file)
            category_id = resolve_category(conn, RAILCAR_STORAGE_CATEGORY["slug"])
            result = import_records(
                conn, records, category_id, source=SOURCE_COMMTREX,
                force=force, desc="Commtrex storage",
            )
            print(f"  Railcar storage: imported {result.imported}, skipped {result.skipped}")
            total += result
        else:
            print(f"  WARNING: Commtrex storage file not found: {storage_file}")

    return total


# ── Entry point ───────────────────────────────────────────────────────────────

def run_excel(engine: sqlalchemy.Engine) -> None:
    if not IMPORT_DATA_DIR.is_dir():
        print(f"ERROR: import directory not found: {IMPORT_DATA_DIR}")
        raise SystemExit(1)

    print(f"\n[1/2] Importing spreadsheets (force={IMPORT_FORCE})...")
    total = import_all(engine, IMPORT_DATA_DIR, force=IMPORT_FORCE)
    print(f"  Total: imported {total.imported}, skipped {total.skipped}")

    if IMPORT_GEOCODE:
        print("\n[2/2] Geocoding new facilities...")
        from geocode_queue import run_geocoding
        run_geocoding(engine)
    else:
        print("\n[2/2] Skipping geocoding (set IMPORT_GEOCODE=1 to enable)")


def run_commtrex(engine: sqlalchemy.Engine) -> None:
    print(f"\n[1/1] Importing Commtrex exports (force={IMPORT_FORCE})...")
    total = import_commtrex(
        engine, COMMTREX_FACILITIES_FILE, COMMTREX_STORAGE_FILE, force=IMPORT_FORCE
    )
    print(f"  Total: imported {total.imported}, skipped {total.skipped}")


def run_geocode(engine: sqlalchemy.Engine) -> None:
    print("\n[1/1] Geocoding facilities without a location...")
    from geocode_queue import run_geocoding
    run_geocoding(engine)


COMMANDS = {
    "excel": run_excel,
    "commtrex": run_commtrex,
    "geocode": run_geocode,
}


def main():
    """
    Facility import pipeline.

    Run AFTER: database/schema.sql (categories must be seeded)
    Run BEFORE: geocode_queue.py (or set IMPORT_GEOCODE=1)
    Then: POST /api/admin/invalidate-cache so category counts refresh.
    """
    command = sys.argv[1] if len(sys.argv) > 1 else "excel"
    if command not in COMMANDS:
        print(f"ERROR: unknown command '{command}'. Use one of: {', '.join(COMMANDS)}")
        raise SystemExit(2)

    print("=" * 60)
    print(f"Starting Railhub import ({command})...")
    print("=" * 60)

    engine = sqlalchemy.create_engine(DB_URL)
    COMMANDS[command](engine)

    print("\n" + "=" * 60)
    print("Import complete")
    print("=" * 60)


if __name__ == "__main__":
    main()
