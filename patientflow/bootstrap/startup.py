from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from patientflow.config import PACKAGE_DIR, settings
from patientflow.infrastructure.db.engine import get_engine
from patientflow.infrastructure.db.repositories.ward_repo import WardRepository

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = PACKAGE_DIR / "infrastructure" / "db" / "migrations"
REQUIRED_TABLES = frozenset({"patients", "visits", "queue_entries", "wards", "beds", "admission_requests"})


def check_startup_prerequisites(db_file: Path) -> bool:
    if not MIGRATIONS_DIR.exists():
        logger.error("Migrations directory is missing: %s", MIGRATIONS_DIR)
        return False
    try:
        test_file = db_file.parent / ".write_test"
        test_file.write_text("ok", encoding="utf-8")
        test_file.unlink(missing_ok=True)
    except OSError:
        logger.exception("Database directory is not writable: %s", db_file.parent)
        return False
    return True


def _alembic_config(root_dir: Path, database_url: str) -> Config:
    ini_path = root_dir / "alembic.ini"
    cfg = Config(str(ini_path)) if ini_path.exists() else Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    cfg.set_main_option("sqlalchemy.url", database_url)
    # the application configures logging itself
    cfg.attributes["configure_logger"] = False
    return cfg


def run_migrations(root_dir: Path, database_url: str, log_dir: Path, db_file: Path) -> bool:
    try:
        command.upgrade(_alembic_config(root_dir, database_url), "head")
        return True
    except Exception:  # noqa: BLE001
        logger.exception("Failed to run migrations")
        try:
            import traceback

            error_path = log_dir / "migration_error.log"
            error_path.parent.mkdir(parents=True, exist_ok=True)
            with error_path.open("a", encoding="utf-8") as handle:
                handle.write("\n--- Migration error ---\n")
                handle.write(f"DB: {db_file}\n")
                handle.write(f"Migrations: {MIGRATIONS_DIR}\n")
                handle.write(traceback.format_exc())
        except OSError:
            logger.exception("Failed to write migration error log")
        return False


def ensure_schema_compatibility(database_url: str) -> bool:
    engine = get_engine(database_url)
    try:
        missing = REQUIRED_TABLES - set(inspect(engine).get_table_names())
    except Exception:  # noqa: BLE001
        logger.exception("Failed to verify database schema")
        return False
    finally:
        engine.dispose()
    if missing:
        logger.error("Database schema is incomplete, missing tables: %s", ", ".join(sorted(missing)))
        return False
    return True


def initialize_database(
    *,
    root_dir: Path,
    db_file: Path,
    database_url: str,
    log_dir: Path,
) -> bool:
    if not check_startup_prerequisites(db_file):
        return False
    if not run_migrations(root_dir, database_url, log_dir, db_file):
        return False
    return ensure_schema_compatibility(database_url)


def load_ward_seed(path: Path) -> list[dict[str, Any]]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    wards = payload.get("wards") if isinstance(payload, dict) else payload
    if not isinstance(wards, list):
        raise ValueError(f"Ward seed must be a list of wards: {path}")
    return wards


def seed_wards(session_factory, seed_file: Path | None = None, *, only_if_empty: bool = True) -> int:
    """Upsert wards and add missing beds; returns the number of beds created."""
    ward_repo = WardRepository()
    wards = load_ward_seed(seed_file or settings.ward_seed_file)
    added = 0
    with session_factory() as session:
        if only_if_empty and ward_repo.has_inventory(session):
            return 0
        for item in wards:
            ward = ward_repo.upsert_ward(session, item)
            added += ward_repo.ensure_beds(session, ward, item.get("beds") or [])
    logger.info("Seeded %d wards, %d new beds", len(wards), added)
    return added


def seed_core_data(container: Any) -> None:
    try:
        seed_wards(container.session_factory)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to seed ward inventory")
    try:
        # Fail early on a broken protocol table rather than at the first triage.
        _ = container.triage_service.protocol
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load triage protocol")
