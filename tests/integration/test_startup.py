from __future__ import annotations

from pathlib import Path

from alembic import command
from sqlalchemy import create_engine, inspect

from patientflow.bootstrap import startup
from patientflow.config import RESOURCES_DIR

ROOT_DIR = Path(__file__).resolve().parents[2]


def _url(db_file: Path) -> str:
    return f"sqlite:///{db_file.as_posix()}"


def _tables(database_url: str) -> set[str]:
    engine = create_engine(database_url, future=True)
    try:
        return set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_initialize_database_runs_migrations(tmp_path: Path) -> None:
    db_file = tmp_path / "data" / "patientflow.db"
    db_file.parent.mkdir(parents=True)

    assert startup.initialize_database(
        root_dir=ROOT_DIR,
        db_file=db_file,
        database_url=_url(db_file),
        log_dir=tmp_path / "logs",
    )

    tables = _tables(_url(db_file))
    assert startup.REQUIRED_TABLES <= tables
    assert {"visit_transitions", "triage_assessments", "audit_log", "mr_number_sequence"} <= tables
    assert "alembic_version" in tables

    # upgrading an up-to-date database is a no-op
    assert startup.run_migrations(ROOT_DIR, _url(db_file), tmp_path / "logs", db_file)


def test_migration_downgrade_drops_schema(tmp_path: Path) -> None:
    db_file = tmp_path / "downgrade.db"
    cfg = startup._alembic_config(ROOT_DIR, _url(db_file))

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    assert _tables(_url(db_file)) <= {"alembic_version"}


def test_run_migrations_logs_failures(tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"

    assert startup.run_migrations(ROOT_DIR, "nosuchdialect://broken", log_dir, tmp_path / "x.db") is False

    error_log = (log_dir / "migration_error.log").read_text(encoding="utf-8")
    assert "--- Migration error ---" in error_log


def test_schema_check_reports_missing_tables(tmp_path: Path) -> None:
    db_file = tmp_path / "empty.db"

    assert startup.ensure_schema_compatibility(_url(db_file)) is False


def test_check_startup_prerequisites_handles_write_error(tmp_path: Path, monkeypatch) -> None:
    db_file = tmp_path / "data" / "patientflow.db"
    db_file.parent.mkdir(parents=True)
    original_write_text = Path.write_text

    def _failing_write(self: Path, data: str, encoding: str = "utf-8", errors: str | None = None) -> int:
        if self.name == ".write_test":
            raise OSError("permission denied")
        return original_write_text(self, data, encoding=encoding)

    monkeypatch.setattr(Path, "write_text", _failing_write)

    assert startup.check_startup_prerequisites(db_file) is False


def test_seed_core_data_fills_empty_inventory(container) -> None:
    startup.seed_core_data(container)

    wards = container.bed_service.list_wards()
    assert len(wards) == len(startup.load_ward_seed(RESOURCES_DIR / "ward_seed.json"))
    assert all(w.available == w.total_beds for w in wards)
