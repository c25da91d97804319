from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Ensure project root on sys.path when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from patientflow.bootstrap.startup import initialize_database, seed_core_data  # noqa: E402
from patientflow.config import DB_FILE, LOG_DIR, settings  # noqa: E402
from patientflow.container import build_container  # noqa: E402


def _setup_logging() -> Path:
    log_path = LOG_DIR / "patientflow.log"
    handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(handler)
    return log_path


def _install_exception_hook(log_path: Path) -> None:
    def _handle_exception(exc_type, exc, tb) -> None:
        logging.getLogger(__name__).error("Unhandled exception", exc_info=(exc_type, exc, tb))
        print(f"Unexpected error, see {log_path}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _handle_exception


def main() -> int:
    log_path = _setup_logging()
    _install_exception_hook(log_path)
    if not initialize_database(
        root_dir=ROOT_DIR,
        db_file=DB_FILE,
        database_url=settings.database_url,
        log_dir=LOG_DIR,
    ):
        print(f"Database initialisation failed, see {log_path}", file=sys.stderr)
        return 1
    container = build_container()
    seed_core_data(container)

    stats = container.api.queue_stats().unwrap()
    wards = container.api.list_wards().unwrap()
    print(f"Database: {settings.database_url}")
    for item in stats:
        print(f"  {item.station:<10} waiting={item.waiting} in_progress={item.in_progress} on_hold={item.on_hold}")
    for ward in wards:
        print(f"  {ward.name:<24} available {ward.available}/{ward.total_beds}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
