import os
from dataclasses import dataclass
from pathlib import Path

from platformdirs import user_data_dir

APP_NAME = "patientflow"
APP_AUTHOR = "patientflow"

PACKAGE_DIR = Path(__file__).resolve().parent
RESOURCES_DIR = PACKAGE_DIR / "resources"


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _resolve_data_dir() -> Path:
    env_dir = os.getenv("PATIENTFLOW_DATA_DIR")
    if env_dir:
        return Path(env_dir)
    return Path(user_data_dir(APP_NAME, APP_AUTHOR))


DATA_DIR = _resolve_data_dir()
LOG_DIR = DATA_DIR / "logs"
DB_FILE = Path(os.getenv("PATIENTFLOW_DB_FILE") or (DATA_DIR / "patientflow.db"))

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOG_DIR.mkdir(parents=True, exist_ok=True)
DB_FILE.parent.mkdir(parents=True, exist_ok=True)


def default_database_url() -> str:
    # SQLite URL uses forward slashes; as_posix() keeps it cross-platform.
    return f"sqlite:///{DB_FILE.as_posix()}"


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", default_database_url())
    echo_sql: bool = os.getenv("SQL_ECHO", "0") == "1"
    triage_protocols_file: Path = Path(
        os.getenv("PATIENTFLOW_TRIAGE_PROTOCOLS") or (RESOURCES_DIR / "triage_protocols.json")
    )
    ward_seed_file: Path = Path(os.getenv("PATIENTFLOW_WARD_SEED") or (RESOURCES_DIR / "ward_seed.json"))
    mrn_prefix: str = os.getenv("PATIENTFLOW_MRN_PREFIX", "MR")
    mrn_max_attempts: int = _env_int("PATIENTFLOW_MRN_MAX_ATTEMPTS", 5)
    duplicate_threshold: int = _env_int("PATIENTFLOW_DUPLICATE_THRESHOLD", 30)


settings = Settings()
