from __future__ import annotations

import argparse
import json
from pathlib import Path

from patientflow.bootstrap.startup import seed_wards
from patientflow.config import settings
from patientflow.infrastructure.db.session import session_scope


def seed(seed_file: Path | None = None) -> None:
    added = seed_wards(session_scope, seed_file, only_if_empty=False)
    print("Seeded:", json.dumps({"seed_file": str(seed_file or settings.ward_seed_file), "new_beds": added}))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Upsert wards and beds from a JSON inventory.")
    parser.add_argument("seed_file", nargs="?", type=Path, default=None)
    args = parser.parse_args()
    seed(args.seed_file)
