from __future__ import annotations

import os
import shutil
from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest

os.environ.setdefault("PATIENTFLOW_DATA_DIR", str(Path("pytest_artifacts") / "data"))

from patientflow.container import Container, build_container  # noqa: E402
from patientflow.infrastructure.db.engine import get_engine  # noqa: E402
from patientflow.infrastructure.db.models_sqlalchemy import Base  # noqa: E402
from patientflow.infrastructure.db.session import SessionFactory, make_session_scope  # noqa: E402


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def tmp_path() -> Generator[Path, None, None]:
    base = Path("pytest_artifacts")
    base.mkdir(parents=True, exist_ok=True)
    path = base / uuid4().hex
    path.mkdir(parents=True, exist_ok=True)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def session_factory(tmp_path: Path) -> Generator[SessionFactory, None, None]:
    engine = get_engine(f"sqlite:///{(tmp_path / 'patientflow.db').as_posix()}", echo=False)
    Base.metadata.create_all(engine)
    try:
        yield make_session_scope(engine)
    finally:
        engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 8, 0, 0))


@pytest.fixture
def container(session_factory: SessionFactory, clock: FrozenClock) -> Container:
    return build_container(session_factory, clock=clock)
