from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from patientflow.config import settings


def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
    finally:
        cursor.close()
    # pysqlite's own BEGIN handling is disabled; see _begin_immediate.
    dbapi_connection.isolation_level = None


def _begin_immediate(conn) -> None:
    # Take the write lock up front so concurrent writers queue on busy_timeout
    # instead of failing on a stale WAL snapshot.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine(database_url: str | None = None, *, echo: bool | None = None) -> Engine:
    url = database_url or settings.database_url
    is_sqlite = url.startswith("sqlite")
    # Staff at different stations act concurrently; connections cross threads.
    engine = create_engine(
        url,
        echo=settings.echo_sql if echo is None else echo,
        future=True,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragmas)
        event.listen(engine, "begin", _begin_immediate)
    return engine
