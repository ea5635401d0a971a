from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from database import Base, engine, get_db
from models import SystemConfig

logger = logging.getLogger(__name__)

MIGRATION_MARKER_KEY = "migration:registration_admin:v1"

# Columns added after the first deployment; create_all does not alter tables
# that already exist.
ADDED_COLUMNS = (
    ("call_logs", "previous_status"),
    ("sync_jobs", "removed_records"),
    ("sync_jobs", "skipped_rows"),
)


@contextmanager
def _marker_session() -> Iterator[Session]:
    SystemConfig.__table__.create(bind=engine, checkfirst=True)
    sessions = get_db()
    db = next(sessions)
    try:
        yield db
    finally:
        sessions.close()


def _get_marker(db: Session) -> Optional[SystemConfig]:
    return db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()


def has_bootstrap_marker() -> bool:
    with _marker_session() as db:
        return _get_marker(db) is not None


def set_bootstrap_marker() -> None:
    stamp = datetime.now(timezone.utc).isoformat()
    with _marker_session() as db:
        marker = _get_marker(db)
        if marker is None:
            db.add(SystemConfig(key=MIGRATION_MARKER_KEY, value=stamp))
        else:
            marker.value = stamp
        db.commit()


def clear_bootstrap_marker() -> bool:
    with _marker_session() as db:
        marker = _get_marker(db)
        if marker is None:
            return False
        db.delete(marker)
        db.commit()
        return True


def _column_ddl(table_name: str, column: str, dialect) -> str:
    col = Base.metadata.tables[table_name].c[column]
    ddl = col.type.compile(dialect=dialect)
    if col.default is not None and col.default.is_scalar:
        ddl += f" DEFAULT {col.default.arg}"
    return ddl


def ensure_added_columns(bind=None) -> list:
    bind = bind or engine
    added = []
    existing_tables = set(inspect(bind).get_table_names())
    with bind.begin() as conn:
        for table_name, column in ADDED_COLUMNS:
            if table_name not in existing_tables:
                continue
            columns = {col["name"] for col in inspect(conn).get_columns(table_name)}
            if column in columns:
                continue
            ddl = _column_ddl(table_name, column, bind.dialect)
            conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column} {ddl}"))
            added.append(f"{table_name}.{column}")
    for name in added:
        logger.info("Added column %s", name)
    return added


def run_bootstrap_migrations() -> None:
    ensure_added_columns()
    Base.metadata.create_all(bind=engine)
    logger.info("Ensured tables: %s", ", ".join(table.name for table in Base.metadata.sorted_tables))
