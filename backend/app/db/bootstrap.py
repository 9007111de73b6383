from __future__ import annotations

import logging

from sqlalchemy import inspect

import app.models  # noqa: F401
from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "timetable_slots": {"id", "class_id", "term_id", "day", "period", "kind", "override_date"},
    "replacement_offers": {"id", "workflow_id", "candidate_teacher_id", "status", "expires_at"},
    "replacement_workflows": {"id", "absence_event_id", "date", "status", "alerted_at"},
}


def missing_schema_columns() -> dict[str, list[str]]:
    with engine.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing: dict[str, list[str]] = {}
        for table_name, columns in REQUIRED_COLUMNS.items():
            if table_name not in table_names:
                missing[table_name] = sorted(columns)
                continue
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            absent = sorted(columns - existing)
            if absent:
                missing[table_name] = absent
    return missing


def ensure_runtime_schema() -> None:
    Base.metadata.create_all(bind=engine)
    missing = missing_schema_columns()
    if missing:
        # Older databases need the alembic migrations; create_all never alters tables.
        logger.warning("Database schema is missing columns: %s", missing)
