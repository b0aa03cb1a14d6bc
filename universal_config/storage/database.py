"""
Database connection management and initialization.

Supports both SQLite (local dev, tests) and PostgreSQL (production) via
the ``database_url`` setting or the ``DATABASE_URL`` environment variable.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from universal_config.config import get_settings

# Global engine instance
_engine: Engine | None = None
_DB_PATH: Path | None = None


def get_database_url() -> str:
    """Get database URL from settings/environment or default to SQLite.

    ``postgres://`` URLs are rewritten to ``postgresql://`` for SQLAlchemy.
    An explicit ``set_db_path`` always wins so tests stay on SQLite.
    """
    if _DB_PATH is not None:
        return f"sqlite:///{_DB_PATH}"

    database_url = get_settings().database_url or os.getenv("DATABASE_URL")
    if database_url:
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    return f"sqlite:///{get_db_path()}"


def get_db_path() -> Path:
    """Get the SQLite database file path (used when no database URL is set)."""
    global _DB_PATH
    if _DB_PATH is None:
        data_dir = Path.cwd() / "data"
        data_dir.mkdir(exist_ok=True)
        return data_dir / "universal_config.db"
    return _DB_PATH


def set_db_path(path: Path | str) -> None:
    """Set a custom SQLite database path (useful for testing)."""
    global _DB_PATH, _engine
    _DB_PATH = Path(path)
    _engine = None  # Reset engine when path changes


def get_engine() -> Engine:
    """Get SQLAlchemy engine for database operations."""
    global _engine
    if _engine is None:
        database_url = get_database_url()

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        _engine = create_engine(database_url, echo=False, connect_args=connect_args)
    return _engine


def reset_engine() -> None:
    """Reset the engine (useful for testing or reconfiguration)."""
    global _engine, _DB_PATH
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _DB_PATH = None


@contextmanager
def get_db() -> Generator[Connection, None, None]:
    """Get a database connection.

    Nothing is persisted unless the caller commits; leaving the block
    without ``conn.commit()`` rolls the transaction back.

    Usage:
        with get_db() as conn:
            rows = conn.execute(text("SELECT * FROM rules")).fetchall()
    """
    engine = get_engine()
    with engine.connect() as conn:
        yield conn


def init_db() -> None:
    """Initialize database schema.

    Creates all tables if they don't exist. Safe to call multiple times.
    """
    engine = get_engine()
    with engine.connect() as conn:
        for statement in _split_statements(_SCHEMA):
            conn.execute(text(statement))
        conn.commit()


def get_table_stats() -> dict[str, int]:
    """Row counts for each engine table."""
    stats = {}
    with get_db() as conn:
        for table in ("rules", "rule_events"):
            stats[table] = conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
    return stats


def _split_statements(schema: str) -> list[str]:
    """Split the schema script into individual statements without comments."""
    statements = []
    current: list[str] = []
    for line in schema.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        current.append(line.split("--", 1)[0])
        if stripped.endswith(";"):
            statement = "\n".join(current).strip().rstrip(";")
            if statement:
                statements.append(statement)
            current = []
    return statements


# =============================================================================
# Database Schema (SQLite, PostgreSQL-compatible design)
# =============================================================================

_SCHEMA = """
-- =============================================================================
-- RULE VERSIONS
-- =============================================================================
-- One row per rule version. The latest version of an id is its current state.

CREATE TABLE IF NOT EXISTS rules (
    organization_id TEXT NOT NULL,      -- Tenant scope
    id TEXT NOT NULL,                   -- Opaque rule id, unique per organization
    version INTEGER NOT NULL DEFAULT 1,

    family TEXT NOT NULL,               -- e.g. "booking"
    sub_family TEXT,
    status TEXT NOT NULL DEFAULT 'draft',
    priority INTEGER NOT NULL DEFAULT 0,

    conditions_json TEXT NOT NULL,
    payload_json TEXT NOT NULL,

    smart_code TEXT,                    -- e.g. "HERA.UNIV.CONFIG.BOOKING.PEAK_TIME.v1"
    name TEXT,
    description TEXT,

    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,

    PRIMARY KEY (organization_id, id, version)
);

CREATE INDEX IF NOT EXISTS idx_rules_org_family ON rules(organization_id, family);

-- =============================================================================
-- RULE EVENTS (append-only audit log)
-- =============================================================================

CREATE TABLE IF NOT EXISTS rule_events (
    sequence_number INTEGER PRIMARY KEY,
    organization_id TEXT NOT NULL,
    rule_id TEXT NOT NULL,
    version INTEGER NOT NULL,
    event_type TEXT NOT NULL,           -- rule_created, rule_versioned, ...
    event_data TEXT NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rule_events_rule ON rule_events(organization_id, rule_id);
"""
