# finboard/db.py
"""
Database connection and initialization helpers.
This file is the single source of truth for opening the SQLite connection.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Generator, Optional

from .core import config

logger = logging.getLogger(__name__)

# Overridable (tests point it at a temporary file)
DB_PATH: Path = config.DB_PATH


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    path = Path(db_path or DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(path),
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_db_conn() -> Generator[sqlite3.Connection, None, None]:
    """
    Dependency for FastAPI to get database connection.
    """
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


def get_db_path() -> str:
    """Get the database file path."""
    return str(DB_PATH)


def initialise_database() -> None:
    """Create database tables if they don't exist."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS recurring_transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                description TEXT NOT NULL,
                amount TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('income', 'expense')),
                category TEXT NOT NULL,
                payment_method TEXT,
                frequency TEXT NOT NULL,
                interval_count INTEGER NOT NULL DEFAULT 1,
                day_of_week INTEGER,
                day_of_month INTEGER,
                start_date TEXT NOT NULL,
                end_date TEXT,
                next_due_date TEXT NOT NULL,
                last_created_date TEXT,
                is_active BOOLEAN NOT NULL DEFAULT 1,
                auto_create BOOLEAN NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                date TEXT NOT NULL,
                description TEXT NOT NULL,
                amount TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('income', 'expense')),
                category TEXT NOT NULL,
                payment_method TEXT,
                recurring_id INTEGER,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (recurring_id) REFERENCES recurring_transactions (id) ON DELETE SET NULL,
                UNIQUE (recurring_id, date)
            )
        """)

        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_recurring_due "
            "ON recurring_transactions (user_id, is_active, next_due_date)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions (user_id, date)"
        )
        conn.commit()
        logger.info("Database initialised at %s", get_db_path())
    finally:
        conn.close()
