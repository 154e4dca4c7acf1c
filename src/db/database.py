import logging
import os
import sqlite3
import time
from typing import Optional

logger = logging.getLogger(__name__)

CURRENT_DB_VERSION = 2


def initialize_database(app_data_dir: str) -> sqlite3.Connection:
    os.makedirs(app_data_dir, exist_ok=True)
    sqlite_path = os.path.join(app_data_dir, "db.sqlite3")
    logger.info("Database file path: %s", sqlite_path)

    db = sqlite3.connect(sqlite_path)
    db.row_factory = sqlite3.Row

    existing_version = int(db.execute("PRAGMA user_version").fetchone()[0])
    upgrade_database_if_needed(db, existing_version)

    return db


def upgrade_database_if_needed(db: sqlite3.Connection, existing_version: int) -> None:
    logger.debug("Existing database version: %s", existing_version)

    if existing_version >= CURRENT_DB_VERSION:
        return

    if existing_version <= 0:
        logger.info("Migrate database version 1...")
        db.execute("PRAGMA journal_mode=WAL")
        db.execute("PRAGMA user_version=1")
        db.executescript("""
            CREATE TABLE kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)
        db.commit()

    if existing_version <= 1:
        logger.info("Migrate database version 2...")
        db.execute("PRAGMA user_version=2")
        db.execute("ALTER TABLE kv_store ADD COLUMN updated_at INTEGER DEFAULT 0")
        db.commit()


# -------------------------------
# KEY / VALUE
# -------------------------------
def get_value(db: sqlite3.Connection, key: str) -> Optional[str]:
    row = db.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    return row["value"]


def set_value(db: sqlite3.Connection, key: str, value: str) -> None:
    db.execute(
        """
        INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, value, int(time.time())),
    )
    db.commit()


def get_keys(db: sqlite3.Connection) -> list[str]:
    cursor = db.execute("SELECT key FROM kv_store ORDER BY key")
    return [row["key"] for row in cursor.fetchall()]
