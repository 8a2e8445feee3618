"""Async SQLite database for VerseCue (song library)."""

import logging
import aiosqlite
from pathlib import Path

logger = logging.getLogger("versecue.db")

_db: aiosqlite.Connection | None = None


async def init_db(db_path: Path) -> aiosqlite.Connection:
    """Initialize database and create tables."""
    global _db
    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row
    await _db.execute("PRAGMA journal_mode=WAL")
    await _db.execute("PRAGMA busy_timeout=30000")
    await _create_tables(_db)
    await _db.commit()

    # Integrity check on startup warns but does not abort
    rows = await _db.execute_fetchall("PRAGMA integrity_check")
    result = rows[0][0] if rows else "unknown"
    if result != "ok":
        logger.warning("Database integrity check FAILED: %s", result)
    else:
        logger.debug("Database integrity check passed")

    return _db


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db first.")
    return _db


async def close_db():
    """Close the database connection."""
    global _db
    if _db:
        await _db.close()
        _db = None


async def _create_tables(db: aiosqlite.Connection):
    """Create all tables if they don't exist."""

    # title_search / lyrics_search hold the normalized forms used for matching
    await db.execute("""
        CREATE TABLE IF NOT EXISTS songs (
            id              TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL DEFAULT 'default',
            title           TEXT NOT NULL,
            artist          TEXT DEFAULT '',
            lyrics          TEXT,
            source          TEXT DEFAULT 'local',
            title_search    TEXT NOT NULL,
            lyrics_search   TEXT DEFAULT '',
            created_at      DATETIME DEFAULT CURRENT_TIMESTAMP
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_songs_org ON songs(organization_id)
    """)
