import os
import logging
from pathlib import Path
import aiosqlite
from typing import Optional

logger = logging.getLogger(__name__)

# Global database connection
_db: Optional[aiosqlite.Connection] = None


async def get_db() -> aiosqlite.Connection:
    """Get database connection"""
    global _db
    if _db is None:
        await init_db()
    return _db


async def init_db() -> None:
    """Initialize database with schema"""
    global _db

    db_path = Path(os.getenv("DB_PATH", "/data/db/transcodeops.db"))
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        _db = await aiosqlite.connect(
            str(db_path),
            timeout=30.0,
        )
        _db.row_factory = aiosqlite.Row

        await _db.execute("PRAGMA journal_mode = WAL")

        await create_tables()

        logger.info(f"Database initialized at {db_path}")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db() -> None:
    """Close database connection"""
    global _db
    if _db:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


async def create_tables() -> None:
    """Create all database tables"""

    # Completed transcodes, one per (media, target) pair
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS tc_transcodes (
            id TEXT PRIMARY KEY,
            media_id TEXT NOT NULL,
            target_id TEXT NOT NULL,
            output_path TEXT NOT NULL,
            started_at TIMESTAMP,
            finished_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (media_id, target_id)
        )
    """)

    await _db.execute("""
        CREATE INDEX IF NOT EXISTS idx_tc_transcodes_media
        ON tc_transcodes(media_id)
    """)

    await _db.commit()
    logger.info("Database schema created successfully")
