import logging
import sqlite3
import time

from ._schema import LEGACY_COLUMNS, LEGACY_INDEXES, SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger("storage")


async def ensure_schema(db, logger_override=None):
    """Create missing tables and add columns older databases lack.

    Idempotent: every statement either uses IF NOT EXISTS or is allowed to
    fail because the column/index is already there.
    """
    log = logger_override or logger
    current_version = 0
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            if row and row[0] is not None:
                current_version = row[0]
    except sqlite3.OperationalError:
        pass

    await db.executescript(SCHEMA_SQL)

    for table, col, typedef in LEGACY_COLUMNS:
        try:
            await db.execute(f"ALTER TABLE {table} ADD COLUMN {col} {typedef}")
            log.info("Added legacy column %s.%s", table, col)
        except sqlite3.OperationalError:
            pass

    for idx_sql in LEGACY_INDEXES:
        try:
            await db.execute(idx_sql)
        except sqlite3.DatabaseError:
            log.warning("Index not created (legacy data?): %s", idx_sql)

    if current_version < SCHEMA_VERSION:
        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, time.time()),
        )
        log.info("Schema bootstrapped (v%d -> v%d)", current_version, SCHEMA_VERSION)
    else:
        log.debug("Database schema up to date (v%d)", current_version)
    await db.commit()
