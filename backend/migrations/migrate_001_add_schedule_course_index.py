"""
Migration: Add the schedules(course_id) index.

Databases created before the index was declared on the model have the
foreign key but no index behind it, so every cascade and per-course
lookup scans the whole table. This migration:
1. Skips if the schedules table does not exist yet (create_all builds it)
2. Skips if idx_schedules_course_id is already present
3. Creates the index
"""
import logging
from sqlalchemy import text

logger = logging.getLogger(__name__)

INDEX_NAME = "idx_schedules_course_id"


def is_postgres(engine):
    """Check if database is PostgreSQL."""
    return "postgresql" in str(engine.url).lower()


def migrate(engine):
    """Run migration."""
    with engine.connect() as conn:
        # Start transaction
        trans = conn.begin()

        try:
            if is_postgres(engine):
                migrate_postgres(conn)
            else:
                migrate_sqlite(conn)

            trans.commit()
            logger.info("Migration 001 completed successfully")
        except Exception as e:
            trans.rollback()
            logger.error(f"Migration 001 failed: {str(e)}")
            raise


def migrate_postgres(conn):
    """PostgreSQL migration."""
    logger.info("Running PostgreSQL migration for schedules index...")

    result = conn.execute(text("""
        SELECT table_name
        FROM information_schema.tables
        WHERE table_name = 'schedules'
    """))
    if not result.fetchone():
        logger.info("schedules table does not exist, skipping migration")
        return

    result = conn.execute(text("""
        SELECT indexname
        FROM pg_indexes
        WHERE tablename = 'schedules' AND indexname = :name
    """), {"name": INDEX_NAME})
    if result.fetchone():
        logger.info(f"{INDEX_NAME} already exists, skipping migration")
        return

    logger.info(f"Creating {INDEX_NAME}...")
    conn.execute(text(f"CREATE INDEX IF NOT EXISTS {INDEX_NAME} ON schedules (course_id)"))


def migrate_sqlite(conn):
    """SQLite migration."""
    logger.info("Running SQLite migration for schedules index...")

    result = conn.execute(text("""
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='schedules'
    """))
    if not result.fetchone():
        logger.info("schedules table does not exist, skipping migration")
        return

    result = conn.execute(text("PRAGMA index_list(schedules)"))
    indexes = [row[1] for row in result.fetchall()]
    if INDEX_NAME in indexes:
        logger.info(f"{INDEX_NAME} already exists, skipping migration")
        return

    logger.info(f"Creating {INDEX_NAME}...")
    conn.execute(text(f"CREATE INDEX IF NOT EXISTS {INDEX_NAME} ON schedules (course_id)"))


if __name__ == "__main__":
    from db import make_engine
    migrate(make_engine())
