#!/usr/bin/env python3
"""
Manual script to run schema migrations against the configured database.
Run this from the backend directory or adjust the import path.
"""
import sys
import os

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from db import create_db_and_tables, make_engine
from migrations.migrate_001_add_schedule_course_index import migrate as migrate_001
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("Running migrations manually...")
    engine = make_engine()
    try:
        create_db_and_tables(engine)
        migrate_001(engine)
        logger.info("Migrations completed successfully")
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        import traceback
        logger.error(traceback.format_exc())
        sys.exit(1)
