#!/usr/bin/env python3
"""
Script to audit the local database for soft-invariant violations.
Duplicate checks only run when records are created, so anything written
around them (bulk imports, concurrent writers) shows up here.
Read-only: nothing is changed.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from db import make_engine
from sqlmodel import Session, text
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def check_data(engine) -> dict:
    """Report duplicate courses, duplicate schedules and orphan schedules."""
    with Session(engine) as session:
        duplicate_courses = session.execute(text("""
            SELECT day_of_week, time, type, COUNT(*) as count
            FROM courses
            GROUP BY day_of_week, time, type
            HAVING COUNT(*) > 1
        """)).fetchall()

        duplicate_schedules = session.execute(text("""
            SELECT course_id, date, COUNT(*) as count
            FROM schedules
            GROUP BY course_id, date
            HAVING COUNT(*) > 1
        """)).fetchall()

        orphans = session.execute(text("""
            SELECT s.id, s.course_id
            FROM schedules s
            LEFT JOIN courses c ON c.id = s.course_id
            WHERE c.id IS NULL
        """)).fetchall()

    if duplicate_courses:
        logger.warning(f"Found {len(duplicate_courses)} duplicate (day, time, type) course slots:")
        for dup in duplicate_courses:
            logger.warning(f"   - {dup[0]} {dup[1]} {dup[2]}: {dup[3]} courses")
    else:
        logger.info("No duplicate courses found")

    if duplicate_schedules:
        logger.warning(f"Found {len(duplicate_schedules)} duplicate (course, date) schedules:")
        for dup in duplicate_schedules:
            logger.warning(f"   - course {dup[0]} on {dup[1]}: {dup[2]} schedules")
    else:
        logger.info("No duplicate schedules found")

    if orphans:
        logger.warning(f"Found {len(orphans)} schedules pointing at missing courses:")
        for orphan in orphans:
            logger.warning(f"   - schedule {orphan[0]} -> course {orphan[1]}")
    else:
        logger.info("No orphan schedules found")

    return {
        "duplicate_courses": len(duplicate_courses),
        "duplicate_schedules": len(duplicate_schedules),
        "orphan_schedules": len(orphans),
    }


if __name__ == "__main__":
    report = check_data(make_engine())
    sys.exit(1 if any(report.values()) else 0)
