"""Course and schedule workflows on top of the Local Store.

These mirror what the admin screens do: validate the form, check for a
clash on the soft-unique key, then write. The clash check and the insert
run as one job on the store's worker, so no other write through the same
store can land between them.
"""
import logging
from datetime import datetime
from typing import Any, Mapping, Sequence, TypeVar

import pydantic
from pydantic import BaseModel

from errors import DuplicateConflictError, NotFoundError, ValidationError
from models import WEEKDAYS, Course, Schedule
from schemas import CourseCreate, ScheduleCreate
from store import LocalStore

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_payload(schema: type[SchemaT], data: SchemaT | Mapping[str, Any]) -> SchemaT:
    """Validate raw form data against ``schema``.

    Raises ``ValidationError`` naming the first offending field.
    """
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as e:
        error = validation_error(e.errors())
        logger.info(f"Rejected {schema.__name__}: {error.field}: {error.message}")
        raise error from e


def validation_error(errors: Sequence[Mapping[str, Any]]) -> ValidationError:
    """``ValidationError`` for the first of a list of pydantic error dicts.

    Request locations (``body``, ``query``, ``path``) are dropped from the
    field name, so ``("body", "price")`` is reported as ``price``.
    """
    first = errors[0]
    loc = list(first.get("loc", ()))
    if loc and loc[0] in ("body", "query", "path"):
        loc = loc[1:]
    field = ".".join(str(part) for part in loc) or None
    message = first.get("msg", "Invalid input").removeprefix("Value error, ")
    return ValidationError(message, field=field, details={"errors": len(errors)})


def create_course(store: LocalStore, data: CourseCreate | Mapping[str, Any]) -> int:
    payload = parse_payload(CourseCreate, data)

    def job(session) -> int:
        if store.courses.find_by_slot(payload.day_of_week, payload.time, payload.type):
            raise DuplicateConflictError(
                "A course with the same day, time, and type already exists!",
                {"day_of_week": payload.day_of_week, "time": payload.time, "type": payload.type},
            )
        return store.courses.insert(payload)

    course_id = store.run(job)
    logger.info(f"Course added successfully! ID: {course_id}")
    return course_id


def update_course(store: LocalStore, course_id: int, data: CourseCreate | Mapping[str, Any]) -> Course:
    """Full replace of an existing course. Edits are not re-checked for clashes."""
    payload = parse_payload(CourseCreate, data)
    course = Course(id=course_id, **payload.model_dump())
    if store.courses.update(course) == 0:
        raise NotFoundError("Course", course_id)
    logger.info(f"Course {course_id} updated")
    return course


def delete_course(store: LocalStore, course_id: int) -> int:
    """Delete a course and, through the cascade, its schedules.

    Returns the number of schedules removed along with it.
    """

    def job(session) -> int:
        course = store.courses.get_by_id(course_id)
        if course is None:
            raise NotFoundError("Course", course_id)
        dependents = len(store.schedules.get_for_course(course_id))
        store.courses.delete(course)
        return dependents

    removed = store.run(job)
    logger.info(f"Deleted course {course_id} and {removed} schedules")
    return removed


def weekday_mismatch(course: Course, date: str) -> str | None:
    """Warning text when ``date`` falls on a different weekday than the course."""
    selected = WEEKDAYS[datetime.strptime(date, "%Y-%m-%d").weekday()]
    if selected.lower() != course.day_of_week.lower():
        return f"Selected date ({selected}) doesn't match course day ({course.day_of_week})"
    return None


def create_schedule(store: LocalStore, data: ScheduleCreate | Mapping[str, Any]) -> tuple[int, str | None]:
    """Create a schedule entry; returns its id and an optional weekday warning."""
    payload = parse_payload(ScheduleCreate, data)

    def job(session) -> tuple[int, str | None]:
        course = store.courses.get_by_id(payload.course_id)
        warning = weekday_mismatch(course, payload.date) if course else None
        existing = store.schedules.find_by(course_id=payload.course_id, date=payload.date)
        if existing:
            raise DuplicateConflictError(
                "A schedule for this course and date already exists!",
                {"course_id": payload.course_id, "date": payload.date},
            )
        # A missing course surfaces as ReferentialIntegrityError from the insert
        return store.schedules.insert(payload), warning

    schedule_id, warning = store.run(job)
    if warning:
        logger.warning(f"Schedule {schedule_id}: {warning}")
    logger.info(f"Schedule added successfully! ID: {schedule_id}")
    return schedule_id, warning


def update_schedule(store: LocalStore, schedule_id: int, data: ScheduleCreate | Mapping[str, Any]) -> Schedule:
    payload = parse_payload(ScheduleCreate, data)
    schedule = Schedule(id=schedule_id, **payload.model_dump())
    if store.schedules.update(schedule) == 0:
        raise NotFoundError("Schedule", schedule_id)
    logger.info(f"Schedule {schedule_id} updated")
    return schedule


def delete_schedule(store: LocalStore, schedule_id: int):
    def job(session):
        schedule = store.schedules.get_by_id(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)
        store.schedules.delete(schedule)

    store.run(job)
    logger.info(f"Deleted schedule {schedule_id}")


def reset_local(store: LocalStore) -> int:
    """Wipe every course; schedules go with them through the cascade."""
    removed = store.courses.delete_all()
    # Rows can only outlive their course if foreign keys were off when written
    store.schedules.delete_all()
    return removed
