"""Local Store: durable CRUD and query access over courses and schedules.

One ``LocalStore`` is built at process start and handed to whatever needs
it. It owns a single worker thread; every repository call runs as a job
on that thread inside its own session, so writes through one store never
interleave. A job may call other repository methods; those run inline in
the same session instead of being queued again.
"""
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Generic, Sequence, TypeVar

from sqlalchemy import case, delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from errors import ReferentialIntegrityError, StorageError, YogaAdminError
from models import COURSE_FIELDS, SCHEDULE_FIELDS, WEEKDAYS, Course, Schedule
from schemas import CourseFilter, ScheduleFilter

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)
T = TypeVar("T")


class LocalStore:
    """Handle on the local database plus its single writer thread."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-store")
        self._local = threading.local()
        self.courses = CourseRepository(self)
        self.schedules = ScheduleRepository(self)

    def run(self, job: Callable[[Session], T]) -> T:
        """Run ``job(session)`` on the worker thread and wait for its result."""
        session = getattr(self._local, "session", None)
        if session is not None:
            return job(session)
        return self._worker.submit(self._execute, job).result()

    def _execute(self, job: Callable[[Session], T]) -> T:
        with Session(self.engine, expire_on_commit=False) as session:
            self._local.session = session
            try:
                return job(session)
            except YogaAdminError:
                session.rollback()
                raise
            except IntegrityError as e:
                session.rollback()
                if "FOREIGN KEY" in str(e).upper():
                    raise ReferentialIntegrityError(
                        "Schedule must reference an existing course",
                        {"reason": str(e.orig)},
                    ) from e
                raise StorageError(f"Storage constraint failed: {e.orig}") from e
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Storage failure: {str(e)}")
                raise StorageError(f"Storage failure: {str(e)}") from e
            finally:
                self._local.session = None

    def close(self):
        self._worker.shutdown(wait=True)
        self.engine.dispose()


class Repository(ABC, Generic[ModelT]):
    """Storage access for one entity type."""

    @abstractmethod
    def insert(self, entity: Any) -> int:
        """Persist a new record and return its store-assigned id."""

    @abstractmethod
    def update(self, entity: Any) -> int:
        """Replace the record matching ``entity.id``; returns rows affected."""

    @abstractmethod
    def delete(self, entity: Any) -> int:
        """Remove the record matching ``entity.id``; returns rows affected."""

    @abstractmethod
    def get_by_id(self, entity_id: int) -> ModelT | None:
        ...

    @abstractmethod
    def get_all(self) -> list[ModelT]:
        ...

    @abstractmethod
    def find_by(self, criteria: Any = None, **fields: Any) -> list[ModelT]:
        ...

    @abstractmethod
    def delete_all(self) -> int:
        ...

    @abstractmethod
    def count(self) -> int:
        ...


class SqlRepository(Repository[ModelT]):
    """SQLModel-backed repository shared by both entity types.

    Subclasses declare the model, its writable fields, the fields that may
    not be empty, how to order full listings and how to build filters.
    """

    model: type[ModelT]
    fields: Sequence[str]
    required: Sequence[str]
    filter_type: type

    def __init__(self, store: LocalStore):
        self._store = store

    @property
    def name(self) -> str:
        return self.model.__tablename__

    def _values(self, entity: Any) -> dict[str, Any]:
        return {field: getattr(entity, field, None) for field in self.fields}

    def _check_required(self, values: dict[str, Any]):
        for field in self.required:
            value = values.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise StorageError(f"{self.name}.{field} may not be empty", {"field": field})

    def _check_references(self, session: Session, values: dict[str, Any]):
        """Hook for foreign key checks ahead of the database's own."""

    def _ordering(self) -> list:
        return [self.model.id]

    def _conditions(self, criteria) -> list:
        return []

    def insert(self, entity: Any) -> int:
        values = self._values(entity)

        def job(session: Session) -> int:
            self._check_required(values)
            self._check_references(session, values)
            row = self.model(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.debug(f"Inserted {self.name} row with ID: {row.id}")
            return row.id

        return self._store.run(job)

    def update(self, entity: Any) -> int:
        values = self._values(entity)

        def job(session: Session) -> int:
            self._check_required(values)
            self._check_references(session, values)
            result = session.execute(
                update(self.model).where(self.model.id == entity.id).values(**values)
            )
            session.commit()
            logger.debug(f"Updated {self.name} {entity.id}. Rows affected: {result.rowcount}")
            return result.rowcount

        return self._store.run(job)

    def delete(self, entity: Any) -> int:
        def job(session: Session) -> int:
            result = session.execute(delete(self.model).where(self.model.id == entity.id))
            session.commit()
            logger.debug(f"Deleted {self.name} {entity.id}. Rows affected: {result.rowcount}")
            return result.rowcount

        return self._store.run(job)

    def get_by_id(self, entity_id: int) -> ModelT | None:
        return self._store.run(lambda session: session.get(self.model, entity_id))

    def get_all(self) -> list[ModelT]:
        def job(session: Session) -> list[ModelT]:
            return list(session.exec(select(self.model).order_by(*self._ordering())).all())

        return self._store.run(job)

    def find_by(self, criteria: Any = None, **fields: Any) -> list[ModelT]:
        """Filtered listing, in the same order as ``get_all``.

        Accepts either a filter model or its fields as keyword arguments.
        """
        if criteria is None:
            criteria = self.filter_type(**fields)

        def job(session: Session) -> list[ModelT]:
            stmt = select(self.model)
            for condition in self._conditions(criteria):
                stmt = stmt.where(condition)
            return list(session.exec(stmt.order_by(*self._ordering())).all())

        return self._store.run(job)

    def delete_all(self) -> int:
        def job(session: Session) -> int:
            result = session.execute(delete(self.model))
            session.commit()
            logger.info(f"Deleted all {self.name}. Rows affected: {result.rowcount}")
            return result.rowcount

        return self._store.run(job)

    def count(self) -> int:
        def job(session: Session) -> int:
            return session.exec(select(func.count()).select_from(self.model)).one()

        return self._store.run(job)


def _contains(column, value: str):
    return func.lower(column).contains(value.lower(), autoescape=True)


class CourseRepository(SqlRepository[Course]):
    model = Course
    fields = COURSE_FIELDS
    required = ("day_of_week", "time", "capacity", "duration", "price", "type")
    filter_type = CourseFilter

    def _ordering(self) -> list:
        day_rank = case(
            {day: rank for rank, day in enumerate(WEEKDAYS)},
            value=Course.day_of_week,
            else_=len(WEEKDAYS),
        )
        return [day_rank, Course.time, Course.id]

    def _conditions(self, criteria: CourseFilter) -> list:
        conditions = []
        if criteria.q:
            conditions.append(
                _contains(Course.type, criteria.q)
                | _contains(Course.day_of_week, criteria.q)
                | _contains(Course.description, criteria.q)
            )
        if criteria.type:
            conditions.append(_contains(Course.type, criteria.type))
        if criteria.day_of_week:
            conditions.append(_contains(Course.day_of_week, criteria.day_of_week))
        if criteria.description:
            conditions.append(_contains(Course.description, criteria.description))
        if criteria.min_price is not None:
            conditions.append(Course.price >= criteria.min_price)
        if criteria.max_price is not None:
            conditions.append(Course.price <= criteria.max_price)
        return conditions

    def find_by_slot(self, day_of_week: str, time: str, type: str) -> list[Course]:
        """Courses sharing the soft-unique (day, time, type) triple."""

        def job(session: Session) -> list[Course]:
            stmt = (
                select(Course)
                .where(Course.day_of_week == day_of_week)
                .where(Course.time == time)
                .where(Course.type == type)
            )
            return list(session.exec(stmt).all())

        return self._store.run(job)

    def get_types(self) -> list[str]:
        def job(session: Session) -> list[str]:
            stmt = select(Course.type).distinct().order_by(Course.type)
            return list(session.exec(stmt).all())

        return self._store.run(job)

    def get_days(self) -> list[str]:
        """Weekdays that have at least one course, Monday first."""

        def job(session: Session) -> list[str]:
            present = set(session.exec(select(Course.day_of_week).distinct()).all())
            return [day for day in WEEKDAYS if day in present]

        return self._store.run(job)


class ScheduleRepository(SqlRepository[Schedule]):
    model = Schedule
    fields = SCHEDULE_FIELDS
    required = ("course_id", "date", "teacher")
    filter_type = ScheduleFilter

    def _check_references(self, session: Session, values: dict[str, Any]):
        if session.get(Course, values["course_id"]) is None:
            raise ReferentialIntegrityError(
                f"Course {values['course_id']} does not exist",
                {"course_id": values["course_id"]},
            )

    def _ordering(self) -> list:
        return [Schedule.date, Schedule.id]

    def _conditions(self, criteria: ScheduleFilter) -> list:
        conditions = []
        if criteria.q:
            conditions.append(_contains(Schedule.teacher, criteria.q) | _contains(Schedule.comments, criteria.q))
        if criteria.course_id is not None:
            conditions.append(Schedule.course_id == criteria.course_id)
        if criteria.date:
            conditions.append(Schedule.date == criteria.date)
        if criteria.date_from:
            conditions.append(Schedule.date >= criteria.date_from)
        if criteria.date_to:
            conditions.append(Schedule.date <= criteria.date_to)
        if criteria.teacher:
            conditions.append(_contains(Schedule.teacher, criteria.teacher))
        if criteria.comments:
            conditions.append(_contains(Schedule.comments, criteria.comments))
        return conditions

    def get_for_course(self, course_id: int) -> list[Schedule]:
        return self.find_by(course_id=course_id)

    def get_for_date(self, date: str) -> list[Schedule]:
        return self.find_by(date=date)
