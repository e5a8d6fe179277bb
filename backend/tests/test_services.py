"""Tests for form validation and the create/update workflows."""
from datetime import datetime

import pytest

import services
from db import create_db_and_tables, make_engine
from errors import DuplicateConflictError, NotFoundError, ReferentialIntegrityError, ValidationError
from models import Course
from store import LocalStore


@pytest.fixture(scope="function")
def store():
    """Create an in-memory store."""
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    store = LocalStore(engine)
    yield store
    store.close()


def course_form(**overrides) -> dict:
    form = {
        "day_of_week": "Monday",
        "time": "10:00",
        "capacity": 20,
        "duration": 60,
        "price": 10.0,
        "type": "Hatha Yoga",
        "description": "",
    }
    form.update(overrides)
    return form


@pytest.fixture
def course_id(store):
    return services.create_course(store, course_form())


@pytest.mark.parametrize("price", [0.01, 1000, 20.5])
def test_price_accepted(store, price):
    course_id = services.create_course(store, course_form(price=price))
    assert store.courses.get_by_id(course_id).price == price


@pytest.mark.parametrize("price", [0, -5, 1000.01])
def test_price_rejected(store, price):
    with pytest.raises(ValidationError) as exc_info:
        services.create_course(store, course_form(price=price))
    assert exc_info.value.field == "price"
    assert store.courses.count() == 0


@pytest.mark.parametrize(
    "field, value",
    [
        ("capacity", 0),
        ("capacity", 101),
        ("duration", 0),
        ("duration", 301),
        ("day_of_week", "monday"),
        ("day_of_week", "Funday"),
        ("time", "25:00"),
        ("time", "9:00"),
        ("time", "noon"),
        ("type", "  "),
        ("description", "x" * 501),
    ],
)
def test_course_form_rejections(store, field, value):
    with pytest.raises(ValidationError) as exc_info:
        services.create_course(store, course_form(**{field: value}))
    assert exc_info.value.field == field


def test_course_form_limits_accepted(store):
    course_id = services.create_course(
        store, course_form(capacity=100, duration=300, time="23:59", description="x" * 500)
    )
    course = store.courses.get_by_id(course_id)
    assert course.capacity == 100
    assert course.duration == 300


def test_blank_description_stored_as_none(store, course_id):
    assert store.courses.get_by_id(course_id).description is None


def test_duplicate_course_rejected(store, course_id):
    with pytest.raises(DuplicateConflictError):
        services.create_course(store, course_form(capacity=5, price=99))
    assert store.courses.count() == 1


@pytest.mark.parametrize(
    "change", [{"day_of_week": "Tuesday"}, {"time": "10:30"}, {"type": "Yin Yoga"}]
)
def test_course_differing_in_one_key_field_is_allowed(store, course_id, change):
    services.create_course(store, course_form(**change))
    assert store.courses.count() == 2


def test_update_course_skips_duplicate_check(store, course_id):
    other = services.create_course(store, course_form(time="12:00"))
    updated = services.update_course(store, other, course_form())
    assert updated.time == "10:00"
    assert store.courses.count() == 2


def test_update_missing_course(store):
    with pytest.raises(NotFoundError):
        services.update_course(store, 404, course_form())


def test_create_schedule(store, course_id):
    schedule_id, warning = services.create_schedule(
        store, {"course_id": course_id, "date": "2024-01-15", "teacher": "  Alice  ", "comments": "  "}
    )
    schedule = store.schedules.get_by_id(schedule_id)
    assert warning is None
    assert schedule.teacher == "Alice"
    assert schedule.comments is None


def test_schedule_on_other_weekday_warns_but_saves(store, course_id):
    schedule_id, warning = services.create_schedule(
        store, {"course_id": course_id, "date": "2024-01-16", "teacher": "Alice"}
    )
    assert store.schedules.get_by_id(schedule_id) is not None
    assert warning == "Selected date (Tuesday) doesn't match course day (Monday)"


class GermanDatetime(datetime):
    """Formats weekday names the way a German LC_TIME would."""

    def strftime(self, fmt):
        if fmt == "%A":
            return ("Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag", "Samstag", "Sonntag")[self.weekday()]
        return super().strftime(fmt)


@pytest.fixture
def german_time_locale(monkeypatch):
    monkeypatch.setattr(services, "datetime", GermanDatetime)


@pytest.mark.parametrize(
    "date, day",
    [("2024-01-15", "Monday"), ("2024-01-17", "Wednesday"), ("2024-01-21", "Sunday")],
)
def test_matching_weekday_gives_no_warning(date, day):
    course = Course(id=1, day_of_week=day, time="10:00", capacity=1, duration=60, price=1.0, type="Yin Yoga")
    assert services.weekday_mismatch(course, date) is None


def test_weekday_check_ignores_time_locale(german_time_locale):
    course = Course(id=1, day_of_week="Monday", time="10:00", capacity=1, duration=60, price=1.0, type="Yin Yoga")
    assert services.weekday_mismatch(course, "2024-01-15") is None
    assert services.weekday_mismatch(course, "2024-01-16") == "Selected date (Tuesday) doesn't match course day (Monday)"


@pytest.mark.parametrize(
    "field, value",
    [
        ("teacher", "A"),
        ("teacher", "   "),
        ("date", "2024-02-30"),
        ("date", "15/01/2024"),
        ("date", "2024-1-5"),
        ("date", "2024-01-5"),
    ],
)
def test_schedule_form_rejections(store, course_id, field, value):
    form = {"course_id": course_id, "date": "2024-01-15", "teacher": "Alice"}
    form[field] = value
    with pytest.raises(ValidationError) as exc_info:
        services.create_schedule(store, form)
    assert exc_info.value.field == field


def test_duplicate_schedule_rejected(store, course_id):
    form = {"course_id": course_id, "date": "2024-01-15", "teacher": "Alice"}
    services.create_schedule(store, form)

    with pytest.raises(DuplicateConflictError):
        services.create_schedule(store, {**form, "teacher": "Bob"})

    services.create_schedule(store, {**form, "date": "2024-01-22"})
    assert store.schedules.count() == 2


def test_unpadded_date_cannot_dodge_duplicate_check_or_ordering(store, course_id):
    services.create_schedule(store, {"course_id": course_id, "date": "2024-09-30", "teacher": "Alice"})
    services.create_schedule(store, {"course_id": course_id, "date": "2024-01-05", "teacher": "Alice"})

    with pytest.raises(ValidationError):
        services.create_schedule(store, {"course_id": course_id, "date": "2024-1-5", "teacher": "Bob"})

    assert [s.date for s in store.schedules.get_all()] == ["2024-01-05", "2024-09-30"]


def test_schedule_for_unknown_course(store):
    with pytest.raises(ReferentialIntegrityError):
        services.create_schedule(store, {"course_id": 77, "date": "2024-01-15", "teacher": "Alice"})
    assert store.schedules.count() == 0


def test_delete_course_reports_removed_schedules(store, course_id):
    services.create_schedule(store, {"course_id": course_id, "date": "2024-01-15", "teacher": "Alice"})
    services.create_schedule(store, {"course_id": course_id, "date": "2024-01-22", "teacher": "Alice"})

    assert services.delete_course(store, course_id) == 2
    assert store.schedules.count() == 0

    with pytest.raises(NotFoundError):
        services.delete_course(store, course_id)


def test_update_and_delete_schedule(store, course_id):
    schedule_id, _ = services.create_schedule(
        store, {"course_id": course_id, "date": "2024-01-15", "teacher": "Alice"}
    )
    services.update_schedule(store, schedule_id, {"course_id": course_id, "date": "2024-01-22", "teacher": "Bob"})
    assert store.schedules.get_by_id(schedule_id).teacher == "Bob"

    services.delete_schedule(store, schedule_id)
    with pytest.raises(NotFoundError):
        services.delete_schedule(store, schedule_id)


def test_reset_local(store, course_id):
    services.create_schedule(store, {"course_id": course_id, "date": "2024-01-15", "teacher": "Alice"})
    services.reset_local(store)
    assert store.courses.count() == 0
    assert store.schedules.count() == 0
