import pytest
from fastapi.testclient import TestClient

from app import app, get_store, get_sync_engine
from db import create_db_and_tables, make_engine
from remote import InMemoryMirror
from store import LocalStore
from sync import SyncEngine


@pytest.fixture(scope="function")
def test_store():
    """Create a throwaway in-memory store."""
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    store = LocalStore(engine)
    yield store
    store.close()


@pytest.fixture(scope="function")
def mirror():
    return InMemoryMirror()


@pytest.fixture(scope="function")
def client(test_store, mirror, monkeypatch):
    """Create a test client with dependency overrides."""
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("MIRROR_BACKEND", "memory")
    sync_engine = SyncEngine(mirror, courses_collection="courses", schedules_collection="schedules")

    app.dependency_overrides[get_store] = lambda: test_store
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine
    with TestClient(app) as test_client:
        test_client.sync_engine = sync_engine
        yield test_client
    app.dependency_overrides.clear()
    sync_engine.close()


def course_body(**overrides) -> dict:
    body = {
        "day_of_week": "Monday",
        "time": "10:00",
        "capacity": 20,
        "duration": 60,
        "price": 10.0,
        "type": "Hatha Yoga",
        "description": "Test course",
    }
    body.update(overrides)
    return body


def add_course(client, **overrides) -> int:
    response = client.post("/courses", json=course_body(**overrides))
    assert response.status_code == 201
    return response.json()["id"]


def add_schedule(client, course_id: int, date: str = "2024-01-15", teacher: str = "Alice") -> int:
    response = client.post("/schedules", json={"course_id": course_id, "date": date, "teacher": teacher})
    assert response.status_code == 201
    return response.json()["id"]


def test_create_course_success(client):
    response = client.post("/courses", json=course_body())
    assert response.status_code == 201
    data = response.json()
    assert data["ok"] is True
    assert isinstance(data["id"], int)


def test_create_course_validation(client):
    response = client.post("/courses", json=course_body(price=0))
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"
    assert response.json()["field"] == "price"

    response = client.post("/courses", json=course_body(day_of_week="Someday"))
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ValidationError"
    assert data["field"] == "day_of_week"
    assert data["detail"].startswith("Day of week must be one of")


def test_missing_course_field_names_the_field(client):
    body = course_body()
    del body["time"]
    response = client.post("/courses", json=body)
    assert response.status_code == 422
    assert response.json()["field"] == "time"


def test_create_duplicate_course(client):
    add_course(client)
    response = client.post("/courses", json=course_body(capacity=5))
    assert response.status_code == 409
    assert response.json()["error"] == "DuplicateConflictError"


def test_list_courses_ordered_by_week(client):
    add_course(client, day_of_week="Sunday", time="09:00")
    add_course(client, day_of_week="Monday", time="18:00")
    add_course(client, day_of_week="Monday", time="07:00")

    response = client.get("/courses")
    assert response.status_code == 200
    slots = [(c["day_of_week"], c["time"]) for c in response.json()]
    assert slots == [("Monday", "07:00"), ("Monday", "18:00"), ("Sunday", "09:00")]


def test_list_courses_with_filters(client):
    add_course(client, type="Yin Yoga", price=8)
    add_course(client, type="Power Yoga", price=25)

    response = client.get("/courses?q=yin")
    assert [c["type"] for c in response.json()] == ["Yin Yoga"]

    response = client.get("/courses?min_price=10&max_price=30")
    assert [c["type"] for c in response.json()] == ["Power Yoga"]


def test_course_lookups(client):
    add_course(client, day_of_week="Friday", type="Yin Yoga")
    add_course(client, day_of_week="Tuesday", type="Flow Yoga")

    assert client.get("/courses/count").json() == {"count": 2}
    assert client.get("/courses/types").json() == ["Flow Yoga", "Yin Yoga"]
    assert client.get("/courses/days").json() == ["Tuesday", "Friday"]


def test_get_course_not_found(client):
    response = client.get("/courses/99999")
    assert response.status_code == 404


def test_update_course(client):
    course_id = add_course(client)
    response = client.put(f"/courses/{course_id}", json=course_body(capacity=35, description=None))
    assert response.status_code == 200

    data = client.get(f"/courses/{course_id}").json()
    assert data["capacity"] == 35
    assert data["description"] is None


def test_update_course_not_found(client):
    response = client.put("/courses/99999", json=course_body())
    assert response.status_code == 404


def test_delete_course_cascades(client):
    course_id = add_course(client)
    other_id = add_course(client, day_of_week="Tuesday")
    add_schedule(client, course_id)
    add_schedule(client, other_id, date="2024-01-16")

    response = client.delete(f"/courses/{course_id}")
    assert response.status_code == 200
    assert response.json()["schedules_deleted"] == 1

    remaining = client.get("/schedules").json()
    assert [s["course_id"] for s in remaining] == [other_id]


def test_delete_course_not_found(client):
    response = client.delete("/courses/99999")
    assert response.status_code == 404


def test_delete_course_with_sync_removes_remote_document(client, mirror):
    course_id = add_course(client)
    assert client.post("/sync").status_code == 200
    assert str(course_id) in mirror.list_all("courses")

    response = client.delete(f"/courses/{course_id}?sync=true")
    assert response.status_code == 200

    # The engine runs one job at a time, so this waits for the delete
    client.sync_engine.submit(lambda: None).result(timeout=5)
    assert mirror.list_all("courses") == {}


def test_delete_all_courses(client):
    course_id = add_course(client)
    add_schedule(client, course_id)

    response = client.delete("/courses")
    assert response.status_code == 200
    assert client.get("/courses/count").json()["count"] == 0
    assert client.get("/schedules/count").json()["count"] == 0


def test_create_schedule_with_weekday_warning(client):
    course_id = add_course(client, day_of_week="Monday")
    response = client.post("/schedules", json={"course_id": course_id, "date": "2024-01-17", "teacher": "Alice"})
    assert response.status_code == 201
    assert response.json()["warning"] == "Selected date (Wednesday) doesn't match course day (Monday)"


def test_create_schedule_unknown_course(client):
    response = client.post("/schedules", json={"course_id": 4242, "date": "2024-01-15", "teacher": "Alice"})
    assert response.status_code == 409
    assert response.json()["error"] == "ReferentialIntegrityError"


def test_create_schedule_validation(client):
    course_id = add_course(client)
    response = client.post("/schedules", json={"course_id": course_id, "date": "2024-01-15", "teacher": "A"})
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ValidationError"
    assert data["field"] == "teacher"
    assert data["detail"] == "Teacher name must be at least 2 characters"

    response = client.post("/schedules", json={"course_id": course_id, "date": "2024-1-5", "teacher": "Alice"})
    assert response.status_code == 422
    assert response.json()["field"] == "date"


def test_create_duplicate_schedule(client):
    course_id = add_course(client)
    add_schedule(client, course_id)
    response = client.post("/schedules", json={"course_id": course_id, "date": "2024-01-15", "teacher": "Bob"})
    assert response.status_code == 409


def test_list_schedules_with_filters(client):
    course_id = add_course(client)
    add_schedule(client, course_id, date="2024-01-15", teacher="Alice Johnson")
    add_schedule(client, course_id, date="2024-01-22", teacher="Bob Smith")

    response = client.get("/schedules?teacher=alice")
    assert [s["date"] for s in response.json()] == ["2024-01-15"]

    response = client.get("/schedules?date_from=2024-01-16&date_to=2024-01-31")
    assert [s["teacher"] for s in response.json()] == ["Bob Smith"]

    response = client.get(f"/courses/{course_id}/schedules")
    assert len(response.json()) == 2


def test_update_and_delete_schedule(client):
    course_id = add_course(client)
    schedule_id = add_schedule(client, course_id)

    response = client.put(
        f"/schedules/{schedule_id}",
        json={"course_id": course_id, "date": "2024-01-22", "teacher": "Bob", "comments": "Cover"},
    )
    assert response.status_code == 200
    assert client.get(f"/schedules/{schedule_id}").json()["comments"] == "Cover"

    assert client.delete(f"/schedules/{schedule_id}").status_code == 200
    assert client.get(f"/schedules/{schedule_id}").status_code == 404


def test_sync_pushes_local_state(client, mirror):
    course_id = add_course(client)
    add_schedule(client, course_id)
    mirror.commit_batch("courses", upserts={"999": {"id": 999}})

    response = client.post("/sync")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["steps"][0] == {"ok": True, "collection": "courses", "synced": 1, "deleted": 1}
    assert set(mirror.list_all("courses")) == {str(course_id)}
    assert len(mirror.list_all("schedules")) == 1


def test_sync_when_remote_unavailable(client, mirror):
    add_course(client)
    mirror.online = False

    response = client.post("/sync")
    assert response.status_code == 503
    data = response.json()
    assert data["ok"] is False
    assert data["failed_step"] == "courses"
    # Local data is unaffected
    assert client.get("/courses/count").json()["count"] == 1


def test_sync_single_collection(client, mirror):
    add_course(client)
    response = client.post("/sync/courses")
    assert response.status_code == 200
    assert response.json()["synced"] == 1
    assert mirror.list_all("schedules") == {}


def test_sync_status(client, mirror):
    assert client.get("/sync/status").status_code == 200
    mirror.online = False
    assert client.get("/sync/status").status_code == 503


def test_reset_everything(client, mirror):
    course_id = add_course(client)
    add_schedule(client, course_id)
    client.post("/sync")

    response = client.post("/admin/reset")
    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert client.get("/courses/count").json()["count"] == 0
    assert mirror.list_all("courses") == {}
    assert mirror.list_all("schedules") == {}


def test_reset_keeps_local_wipe_when_remote_fails(client, mirror):
    add_course(client)
    mirror.online = False

    response = client.post("/admin/reset")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is False
    assert data["local_reset"] is True
    assert data["remote_reset"] is False
    assert client.get("/courses/count").json()["count"] == 0


def test_reset_remote_only(client, mirror):
    add_course(client)
    client.post("/sync")

    response = client.post("/admin/reset-remote")
    assert response.status_code == 200
    assert mirror.list_all("courses") == {}
    assert client.get("/courses/count").json()["count"] == 1


def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "message" in data
    assert "docs" in data


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
