from db import create_db_and_tables, make_engine
from services import create_course, create_schedule
from store import LocalStore

SAMPLE_COURSES = [
    {
        "day_of_week": "Monday",
        "time": "10:00",
        "capacity": 20,
        "duration": 60,
        "price": 10.0,
        "type": "Flow Yoga",
        "description": "Gentle morning flow",
    },
    {
        "day_of_week": "Wednesday",
        "time": "18:30",
        "capacity": 15,
        "duration": 75,
        "price": 12.5,
        "type": "Vinyasa Yoga",
        "description": None,
    },
    {
        "day_of_week": "Saturday",
        "time": "11:00",
        "capacity": 10,
        "duration": 60,
        "price": 15.0,
        "type": "Family Yoga",
        "description": "Parents and kids together",
    },
]

# (course index, date, teacher, comments)
SAMPLE_SCHEDULES = [
    (0, "2024-01-15", "Alice Johnson", "Bring a mat"),
    (0, "2024-01-22", "Bob Smith", None),
    (1, "2024-01-17", "Carol Davis", "Studio 2"),
    (2, "2024-01-20", "Alice Johnson", None),
]


def seed_database(store: LocalStore):
    """Seed the database with sample data."""
    # Check if data already exists
    if store.courses.count():
        print("Database already has data, skipping seed.")
        return

    course_ids = [create_course(store, course) for course in SAMPLE_COURSES]
    for index, date, teacher, comments in SAMPLE_SCHEDULES:
        create_schedule(
            store,
            {"course_id": course_ids[index], "date": date, "teacher": teacher, "comments": comments},
        )
    print(f"Seeded database with {len(SAMPLE_COURSES)} courses and {len(SAMPLE_SCHEDULES)} schedules.")


if __name__ == "__main__":
    engine = make_engine()
    create_db_and_tables(engine)
    store = LocalStore(engine)
    try:
        seed_database(store)
    finally:
        store.close()
