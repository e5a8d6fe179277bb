from sqlalchemy import Index
from sqlmodel import Field, SQLModel

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Course(SQLModel, table=True):
    __tablename__ = "courses"

    id: int | None = Field(default=None, primary_key=True)
    day_of_week: str  # Canonical weekday name, e.g. "Monday"
    time: str  # HH:MM, 24-hour
    capacity: int
    duration: int  # Minutes
    price: float
    type: str  # e.g. "Hatha Yoga"
    description: str | None = Field(default=None)


class Schedule(SQLModel, table=True):
    __tablename__ = "schedules"
    __table_args__ = (Index("idx_schedules_course_id", "course_id"),)

    id: int | None = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="courses.id", ondelete="CASCADE")
    date: str  # YYYY-MM-DD format
    teacher: str
    comments: str | None = Field(default=None)


COURSE_FIELDS = ("day_of_week", "time", "capacity", "duration", "price", "type", "description")
SCHEDULE_FIELDS = ("course_id", "date", "teacher", "comments")
