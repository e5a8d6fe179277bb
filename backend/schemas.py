import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlmodel import SQLModel

from models import WEEKDAYS

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
DESCRIPTION_MAX_LENGTH = 500


class CourseCreate(BaseModel):
    day_of_week: str
    time: str  # HH:MM, 24-hour
    capacity: int = Field(ge=1, le=100)
    duration: int = Field(ge=1, le=300)
    price: float = Field(gt=0, le=1000)
    type: str
    description: str | None = None

    @field_validator("day_of_week")
    @classmethod
    def validate_day_of_week(cls, v):
        if v not in WEEKDAYS:
            raise ValueError(f"Day of week must be one of: {', '.join(WEEKDAYS)}")
        return v

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        v = v.strip()
        if not TIME_PATTERN.match(v):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Course type is required")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        if v is None:
            return v
        if len(v) > DESCRIPTION_MAX_LENGTH:
            raise ValueError(f"Description too long ({len(v)}/{DESCRIPTION_MAX_LENGTH})")
        return v.strip() or None


class ScheduleCreate(BaseModel):
    course_id: int = Field(gt=0)
    date: str  # YYYY-MM-DD format
    teacher: str
    comments: str | None = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        v = v.strip()
        if not DATE_PATTERN.match(v):
            raise ValueError("Invalid date format (YYYY-MM-DD)")
        try:
            datetime.strptime(v, "%Y-%m-%d")
        except ValueError:
            raise ValueError("Invalid date format (YYYY-MM-DD)")
        return v

    @field_validator("teacher")
    @classmethod
    def validate_teacher(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Teacher name is required")
        if len(v) < 2:
            raise ValueError("Teacher name must be at least 2 characters")
        return v

    @field_validator("comments")
    @classmethod
    def validate_comments(cls, v):
        if v is None:
            return v
        return v.strip() or None


class CourseResponse(SQLModel):
    id: int
    day_of_week: str
    time: str
    capacity: int
    duration: int
    price: float
    type: str
    description: str | None = None


class ScheduleResponse(SQLModel):
    id: int
    course_id: int
    date: str
    teacher: str
    comments: str | None = None


class CreateResponse(BaseModel):
    ok: bool
    id: int
    warning: str | None = None


class CountResponse(BaseModel):
    count: int


class CourseFilter(BaseModel):
    """Course search criteria. Text fields match case-insensitive substrings."""

    q: str | None = None  # Matches type, day or description
    type: str | None = None
    day_of_week: str | None = None
    description: str | None = None
    min_price: float | None = None
    max_price: float | None = None


class ScheduleFilter(BaseModel):
    """Schedule search criteria. Course id and date match exactly."""

    q: str | None = None  # Matches teacher or comments
    course_id: int | None = None
    date: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    teacher: str | None = None
    comments: str | None = None


class RemoteDocument(BaseModel):
    """Base for documents written to the remote mirror (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    last_updated: int  # Epoch milliseconds, set at sync time


class CourseDocument(RemoteDocument):
    day_of_week: str
    time: str
    capacity: int
    duration: int
    price: float
    type: str
    description: str | None = None


class ScheduleDocument(RemoteDocument):
    course_id: int
    date: str
    teacher: str
    comments: str | None = None


class SyncOutcomeResponse(BaseModel):
    ok: bool
    collection: str
    synced: int
    deleted: int


class SyncAllResponse(BaseModel):
    ok: bool
    steps: list[SyncOutcomeResponse]
    failed_step: str | None = None
    error: str | None = None


class ResetResponse(BaseModel):
    ok: bool
    local_reset: bool
    remote_reset: bool
    message: str
