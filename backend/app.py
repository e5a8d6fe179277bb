import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import services
from db import create_db_and_tables, make_engine
from errors import (
    DuplicateConflictError,
    NotFoundError,
    ReferentialIntegrityError,
    RemoteSyncError,
    RemoteUnavailableError,
    StorageError,
    ValidationError,
    YogaAdminError,
)
from remote import mirror_from_env
from schemas import (
    CountResponse,
    CourseCreate,
    CourseFilter,
    CourseResponse,
    CreateResponse,
    ResetResponse,
    ScheduleCreate,
    ScheduleFilter,
    ScheduleResponse,
    SyncAllResponse,
    SyncOutcomeResponse,
)
from store import LocalStore
from sync import SyncEngine, SyncOutcome

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    DuplicateConflictError: 409,
    ReferentialIntegrityError: 409,
    StorageError: 500,
    RemoteUnavailableError: 503,
    RemoteSyncError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store and sync engine once and share them through app.state."""
    engine = make_engine()
    create_db_and_tables(engine)

    try:
        from migrations.migrate_001_add_schedule_course_index import migrate as migrate_001
        migrate_001(engine)
    except Exception as e:
        logger.warning(f"Migration 001 check failed (may already be applied): {str(e)}")

    app.state.store = LocalStore(engine)
    app.state.sync_engine = SyncEngine(mirror_from_env())
    logger.info("Database initialized")
    yield
    app.state.sync_engine.close()
    app.state.store.close()


# Create FastAPI app
app = FastAPI(title="Yoga Admin API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins in development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store(request: Request) -> LocalStore:
    return request.app.state.store


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


@app.exception_handler(YogaAdminError)
async def handle_domain_error(request: Request, exc: YogaAdminError):
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    if status >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "error": exc.__class__.__name__, **exc.details},
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    """Report malformed request input in the same shape as every other domain error."""
    error = services.validation_error(exc.errors())
    logger.info(f"Rejected request to {request.url.path}: {error.field}: {error.message}")
    return await handle_domain_error(request, error)


def _outcome(outcome: SyncOutcome) -> SyncOutcomeResponse:
    return SyncOutcomeResponse(ok=True, collection=outcome.collection, synced=outcome.synced, deleted=outcome.deleted)


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


@app.post("/courses", response_model=CreateResponse, status_code=201)
def create_course(course: CourseCreate, store: LocalStore = Depends(get_store)):
    """Create a course unless one already runs on the same day, time and type."""
    logger.info(f"Create course request: {course.type} on {course.day_of_week} at {course.time}")
    course_id = services.create_course(store, course)
    return CreateResponse(ok=True, id=course_id)


@app.get("/courses", response_model=list[CourseResponse])
def list_courses(
    q: str = Query(None, description="Search type, day or description"),
    type: str = Query(None),
    day_of_week: str = Query(None),
    description: str = Query(None),
    min_price: float = Query(None, ge=0),
    max_price: float = Query(None, ge=0),
    store: LocalStore = Depends(get_store),
):
    """List courses Monday to Sunday, earliest first, with optional filters."""
    criteria = CourseFilter(
        q=q, type=type, day_of_week=day_of_week, description=description,
        min_price=min_price, max_price=max_price,
    )
    if criteria.model_dump(exclude_none=True):
        courses = store.courses.find_by(criteria)
    else:
        courses = store.courses.get_all()
    logger.info(f"Found {len(courses)} courses")
    return courses


@app.get("/courses/count", response_model=CountResponse)
def count_courses(store: LocalStore = Depends(get_store)):
    return CountResponse(count=store.courses.count())


@app.get("/courses/types", response_model=list[str])
def course_types(store: LocalStore = Depends(get_store)):
    return store.courses.get_types()


@app.get("/courses/days", response_model=list[str])
def course_days(store: LocalStore = Depends(get_store)):
    return store.courses.get_days()


@app.get("/courses/{course_id}", response_model=CourseResponse)
def get_course(course_id: int, store: LocalStore = Depends(get_store)):
    course = store.courses.get_by_id(course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@app.get("/courses/{course_id}/schedules", response_model=list[ScheduleResponse])
def course_schedules(course_id: int, store: LocalStore = Depends(get_store)):
    if not store.courses.get_by_id(course_id):
        raise HTTPException(status_code=404, detail="Course not found")
    return store.schedules.get_for_course(course_id)


@app.put("/courses/{course_id}", response_model=CourseResponse)
def update_course(course_id: int, course: CourseCreate, store: LocalStore = Depends(get_store)):
    """Replace every field of an existing course."""
    logger.info(f"Update course request for ID: {course_id}")
    return services.update_course(store, course_id, course)


@app.delete("/courses/{course_id}")
def delete_course(
    course_id: int,
    sync: bool = Query(False, description="Also remove the course from the remote mirror"),
    store: LocalStore = Depends(get_store),
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    """Delete a course and its schedules."""
    logger.info(f"Delete course request for ID: {course_id}")
    removed = services.delete_course(store, course_id)

    if sync:
        # Local delete already stands; the remote one is best effort
        sync_engine.submit_delete_documents(
            sync_engine.courses_collection,
            [course_id],
            on_error=lambda e: logger.warning(f"Course {course_id} deleted locally, remote delete failed: {e}"),
        )
    return {"ok": True, "message": "Course deleted successfully", "schedules_deleted": removed}


@app.delete("/courses")
def delete_all_courses(store: LocalStore = Depends(get_store)):
    removed = services.reset_local(store)
    return {"ok": True, "deleted": removed}


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@app.post("/schedules", response_model=CreateResponse, status_code=201)
def create_schedule(schedule: ScheduleCreate, store: LocalStore = Depends(get_store)):
    """Add a dated class for a course; warns when the weekday doesn't match."""
    logger.info(f"Create schedule request: course {schedule.course_id} on {schedule.date}")
    schedule_id, warning = services.create_schedule(store, schedule)
    return CreateResponse(ok=True, id=schedule_id, warning=warning)


@app.get("/schedules", response_model=list[ScheduleResponse])
def list_schedules(
    q: str = Query(None, description="Search teacher or comments"),
    course_id: int = Query(None),
    date: str = Query(None, description="Exact date (YYYY-MM-DD)"),
    date_from: str = Query(None, description="Start date filter (YYYY-MM-DD)"),
    date_to: str = Query(None, description="End date filter (YYYY-MM-DD)"),
    teacher: str = Query(None),
    comments: str = Query(None),
    store: LocalStore = Depends(get_store),
):
    """List schedules by date with optional filters."""
    logger.info(f"Schedules request - from: {date_from}, to: {date_to}")
    criteria = ScheduleFilter(
        q=q, course_id=course_id, date=date, date_from=date_from,
        date_to=date_to, teacher=teacher, comments=comments,
    )
    if criteria.model_dump(exclude_none=True):
        return store.schedules.find_by(criteria)
    return store.schedules.get_all()


@app.get("/schedules/count", response_model=CountResponse)
def count_schedules(store: LocalStore = Depends(get_store)):
    return CountResponse(count=store.schedules.count())


@app.get("/schedules/{schedule_id}", response_model=ScheduleResponse)
def get_schedule(schedule_id: int, store: LocalStore = Depends(get_store)):
    schedule = store.schedules.get_by_id(schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@app.put("/schedules/{schedule_id}", response_model=ScheduleResponse)
def update_schedule(schedule_id: int, schedule: ScheduleCreate, store: LocalStore = Depends(get_store)):
    logger.info(f"Update schedule request for ID: {schedule_id}")
    return services.update_schedule(store, schedule_id, schedule)


@app.delete("/schedules/{schedule_id}")
def delete_schedule(schedule_id: int, store: LocalStore = Depends(get_store)):
    logger.info(f"Delete schedule request for ID: {schedule_id}")
    services.delete_schedule(store, schedule_id)
    return {"ok": True, "message": "Schedule deleted successfully"}


# ---------------------------------------------------------------------------
# Remote sync
# ---------------------------------------------------------------------------


@app.post("/sync", response_model=SyncAllResponse)
async def sync_all(
    store: LocalStore = Depends(get_store),
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    """Push courses, then schedules, to the remote mirror."""
    logger.info("Sync requested")
    result = await asyncio.wrap_future(sync_engine.submit_sync_all(store))
    response = SyncAllResponse(
        ok=result.ok,
        steps=[_outcome(step) for step in result.steps],
        failed_step=result.failed_step,
        error=result.error.message if result.error else None,
    )
    if not result.ok:
        status = ERROR_STATUS.get(type(result.error), 502)
        return JSONResponse(status_code=status, content=response.model_dump())
    return response


@app.post("/sync/courses", response_model=SyncOutcomeResponse)
async def sync_courses(
    store: LocalStore = Depends(get_store),
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    outcome = await asyncio.wrap_future(sync_engine.submit(sync_engine.sync_courses, store))
    return _outcome(outcome)


@app.post("/sync/schedules", response_model=SyncOutcomeResponse)
async def sync_schedules(
    store: LocalStore = Depends(get_store),
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    outcome = await asyncio.wrap_future(sync_engine.submit(sync_engine.sync_schedules, store))
    return _outcome(outcome)


@app.get("/sync/status")
async def sync_status(sync_engine: SyncEngine = Depends(get_sync_engine)):
    """Connection test against the remote mirror."""
    await asyncio.wrap_future(sync_engine.submit(sync_engine.test_connection))
    return {"ok": True, "message": "Remote connection test successful"}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@app.post("/admin/reset", response_model=ResetResponse)
async def reset_everything(
    store: LocalStore = Depends(get_store),
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    """Wipe local data, then the remote mirror.

    The local wipe stands even if the remote one fails.
    """
    logger.info("Full reset requested")
    await asyncio.to_thread(services.reset_local, store)
    try:
        await asyncio.wrap_future(sync_engine.submit_reset_remote())
    except YogaAdminError as e:
        logger.warning(f"Local database reset, but remote reset failed: {e.message}")
        return ResetResponse(
            ok=False, local_reset=True, remote_reset=False,
            message=f"Local database reset, but cloud sync failed: {e.message}",
        )
    return ResetResponse(ok=True, local_reset=True, remote_reset=True, message="Database and cloud data reset successfully")


@app.post("/admin/reset-remote")
async def reset_remote(sync_engine: SyncEngine = Depends(get_sync_engine)):
    removed = await asyncio.wrap_future(sync_engine.submit_reset_remote())
    return {"ok": True, "deleted": removed}


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "Yoga Admin API", "docs": "/docs"}
