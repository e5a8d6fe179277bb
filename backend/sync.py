"""Reconciliation of the remote mirror against the local store.

The local store is authoritative. A reconcile upserts every local record
and deletes every remote document whose id is no longer local, all in one
batch. Nothing here touches local data, and nothing retries on its own:
a failed sync is reported and the caller decides whether to try again.

Remote work runs on a background executor; ``submit_*`` methods return a
``Future`` and optionally fire ``on_success`` / ``on_error`` callbacks.
"""
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from errors import RemoteSyncError, RemoteUnavailableError, YogaAdminError, friendly_remote_message
from models import Course, Schedule
from remote import Document, RemoteMirror
from schemas import CourseDocument, ScheduleDocument
from store import LocalStore

logger = logging.getLogger(__name__)


def epoch_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ReconcilePlan:
    upserts: dict[str, Document]
    deletes: frozenset[str]


@dataclass
class SyncOutcome:
    collection: str
    synced: int
    deleted: int


@dataclass
class SyncAllResult:
    """Step-by-step report of a multi-collection sync."""

    steps: list[SyncOutcome] = field(default_factory=list)
    failed_step: str | None = None
    error: YogaAdminError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def to_document(entity: Course | Schedule, last_updated: int) -> Document:
    """Remote form of a local record, stamped with ``lastUpdated``."""
    if isinstance(entity, Course):
        doc = CourseDocument(last_updated=last_updated, **entity.model_dump())
    elif isinstance(entity, Schedule):
        doc = ScheduleDocument(last_updated=last_updated, **entity.model_dump())
    else:
        raise TypeError(f"Cannot build a remote document from {type(entity).__name__}")
    return doc.model_dump(by_alias=True)


def plan_reconcile(
    local_entities: Iterable[Course | Schedule],
    remote_ids: Iterable[str],
    last_updated: int,
) -> ReconcilePlan:
    """Every local record is upserted; remote ids absent locally are deleted.

    No field-level diffing: unchanged records are simply rewritten.
    """
    upserts = {str(entity.id): to_document(entity, last_updated) for entity in local_entities}
    deletes = frozenset(str(key) for key in remote_ids if str(key) not in upserts)
    return ReconcilePlan(upserts=upserts, deletes=deletes)


class SyncEngine:
    def __init__(
        self,
        mirror: RemoteMirror,
        courses_collection: str | None = None,
        schedules_collection: str | None = None,
        clock: Callable[[], int] = epoch_millis,
    ):
        self.mirror = mirror
        self.courses_collection = courses_collection or os.getenv("COURSES_COLLECTION", "courses")
        self.schedules_collection = schedules_collection or os.getenv("SCHEDULES_COLLECTION", "schedules")
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="remote-sync")

    def test_connection(self) -> None:
        self.mirror.ping()
        logger.info("Remote connection test successful")

    def reconcile(
        self,
        collection: str,
        local_entities: Iterable[Course | Schedule],
        remote_snapshot: Mapping[str, Any] | None = None,
    ) -> SyncOutcome:
        """Make ``collection`` on the mirror equal the given local records.

        ``remote_snapshot`` is fetched from the mirror when not supplied.
        Raises ``RemoteUnavailableError`` before writing anything if the
        mirror is unreachable, and ``RemoteSyncError`` if the batch fails.
        """
        self.mirror.ping()
        local_entities = list(local_entities)

        try:
            if remote_snapshot is None:
                remote_snapshot = self.mirror.list_all(collection)
            plan = plan_reconcile(local_entities, remote_snapshot.keys(), self.clock())
            self.mirror.commit_batch(collection, upserts=plan.upserts, deletes=plan.deletes)
        except RemoteUnavailableError:
            raise
        except RemoteSyncError as e:
            logger.error(f"Error in smart sync of {collection}: {e}")
            raise RemoteSyncError(f"Smart sync failed: {e.message}", step=collection, details=e.details) from e
        except Exception as e:
            logger.error(f"Error in smart sync of {collection}: {e}")
            raise RemoteSyncError(f"Smart sync failed: {friendly_remote_message(e)}", step=collection) from e

        logger.info(
            f"Smart sync completed - {len(plan.upserts)} {collection} synced, "
            f"{len(plan.deletes)} {collection} deleted"
        )
        return SyncOutcome(collection=collection, synced=len(plan.upserts), deleted=len(plan.deletes))

    def sync_courses(self, store: LocalStore) -> SyncOutcome:
        return self.reconcile(self.courses_collection, store.courses.get_all())

    def sync_schedules(self, store: LocalStore) -> SyncOutcome:
        return self.reconcile(self.schedules_collection, store.schedules.get_all())

    def sync_all(self, store: LocalStore) -> SyncAllResult:
        """Sync courses, then schedules.

        Stops at the first failing step and names it. Steps that already
        committed stay committed.
        """
        result = SyncAllResult()
        for step, run in ((self.courses_collection, self.sync_courses), (self.schedules_collection, self.sync_schedules)):
            try:
                result.steps.append(run(store))
            except YogaAdminError as e:
                logger.error(f"Sync failed at step {step}: {e.message}")
                result.failed_step = step
                result.error = e
                break
        return result

    def reset_remote(self) -> dict[str, int]:
        """Delete every document in both collections, regardless of local state."""
        self.mirror.ping()
        removed = {}
        for collection in (self.courses_collection, self.schedules_collection):
            try:
                removed[collection] = self.mirror.delete_all(collection)
            except RemoteUnavailableError:
                raise
            except Exception as e:
                message = e.message if isinstance(e, YogaAdminError) else friendly_remote_message(e)
                logger.error(f"Error clearing {collection} from remote: {message}")
                raise RemoteSyncError(f"Failed to clear {collection}: {message}", step=collection) from e
        logger.info("Remote database reset complete")
        return removed

    def delete_documents(self, collection: str, ids: Iterable[Any]) -> int:
        """Remove specific documents, e.g. right after a local delete."""
        ids = {str(key) for key in ids}
        self.mirror.ping()
        try:
            self.mirror.batch_delete(collection, ids)
        except RemoteUnavailableError:
            raise
        except Exception as e:
            message = e.message if isinstance(e, YogaAdminError) else friendly_remote_message(e)
            raise RemoteSyncError(f"Failed to delete from {collection}: {message}", step=collection) from e
        logger.info(f"Deleted {len(ids)} documents from {collection}")
        return len(ids)

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Future:
        """Run ``fn(*args)`` in the background. There is no cancellation."""
        future = self._executor.submit(fn, *args)

        def _notify(done: Future):
            error = done.exception()
            if error is None:
                if on_success is not None:
                    on_success(done.result())
            elif on_error is not None:
                on_error(error)

        future.add_done_callback(_notify)
        return future

    def submit_sync_all(self, store: LocalStore, **callbacks) -> Future:
        return self.submit(self.sync_all, store, **callbacks)

    def submit_reset_remote(self, **callbacks) -> Future:
        return self.submit(self.reset_remote, **callbacks)

    def submit_delete_documents(self, collection: str, ids: Iterable[Any], **callbacks) -> Future:
        return self.submit(self.delete_documents, collection, list(ids), **callbacks)

    def close(self):
        self._executor.shutdown(wait=True)
