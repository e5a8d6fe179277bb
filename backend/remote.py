"""Remote mirror clients.

A mirror holds named collections of documents keyed by the stringified
local id. The sync engine only needs four things from it: list a
collection, apply a batch of upserts and deletes atomically, clear a
collection, and say whether it is reachable.
"""
import copy
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping

import requests

from errors import RemoteSyncError, RemoteUnavailableError, friendly_remote_message

logger = logging.getLogger(__name__)

Document = dict[str, Any]


class RemoteMirror(ABC):
    @abstractmethod
    def ping(self) -> None:
        """Raise ``RemoteUnavailableError`` if the mirror cannot be reached."""

    @abstractmethod
    def list_all(self, collection: str) -> dict[str, Document]:
        ...

    @abstractmethod
    def commit_batch(
        self,
        collection: str,
        upserts: Mapping[str, Document] | None = None,
        deletes: Iterable[str] = (),
    ) -> None:
        """Apply all upserts and deletes so readers see all of them or none."""

    @abstractmethod
    def delete_all(self, collection: str) -> int:
        ...

    def batch_upsert(self, collection: str, documents: Mapping[str, Document]) -> None:
        self.commit_batch(collection, upserts=documents)

    def batch_delete(self, collection: str, ids: Iterable[str]) -> None:
        self.commit_batch(collection, deletes=ids)


class InMemoryMirror(RemoteMirror):
    """Process-local mirror.

    Each batch builds the replacement collection off to the side and swaps
    it in under the lock. ``online`` can be flipped to simulate losing the
    connection.
    """

    def __init__(self, collections: Mapping[str, Mapping[str, Document]] | None = None):
        self._lock = threading.Lock()
        self._collections: dict[str, dict[str, Document]] = {
            name: {key: dict(doc) for key, doc in docs.items()} for name, docs in (collections or {}).items()
        }
        self.online = True
        self.fail_next_commit: Exception | None = None

    def ping(self) -> None:
        if not self.online:
            raise RemoteUnavailableError("No connection to the remote store")

    def list_all(self, collection: str) -> dict[str, Document]:
        self.ping()
        with self._lock:
            return copy.deepcopy(self._collections.get(collection, {}))

    def commit_batch(self, collection, upserts=None, deletes=()):
        self.ping()
        with self._lock:
            if self.fail_next_commit is not None:
                error, self.fail_next_commit = self.fail_next_commit, None
                raise RemoteSyncError(f"Batch commit failed: {friendly_remote_message(error)}")
            staged = dict(self._collections.get(collection, {}))
            for key, document in (upserts or {}).items():
                staged[str(key)] = copy.deepcopy(dict(document))
            for key in deletes:
                staged.pop(str(key), None)
            self._collections[collection] = staged

    def delete_all(self, collection: str) -> int:
        self.ping()
        with self._lock:
            removed = len(self._collections.get(collection, {}))
            self._collections[collection] = {}
            return removed


class HttpDocumentMirror(RemoteMirror):
    """Mirror backed by a remote HTTP document API.

    Endpoints, relative to ``base_url``:
        GET    /health
        GET    /{collection}          -> {id: document}
        POST   /{collection}/batch    {"upserts": {...}, "deletes": [...]}
        DELETE /{collection}          -> {"deleted": n}

    The server applies a batch as one unit. Timeouts come from the
    transport; the engine adds none of its own.
    """

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 30.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error(f"Remote store unreachable at {url}: {e}")
            raise RemoteUnavailableError(f"Remote store unreachable: {e}", {"url": url}) from e
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            logger.error(f"Remote store rejected {method} {url}: {resp.status_code}")
            raise RemoteSyncError(
                friendly_remote_message(e, resp.status_code),
                details={"url": url, "status": resp.status_code},
            ) from e
        return resp

    def ping(self) -> None:
        try:
            self._request("GET", "health")
        except RemoteSyncError as e:
            raise RemoteUnavailableError(f"Remote store unhealthy: {e.message}", e.details) from e

    def list_all(self, collection: str) -> dict[str, Document]:
        data = self._request("GET", collection).json()
        if not isinstance(data, dict):
            raise RemoteSyncError(f"Unexpected listing for {collection}: expected an object keyed by id")
        return {str(key): doc for key, doc in data.items()}

    def commit_batch(self, collection, upserts=None, deletes=()):
        payload = {
            "upserts": {str(key): doc for key, doc in (upserts or {}).items()},
            "deletes": sorted(str(key) for key in deletes),
        }
        self._request("POST", f"{collection}/batch", json=payload)

    def delete_all(self, collection: str) -> int:
        resp = self._request("DELETE", collection)
        try:
            return int(resp.json().get("deleted", 0))
        except (ValueError, AttributeError):
            return 0


def mirror_from_env() -> RemoteMirror:
    """Build the configured mirror (MIRROR_BACKEND=memory|http)."""
    backend = os.getenv("MIRROR_BACKEND", "memory").lower()
    if backend == "http":
        url = os.getenv("MIRROR_URL")
        if not url:
            raise RuntimeError("MIRROR_BACKEND=http requires MIRROR_URL")
        timeout = float(os.getenv("MIRROR_TIMEOUT", "30"))
        logger.info(f"Using HTTP mirror at {url}")
        return HttpDocumentMirror(url, token=os.getenv("MIRROR_TOKEN"), timeout=timeout)
    if backend != "memory":
        raise RuntimeError(f"Unknown MIRROR_BACKEND: {backend}")
    logger.info("Using in-memory mirror")
    return InMemoryMirror()
