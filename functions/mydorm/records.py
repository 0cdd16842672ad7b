"""
Record store access: long-lived subscriptions to catalog collections and
upsert-by-id writes for users and orders.

The store delegates transport to a `RecordBackend`. The Firebase backend is
used in production; the in-memory backend serves demo mode and tests.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Protocol

from firebase_admin import db as firebase_db
from firebase_admin.exceptions import FirebaseError

from mydorm.dispatcher import Dispatcher
from mydorm.errors import RecordStoreError
from shared.constants import (
    COMPANIES_COLLECTION,
    COMPANY_DROPOFF_TIMES_KEY,
    COMPANY_NAME_KEY,
    COMPANY_PICKUP_TIMES_KEY,
    COMPANY_PRICE_INDEX_KEY,
    INVALID_KEY_CHARACTERS,
    ORDERS_COLLECTION,
    PRICE_INDEX_ITEM_NAME_KEY,
    PRICE_INDEX_OPTION_PRICE_KEY,
    STORABLE_OBJECTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import StorableObject, StorageCompany

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class ListenerHandle(Protocol):
    def close(self) -> None:
        ...


class RecordBackend(Protocol):
    """Transport for a hierarchical key-value tree with change notification."""

    def listen(
        self, path: str, on_value: ValueCallback, on_error: ErrorCallback
    ) -> ListenerHandle:
        ...

    def set(self, path: str, value: Any) -> None:
        ...


def _split_path(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def _as_dict(node: Any) -> dict:
    if isinstance(node, dict):
        return node
    if isinstance(node, list):
        return {str(i): v for i, v in enumerate(node) if v is not None}
    return {}


def apply_event(tree: Any, event_type: str, path: str, data: Any) -> Any:
    """
    Applies a realtime-database `put` or `patch` event to a local copy of the
    listened tree and returns the new root.
    """
    segments = _split_path(path)
    if event_type == "patch":
        for key, value in _as_dict(data).items():
            tree = apply_event(tree, "put", f"{path.rstrip('/')}/{key}", value)
        return tree
    if event_type != "put":
        return tree
    if not segments:
        return data

    root = _as_dict(tree)
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = _as_dict(child)
            node[segment] = child
        node = child
    if data is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = data
    return root


class FirebaseRecordBackend:
    """Firebase Realtime Database backend built on firebase_admin.db."""

    def __init__(self, app=None):
        self._app = app

    def listen(
        self, path: str, on_value: ValueCallback, on_error: ErrorCallback
    ) -> ListenerHandle:
        lock = threading.Lock()
        state = {"tree": None}

        def _on_event(event) -> None:
            try:
                with lock:
                    state["tree"] = apply_event(
                        state["tree"], event.event_type, event.path, event.data
                    )
                    snapshot = copy.deepcopy(state["tree"])
            except Exception as exc:
                on_error(exc)
                return
            on_value(snapshot)

        try:
            return firebase_db.reference(path, app=self._app).listen(_on_event)
        except (FirebaseError, ValueError) as exc:
            raise RecordStoreError("listen", path, exc) from exc

    def set(self, path: str, value: Any) -> None:
        try:
            firebase_db.reference(path, app=self._app).set(value)
        except (FirebaseError, ValueError, TypeError) as exc:
            raise RecordStoreError("set", path, exc) from exc


@dataclass(eq=False)
class _InMemoryListener:
    path: str
    on_value: ValueCallback
    on_error: ErrorCallback
    backend: "InMemoryRecordBackend"

    def close(self) -> None:
        self.backend._remove(self)


@dataclass
class InMemoryRecordBackend:
    """Record tree held in memory. Listeners are notified synchronously on set."""

    tree: dict = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.RLock()
        self._listeners: list[_InMemoryListener] = []

    @classmethod
    def from_seed_file(cls, seed_path: str) -> "InMemoryRecordBackend":
        with open(seed_path, "r", encoding="utf-8") as f:
            return cls(tree=json.load(f))

    def get(self, path: str) -> Any:
        with self._lock:
            node: Any = self.tree
            for segment in _split_path(path):
                node = _as_dict(node).get(segment)
                if node is None:
                    return None
            return copy.deepcopy(node)

    def listen(
        self, path: str, on_value: ValueCallback, on_error: ErrorCallback
    ) -> ListenerHandle:
        listener = _InMemoryListener(path, on_value, on_error, self)
        with self._lock:
            self._listeners.append(listener)
            on_value(self.get(path))
        return listener

    def set(self, path: str, value: Any) -> None:
        with self._lock:
            self.tree = apply_event(self.tree, "put", path, copy.deepcopy(value))
            changed = _split_path(path)
            for listener in list(self._listeners):
                watched = _split_path(listener.path)
                shortest = min(len(changed), len(watched))
                if changed[:shortest] == watched[:shortest]:
                    listener.on_value(self.get(listener.path))

    def emit_error(self, path: str, exc: BaseException) -> None:
        """Reports `exc` to every listener on `path`, as a backend would on denial."""
        with self._lock:
            for listener in list(self._listeners):
                if _split_path(listener.path) == _split_path(path):
                    listener.on_error(exc)

    def _remove(self, listener: _InMemoryListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


def _children(node: Any) -> Iterable[tuple[str, Any]]:
    return _as_dict(node).items()


def parse_storable_objects(value: Any) -> list[StorableObject]:
    objects = []
    for key, raw in _children(value):
        if isinstance(raw, str):
            objects.append(StorableObject(name=raw))
        else:
            logger.debug("Skipping malformed storable object %s", key)
    return objects


def _parse_times(raw: Any) -> list[datetime]:
    times = []
    for _, value in _children(raw):
        try:
            times.append(datetime.fromisoformat(value))
        except (TypeError, ValueError):
            continue
    return times


def _is_price(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def flatten_company(raw: Any) -> Optional[StorageCompany]:
    """
    Flattens company -> price index -> item -> option -> price into a single
    map keyed by item name. Later options overwrite earlier ones.
    """
    if not isinstance(raw, dict):
        return None
    name = raw.get(COMPANY_NAME_KEY)
    index = raw.get(COMPANY_PRICE_INDEX_KEY)
    if not isinstance(name, str) or not isinstance(index, (dict, list)):
        return None

    price_index: dict[str, float] = {}
    for _, item in _children(index):
        if not isinstance(item, dict):
            continue
        item_name = item.get(PRICE_INDEX_ITEM_NAME_KEY)
        if not isinstance(item_name, str):
            continue
        for option in item.values():
            if not isinstance(option, dict):
                continue
            price = option.get(PRICE_INDEX_OPTION_PRICE_KEY)
            if _is_price(price):
                price_index[item_name] = float(price)

    return StorageCompany(
        name=name,
        price_index=price_index,
        pickup_times=_parse_times(raw.get(COMPANY_PICKUP_TIMES_KEY)),
        dropoff_times=_parse_times(raw.get(COMPANY_DROPOFF_TIMES_KEY)),
    )


def parse_companies(value: Any) -> list[StorageCompany]:
    companies = []
    for key, raw in _children(value):
        company = flatten_company(raw)
        if company is None:
            logger.debug("Skipping malformed company %s", key)
            continue
        companies.append(company)
    return companies


class Subscription:
    """A live subscription to one collection. Cancel to stop notifications."""

    def __init__(self, path: str):
        self.path = path
        self._cancelled = threading.Event()
        self._handle: Optional[ListenerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _attach(self, handle: ListenerHandle) -> None:
        self._handle = handle
        if self.cancelled:
            handle.close()

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self._handle is not None:
            self._handle.close()


class RecordStore:
    """Typed access to the catalog collections and user/order records."""

    def __init__(self, backend: RecordBackend, dispatcher: Dispatcher):
        self._backend = backend
        self._dispatcher = dispatcher
        self._storable_objects: list[StorableObject] = []
        self._storage_companies: list[StorageCompany] = []

    @property
    def storable_objects(self) -> list[StorableObject]:
        return list(self._storable_objects)

    @property
    def storage_companies(self) -> list[StorageCompany]:
        return list(self._storage_companies)

    def _set_storable_objects(self, objects: list[StorableObject]) -> None:
        self._storable_objects = objects

    def _set_storage_companies(self, companies: list[StorageCompany]) -> None:
        self._storage_companies = companies

    def _subscribe(
        self,
        path: str,
        parse: Callable[[Any], list],
        store: Callable[[list], None],
        on_update: Callable[[list], None],
        on_error: Optional[Callable[[RecordStoreError], None]],
    ) -> Subscription:
        subscription = Subscription(path)

        def _deliver(value: Any) -> None:
            if subscription.cancelled:
                return
            items = parse(value)
            store(items)
            try:
                on_update(list(items))
            except Exception:
                logger.exception("Update callback for %s failed", path)

        def _report(error: RecordStoreError) -> None:
            if subscription.cancelled:
                return
            if on_error is None:
                logger.warning("Subscription to %s reported: %s", path, error)
                return
            try:
                on_error(error)
            except Exception:
                logger.exception("Error callback for %s failed", path)

        def _on_value(value: Any) -> None:
            self._dispatcher.call_soon(_deliver, value)

        def _on_error(exc: BaseException) -> None:
            error = (
                exc
                if isinstance(exc, RecordStoreError)
                else RecordStoreError("subscribe", path, exc)
            )
            self._dispatcher.call_soon(_report, error)

        try:
            subscription._attach(self._backend.listen(path, _on_value, _on_error))
        except RecordStoreError as exc:
            _on_error(exc)
        return subscription

    def fetch_storable_objects(
        self,
        on_update: Callable[[list[StorableObject]], None],
        on_error: Optional[Callable[[RecordStoreError], None]] = None,
    ) -> Subscription:
        return self._subscribe(
            STORABLE_OBJECTS_COLLECTION,
            parse_storable_objects,
            self._set_storable_objects,
            on_update,
            on_error,
        )

    def fetch_companies(
        self,
        on_update: Callable[[list[StorageCompany]], None],
        on_error: Optional[Callable[[RecordStoreError], None]] = None,
    ) -> Subscription:
        return self._subscribe(
            COMPANIES_COLLECTION,
            parse_companies,
            self._set_storage_companies,
            on_update,
            on_error,
        )

    def _write(self, collection: str, record_id: str, fields: dict) -> Future:
        path = f"{collection}/{record_id}"
        if not record_id.strip() or INVALID_KEY_CHARACTERS.intersection(record_id):
            return self._dispatcher.failed(
                RecordStoreError(
                    "set", path, ValueError(f"invalid record id {record_id!r}")
                )
            )
        payload = dict(fields)

        def _set() -> None:
            try:
                self._backend.set(path, payload)
            except RecordStoreError:
                raise
            except Exception as exc:
                raise RecordStoreError("set", path, exc) from exc

        return self._dispatcher.run_io(_set)

    def create_user(self, uid: str, fields: dict) -> Future:
        """Overwrites users/{uid} with `fields`."""
        return self._write(USERS_COLLECTION, uid, fields)

    def create_order(self, uid: str, fields: dict) -> Future:
        """Overwrites order/{uid} with `fields`."""
        return self._write(ORDERS_COLLECTION, uid, fields)
