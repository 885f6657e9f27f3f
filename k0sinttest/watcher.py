"""One-shot watching of Kubernetes resources without caching.

A :class:`Watcher` lists all matching resources once, then watches them from
the listed resource version. When the server closes a watch, it is resumed
from the last seen resource version. When that version has expired, the
resources are listed again.

A provider has two methods:

* ``list(ctx, opts)`` returns a list object that has a ``resource_version``
  attribute (or is a mapping with ``metadata.resourceVersion``) and holds
  the items.
* ``watch(ctx, opts)`` returns a stream with ``result_chan()`` and ``stop()``.
  ``result_chan()`` returns a :class:`queue.Queue` of :class:`Event`. A
  ``None`` in the queue means that the server closed the watch.

Both methods raise an exception to report a failure. A provider may set an
``item_type`` attribute. Watch events carrying any other kind of object are
then rejected.
"""

from __future__ import annotations

import enum
import json
import queue
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from k0sinttest.apierrors import (
    StatusReason,
    UnexpectedObjectError,
    from_object,
    is_resource_expired,
    new_timeout_error,
    reason_for_error,
    suggests_client_delay,
)
from k0sinttest.context import Context

__all__ = [
    "EventType",
    "Event",
    "ListOptions",
    "Watcher",
    "from_provider",
    "from_client",
    "daemon_sets",
    "deployments",
    "stateful_sets",
    "nodes",
    "is_retryable",
]

OBJECT_NAME_FIELD = "metadata.name"

_MAX_LIST_DURATION_SECS = 30
_MAX_WATCH_DURATION_SECS = 120
_POLL_INTERVAL = 0.05

_RETRYABLE_REASONS = frozenset(
    {
        StatusReason.TOO_MANY_REQUESTS,
        StatusReason.SERVER_TIMEOUT,
        StatusReason.TIMEOUT,
        StatusReason.SERVICE_UNAVAILABLE,
    }
)

_FIELD_ESCAPES = {"\\": "\\\\", ",": "\\,", "=": "\\="}


class EventType(str, enum.Enum):
    """The kind of change a watch event reports."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Event:
    """A single watch event. ``type`` may be a string the server made up."""

    type: Union[EventType, str]
    object: Any


@dataclass(frozen=True)
class ListOptions:
    """Options for list and watch calls."""

    field_selector: str = ""
    label_selector: str = ""
    resource_version: str = ""
    allow_watch_bookmarks: bool = False
    timeout_seconds: Optional[int] = None


Condition = Callable[[Any], bool]
# Returns the delay in seconds before retrying, or raises to stop watching.
ErrorCallback = Callable[[BaseException], float]
ListFunc = Callable[[Context, ListOptions], Tuple[str, List[Any]]]
WatchFunc = Callable[[Context, ListOptions], Any]


class _ConditionError(Exception):
    """Carries an exception raised by a condition; it ends the watch at once."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(error)
        self.error = error


@dataclass(frozen=True)
class _StartWatch:
    resource_version: str


def _type_name(event_type: Union[EventType, str]) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


def _escape_field_value(value: str) -> str:
    return "".join(_FIELD_ESCAPES.get(char, char) for char in value)


def _read_resource_version(obj: Any) -> Optional[str]:
    if isinstance(obj, dict):
        metadata = obj.get("metadata")
        if isinstance(metadata, dict):
            version = metadata.get("resourceVersion", "")
            return version if isinstance(version, str) else None
        return ""
    version = getattr(obj, "resource_version", None)
    return version if isinstance(version, str) else None


def _is_resource_version_valid(resource_version: str) -> bool:
    return resource_version not in ("", "0")


def _get_resource_version(obj: Any) -> str:
    version = _read_resource_version(obj)
    cause = UnexpectedObjectError(obj)
    if version is None:
        raise RuntimeError(f"failed to get resource version: {cause}") from cause
    if not _is_resource_version_valid(version):
        raise RuntimeError(f"invalid resource version: {cause}") from cause
    return version


def _check(condition: Condition, item: Any) -> bool:
    try:
        return bool(condition(item))
    except Exception as err:
        raise _ConditionError(err) from err


def _items_of(list_obj: Any) -> List[Any]:
    if isinstance(list_obj, dict):
        return list(list_obj.get("items") or [])
    return list(list_obj.items or [])


class Watcher:
    """Watches resources until a condition holds."""

    def __init__(
        self,
        list_func: ListFunc,
        watch_func: WatchFunc,
        item_type: Optional[type] = None,
    ) -> None:
        self.list_func = list_func
        self.watch_func = watch_func
        self.item_type = item_type
        self._include_deletions = False
        self._field_selector = ""
        self._label_selector = ""
        self._error_callback: Optional[ErrorCallback] = None

    def with_object_name(self, name: str) -> "Watcher":
        """Only match the object with the given name."""
        return self.with_field_selector(
            f"{OBJECT_NAME_FIELD}={_escape_field_value(name)}"
        )

    def with_field_selector(self, selector: Any) -> "Watcher":
        """Use the given field selector; the default matches everything."""
        self._field_selector = str(selector)
        return self

    def with_error_callback(self, callback: Optional[ErrorCallback]) -> "Watcher":
        """Set the callback that decides whether to retry after an error.

        The callback returns the delay in seconds before retrying, or raises
        to end the watch with that exception. Without a callback, any error
        ends the watch.
        """
        self._error_callback = callback
        return self

    def until(self, ctx: Context, condition: Condition) -> None:
        """Watch until ``condition`` returns True.

        Raises whatever the condition raises, the context's error once it has
        ended, or an error the callback does not retry.
        """
        error_callback = self._error_callback
        while True:
            err = self._attempt(ctx, condition)
            if err is None:
                return
            if isinstance(err, _ConditionError):
                raise err.error
            if ctx.done():
                raise err
            if is_resource_expired(err):
                continue
            if error_callback is None:
                raise err
            delay = error_callback(err)
            if ctx.wait(max(float(delay), 0.0)):
                raise ctx.err()

    def _attempt(self, ctx: Context, condition: Condition) -> Optional[Exception]:
        run_ctx = ctx.with_cancel()
        try:
            self._run(run_ctx, condition)
        except Exception as err:
            return err
        finally:
            run_ctx.cancel()
        return None

    def _run(self, ctx: Context, condition: Condition) -> None:
        start = self._list(ctx, condition)
        while start is not None:
            start = self._watch(ctx, start.resource_version, condition)

    def _list(self, ctx: Context, condition: Condition) -> Optional[_StartWatch]:
        list_ctx = ctx.with_deadline(
            time.monotonic() + _MAX_LIST_DURATION_SECS + 10
        )
        try:
            resource_version, items = self.list_func(
                list_ctx,
                ListOptions(
                    field_selector=self._field_selector,
                    label_selector=self._label_selector,
                    timeout_seconds=_MAX_LIST_DURATION_SECS,
                ),
            )
        finally:
            list_ctx.cancel()

        if any(_check(condition, item) for item in items):
            return None

        if not _is_resource_version_valid(resource_version):
            raise RuntimeError(
                "list returned invalid resource version: "
                f"{json.dumps(resource_version)}"
            )
        return _StartWatch(resource_version)

    def _watch(
        self, ctx: Context, resource_version: str, condition: Condition
    ) -> Optional[_StartWatch]:
        stream = self.watch_func(
            ctx,
            ListOptions(
                resource_version=resource_version,
                allow_watch_bookmarks=True,
                field_selector=self._field_selector,
                timeout_seconds=_MAX_WATCH_DURATION_SECS,
            ),
        )
        try:
            events = stream.result_chan()
            deadline = time.monotonic() + _MAX_WATCH_DURATION_SECS + 10
            start: Optional[_StartWatch] = _StartWatch(resource_version)
            while start is not None:
                if ctx.done():
                    raise ctx.err()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise new_timeout_error(
                        "server unexpectedly didn't close the watch", 1
                    )
                try:
                    event = events.get(timeout=min(_POLL_INTERVAL, remaining))
                except queue.Empty:
                    continue
                if event is None:
                    # The server closed the watch, usually after its timeout.
                    return start
                start = self._process_watch_event(event, condition)
            return None
        finally:
            stream.stop()

    def _process_watch_event(
        self, event: Event, condition: Condition
    ) -> Optional[_StartWatch]:
        event_type = event.type
        obj = event.object
        if event_type in (EventType.ADDED, EventType.MODIFIED, EventType.DELETED):
            if self._include_deletions or event_type != EventType.DELETED:
                if self.item_type is not None and not isinstance(obj, self.item_type):
                    cause = UnexpectedObjectError(obj)
                    raise RuntimeError(
                        f'got an event of type "{_type_name(event_type)}", '
                        f"expecting an object of type {self.item_type.__name__}: "
                        f"({type(obj).__name__}) {cause}"
                    ) from cause
                if _check(condition, obj):
                    return None
            return _StartWatch(_get_resource_version(obj))

        if event_type == EventType.BOOKMARK:
            return _StartWatch(_get_resource_version(obj))

        cause = from_object(obj)
        if event_type == EventType.ERROR:
            raise RuntimeError(f"watch error: {cause}") from cause
        raise RuntimeError(
            f"unexpected watch event ({_type_name(event_type)}): {cause}"
        ) from cause


def from_provider(provider: Any, items_from_list: Callable[[Any], Iterable[Any]]) -> Watcher:
    """A watcher backed by ``provider``; ``items_from_list`` extracts list items."""

    def list_func(ctx: Context, opts: ListOptions) -> Tuple[str, List[Any]]:
        result = provider.list(ctx, opts)
        version = _read_resource_version(result)
        return (version or ""), list(items_from_list(result))

    return Watcher(list_func, provider.watch, getattr(provider, "item_type", None))


def from_client(client: Any) -> Watcher:
    """A watcher backed by a client whose lists keep their items in ``items``."""
    for method in ("list", "watch"):
        if not callable(getattr(client, method, None)):
            raise TypeError(f"client has no {method}() method: {client!r}")
    return from_provider(client, _items_of)


def daemon_sets(client: Any) -> Watcher:
    """A watcher for DaemonSets."""
    return from_client(client)


def deployments(client: Any) -> Watcher:
    """A watcher for Deployments."""
    return from_client(client)


def stateful_sets(client: Any) -> Watcher:
    """A watcher for StatefulSets."""
    return from_client(client)


def nodes(client: Any) -> Watcher:
    """A watcher for Nodes."""
    return from_client(client)


def is_retryable(err: Optional[BaseException]) -> Optional[float]:
    """The delay in seconds before retrying ``err``, or None if it should not be retried."""
    delay = suggests_client_delay(err)
    if delay is not None and reason_for_error(err) in _RETRYABLE_REASONS:
        return float(delay)
    return None