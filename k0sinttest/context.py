"""Cancellable contexts carrying deadlines and values, shared across threads."""

from __future__ import annotations

import signal
import threading
import time
from typing import Any, Callable, Hashable, Optional, Tuple, TypeVar

__all__ = [
    "ContextCanceled",
    "DeadlineExceeded",
    "Context",
    "background",
    "value",
    "value_or_else",
    "new_suite_context",
    "signal_aware_context",
]

T = TypeVar("T")

_MISSING = object()

CancelFunc = Callable[..., None]


class ContextCanceled(Exception):
    """The context was canceled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(TimeoutError):
    """The context's deadline passed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class Context:
    """A node in a tree of contexts.

    Canceling a context cancels all contexts derived from it. Deadlines are
    ``time.monotonic()`` timestamps.
    """

    def __init__(self) -> None:
        self._parent: Optional[Context] = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: Optional[BaseException] = None
        self._cause: Optional[BaseException] = None
        self._children: set[Context] = set()
        self._deadline: Optional[float] = None
        self._timer: Optional[threading.Timer] = None
        self._key: Any = _MISSING
        self._value: Any = None

    def _derive(self, deadline: Optional[float] = None) -> "Context":
        child = Context()
        child._parent = self
        child._deadline = self._deadline
        own_timer = deadline is not None and (
            self._deadline is None or deadline < self._deadline
        )
        if own_timer:
            child._deadline = deadline

        with self._lock:
            parent_err, parent_cause = self._err, self._cause
            if parent_err is None:
                self._children.add(child)

        if parent_err is not None:
            child._cancel(parent_err, parent_cause)
            return child

        if own_timer:
            remaining = child._deadline - time.monotonic()
            if remaining <= 0:
                child._expire()
            else:
                timer = threading.Timer(remaining, child._expire)
                timer.daemon = True
                child._timer = timer
                timer.start()
        return child

    def _expire(self) -> None:
        self._cancel(DeadlineExceeded(), None)

    def _cancel(self, err: BaseException, cause: Optional[BaseException]) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            self._cause = cause if cause is not None else err
            children = list(self._children)
            self._children.clear()
            timer, self._timer = self._timer, None
            final_cause = self._cause
        self._done.set()
        if timer is not None:
            timer.cancel()
        for child in children:
            child._cancel(err, final_cause)
        parent = self._parent
        if parent is not None:
            with parent._lock:
                parent._children.discard(self)

    def with_cancel(self) -> "Context":
        """A child context that can be canceled on its own."""
        return self._derive()

    def with_deadline(self, deadline: float) -> "Context":
        """A child context that is canceled once ``deadline`` passes."""
        return self._derive(deadline)

    def with_value(self, value: Any, key: Hashable = None) -> "Context":
        """A child context carrying ``value`` under ``key`` (its type by default)."""
        child = self._derive()
        child._key = type(value) if key is None else key
        child._value = value
        return child

    def cancel(self, cause: Optional[BaseException] = None) -> None:
        """Cancel this context and everything derived from it."""
        self._cancel(ContextCanceled(), cause)

    def done(self) -> bool:
        """Whether the context has been canceled or has expired."""
        return self._done.is_set()

    def err(self) -> Optional[BaseException]:
        """ContextCanceled or DeadlineExceeded once done, else None."""
        with self._lock:
            return self._err

    def cause(self) -> Optional[BaseException]:
        """The reason the context ended, else None."""
        with self._lock:
            return self._cause

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context ends or ``timeout`` passes; return done()."""
        return self._done.wait(timeout)

    def lookup(self, key: Hashable) -> Any:
        """The nearest value stored under ``key``; KeyError if there is none."""
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx._key is not _MISSING and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        raise KeyError(key)


def background() -> Context:
    """A root context that never ends by itself."""
    return Context()


def value(ctx: Context, key: Hashable) -> Any:
    """The value stored under ``key`` in ``ctx``, or None."""
    try:
        return ctx.lookup(key)
    except KeyError:
        return None


def value_or_else(ctx: Context, key: Hashable, fallback: Callable[[], T]) -> Any:
    """The value stored under ``key`` in ``ctx``, or the result of ``fallback``."""
    try:
        return ctx.lookup(key)
    except KeyError:
        return fallback()


def new_suite_context(deadline: Optional[float] = None) -> Tuple[Context, CancelFunc]:
    """A context for a test suite that ends early enough to leave time for teardown.

    ``deadline`` is the test's own deadline as a ``time.monotonic()`` timestamp.
    Ten percent of the remaining time, but at least twenty seconds, is reserved.
    """
    signal_ctx, cancel = signal_aware_context(background())
    if deadline is None:
        return signal_ctx, cancel

    remaining = deadline - time.monotonic()
    reserved = max(20.0, remaining * 0.10)
    return signal_ctx.with_deadline(deadline - reserved), cancel


def _signal_handler(ctx: Context, previous: Any) -> Callable[[int, Any], None]:
    def handle(received: int, frame: Any) -> None:
        if not ctx.done():
            name = signal.Signals(received).name
            ctx.cancel(ContextCanceled(f"signal received: {name}"))
            return
        signal.signal(received, previous if previous is not None else signal.SIG_DFL)
        signal.raise_signal(received)

    return handle


def signal_aware_context(parent: Context) -> Tuple[Context, CancelFunc]:
    """A child of ``parent`` that is canceled on SIGINT or SIGTERM.

    Once the context has ended, signals go to the handlers that were in place
    before. Handlers can only be installed from the main thread; elsewhere the
    context is merely cancellable.
    """
    ctx = parent.with_cancel()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous = signal.getsignal(signum)
            signal.signal(signum, _signal_handler(ctx, previous))
        except ValueError:
            break
    return ctx, ctx.cancel