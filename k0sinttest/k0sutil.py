"""Helpers for waiting on cluster state and for logging from integration tests."""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from k0sinttest.context import Context, value
from k0sinttest.watcher import deployments, is_retryable, nodes, stateful_sets

__all__ = [
    "LOGF_KEY",
    "POLL_INTERVAL",
    "LineWriter",
    "poll",
    "logf_from",
    "retry_watch_errors",
    "wait_for_node_ready_status",
    "wait_for_deployment",
    "wait_for_stateful_set",
]

_log = logging.getLogger(__name__)

# A logging function taking a %-style format string and its arguments.
LogfFn = Callable[..., None]


class _LogfKey:
    """Marker type under which a logging function is stored in a context."""

    def __repr__(self) -> str:
        return "LOGF_KEY"


LOGF_KEY = _LogfKey()

POLL_INTERVAL = 0.1
_DEFAULT_RETRY_DELAY = 1.0

_NODE_READY = "Ready"
_DEPLOYMENT_AVAILABLE = "Available"
_CONDITION_TRUE = "True"


@dataclass
class LineWriter:
    """Collects written bytes and hands each complete line to ``write_line``."""

    write_line: Callable[[bytes], None]
    _buf: bytearray = field(default_factory=bytearray, init=False, repr=False)

    def write(self, data: bytes) -> int:
        """Buffer ``data`` and emit every completed line without its newline."""
        self._buf += data
        *lines, rest = self._buf.split(b"\n")
        self._buf = bytearray(rest)
        for line in lines:
            self.write_line(bytes(line))
        return len(data)

    def flush(self) -> None:
        """Emit whatever remains in the buffer as a final, unterminated line."""
        if self._buf:
            remaining = bytes(self._buf)
            self._buf.clear()
            self.write_line(remaining)


def poll(ctx: Context, condition: Callable[[Context], bool]) -> None:
    """Call ``condition`` until it returns True, it raises, or ``ctx`` ends.

    The condition is tried immediately, then every tenth of a second.
    """
    while True:
        if condition(ctx):
            return
        if ctx.done() or ctx.wait(POLL_INTERVAL):
            raise ctx.err()


def logf_from(ctx: Context) -> LogfFn:
    """The logging function stored in ``ctx``.

    Falls back to the ``info`` method of a logger stored under
    ``logging.Logger``, and then to this module's logger.
    """
    logf = value(ctx, LOGF_KEY)
    if logf is not None:
        return logf
    logger = value(ctx, logging.Logger)
    if logger is not None:
        return logger.info
    return _log.info


def _format_delay(seconds: float) -> str:
    return f"{seconds:g}s"


def _chain(err: Optional[BaseException]):
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        yield err
        seen.add(id(err))
        err = err.__cause__


def _has_errno(err: BaseException, code: int, kind: type) -> bool:
    return any(
        isinstance(e, kind) or (isinstance(e, OSError) and e.errno == code)
        for e in _chain(err)
    )


def _is_eof(err: BaseException) -> bool:
    return any(isinstance(e, EOFError) for e in _chain(err))


def retry_watch_errors(logf: LogfFn) -> Callable[[BaseException], float]:
    """An error callback that retries transient watch and connection errors.

    Other errors are raised again, ending the watch.
    """

    def callback(err: BaseException) -> float:
        retry_delay = is_retryable(err)
        if retry_delay is not None:
            logf(
                "Encountered transient watch error, retrying in %s: %s",
                _format_delay(retry_delay),
                err,
            )
            return retry_delay

        retry_delay = _DEFAULT_RETRY_DELAY
        if _has_errno(err, errno.ECONNRESET, ConnectionResetError):
            what = "connection reset"
        elif _has_errno(err, errno.ECONNREFUSED, ConnectionRefusedError):
            what = "connection refused"
        elif _is_eof(err):
            what = "EOF"
        else:
            raise err
        logf(
            "Encountered %s while watching, retrying in %s: %s",
            what,
            _format_delay(retry_delay),
            err,
        )
        return retry_delay

    return callback


def _get(obj: Any, *path: str, default: Any = None) -> Any:
    for key in path:
        if not isinstance(obj, dict) or key not in obj:
            return default
        obj = obj[key]
    return obj


def _condition_status(obj: Any, condition_type: str) -> Optional[str]:
    for cond in _get(obj, "status", "conditions", default=None) or []:
        if cond.get("type") == condition_type:
            return cond.get("status")
    return None


def wait_for_node_ready_status(
    ctx: Context, client: Any, node_name: str, status: str
) -> None:
    """Wait until the node's Ready condition has the given status."""
    nodes(client).with_object_name(node_name).with_error_callback(
        retry_watch_errors(logf_from(ctx))
    ).until(ctx, lambda node: _condition_status(node, _NODE_READY) == status)


def wait_for_deployment(ctx: Context, client: Any, name: str) -> None:
    """Wait until the named Deployment reports that it is available."""
    deployments(client).with_object_name(name).with_error_callback(
        retry_watch_errors(_log.info)
    ).until(
        ctx,
        lambda deployment: _condition_status(deployment, _DEPLOYMENT_AVAILABLE)
        == _CONDITION_TRUE,
    )


def _all_replicas_ready(stateful_set: Any) -> bool:
    ready = _get(stateful_set, "status", "readyReplicas", default=0)
    return ready == stateful_set["spec"]["replicas"]


def wait_for_stateful_set(ctx: Context, client: Any, name: str) -> None:
    """Wait until the named StatefulSet has as many ready replicas as it wants."""
    stateful_sets(client).with_object_name(name).with_error_callback(
        retry_watch_errors(_log.info)
    ).until(ctx, _all_replicas_ready)