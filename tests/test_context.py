import signal
import time

import pytest

from k0sinttest.context import (
    Context,
    ContextCanceled,
    DeadlineExceeded,
    background,
    new_suite_context,
    signal_aware_context,
    value,
    value_or_else,
)


@pytest.fixture
def restore_signals():
    saved = {s: signal.getsignal(s) for s in (signal.SIGINT, signal.SIGTERM)}
    yield
    for signum, handler in saved.items():
        signal.signal(signum, handler)


def test_background_is_not_done():
    ctx = background()
    assert not ctx.done()
    assert ctx.err() is None
    assert ctx.cause() is None
    assert ctx.wait(0) is False


def test_cancel_without_cause():
    ctx = background().with_cancel()
    ctx.cancel()
    assert ctx.done()
    assert isinstance(ctx.err(), ContextCanceled)
    assert ctx.cause() is ctx.err()
    assert str(ctx.err()) == "context canceled"


def test_cancel_with_cause_keeps_first():
    ctx = background().with_cancel()
    first = RuntimeError("first")
    ctx.cancel(first)
    ctx.cancel(RuntimeError("second"))
    assert ctx.cause() is first
    assert isinstance(ctx.err(), ContextCanceled)


def test_cancel_propagates_to_children_only():
    parent = background().with_cancel()
    child = parent.with_cancel()
    grandchild = child.with_value("x", key="k")
    cause = RuntimeError("stop")
    child.cancel(cause)
    assert not parent.done()
    assert grandchild.done()
    assert grandchild.cause() is cause

    parent.cancel()
    sibling_of_parent_child = parent.with_cancel()
    assert sibling_of_parent_child.done()
    assert isinstance(sibling_of_parent_child.err(), ContextCanceled)


def test_deadline_in_past_ends_immediately():
    ctx = background().with_deadline(time.monotonic() - 1)
    assert ctx.done()
    assert isinstance(ctx.err(), DeadlineExceeded)
    assert isinstance(ctx.err(), TimeoutError)


def test_deadline_expires():
    ctx = background().with_deadline(time.monotonic() + 0.05)
    assert ctx.wait(5)
    assert isinstance(ctx.err(), DeadlineExceeded)
    assert ctx.cause() is ctx.err()


def test_child_inherits_earlier_parent_deadline():
    parent = background().with_deadline(time.monotonic() + 0.05)
    child = parent.with_deadline(time.monotonic() + 3600)
    assert child.wait(5)
    assert isinstance(child.err(), DeadlineExceeded)


def test_cancel_before_deadline_wins():
    ctx = background().with_deadline(time.monotonic() + 3600)
    ctx.cancel()
    assert ctx.done()
    assert str(ctx.err()) == "context canceled"
    assert not isinstance(ctx.err(), DeadlineExceeded)
    assert ctx.cause() is ctx.err()


def test_values_by_type_and_key():
    ctx = background().with_value(42).with_value("hello").with_cancel()
    assert ctx.lookup(int) == 42
    assert ctx.lookup(str) == "hello"
    assert value(ctx, int) == 42
    assert value(ctx, float) is None
    with pytest.raises(KeyError):
        ctx.lookup(float)


def test_values_are_shadowed_by_nearer_ones():
    outer = background().with_value("outer", key="name")
    inner = outer.with_value("inner", key="name")
    assert inner.lookup("name") == "inner"
    assert outer.lookup("name") == "outer"


def test_value_or_else():
    ctx = background().with_value("stored", key="k")
    assert value_or_else(ctx, "k", lambda: "fallback") == "stored"
    assert value_or_else(ctx, "missing", lambda: "fallback") == "fallback"


def test_context_instances_usable_as_values():
    marker = object()
    ctx = background().with_value(marker, key=Context)
    assert ctx.lookup(Context) is marker


def test_suite_context_without_deadline(restore_signals):
    ctx, cancel = new_suite_context(None)
    assert not ctx.done()
    cause = RuntimeError("done")
    cancel(cause)
    assert ctx.done()
    assert ctx.cause() is cause


def test_suite_context_reserves_at_least_twenty_seconds(restore_signals):
    ctx, cancel = new_suite_context(time.monotonic() + 10)
    assert ctx.done()
    assert isinstance(ctx.err(), DeadlineExceeded)
    cancel()


def test_suite_context_with_far_deadline(restore_signals):
    ctx, cancel = new_suite_context(time.monotonic() + 1000)
    assert not ctx.done()
    cancel()
    assert isinstance(ctx.err(), ContextCanceled)


def test_signal_cancels_context(restore_signals):
    ctx, _ = signal_aware_context(background())
    signal.raise_signal(signal.SIGTERM)
    assert ctx.done()
    assert isinstance(ctx.err(), ContextCanceled)
    assert str(ctx.cause()) == "signal received: SIGTERM"


def test_signal_after_done_goes_to_previous_handler(restore_signals):
    received = []
    signal.signal(signal.SIGTERM, lambda signum, frame: received.append(signum))
    ctx, cancel = signal_aware_context(background())
    cancel()
    signal.raise_signal(signal.SIGTERM)
    assert received == [signal.SIGTERM]
    assert ctx.done()
    assert str(ctx.cause()) == "context canceled"
    assert ctx.cause() is ctx.err()