"""Unit tests for core/context.py -- deadlines, cancellation, and the guarded store proxy."""

import time

import pytest

from core.context import Guarded, OperationContext
from core.errors import Cancelled


class Recorder:
    label = "recorder"

    def __init__(self):
        self.calls = []

    def get(self, key):
        self.calls.append(key)
        return key.upper()


def test_no_deadline_never_cancels():
    ctx = OperationContext()
    ctx.check()
    assert ctx.remaining() is None


def test_zero_timeout_means_no_deadline():
    assert OperationContext.with_timeout(0).deadline is None
    assert OperationContext.with_timeout(None).deadline is None


def test_passed_deadline_raises():
    ctx = OperationContext(deadline=time.monotonic() - 1)
    with pytest.raises(Cancelled):
        ctx.check()


def test_cancel_flag():
    ctx = OperationContext.with_timeout(60)
    assert not ctx.cancelled
    ctx.cancel()
    assert ctx.cancelled
    with pytest.raises(Cancelled):
        ctx.check()


def test_guarded_forwards_calls_and_attributes():
    store = Recorder()
    guarded = Guarded(store, OperationContext())
    assert guarded.get("abc") == "ABC"
    assert guarded.label == "recorder"
    assert store.calls == ["abc"]


def test_guarded_checks_before_every_call():
    store = Recorder()
    ctx = OperationContext()
    guarded = Guarded(store, ctx)
    guarded.get("one")
    ctx.cancel()
    with pytest.raises(Cancelled):
        guarded.get("two")
    assert store.calls == ["one"]
