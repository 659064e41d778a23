"""Unit tests for the retrying wait primitive."""
from __future__ import annotations

import contextvars

import pytest

from pacing_kit.waiting import (
    DEFAULT_NON_RETRYABLE,
    ErrorKind,
    Failure,
    NestedWaitRejected,
    OutcomeKind,
    RetryPolicy,
    RetryWaiter,
    StopWaiting,
    Success,
    WaitAborted,
    WaitTimeout,
    active_wait,
    classify_error,
    keep_trying_until,
    wait_for,
    wait_for_no_such_element,
)


class StaleElementReferenceException(Exception):
    pass


class NoSuchElementException(Exception):
    pass


def _waiter(clock, timeout=1.0, poll_interval=0.25, non_retryable=DEFAULT_NON_RETRYABLE):
    policy = RetryPolicy(timeout=timeout, poll_interval=poll_interval, non_retryable=non_retryable)
    return RetryWaiter(policy, clock=clock.monotonic, sleep=clock.sleep)


class _Countdown:
    """Falsy until the k-th call, then returns ``value``."""

    def __init__(self, k, value="done", error=None):
        self.k = k
        self.value = value
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls >= self.k:
            return self.value
        if self.error is not None:
            raise self.error
        return None


# ---------------------------------------------------------------------------
# classify_error()
# ---------------------------------------------------------------------------

class TestClassifyError:
    def test_kind_attribute_wins(self):
        assert classify_error(StopWaiting("gone")) is ErrorKind.ABORTED

    def test_driver_exceptions_by_class_name(self):
        assert classify_error(StaleElementReferenceException()) is ErrorKind.STALE_ELEMENT
        assert classify_error(NoSuchElementException()) is ErrorKind.NO_SUCH_ELEMENT

    def test_assertion_and_generic(self):
        assert classify_error(AssertionError("nope")) is ErrorKind.ASSERTION
        assert classify_error(RuntimeError("boom")) is ErrorKind.GENERIC


# ---------------------------------------------------------------------------
# RetryWaiter.poll()
# ---------------------------------------------------------------------------

class TestPoll:
    def test_immediate_success(self, clock):
        outcome = _waiter(clock).poll(lambda: 42)
        assert outcome == Success(42, attempts=1)
        assert outcome.ok is True
        assert clock.sleeps == []

    def test_success_on_kth_call(self, clock):
        predicate = _Countdown(3, value={"id": 7})
        outcome = _waiter(clock).poll(predicate)
        assert isinstance(outcome, Success)
        assert outcome.value == {"id": 7}
        assert predicate.calls == 3
        assert outcome.attempts == 3

    def test_retries_through_errors_until_success(self, clock):
        predicate = _Countdown(4, error=AssertionError("not yet"))
        outcome = _waiter(clock).poll(predicate)
        assert isinstance(outcome, Success)
        assert predicate.calls == 4

    def test_always_falsy_times_out_without_cause(self, clock):
        predicate = _Countdown(10_000)
        outcome = _waiter(clock, timeout=1.0, poll_interval=0.25).poll(predicate)
        assert outcome == Failure(OutcomeKind.TIMEOUT, None, attempts=5)
        assert outcome.ok is False
        assert clock.now == 1.0

    def test_timeout_keeps_last_cause(self, clock):
        errors = iter([AssertionError("first"), RuntimeError("second")])

        def predicate():
            err = next(errors, None)
            if err is not None:
                raise err
            return 0

        outcome = _waiter(clock).poll(predicate)
        assert outcome.kind is OutcomeKind.TIMEOUT
        assert isinstance(outcome.cause, RuntimeError)
        assert str(outcome.cause) == "second"

    def test_zero_timeout_still_calls_once(self, clock):
        predicate = _Countdown(2)
        outcome = _waiter(clock, timeout=0).poll(predicate)
        assert outcome.kind is OutcomeKind.TIMEOUT
        assert predicate.calls == 1

    def test_non_retryable_aborts_after_one_call(self, clock):
        predicate = _Countdown(5, error=StaleElementReferenceException("stale"))
        outcome = _waiter(clock).poll(predicate)
        assert outcome.kind is OutcomeKind.ABORTED
        assert isinstance(outcome.cause, StaleElementReferenceException)
        assert predicate.calls == 1
        assert clock.sleeps == []

    def test_sleep_never_overshoots_deadline(self, clock):
        _waiter(clock, timeout=0.625, poll_interval=0.25).poll(lambda: None)
        assert clock.sleeps == [0.25, 0.25, 0.125]

    def test_policy_set_is_not_mutated(self, clock):
        kinds = {ErrorKind.ABORTED}
        policy = RetryPolicy(timeout=1.0, non_retryable=kinds)
        kinds.add(ErrorKind.ASSERTION)
        assert policy.non_retryable == frozenset({ErrorKind.ABORTED})

        waiter = RetryWaiter(policy, clock=clock.monotonic, sleep=clock.sleep)
        waiter.poll(_Countdown(2, error=AssertionError("x")))
        assert policy.non_retryable == frozenset({ErrorKind.ABORTED})

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(timeout=-1)


# ---------------------------------------------------------------------------
# until() / until_true()
# ---------------------------------------------------------------------------

class TestUntil:
    def test_returns_value(self, clock):
        assert _waiter(clock).until(_Countdown(2, value="ready")) == "ready"

    def test_timeout_reports_real_cause(self, clock):
        cause = AssertionError("expected 'Just Now' in cell")
        with pytest.raises(WaitTimeout) as excinfo:
            _waiter(clock).until(_Countdown(10_000, error=cause), method="keep_trying_until")
        err = excinfo.value
        assert err.cause is cause
        assert err.__cause__ is cause
        assert "expected 'Just Now' in cell" in str(err)
        assert str(err).startswith("keep_trying_until timed out after 1s")

    def test_plain_timeout_message(self, clock):
        with pytest.raises(WaitTimeout) as excinfo:
            _waiter(clock).until(lambda: False)
        assert excinfo.value.cause is None
        assert str(excinfo.value) == "wait_for timed out after 1s"

    def test_abort_raises_wait_aborted(self, clock):
        with pytest.raises(WaitAborted) as excinfo:
            _waiter(clock).until(_Countdown(3, error=StopWaiting("element definitely gone")))
        assert excinfo.value.error_kind is ErrorKind.ABORTED
        assert isinstance(excinfo.value.__cause__, StopWaiting)

    def test_until_true(self, clock):
        assert _waiter(clock).until_true(_Countdown(2)) is True
        assert _waiter(clock).until_true(lambda: []) is False

    def test_until_true_still_raises_aborts(self, clock):
        with pytest.raises(WaitAborted):
            _waiter(clock).until_true(_Countdown(2, error=StaleElementReferenceException()))


# ---------------------------------------------------------------------------
# Nesting guard
# ---------------------------------------------------------------------------

class TestNestingGuard:
    def test_nested_wait_rejected_before_inner_predicate(self, clock):
        waiter = _waiter(clock)
        inner = _Countdown(1, value=True)
        outer_calls = []

        def outer():
            outer_calls.append(1)
            return waiter.until(inner, method="inner_wait")

        with pytest.raises(NestedWaitRejected) as excinfo:
            waiter.until(outer, method="outer_wait")
        assert inner.calls == 0
        assert outer_calls == [1]
        assert "outer_wait" in str(excinfo.value)

    def test_flag_cleared_on_every_exit(self, clock):
        waiter = _waiter(clock)
        waiter.poll(lambda: True)
        assert active_wait() is None
        waiter.poll(lambda: False)
        assert active_wait() is None
        with pytest.raises(WaitAborted):
            waiter.until(_Countdown(2, error=StopWaiting()))
        assert active_wait() is None
        assert waiter.until(lambda: "again") == "again"

    def test_flag_is_visible_inside_predicate(self, clock):
        seen = []
        _waiter(clock).poll(lambda: seen.append(active_wait()) or True, method="probe")
        assert seen == ["probe"]

    def test_separate_context_is_independent(self, clock):
        waiter = _waiter(clock)

        def outer():
            return contextvars.Context().run(waiter.until, lambda: "isolated")

        assert waiter.until(outer) == "isolated"


# ---------------------------------------------------------------------------
# Module helpers (real clock, tiny timeouts)
# ---------------------------------------------------------------------------

def test_keep_trying_until_uses_settings(monkeypatch):
    monkeypatch.setenv("PACING_POLL_INTERVAL", "0.01")
    with pytest.raises(WaitTimeout) as excinfo:
        keep_trying_until(_Countdown(10_000, error=AssertionError("boom")), seconds=0.05)
    assert "boom" in str(excinfo.value)
    assert excinfo.value.method == "keep_trying_until"


def test_keep_trying_until_returns_value():
    assert keep_trying_until(_Countdown(1, value="ok"), seconds=0.05) == "ok"


def test_wait_for_returns_bool(monkeypatch):
    monkeypatch.setenv("PACING_POLL_INTERVAL", "0.01")
    assert wait_for(lambda: "yes", timeout=0.05) is True
    assert wait_for(lambda: None, timeout=0.05) is False


def test_wait_for_custom_non_retryable():
    predicate = _Countdown(3, error=AssertionError("fail fast"))
    with pytest.raises(WaitAborted):
        wait_for(predicate, timeout=0.05, non_retryable=[ErrorKind.ASSERTION])
    assert predicate.calls == 1


def test_wait_for_no_such_element(monkeypatch):
    monkeypatch.setenv("PACING_POLL_INTERVAL", "0.01")

    def gone():
        raise NoSuchElementException("#pace-modal")

    assert wait_for_no_such_element(gone, timeout=0.05) is True
    assert wait_for_no_such_element(lambda: object(), timeout=0.05) is False

    def broken():
        raise RuntimeError("driver crashed")

    with pytest.raises(WaitAborted):
        wait_for_no_such_element(broken, timeout=0.05)
