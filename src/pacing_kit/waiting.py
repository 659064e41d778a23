"""Retrying waits for browser tests.

Poll a zero-argument predicate until it returns something truthy. Errors whose
kind the policy marks as non-retryable abort the wait at once; any other error
is recorded and retried, and the last one recorded is reported if the wait
times out.

Waits do not nest: calling one while another is active in the same context
raises NestedWaitRejected before the inner predicate runs.
"""
from __future__ import annotations

import contextvars
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Optional, Union

from .config import get_settings

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    ABORTED = "aborted"
    STALE_ELEMENT = "stale_element"
    NO_SUCH_ELEMENT = "no_such_element"
    ASSERTION = "assertion"
    GENERIC = "generic"


class OutcomeKind(Enum):
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    PREDICATE_ERROR = "predicate_error"


# Driver exceptions are matched by class name so this module never imports a driver.
_KIND_BY_CLASS_NAME: Dict[str, ErrorKind] = {
    "StaleElementReferenceException": ErrorKind.STALE_ELEMENT,
    "StaleElementReferenceError": ErrorKind.STALE_ELEMENT,
    "NoSuchElementException": ErrorKind.NO_SUCH_ELEMENT,
    "NoSuchElementError": ErrorKind.NO_SUCH_ELEMENT,
}

DEFAULT_NON_RETRYABLE: FrozenSet[ErrorKind] = frozenset({ErrorKind.ABORTED, ErrorKind.STALE_ELEMENT})


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a predicate to its ErrorKind."""
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    mapped = _KIND_BY_CLASS_NAME.get(type(exc).__name__)
    if mapped is not None:
        return mapped
    if isinstance(exc, AssertionError):
        return ErrorKind.ASSERTION
    return ErrorKind.GENERIC


class WaitError(Exception):
    """Base class for every failure surfaced by a wait."""


class StopWaiting(WaitError):
    """Raised by a predicate to abort the surrounding wait immediately."""

    kind = ErrorKind.ABORTED


class WaitTimeout(WaitError):
    def __init__(self, method: str, timeout: float, cause: Optional[BaseException] = None) -> None:
        self.method = method
        self.timeout = timeout
        self.cause = cause
        message = f"{method} timed out after {timeout:g}s"
        if cause is not None:
            message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message)


class WaitAborted(WaitError):
    def __init__(self, method: str, cause: BaseException) -> None:
        self.method = method
        self.cause = cause
        self.error_kind = classify_error(cause)
        super().__init__(f"{method} aborted ({self.error_kind.value}): {type(cause).__name__}: {cause}")


class NestedWaitRejected(WaitError):
    pass


@dataclass(frozen=True)
class Success:
    value: Any
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: OutcomeKind
    cause: Optional[BaseException] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return False


WaitOutcome = Union[Success, Failure]


@dataclass(frozen=True)
class RetryPolicy:
    timeout: float
    poll_interval: float = 0.2
    non_retryable: FrozenSet[ErrorKind] = DEFAULT_NON_RETRYABLE

    def __post_init__(self) -> None:
        if self.timeout < 0:
            raise ValueError("timeout must be >= 0")
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")
        # Accept any iterable of kinds but always store an immutable copy.
        object.__setattr__(self, "non_retryable", frozenset(self.non_retryable))

    @classmethod
    def default(
        cls,
        timeout: Optional[float] = None,
        non_retryable: Optional[Iterable[ErrorKind]] = None,
    ) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            timeout=settings.seconds_until_giving_up if timeout is None else timeout,
            poll_interval=settings.poll_interval,
            non_retryable=DEFAULT_NON_RETRYABLE if non_retryable is None else frozenset(non_retryable),
        )


_active_wait: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "pacing_kit_active_wait", default=None
)


def active_wait() -> Optional[str]:
    """Name of the wait running in the current context, if any."""
    return _active_wait.get()


@contextmanager
def _wait_scope(method: str) -> Iterator[None]:
    outer = _active_wait.get()
    if outer is not None:
        raise NestedWaitRejected(f"{method} called while {outer} is already waiting; nested waits are not allowed")
    token = _active_wait.set(method)
    try:
        yield
    finally:
        _active_wait.reset(token)


class RetryWaiter:
    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy if policy is not None else RetryPolicy.default()
        self._clock = clock
        self._sleep = sleep

    def poll(self, predicate: Callable[[], Any], method: str = "wait_for") -> WaitOutcome:
        """Run the predicate until it succeeds, aborts or the timeout elapses.

        The predicate always runs at least once, even with a zero timeout.
        Returns Success, Failure(ABORTED) or Failure(TIMEOUT); the timeout
        failure carries the last error the predicate raised, if any.
        """
        with _wait_scope(method):
            deadline = self._clock() + self.policy.timeout
            attempts = 0
            last_failure: Optional[Failure] = None
            while True:
                attempts += 1
                try:
                    value = predicate()
                except NestedWaitRejected:
                    raise
                except Exception as exc:  # noqa: BLE001
                    if classify_error(exc) in self.policy.non_retryable:
                        logger.debug("%s aborted on attempt %d: %r", method, attempts, exc)
                        return Failure(OutcomeKind.ABORTED, exc, attempts)
                    last_failure = Failure(OutcomeKind.PREDICATE_ERROR, exc, attempts)
                    logger.debug("%s attempt %d failed: %r", method, attempts, exc)
                else:
                    if value:
                        return Success(value, attempts)

                remaining = deadline - self._clock()
                if remaining <= 0:
                    cause = last_failure.cause if last_failure is not None else None
                    logger.debug("%s timed out after %d attempts", method, attempts)
                    return Failure(OutcomeKind.TIMEOUT, cause, attempts)
                self._sleep(min(self.policy.poll_interval, remaining))

    def until(self, predicate: Callable[[], Any], method: str = "wait_for") -> Any:
        """Return the predicate's first truthy value or raise WaitTimeout / WaitAborted."""
        outcome = self.poll(predicate, method)
        if isinstance(outcome, Success):
            return outcome.value
        self.raise_for_failure(outcome, method)

    def until_true(self, predicate: Callable[[], Any], method: str = "wait_for") -> bool:
        outcome = self.poll(predicate, method)
        if isinstance(outcome, Success):
            return True
        if outcome.kind is OutcomeKind.TIMEOUT:
            return False
        self.raise_for_failure(outcome, method)

    def raise_for_failure(self, failure: Failure, method: str) -> None:
        if failure.kind is OutcomeKind.ABORTED and failure.cause is not None:
            raise WaitAborted(method, failure.cause) from failure.cause
        raise WaitTimeout(method, self.policy.timeout, failure.cause) from failure.cause


def keep_trying_until(predicate: Callable[[], Any], seconds: Optional[float] = None) -> Any:
    """Retry through assertion and generic errors until the predicate is truthy.

    Stale element and StopWaiting errors abort at once. On timeout the last
    error the predicate raised is reported instead of a bare timeout.
    """
    waiter = RetryWaiter(RetryPolicy.default(timeout=seconds))
    return waiter.until(predicate, method="keep_trying_until")


def wait_for(
    predicate: Callable[[], Any],
    timeout: Optional[float] = None,
    non_retryable: Optional[Iterable[ErrorKind]] = None,
) -> bool:
    """Like keep_trying_until, but return False on timeout instead of raising."""
    waiter = RetryWaiter(RetryPolicy.default(timeout=timeout, non_retryable=non_retryable))
    return waiter.until_true(predicate, method="wait_for")


def wait_for_no_such_element(lookup: Callable[[], Any], timeout: Optional[float] = None) -> bool:
    """Wait until ``lookup`` raises a no-such-element error.

    Returns False if the element is still there when the timeout elapses.
    Any other error from ``lookup`` propagates as WaitAborted.
    """

    def _still_present() -> bool:
        lookup()
        return False

    waiter = RetryWaiter(RetryPolicy.default(timeout=timeout, non_retryable=frozenset(ErrorKind)))
    outcome = waiter.poll(_still_present, method="wait_for_no_such_element")
    if isinstance(outcome, Success):
        return True
    if outcome.kind is OutcomeKind.TIMEOUT:
        return False
    if outcome.cause is not None and classify_error(outcome.cause) is ErrorKind.NO_SUCH_ELEMENT:
        return True
    waiter.raise_for_failure(outcome, "wait_for_no_such_element")
    return False
