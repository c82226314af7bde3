"""
Polling and retry helpers for resource state transitions.

wait_for polls a resource's describe operation until it reaches a target state;
mutate_with_retry repeats a create/delete call while the provider reports a
transient conflict. Both are driven by tenacity with injectable sleep (and, for
the waiter, clock) so tests run without real delays.
"""

import time
from typing import Callable, List, Optional, TypeVar

import pulumi
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from errors import ConflictError, ResourceFailedError, ResourceGoneError, StateTimeoutError
from provider import Provider
from resources import ResourceRef, ResourceStatus, policy_for

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_WAIT = 1200.0
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 10.0


def is_conflict(error: BaseException) -> bool:
    return isinstance(error, ConflictError) or getattr(error, "status", None) == 409


def wait_for(
    provider: Provider,
    ref: ResourceRef,
    target_state: str,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
    succeed_on_not_found: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[ResourceStatus]:
    """Block until `ref` reports `target_state`.

    Raises ResourceFailedError as soon as a failure state of the resource's kind
    is observed, and StateTimeoutError once `max_wait` seconds have elapsed.
    With `succeed_on_not_found`, a resource the provider no longer knows about
    counts as having reached the target and None is returned.
    """
    failure_states = policy_for(ref.kind).failure_states - {target_state}
    started = clock()
    observed: List[str] = []

    def elapsed() -> float:
        return clock() - started

    def poll() -> Optional[ResourceStatus]:
        try:
            status = provider.describe(ref)
        except ResourceGoneError:
            if succeed_on_not_found:
                pulumi.log.debug(f"{ref} no longer exists, treating as {target_state}")
                return None
            raise
        if not observed or observed[-1] != status.state:
            pulumi.log.debug(f"{ref} is {status.state}")
        observed.append(status.state)
        if status.state in failure_states:
            raise ResourceFailedError(str(ref), target_state, status.state)
        return status

    # Stop and wait read the injected clock; the last sleep is clamped to the remaining budget.
    retrying = Retrying(
        retry=retry_if_result(lambda status: status is not None and status.state != target_state),
        stop=lambda retry_state: elapsed() >= max_wait,
        wait=lambda retry_state: min(poll_interval, max_wait - elapsed()),
        sleep=sleep,
    )
    try:
        return retrying(poll)
    except RetryError as e:
        raise StateTimeoutError(str(ref), target_state, observed[-1], elapsed()) from e


def _warn_on_conflict(description: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        pulumi.log.warn(
            f"Conflict during {description} (attempt {retry_state.attempt_number}/{max_attempts}): "
            f"{retry_state.outcome.exception()}. Retrying in {retry_state.next_action.sleep:.0f}s."
        )

    return log


def mutate_with_retry(
    op: Callable[[], T],
    is_conflict: Callable[[BaseException], bool] = is_conflict,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `op`, retrying up to `max_attempts` calls in total while it fails with a conflict.

    Errors that are not conflicts, and the conflict from the final attempt, propagate unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception(is_conflict),
        before_sleep=_warn_on_conflict(description, max_attempts),
        sleep=sleep,
        reraise=True,
    )
    return retrying(op)
