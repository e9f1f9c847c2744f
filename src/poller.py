"""
Bounded polling of asynchronous Compute Engine mutations.

A poll repeatedly calls a probe until a terminal predicate reports success
or permanent failure, the attempt budget runs out, the optional deadline
passes, or the caller cancels. The result is always a PollOutcome; remote
conditions never escape as exceptions.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from errors import (
    DeadlineExceeded,
    ExhaustedAttempts,
    OperationFailed,
    PollCancelled,
    ProvisionerError,
    TransportError,
)
from models import OperationStatus, PollOutcome, Probe

logger = logging.getLogger(__name__)


class Verdict(Enum):
    """Classification of a probe by a terminal predicate."""

    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


def operation_done(probe: Probe) -> Verdict:
    """Terminal predicate for create flows: the tracked operation is DONE."""
    if probe.status is OperationStatus.NOT_FOUND:
        return Verdict.FAILED
    if probe.status is OperationStatus.DONE:
        return Verdict.FAILED if probe.error else Verdict.SUCCESS
    return Verdict.PENDING


def resource_gone(probe: Probe) -> Verdict:
    """Terminal predicate for delete flows: the resource lookup is NOT_FOUND."""
    if probe.status is OperationStatus.NOT_FOUND:
        return Verdict.SUCCESS
    return Verdict.PENDING


class OperationPoller:
    """Polls a probe until a terminal condition, with an attempt budget."""

    def __init__(
        self,
        interval: float = 5.0,
        backoff: float = 1.0,
        max_interval: float = 30.0,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the poller.

        Args:
            interval: Wait before the second probe (seconds)
            backoff: Multiplier applied to the wait after every probe
            max_interval: Upper bound for a single wait (seconds)
            deadline: Optional overall limit measured from deadline_start (seconds)
            cancel_event: Event that aborts the poll while it is waiting
            clock: Source of "now", in seconds
        """
        if interval < 0 or max_interval < 0:
            raise ValueError("Poll intervals must not be negative")
        if backoff < 1.0:
            raise ValueError("Poll backoff must be >= 1.0")
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval
        self.deadline = deadline
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock

    def delay_for(self, attempt: int) -> float:
        """Wait after probe number `attempt` (1-based)."""
        delay = self.interval
        for _ in range(attempt - 1):
            # stop at the cap
            if delay <= 0 or delay >= self.max_interval or self.backoff == 1.0:
                break
            delay *= self.backoff
        return min(delay, self.max_interval)

    def poll(
        self,
        check_fn: Callable[[], Probe],
        is_terminal: Callable[[Probe], Verdict],
        deadline_start: Optional[float] = None,
        max_attempts: int = 60,
        description: str = "operation",
    ) -> PollOutcome:
        """
        Probe until the terminal predicate holds or the budget is spent.

        Args:
            check_fn: Probe returning a Probe; raises TransportError on transient failure
            is_terminal: Classifies a Probe as SUCCESS, PENDING or FAILED
            deadline_start: When the overall operation began (clock seconds)
            max_attempts: Maximum number of probes
            description: Label used in log messages

        Returns:
            PollOutcome describing how polling ended
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if deadline_start is None:
            deadline_start = self.clock()

        attempts = 0
        transient_failures = 0
        last_status: Optional[OperationStatus] = None
        last_transport: Optional[TransportError] = None

        def outcome(succeeded, error=None, document=None) -> PollOutcome:
            return PollOutcome(
                succeeded=succeeded,
                last_status=last_status,
                attempts_used=attempts,
                elapsed=self.clock() - deadline_start,
                error=error,
                document=document,
            )

        while True:
            attempts += 1
            try:
                probe = check_fn()
            except TransportError as e:
                transient_failures += 1
                last_transport = e
                logger.warning(
                    f"Probe {attempts}/{max_attempts} for {description} failed transiently: {e}"
                )
            except ProvisionerError as e:
                logger.error(f"Probe for {description} failed permanently: {e}")
                return outcome(False, error=e)
            else:
                last_status = probe.status
                verdict = is_terminal(probe)
                logger.debug(
                    f"Probe {attempts}/{max_attempts} for {description}: "
                    f"status={probe.status.value}, verdict={verdict.value}"
                )
                if verdict is Verdict.SUCCESS:
                    return outcome(True, document=probe.document)
                if verdict is Verdict.FAILED:
                    reason = probe.error or f"status {probe.status.value}"
                    logger.error(f"{description} reported failure: {reason}")
                    return outcome(False, error=OperationFailed(reason))

            elapsed = self.clock() - deadline_start
            if attempts >= max_attempts:
                if transient_failures == attempts:
                    return outcome(False, error=last_transport)
                return outcome(False, error=ExhaustedAttempts(attempts, elapsed))

            if self.deadline is not None and elapsed >= self.deadline:
                return outcome(
                    False, error=DeadlineExceeded(attempts, elapsed, self.deadline)
                )

            delay = self.delay_for(attempts)
            if self.deadline is not None:
                delay = max(0.0, min(delay, self.deadline - elapsed))
            if self.cancel_event.wait(delay):
                logger.info(f"Polling for {description} cancelled")
                return outcome(False, error=PollCancelled(attempts))


def poll(
    check_fn: Callable[[], Probe],
    is_terminal: Callable[[Probe], Verdict],
    deadline_start: Optional[float] = None,
    max_attempts: int = 60,
    interval: float = 5.0,
    cancel_event: Optional[threading.Event] = None,
) -> PollOutcome:
    """Poll with a fixed interval; shorthand for OperationPoller(...).poll(...)."""
    poller = OperationPoller(interval=interval, cancel_event=cancel_event)
    return poller.poll(check_fn, is_terminal, deadline_start, max_attempts)
