"""Polling of asynchronous provider actions and server state."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from .cloud.client import CloudClient
from .errors import ActionFailedError, BuildCancelledError, PollTimeoutError
from .models import ActionHandle, ActionStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ActionPoller:
    """Waits for provider-side operations with one build-wide interval.

    Every wait has a deadline (monotonic seconds). Sleeps never run past
    it, and the cancellation event is re-checked on every iteration so an
    interrupt does not sit out a long wait.
    """

    def __init__(
        self,
        client: CloudClient,
        interval: float,
        *,
        action_timeout: float = 600.0,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.client = client
        self.interval = interval
        self.action_timeout = action_timeout
        self.cancel = cancel or threading.Event()
        self.clock = clock
        self._sleep = sleep

    def deadline(self, build_deadline: Optional[float] = None, timeout: Optional[float] = None) -> float:
        """Deadline for one wait: now + timeout, capped by the build deadline."""
        deadline = self.clock() + (timeout if timeout is not None else self.action_timeout)
        if build_deadline is not None:
            deadline = min(deadline, build_deadline)
        return deadline

    def wait(self, handle: ActionHandle, what: str, deadline: float) -> ActionHandle:
        """Poll ``handle`` until it succeeds; raise on error or timeout."""
        started = self.clock()
        current = handle
        while True:
            if current.status is ActionStatus.SUCCESS:
                logger.debug("Action %s (%s) finished", current.id, what)
                return current
            if current.status is ActionStatus.ERROR:
                message = current.error_message or f"{what} failed"
                raise ActionFailedError(message, action_id=current.id, code=current.error_code)
            logger.debug("Waiting for %s: %s%%", what, current.progress)
            self._pause(what, started, deadline)
            current = self.client.get_action(current.id)

    def wait_until(
        self,
        fetch: Callable[[], T],
        done: Callable[[T], bool],
        what: str,
        deadline: float,
    ) -> T:
        """Call ``fetch`` until ``done`` accepts its result."""
        started = self.clock()
        while True:
            value = fetch()
            if done(value):
                return value
            self._pause(what, started, deadline)

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise BuildCancelledError()

    def _pause(self, what: str, started: float, deadline: float) -> None:
        self.check_cancelled()
        now = self.clock()
        remaining = deadline - now
        if remaining <= 0:
            raise PollTimeoutError(what, now - started)
        delay = min(self.interval, remaining)
        if self._sleep is not None:
            self._sleep(delay)
        else:
            self.cancel.wait(delay)
        self.check_cancelled()
