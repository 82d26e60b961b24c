"""
Time Lock — minimum spacing between two executions of an action.

Execution is locked while ``now < expires_at``. After every successful
execution with a non-zero delay the expiration moves forward by the delay,
counted from the previous expiration (or from now when none was set), so a
schedule keeps its cadence even when executions happen late. With a zero
delay the expiration is left untouched and, once passed, never locks again.
"""

from __future__ import annotations

import logging

from custody_actions.custody.interface import Host
from custody_actions.domain.errors import ConfigurationError, TimeLockNotExpired
from custody_actions.domain.schema import Operation, TimeLock
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent

logger = logging.getLogger(__name__)


class TimeLockGuard(PolicyComponent):
    """Delay and expiration of the execution time lock."""

    _state_fields = ("_lock",)

    def __init__(self, gate, events: EventBuffer, host: Host) -> None:
        super().__init__(gate, events)
        self.host = host
        self._lock = TimeLock()

    def time_lock(self) -> TimeLock:
        return self._lock.model_copy()

    def is_locked(self) -> bool:
        return self.host.now() < self._lock.expires_at

    def validate(self) -> None:
        """
        Raises:
            TimeLockNotExpired: The current expiration has not been reached.
        """
        if self.is_locked():
            raise TimeLockNotExpired(
                f"Time lock expires at {self._lock.expires_at}",
                expires_at=self._lock.expires_at,
                now=self.host.now(),
            )

    def record(self) -> None:
        """Move the expiration forward after an execution."""
        lock = self._lock
        if not lock.delay:
            return
        start = lock.expires_at or self.host.now()
        self._lock = lock.model_copy(update={"expires_at": start + lock.delay})
        self.events.emit("TimeLockExpirationSet", expiration=self._lock.expires_at)

    def set_time_lock_delay(self, caller: str, delay: int) -> None:
        """Change the delay; the current expiration is kept."""
        self._require(caller, Operation.SET_TIME_LOCK_DELAY)
        if delay < 0:
            raise ConfigurationError("Time lock delay cannot be negative", delay=delay)
        self._lock = self._lock.model_copy(update={"delay": delay})
        self.events.emit("TimeLockDelaySet", delay=delay)
        logger.info("Time lock delay set: delay=%d", delay)

    def set_time_lock_expiration(self, caller: str, expiration: int) -> None:
        self._require(caller, Operation.SET_TIME_LOCK_EXPIRATION)
        if expiration < 0:
            raise ConfigurationError("Time lock expiration cannot be negative", expiration=expiration)
        self._lock = self._lock.model_copy(update={"expires_at": expiration})
        self.events.emit("TimeLockExpirationSet", expiration=expiration)
