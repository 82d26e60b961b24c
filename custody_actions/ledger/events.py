"""
Event buffer — collects the structured events an action emits.

Events raised outside an execution are published immediately. Inside an
execution they are held back until the host's atomic scope has committed,
so a reverted invocation never publishes anything.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from custody_actions.domain.schema import ActionEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[ActionEvent], None]


class EventBuffer:
    """Per-action event history with deferred publication."""

    def __init__(
        self,
        source: str,
        clock: Callable[[], int],
        sinks: list[EventSink] | None = None,
    ) -> None:
        self.source = source
        self._clock = clock
        self.sinks: list[EventSink] = list(sinks or [])
        self.history: list[ActionEvent] = []
        self._pending: list[ActionEvent] | None = None

    def subscribe(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    def emit(self, name: str, **payload: Any) -> ActionEvent:
        event = ActionEvent(
            name=name,
            source=self.source,
            timestamp=self._clock(),
            payload=payload,
        )
        if self._pending is not None:
            self._pending.append(event)
        else:
            self._publish(event)
        return event

    def named(self, name: str) -> list[ActionEvent]:
        return [event for event in self.history if event.name == name]

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Hold events back until the block completes; drop them if it raises."""
        if self._pending is not None:
            yield
            return

        self._pending = []
        try:
            yield
        except BaseException:
            self._pending = None
            raise
        pending, self._pending = self._pending, None
        for event in pending:
            self._publish(event)

    def _publish(self, event: ActionEvent) -> None:
        self.history.append(event)
        logger.debug("Event emitted: source=%s name=%s", event.source, event.name)
        for sink in self.sinks:
            sink(event)
