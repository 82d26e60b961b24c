"""Shared base for stateful, gated policy components."""

from __future__ import annotations

import copy
from typing import Any, ClassVar

from custody_actions.domain.schema import Operation
from custody_actions.ledger.events import EventBuffer


class PolicyComponent:
    """
    A component whose configuration is gated and whose state can be reverted.

    Subclasses list the attributes that make up their mutable state in
    ``_state_fields``; ``snapshot``/``restore`` copy exactly those, so the
    host's atomic scope never deep-copies shared collaborators.
    """

    _state_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, gate: Any, events: EventBuffer) -> None:
        self.gate = gate
        self.events = events

    def _require(self, caller: str, operation: Operation) -> None:
        self.gate.require(caller, operation)

    def snapshot(self) -> dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def restore(self, state: dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)
