"""Withdrawer — sends an asset held by the custody service to a fixed recipient."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from custody_actions.actions.base import BaseAction
from custody_actions.custody.interface import CustodyService, Host
from custody_actions.domain.errors import ConfigurationError
from custody_actions.domain.schema import Operation
from custody_actions.ledger.events import EventSink
from custody_actions.policy.prices import QuoteInput


class Withdrawer(BaseAction):
    """Transfer action backed by ``CustodyService.transfer_out``."""

    kind = "withdrawer"
    _state_fields = ("_recipient",)

    def __init__(
        self,
        name: str,
        owner: str,
        custody: CustodyService,
        host: Host,
        event_sinks: list[EventSink] | None = None,
    ) -> None:
        self._recipient: str | None = None
        super().__init__(name, owner, custody, host, event_sinks)

    def recipient(self) -> str | None:
        return self._recipient

    def set_recipient(self, caller: str, recipient: str) -> None:
        self.gate.require(caller, Operation.SET_RECIPIENT)
        if not recipient:
            raise ConfigurationError("Recipient cannot be empty")
        before, self._recipient = self._recipient, recipient
        self.events.emit("RecipientSet", before=before, after=recipient)

    def _resolve(self) -> dict[str, Any]:
        if self._recipient is None:
            raise ConfigurationError("No recipient configured")
        return {"recipient": self._recipient}

    def check(self, asset: str, amount: Decimal, quote_bundle: QuoteInput = None) -> None:
        self.check_policies(asset, amount, quote_bundle)
        self._resolve()

    def execute(
        self,
        caller: str,
        asset: str,
        amount: Decimal,
        aux_data: bytes = b"",
        quote_bundle: QuoteInput = None,
    ) -> dict[str, Any]:
        return self._run(caller, asset, amount, aux_data, quote_bundle, self._resolve)

    def _primitive(
        self,
        asset: str,
        amount: Decimal,
        aux_data: bytes,
        params: dict[str, Any],
    ) -> None:
        self.custody.transfer_out(asset, amount, params["recipient"], aux_data)

    def _describe_action(self) -> dict[str, Any]:
        return {"recipient": self._recipient}
