"""
Bridger — moves an asset held by the custody service to another domain.

The destination domain is configured per asset with a default fallback and
can never be the domain the action itself runs on. The caller's slippage
is bounded by the configured maximum and sets the minimum amount that must
arrive on the other side:

    min_amount_out = amount × (1 − slippage)
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from custody_actions.actions.base import BaseAction
from custody_actions.custody.interface import CustodyService, Host
from custody_actions.domain.errors import ConfigurationError
from custody_actions.domain.schema import ONE, Operation
from custody_actions.ledger.events import EventSink
from custody_actions.policy.component import PolicyComponent
from custody_actions.policy.prices import QuoteInput
from custody_actions.policy.slippage import SlippageGuard


class Bridger(BaseAction):
    """Cross-domain action backed by ``CustodyService.transfer_cross_domain``."""

    kind = "bridger"
    _state_fields = ("_default_destination", "_custom_destinations")

    def __init__(
        self,
        name: str,
        owner: str,
        custody: CustodyService,
        host: Host,
        event_sinks: list[EventSink] | None = None,
    ) -> None:
        self._default_destination: int | None = None
        self._custom_destinations: dict[str, int] = {}
        super().__init__(name, owner, custody, host, event_sinks)
        self.slippage = SlippageGuard(self.gate, self.events)

    def components(self) -> list[PolicyComponent]:
        return [*super().components(), self.slippage]

    # ── Destination ─────────────────────────────────────────────

    def default_destination(self) -> int | None:
        return self._default_destination

    def custom_destination(self, asset: str) -> int | None:
        return self._custom_destinations.get(asset)

    def custom_destinations(self) -> dict[str, int]:
        return dict(self._custom_destinations)

    def destination_for(self, asset: str) -> int | None:
        return self._custom_destinations.get(asset, self._default_destination)

    def _check_destination(self, domain_id: int | None) -> None:
        if domain_id is not None and domain_id == self.host.domain_id:
            raise ConfigurationError(
                f"Destination domain {domain_id} is the local domain",
                domain_id=domain_id,
            )

    def set_default_destination(self, caller: str, domain_id: int | None) -> None:
        """Set the fallback destination; ``None`` or 0 clears it."""
        self.gate.require(caller, Operation.SET_DEFAULT_DESTINATION_DOMAIN)
        domain_id = domain_id or None
        self._check_destination(domain_id)
        before, self._default_destination = self._default_destination, domain_id
        self.events.emit("DefaultDestinationSet", before=before, after=domain_id)

    def set_custom_destinations(
        self,
        caller: str,
        assets: Sequence[str],
        domain_ids: Sequence[int | None],
    ) -> None:
        self.gate.require(caller, Operation.SET_CUSTOM_DESTINATION_DOMAINS)
        if len(assets) != len(domain_ids):
            raise ConfigurationError(f"Got {len(assets)} assets and {len(domain_ids)} domains")

        domain_ids = [domain_id or None for domain_id in domain_ids]
        for asset, domain_id in zip(assets, domain_ids):
            if not asset:
                raise ConfigurationError("Destination asset cannot be empty")
            self._check_destination(domain_id)

        for asset, domain_id in zip(assets, domain_ids):
            before = self._custom_destinations.get(asset)
            if domain_id is None:
                self._custom_destinations.pop(asset, None)
            else:
                self._custom_destinations[asset] = domain_id
            self.events.emit("CustomDestinationSet", asset=asset, before=before, after=domain_id)

    # ── Execution ───────────────────────────────────────────────

    def _resolve(self, asset: str, amount: Decimal, slippage: Decimal) -> dict[str, Any]:
        domain_id = self.destination_for(asset)
        if domain_id is None:
            raise ConfigurationError(f"No destination domain configured for {asset}", asset=asset)
        self.slippage.validate(asset, slippage)
        return {
            "domain_id": domain_id,
            "slippage": slippage,
            "min_amount_out": amount * (ONE - slippage),
        }

    def check(
        self,
        asset: str,
        amount: Decimal,
        slippage: Decimal,
        quote_bundle: QuoteInput = None,
    ) -> None:
        self.check_policies(asset, amount, quote_bundle)
        self._resolve(asset, amount, slippage)

    def execute(
        self,
        caller: str,
        asset: str,
        amount: Decimal,
        slippage: Decimal,
        aux_data: bytes = b"",
        quote_bundle: QuoteInput = None,
    ) -> dict[str, Any]:
        return self._run(
            caller,
            asset,
            amount,
            aux_data,
            quote_bundle,
            lambda: self._resolve(asset, amount, slippage),
        )

    def _primitive(
        self,
        asset: str,
        amount: Decimal,
        aux_data: bytes,
        params: dict[str, Any],
    ) -> None:
        self.custody.transfer_cross_domain(
            asset,
            amount,
            params["min_amount_out"],
            params["domain_id"],
            aux_data,
        )

    def _describe_action(self) -> dict[str, Any]:
        return {
            "local_domain": self.host.domain_id,
            "default_destination": self._default_destination,
            "custom_destinations": self.custom_destinations(),
            "default_max_slippage": str(self.slippage.default_max_slippage()),
            "custom_max_slippages": {
                asset: str(value) for asset, value in self.slippage.custom_max_slippages().items()
            },
        }
