"""
Swapper — converts an asset held by the custody service into a target asset.

The target ("token out") is configured per input asset with a default
fallback. The caller chooses the slippage it tolerates, bounded by the
configured maximum; the minimum accepted output is derived from the
resolved rate:

    min_amount_out = amount_in × rate(asset_in → token_out) × (1 − slippage)
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


class Swapper(BaseAction):
    """Convert action backed by ``CustodyService.convert``."""

    kind = "swapper"
    _state_fields = ("_default_token_out", "_custom_tokens_out")

    def __init__(
        self,
        name: str,
        owner: str,
        custody: CustodyService,
        host: Host,
        event_sinks: list[EventSink] | None = None,
    ) -> None:
        self._default_token_out: str | None = None
        self._custom_tokens_out: dict[str, str] = {}
        super().__init__(name, owner, custody, host, event_sinks)
        self.slippage = SlippageGuard(self.gate, self.events)

    def components(self) -> list[PolicyComponent]:
        return [*super().components(), self.slippage]

    # ── Token out ───────────────────────────────────────────────

    def default_token_out(self) -> str | None:
        return self._default_token_out

    def custom_token_out(self, asset: str) -> str | None:
        return self._custom_tokens_out.get(asset)

    def custom_tokens_out(self) -> dict[str, str]:
        return dict(self._custom_tokens_out)

    def token_out_for(self, asset: str) -> str | None:
        return self._custom_tokens_out.get(asset, self._default_token_out)

    def set_default_token_out(self, caller: str, token_out: str | None) -> None:
        self.gate.require(caller, Operation.SET_DEFAULT_TOKEN_OUT)
        before, self._default_token_out = self._default_token_out, token_out or None
        self.events.emit("DefaultTokenOutSet", before=before, after=self._default_token_out)

    def set_custom_tokens_out(
        self,
        caller: str,
        assets: Sequence[str],
        tokens_out: Sequence[str | None],
    ) -> None:
        """Set the target per input asset; an empty target removes the override."""
        self.gate.require(caller, Operation.SET_CUSTOM_TOKENS_OUT)
        if len(assets) != len(tokens_out):
            raise ConfigurationError(f"Got {len(assets)} assets and {len(tokens_out)} tokens out")

        if any(not asset for asset in assets):
            raise ConfigurationError("Token out asset cannot be empty")

        for asset, token_out in zip(assets, tokens_out):
            before = self._custom_tokens_out.get(asset)
            if token_out:
                self._custom_tokens_out[asset] = token_out
            else:
                self._custom_tokens_out.pop(asset, None)
            self.events.emit("CustomTokenOutSet", asset=asset, before=before, after=token_out or None)

    # ── Execution ───────────────────────────────────────────────

    def _resolve(
        self,
        asset_in: str,
        amount_in: Decimal,
        slippage: Decimal,
        quote_bundle: QuoteInput,
    ) -> dict[str, Any]:
        token_out = self.token_out_for(asset_in)
        if token_out is None:
            raise ConfigurationError(f"No token out configured for {asset_in}", asset=asset_in)
        if token_out == asset_in:
            raise ConfigurationError(f"Token out for {asset_in} is the same asset", asset=asset_in)
        self.slippage.validate(asset_in, slippage)

        rate = self.prices.resolve(asset_in, token_out, quote_bundle)
        return {
            "token_out": token_out,
            "slippage": slippage,
            "rate": rate,
            "min_amount_out": amount_in * rate * (ONE - slippage),
        }

    def check(
        self,
        asset_in: str,
        amount_in: Decimal,
        slippage: Decimal,
        quote_bundle: QuoteInput = None,
    ) -> None:
        """Run every read-only guard for a swap without executing it."""
        self.check_policies(asset_in, amount_in, quote_bundle)
        self._resolve(asset_in, amount_in, slippage, quote_bundle)

    def execute(
        self,
        caller: str,
        asset_in: str,
        amount_in: Decimal,
        slippage: Decimal,
        adapter_id: str,
        aux_data: bytes = b"",
        quote_bundle: QuoteInput = None,
    ) -> dict[str, Any]:
        """
        Convert ``amount_in`` of ``asset_in`` into its configured token out.

        Returns:
            The ``Executed`` event payload, including ``amount_out``.
        """

        def prepare() -> dict[str, Any]:
            params = self._resolve(asset_in, amount_in, slippage, quote_bundle)
            return {**params, "adapter_id": adapter_id}

        return self._run(caller, asset_in, amount_in, aux_data, quote_bundle, prepare)

    def _primitive(
        self,
        asset: str,
        amount: Decimal,
        aux_data: bytes,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        amount_out = self.custody.convert(
            asset,
            params["token_out"],
            amount,
            params["min_amount_out"],
            params["adapter_id"],
            aux_data,
        )
        return {"amount_out": amount_out}

    def _describe_action(self) -> dict[str, Any]:
        return {
            "default_token_out": self._default_token_out,
            "custom_tokens_out": self.custom_tokens_out(),
            "default_max_slippage": str(self.slippage.default_max_slippage()),
            "custom_max_slippages": {
                asset: str(value) for asset, value in self.slippage.custom_max_slippages().items()
            },
        }
