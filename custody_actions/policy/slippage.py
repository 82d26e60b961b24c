"""Maximum slippage guard: a default ceiling plus per-asset overrides."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from custody_actions.domain.errors import ConfigurationError, SlippageAboveMax
from custody_actions.domain.schema import ONE, ZERO, Operation
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent


def _check_fraction(slippage: Decimal) -> None:
    if slippage < ZERO or slippage > ONE:
        raise ConfigurationError(f"Slippage {slippage} is not a fraction between 0 and 1", slippage=slippage)


class SlippageGuard(PolicyComponent):
    """
    Slippage is a fraction in ``[0, 1]``. With nothing configured the
    ceiling is 0, so only exact executions are accepted.
    """

    _state_fields = ("_default", "_custom")

    def __init__(self, gate, events: EventBuffer) -> None:
        super().__init__(gate, events)
        self._default = ZERO
        self._custom: dict[str, Decimal] = {}

    def default_max_slippage(self) -> Decimal:
        return self._default

    def custom_max_slippage(self, asset: str) -> Decimal | None:
        return self._custom.get(asset)

    def custom_max_slippages(self) -> dict[str, Decimal]:
        return dict(self._custom)

    def max_slippage_for(self, asset: str) -> Decimal:
        return self._custom.get(asset, self._default)

    def validate(self, asset: str, slippage: Decimal) -> None:
        """
        Raises:
            ConfigurationError: ``slippage`` is not a fraction.
            SlippageAboveMax: ``slippage`` exceeds the ceiling for ``asset``.
        """
        _check_fraction(slippage)
        ceiling = self.max_slippage_for(asset)
        if slippage > ceiling:
            raise SlippageAboveMax(
                f"Slippage {slippage} above maximum {ceiling} for {asset}",
                asset=asset,
                slippage=slippage,
                max=ceiling,
            )

    def set_default_max_slippage(self, caller: str, slippage: Decimal) -> None:
        self._require(caller, Operation.SET_DEFAULT_MAX_SLIPPAGE)
        _check_fraction(slippage)
        before, self._default = self._default, slippage
        self.events.emit("DefaultMaxSlippageSet", before=before, after=slippage)

    def set_custom_max_slippages(
        self,
        caller: str,
        assets: Sequence[str],
        slippages: Sequence[Decimal],
    ) -> None:
        self._require(caller, Operation.SET_CUSTOM_MAX_SLIPPAGES)
        if len(assets) != len(slippages):
            raise ConfigurationError(f"Got {len(assets)} assets and {len(slippages)} slippages")

        for asset, slippage in zip(assets, slippages):
            if not asset:
                raise ConfigurationError("Slippage asset cannot be empty")
            _check_fraction(slippage)

        for asset, slippage in zip(assets, slippages):
            before = self._custom.get(asset)
            self._custom[asset] = slippage
            self.events.emit("CustomMaxSlippageSet", asset=asset, before=before, after=slippage)
