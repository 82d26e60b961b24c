"""
Threshold Guard — min/max band on the value of a single execution.

A threshold is expressed in an accounting asset. The amount being executed
is converted into that asset through the price resolver before the band is
checked. A per-asset custom threshold shadows the default for that asset
only; with neither configured every amount passes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal

from custody_actions.domain.errors import ConfigurationError, ThresholdExceeded, ThresholdNotMet
from custody_actions.domain.schema import Operation, Threshold
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent
from custody_actions.policy.prices import PriceResolver, QuoteInput

logger = logging.getLogger(__name__)


def _dump(threshold: Threshold | None) -> dict | None:
    return None if threshold is None else threshold.model_dump(mode="json", exclude={"bounded"})


class ThresholdGuard(PolicyComponent):
    """Default and per-asset threshold bands."""

    _state_fields = ("_default", "_custom")

    def __init__(self, gate, events: EventBuffer, prices: PriceResolver) -> None:
        super().__init__(gate, events)
        self.prices = prices
        self._default: Threshold | None = None
        self._custom: dict[str, Threshold] = {}

    # ── Read accessors ──────────────────────────────────────────

    def default_threshold(self) -> Threshold | None:
        return self._default

    def custom_threshold(self, asset: str) -> Threshold | None:
        return self._custom.get(asset)

    def custom_thresholds(self) -> dict[str, Threshold]:
        return dict(self._custom)

    def threshold_for(self, asset: str) -> Threshold | None:
        return self._custom.get(asset, self._default)

    # ── Validation ──────────────────────────────────────────────

    def validate(self, asset: str, amount: Decimal, quote_bundle: QuoteInput = None) -> None:
        """
        Check ``amount`` of ``asset`` against the applicable band.

        Raises:
            ThresholdNotMet: Converted amount is below the minimum.
            ThresholdExceeded: A maximum is set and the converted amount is above it.
            MissingPriceFeed / OracleFeedOutdated: The amount cannot be converted.
        """
        threshold = self.threshold_for(asset)
        if threshold is None:
            return

        converted = self.prices.convert(amount, asset, threshold.asset, quote_bundle)
        if converted < threshold.min:
            raise ThresholdNotMet(
                f"{amount} {asset} is worth {converted} {threshold.asset}, minimum is {threshold.min}",
                asset=asset,
                converted=converted,
                min=threshold.min,
            )
        if threshold.bounded and converted > threshold.max:
            raise ThresholdExceeded(
                f"{amount} {asset} is worth {converted} {threshold.asset}, maximum is {threshold.max}",
                asset=asset,
                converted=converted,
                max=threshold.max,
            )

    # ── Configuration ───────────────────────────────────────────

    def set_default_threshold(self, caller: str, threshold: Threshold) -> None:
        self._require(caller, Operation.SET_DEFAULT_THRESHOLD)
        self._check(threshold)
        before, self._default = self._default, threshold
        self.events.emit("DefaultThresholdSet", before=_dump(before), after=_dump(threshold))

    def unset_default_threshold(self, caller: str) -> None:
        self._require(caller, Operation.UNSET_DEFAULT_THRESHOLD)
        before, self._default = self._default, None
        self.events.emit("DefaultThresholdUnset", before=_dump(before))

    def set_custom_thresholds(
        self,
        caller: str,
        assets: Sequence[str],
        thresholds: Sequence[Threshold],
    ) -> None:
        self._require(caller, Operation.SET_CUSTOM_THRESHOLDS)
        if len(assets) != len(thresholds):
            raise ConfigurationError(
                f"Got {len(assets)} assets and {len(thresholds)} thresholds",
            )

        for asset, threshold in zip(assets, thresholds):
            if not asset:
                raise ConfigurationError("Threshold asset cannot be empty")
            self._check(threshold)

        for asset, threshold in zip(assets, thresholds):
            before = self._custom.get(asset)
            self._custom[asset] = threshold
            self.events.emit(
                "CustomThresholdSet",
                asset=asset,
                before=_dump(before),
                after=_dump(threshold),
            )

    def unset_custom_thresholds(self, caller: str, assets: Sequence[str]) -> None:
        self._require(caller, Operation.UNSET_CUSTOM_THRESHOLDS)
        for asset in assets:
            before = self._custom.pop(asset, None)
            if before is not None:
                self.events.emit("CustomThresholdUnset", asset=asset, before=_dump(before))

    @staticmethod
    def _check(threshold: Threshold) -> None:
        if not threshold.asset:
            raise ConfigurationError("Threshold accounting asset cannot be empty")
        if threshold.bounded and threshold.max < threshold.min:
            raise ConfigurationError(
                f"Threshold maximum {threshold.max} is below minimum {threshold.min}",
                min=threshold.min,
                max=threshold.max,
            )
