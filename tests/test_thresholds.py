"""
Tests for the Threshold Guard.

Validates:
- Band semantics (max = 0 is unbounded)
- Custom thresholds shadowing the default for their asset only
- Conversion into the accounting asset
- Configuration validation and events
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from custody_actions.custody.memory import InMemoryCustody, SimulatedHost
from custody_actions.domain.errors import (
    ConfigurationError,
    MissingPriceFeed,
    ThresholdExceeded,
    ThresholdNotMet,
    Unauthorized,
)
from custody_actions.domain.schema import Operation, Threshold
from custody_actions.governance.permissions import AuthorizationGate
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.prices import PriceResolver
from custody_actions.policy.thresholds import ThresholdGuard

OWNER = "0xowner"

THRESHOLD_OPERATIONS = (
    Operation.SET_DEFAULT_THRESHOLD,
    Operation.UNSET_DEFAULT_THRESHOLD,
    Operation.SET_CUSTOM_THRESHOLDS,
    Operation.UNSET_CUSTOM_THRESHOLDS,
)


def make_guard():
    host = SimulatedHost(timestamp=1_700_000_000)
    custody = InMemoryCustody(host)
    custody.set_price("WETH", "USDC", Decimal("2000"))
    events = EventBuffer("test", host.now)
    gate = AuthorizationGate(OWNER, events)
    for operation in THRESHOLD_OPERATIONS:
        gate.authorize(OWNER, OWNER, operation)
    prices = PriceResolver(gate, events, custody, host)
    return ThresholdGuard(gate, events, prices), events


class TestThresholdValidation:
    """Test validate() against default and custom bands."""

    def setup_method(self):
        self.guard, self.events = make_guard()

    def test_no_threshold_passes(self):
        self.guard.validate("ANY", Decimal("0.0001"))

    def test_min_only_scenario(self):
        self.guard.set_default_threshold(OWNER, Threshold(asset="X", min=Decimal(100), max=Decimal(0)))
        self.guard.validate("X", Decimal(150))
        with pytest.raises(ThresholdNotMet):
            self.guard.validate("X", Decimal(50))

    def test_band_upper_bound(self):
        self.guard.set_default_threshold(OWNER, Threshold(asset="X", min=Decimal(10), max=Decimal(20)))
        self.guard.validate("X", Decimal(10))
        self.guard.validate("X", Decimal(20))
        with pytest.raises(ThresholdExceeded):
            self.guard.validate("X", Decimal("20.01"))

    def test_converts_into_accounting_asset(self):
        self.guard.set_default_threshold(OWNER, Threshold(asset="USDC", min=Decimal(1000)))
        self.guard.validate("WETH", Decimal("0.5"))
        with pytest.raises(ThresholdNotMet):
            self.guard.validate("WETH", Decimal("0.4"))

    def test_missing_price_feed_propagates(self):
        self.guard.set_default_threshold(OWNER, Threshold(asset="USDC", min=Decimal(1)))
        with pytest.raises(MissingPriceFeed):
            self.guard.validate("DAI", Decimal(5))

    def test_custom_shadows_default_for_its_asset_only(self):
        self.guard.set_default_threshold(OWNER, Threshold(asset="USDC", min=Decimal(1000)))
        self.guard.set_custom_thresholds(
            OWNER, ["WETH"], [Threshold(asset="WETH", min=Decimal(2))]
        )
        with pytest.raises(ThresholdNotMet):
            self.guard.validate("WETH", Decimal("1"))
        self.guard.validate("USDC", Decimal(1000))
        with pytest.raises(ThresholdNotMet):
            self.guard.validate("USDC", Decimal(999))

    @given(amount=st.decimals(min_value=0, max_value=1000, places=2, allow_nan=False, allow_infinity=False))
    @settings(max_examples=50)
    def test_band_property(self, amount):
        guard, _ = make_guard()
        low, high = Decimal(100), Decimal(500)
        guard.set_default_threshold(OWNER, Threshold(asset="X", min=low, max=high))
        if low <= amount <= high:
            guard.validate("X", amount)
        else:
            with pytest.raises((ThresholdNotMet, ThresholdExceeded)):
                guard.validate("X", amount)


class TestThresholdConfiguration:
    """Test setters, validation and emitted events."""

    def setup_method(self):
        self.guard, self.events = make_guard()

    def test_setters_are_gated(self):
        with pytest.raises(Unauthorized):
            self.guard.set_default_threshold("0xother", Threshold(asset="X"))
        with pytest.raises(Unauthorized):
            self.guard.unset_custom_thresholds("0xother", ["X"])

    def test_max_below_min_rejected(self):
        with pytest.raises(ConfigurationError):
            self.guard.set_default_threshold(OWNER, Threshold(asset="X", min=Decimal(2), max=Decimal(1)))

    def test_empty_accounting_asset_rejected(self):
        with pytest.raises(ConfigurationError):
            self.guard.set_default_threshold(OWNER, Threshold(asset="", min=Decimal(1)))

    def test_custom_length_mismatch_rejected(self):
        with pytest.raises(ConfigurationError):
            self.guard.set_custom_thresholds(OWNER, ["A", "B"], [Threshold(asset="X")])

    def test_custom_empty_asset_rejected(self):
        with pytest.raises(ConfigurationError):
            self.guard.set_custom_thresholds(OWNER, [""], [Threshold(asset="X")])

    def test_invalid_custom_batch_changes_nothing(self):
        with pytest.raises(ConfigurationError):
            self.guard.set_custom_thresholds(
                OWNER,
                ["A", "B"],
                [
                    Threshold(asset="X", min=Decimal(1), max=Decimal(2)),
                    Threshold(asset="X", min=Decimal(2), max=Decimal(1)),
                ],
            )

        assert self.guard.custom_thresholds() == {}
        assert self.events.named("CustomThresholdSet") == []

    def test_default_set_and_unset(self):
        threshold = Threshold(asset="X", min=Decimal(1), max=Decimal(2))
        self.guard.set_default_threshold(OWNER, threshold)
        assert self.guard.default_threshold() == threshold

        self.guard.unset_default_threshold(OWNER)
        assert self.guard.default_threshold() is None

        set_event = self.events.named("DefaultThresholdSet")[0]
        assert set_event.payload["before"] is None
        assert set_event.payload["after"] == {"asset": "X", "min": "1", "max": "2"}
        assert self.events.named("DefaultThresholdUnset")[0].payload["before"]["asset"] == "X"

    def test_unset_custom_emits_only_for_existing(self):
        self.guard.set_custom_thresholds(OWNER, ["A"], [Threshold(asset="X", min=Decimal(1))])
        self.guard.unset_custom_thresholds(OWNER, ["A", "B"])

        unset = self.events.named("CustomThresholdUnset")
        assert [event.payload["asset"] for event in unset] == ["A"]
        assert self.guard.custom_thresholds() == {}
        assert self.guard.threshold_for("A") is None
