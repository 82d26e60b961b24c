"""
Tests for the Limit Accrual window state machine.

Validates:
- All-or-nothing configuration input
- Fresh windows, rescaling and removal on reconfiguration
- Read-only can_accrue and resetting record
- Window boundary inclusivity
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from custody_actions.custody.memory import InMemoryCustody, SimulatedHost
from custody_actions.domain.errors import ConfigurationError, SwapLimitExceeded, Unauthorized
from custody_actions.domain.schema import LimitState, Operation
from custody_actions.governance.permissions import AuthorizationGate
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.limits import LimitAccrual, next_window
from custody_actions.policy.prices import PriceResolver

OWNER = "0xowner"
NOW = 1_700_000_000
DAY = 24 * 60 * 60
MONTH = 30 * DAY


class TestLimitAccrual:
    """Test configuration, guard and recording."""

    def setup_method(self):
        self.host = SimulatedHost(timestamp=NOW)
        self.custody = InMemoryCustody(self.host)
        self.custody.set_price("Y", "Z", Decimal(2))
        self.events = EventBuffer("test", self.host.now)
        self.gate = AuthorizationGate(OWNER, self.events)
        self.gate.authorize(OWNER, OWNER, Operation.SET_LIMIT)
        self.prices = PriceResolver(self.gate, self.events, self.custody, self.host)
        self.limits = LimitAccrual(self.gate, self.events, self.prices, self.host)

    def test_inactive_by_default(self):
        state = self.limits.limit()
        assert not state.is_active
        assert state.next_reset_time == 0
        assert self.limits.can_accrue("Y", Decimal(10**9))
        assert self.limits.record("Y", Decimal(10**9)) == 0

    def test_setter_is_gated(self):
        with pytest.raises(Unauthorized):
            self.limits.configure("0xother", "Y", Decimal(1), DAY)

    @pytest.mark.parametrize(
        "asset, amount, period",
        [
            ("Y", Decimal(0), 0),
            ("Y", Decimal(1), 0),
            ("Y", Decimal(0), DAY),
            ("", Decimal(1), DAY),
            ("", Decimal(1), 0),
            ("", Decimal(0), DAY),
        ],
    )
    def test_partial_input_rejected(self, asset, amount, period):
        with pytest.raises(ConfigurationError):
            self.limits.configure(OWNER, asset, amount, period)

    def test_first_configuration_opens_window(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        state = self.limits.limit()
        assert state.accrued == 0
        assert state.next_reset_time == NOW + MONTH
        assert self.events.named("LimitSet")[0].payload["after"]["amount"] == "300"

    def test_capacity_scenario(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.record("Y", Decimal(150))
        assert self.limits.can_accrue("Y", Decimal(150))
        self.limits.record("Y", Decimal(150))
        assert self.limits.limit().accrued == Decimal(300)

        assert not self.limits.can_accrue("Y", Decimal(1))
        with pytest.raises(SwapLimitExceeded):
            self.limits.record("Y", Decimal(1))
        assert self.limits.limit().accrued == Decimal(300)

    def test_accrues_converted_amount(self):
        self.limits.configure(OWNER, "Z", Decimal(10), MONTH)
        assert self.limits.record("Y", Decimal(3)) == Decimal(6)
        assert not self.limits.can_accrue("Y", Decimal(3))

    def test_can_accrue_does_not_reset(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.record("Y", Decimal(300))
        self.host.advance(MONTH)

        assert self.limits.can_accrue("Y", Decimal(300))
        state = self.limits.limit()
        assert state.accrued == Decimal(300)
        assert state.next_reset_time == NOW + MONTH

    def test_record_resets_at_boundary(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.record("Y", Decimal(300))
        self.host.advance(MONTH - 1)
        assert not self.limits.can_accrue("Y", Decimal(1))

        self.host.advance(1)
        self.limits.record("Y", Decimal(40))
        state = self.limits.limit()
        assert state.accrued == Decimal(40)
        assert state.next_reset_time == NOW + 2 * MONTH

    def test_record_after_several_periods_restarts_from_now(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.host.advance(3 * MONTH + 5)
        self.limits.record("Y", Decimal(1))
        assert self.limits.limit().next_reset_time == self.host.now() + MONTH

    def test_reconfigure_rescales_and_keeps_window(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.record("Y", Decimal(100))
        self.host.advance(DAY)

        self.limits.configure(OWNER, "Z", Decimal(1000), 2 * MONTH)
        state = self.limits.limit()
        assert state.asset == "Z"
        assert state.amount == Decimal(1000)
        assert state.period == 2 * MONTH
        assert state.accrued == Decimal(200)
        assert state.next_reset_time == NOW + MONTH

    def test_reconfigure_without_accrual_needs_no_price(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.configure(OWNER, "UNPRICED", Decimal(5), DAY)
        state = self.limits.limit()
        assert state.accrued == 0
        assert state.next_reset_time == NOW + MONTH

    def test_reconfigure_after_window_elapsed_starts_fresh(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.record("Y", Decimal(100))
        self.host.advance(MONTH)

        self.limits.configure(OWNER, "Y", Decimal(500), DAY)
        state = self.limits.limit()
        assert state.accrued == 0
        assert state.next_reset_time == NOW + MONTH + DAY

    def test_remove_limit_resets_everything(self):
        self.limits.configure(OWNER, "Y", Decimal(300), MONTH)
        self.limits.record("Y", Decimal(100))

        self.limits.configure(OWNER, "", Decimal(0), 0)
        assert self.limits.limit() == LimitState()


class TestWindowProperties:
    """Property tests for the window state machine."""

    @given(
        elapsed=st.integers(min_value=0, max_value=10 * MONTH),
        period=st.integers(min_value=1, max_value=2 * MONTH),
    )
    @settings(max_examples=100)
    def test_next_window_is_always_in_the_future(self, elapsed, period):
        state = LimitState(
            asset="Y", amount=Decimal(1), period=period, next_reset_time=NOW,
        )
        now = NOW + elapsed
        reset = next_window(state, now)
        assert reset > now
        assert reset <= now + period

    @given(
        amounts=st.lists(st.integers(min_value=1, max_value=200), min_size=1, max_size=8),
        gap=st.integers(min_value=0, max_value=MONTH),
    )
    @settings(max_examples=50)
    def test_accrued_never_exceeds_capacity(self, amounts, gap):
        host = SimulatedHost(timestamp=NOW)
        custody = InMemoryCustody(host)
        events = EventBuffer("test", host.now)
        gate = AuthorizationGate(OWNER, events)
        gate.authorize(OWNER, OWNER, Operation.SET_LIMIT)
        limits = LimitAccrual(gate, events, PriceResolver(gate, events, custody, host), host)
        limits.configure(OWNER, "Y", Decimal(300), MONTH)

        for amount in amounts:
            allowed = limits.can_accrue("Y", Decimal(amount))
            if allowed:
                limits.record("Y", Decimal(amount))
            else:
                with pytest.raises(SwapLimitExceeded):
                    limits.record("Y", Decimal(amount))
            assert limits.limit().accrued <= Decimal(300)
            host.advance(gap)

    @given(first=st.integers(min_value=1, max_value=300), second=st.integers(min_value=1, max_value=300))
    @settings(max_examples=50)
    def test_record_after_reset_starts_from_amount(self, first, second):
        host = SimulatedHost(timestamp=NOW)
        custody = InMemoryCustody(host)
        events = EventBuffer("test", host.now)
        gate = AuthorizationGate(OWNER, events)
        gate.authorize(OWNER, OWNER, Operation.SET_LIMIT)
        limits = LimitAccrual(gate, events, PriceResolver(gate, events, custody, host), host)
        limits.configure(OWNER, "Y", Decimal(300), MONTH)

        limits.record("Y", Decimal(first))
        host.advance(MONTH)
        limits.record("Y", Decimal(second))
        assert limits.limit().accrued == Decimal(second)
