"""
Tests for the Relayer Meter.

Validates:
- Non-relayers run unmetered
- Gas price and priority fee ceilings checked before the body
- Post-hoc transaction cost ceiling
- Reimbursement in the native asset or a priced payment asset
- Permissive mode skipping unpaid reimbursements
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from custody_actions.config import settings
from custody_actions.custody.memory import InMemoryCustody, SimulatedHost
from custody_actions.domain.errors import (
    AdapterFailure,
    ConfigurationError,
    CostAboveLimit,
    GasPriceAboveLimit,
    InsufficientBalance,
    MissingPriceFeed,
    Unauthorized,
)
from custody_actions.domain.schema import Operation
from custody_actions.governance.permissions import AuthorizationGate
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.prices import PriceResolver
from custody_actions.policy.relayers import RelayerMeter

OWNER = "0xowner"
RELAYER = "0xrelayer"
COLLECTOR = "0xcollector"
NATIVE = settings.native_asset

RELAY_OPERATIONS = (
    Operation.SET_RELAYERS,
    Operation.SET_RELAY_GAS_LIMITS,
    Operation.SET_RELAY_TX_COST_LIMIT,
    Operation.SET_RELAY_GAS_ASSET,
    Operation.SET_RELAY_PERMISSIVE_MODE,
    Operation.SET_FEE_COLLECTOR,
)

BODY_UNITS = 1_000


class RejectingCustody(InMemoryCustody):
    """Custody whose transfers fail even when the balance covers them."""

    def transfer_out(self, asset, amount, recipient, aux_data=b""):
        raise AdapterFailure(f"transfer of {amount} {asset} rejected")


class TestRelayerMeter:
    """Test metering and reimbursement of relayed calls."""

    def setup_method(self):
        self.host = SimulatedHost(timestamp=1_700_000_000, gas_price=Decimal(2))
        self.custody = InMemoryCustody(self.host)
        self.custody.deposit(NATIVE, Decimal(1_000_000))
        self.events = EventBuffer("test", self.host.now)
        self.gate = AuthorizationGate(OWNER, self.events)
        for operation in RELAY_OPERATIONS:
            self.gate.authorize(OWNER, OWNER, operation)
        self.prices = PriceResolver(self.gate, self.events, self.custody, self.host)
        self.meter = RelayerMeter(self.gate, self.events, self.prices, self.custody, self.host)
        self.meter.set_relayers(OWNER, allow=[RELAYER], deny=[])
        self.meter.set_fee_collector(OWNER, COLLECTOR)
        self.calls = 0

    def _body(self):
        self.calls += 1
        self.host.consume(BODY_UNITS)
        return "done"

    @property
    def expected_cost(self) -> Decimal:
        return (BODY_UNITS + settings.relay_base_gas) * self.host.gas_price()

    def test_non_relayer_is_not_metered(self):
        assert self.meter.metered_call("0xsomeone", self._body) == "done"
        assert self.custody.transfers == []
        assert self.events.named("RelayedCostPaid") == []

    def test_relayer_is_reimbursed_in_native_asset(self):
        assert self.meter.metered_call(RELAYER, self._body) == "done"

        assert self.custody.transfers == [{
            "asset": NATIVE,
            "amount": self.expected_cost,
            "recipient": COLLECTOR,
            "aux_data": settings.relay_cost_note.encode(),
        }]
        paid = self.events.named("RelayedCostPaid")[0]
        assert paid.payload["units"] == BODY_UNITS + settings.relay_base_gas
        assert paid.payload["relayer"] == RELAYER

    def test_gas_price_ceiling_checked_before_body(self):
        self.meter.set_gas_limits(OWNER, Decimal(1), Decimal(0))
        with pytest.raises(GasPriceAboveLimit) as exc_info:
            self.meter.metered_call(RELAYER, self._body)
        assert exc_info.value.code == "ACTION_GAS_LIMITS_EXCEEDED"
        assert self.calls == 0

    def test_gas_price_at_ceiling_passes(self):
        self.meter.set_gas_limits(OWNER, Decimal(2), Decimal(0))
        self.meter.metered_call(RELAYER, self._body)
        assert self.calls == 1

    def test_priority_fee_ceiling(self):
        self.host.set_gas_price(Decimal(2), priority_fee=Decimal(3))
        self.meter.set_gas_limits(OWNER, Decimal(0), Decimal(2))
        with pytest.raises(GasPriceAboveLimit):
            self.meter.metered_call(RELAYER, self._body)

    def test_ceilings_do_not_apply_to_non_relayers(self):
        self.meter.set_gas_limits(OWNER, Decimal(1), Decimal(1))
        self.meter.set_tx_cost_limit(OWNER, Decimal(1))
        self.meter.metered_call(OWNER, self._body)
        assert self.calls == 1

    def test_tx_cost_ceiling_checked_after_body(self):
        self.meter.set_tx_cost_limit(OWNER, self.expected_cost - 1)
        with pytest.raises(CostAboveLimit) as exc_info:
            self.meter.metered_call(RELAYER, self._body)
        assert exc_info.value.code == "ACTION_TX_COST_LIMIT_EXCEEDED"
        assert self.calls == 1

    def test_tx_cost_at_ceiling_passes(self):
        self.meter.set_tx_cost_limit(OWNER, self.expected_cost)
        self.meter.metered_call(RELAYER, self._body)
        assert len(self.custody.transfers) == 1

    def test_payment_asset_requires_price_feed(self):
        self.meter.set_gas_asset(OWNER, "USDC")
        with pytest.raises(MissingPriceFeed):
            self.meter.metered_call(RELAYER, self._body)

    def test_payment_asset_is_converted(self):
        self.custody.deposit("USDC", Decimal(1_000_000))
        self.custody.set_price(NATIVE, "USDC", Decimal("0.5"))
        self.meter.set_gas_asset(OWNER, "USDC")

        self.meter.metered_call(RELAYER, self._body)
        transfer = self.custody.transfers[0]
        assert transfer["asset"] == "USDC"
        assert transfer["amount"] == self.expected_cost * Decimal("0.5")

    def test_insufficient_balance_propagates(self):
        self.custody.balances[NATIVE] = Decimal(1)
        with pytest.raises(InsufficientBalance):
            self.meter.metered_call(RELAYER, self._body)

    def test_permissive_mode_skips_reimbursement(self):
        self.custody.balances[NATIVE] = Decimal(1)
        self.meter.set_permissive_mode(OWNER, True)

        assert self.meter.metered_call(RELAYER, self._body) == "done"
        assert self.custody.transfers == []
        skipped = self.events.named("RelayedCostSkipped")[0]
        assert skipped.payload["asset"] == NATIVE

    def test_permissive_mode_skips_failed_transfer(self):
        custody = RejectingCustody(self.host)
        custody.deposit(NATIVE, Decimal(1_000_000))
        self.meter.custody = custody
        self.meter.set_permissive_mode(OWNER, True)

        assert self.meter.metered_call(RELAYER, self._body) == "done"
        assert self.calls == 1
        assert custody.transfers == []
        assert custody.balance_of(NATIVE) == Decimal(1_000_000)
        assert self.events.named("RelayedCostPaid") == []
        skipped = self.events.named("RelayedCostSkipped")[0]
        assert "rejected" in skipped.payload["reason"]
        assert skipped.payload["amount"] == self.expected_cost

    def test_failed_transfer_propagates_outside_permissive_mode(self):
        self.meter.custody = RejectingCustody(self.host)
        self.meter.custody.deposit(NATIVE, Decimal(1_000_000))
        with pytest.raises(AdapterFailure):
            self.meter.metered_call(RELAYER, self._body)

    def test_relayed_call_requires_fee_collector(self):
        meter = RelayerMeter(self.gate, self.events, self.prices, self.custody, self.host)
        meter.set_relayers(OWNER, allow=[RELAYER], deny=[])
        with pytest.raises(ConfigurationError):
            meter.metered_call(RELAYER, self._body)


class TestRelayerConfiguration:
    """Test setters, accessors and events."""

    def setup_method(self):
        self.host = SimulatedHost(timestamp=1_700_000_000)
        self.custody = InMemoryCustody(self.host)
        self.events = EventBuffer("test", self.host.now)
        self.gate = AuthorizationGate(OWNER, self.events)
        self.prices = PriceResolver(self.gate, self.events, self.custody, self.host)
        self.meter = RelayerMeter(self.gate, self.events, self.prices, self.custody, self.host)

    def test_setters_are_gated(self):
        with pytest.raises(Unauthorized):
            self.meter.set_relayers(OWNER, allow=[RELAYER], deny=[])
        with pytest.raises(Unauthorized):
            self.meter.set_gas_limits(OWNER, Decimal(1), Decimal(1))
        with pytest.raises(Unauthorized):
            self.meter.set_tx_cost_limit(OWNER, Decimal(1))
        with pytest.raises(Unauthorized):
            self.meter.set_gas_asset(OWNER, "USDC")
        with pytest.raises(Unauthorized):
            self.meter.set_permissive_mode(OWNER, True)
        with pytest.raises(Unauthorized):
            self.meter.set_fee_collector(OWNER, COLLECTOR)

    def test_accessors_mirror_configuration(self):
        for operation in RELAY_OPERATIONS:
            self.gate.authorize(OWNER, OWNER, operation)

        assert self.meter.payment_asset() == NATIVE
        self.meter.set_relayers(OWNER, allow=[RELAYER, "0xb"], deny=["0xb"])
        self.meter.set_gas_limits(OWNER, Decimal(5), Decimal(1))
        self.meter.set_tx_cost_limit(OWNER, Decimal(100))
        self.meter.set_gas_asset(OWNER, "USDC")
        self.meter.set_permissive_mode(OWNER, True)
        self.meter.set_fee_collector(OWNER, COLLECTOR)

        assert self.meter.relayers() == {RELAYER}
        assert self.meter.gas_price_limit() == Decimal(5)
        assert self.meter.priority_fee_limit() == Decimal(1)
        assert self.meter.tx_cost_limit() == Decimal(100)
        assert self.meter.gas_asset() == "USDC"
        assert self.meter.payment_asset() == "USDC"
        assert self.meter.permissive_mode()
        assert self.meter.fee_collector() == COLLECTOR

        assert [e.payload["relayer"] for e in self.events.named("RelayerAllowed")] == [RELAYER, "0xb"]
        assert [e.payload["relayer"] for e in self.events.named("RelayerDisallowed")] == ["0xb"]
        assert self.events.named("RelayTxCostLimitSet")[0].payload == {
            "before": Decimal(0),
            "after": Decimal(100),
        }

    def test_invalid_values_rejected(self):
        for operation in RELAY_OPERATIONS:
            self.gate.authorize(OWNER, OWNER, operation)
        with pytest.raises(ConfigurationError):
            self.meter.set_fee_collector(OWNER, "")
        with pytest.raises(ConfigurationError):
            self.meter.set_tx_cost_limit(OWNER, Decimal(-1))

    def test_clearing_gas_asset_reverts_to_native(self):
        self.gate.authorize(OWNER, OWNER, Operation.SET_RELAY_GAS_ASSET)
        self.meter.set_gas_asset(OWNER, "USDC")
        self.meter.set_gas_asset(OWNER, None)
        assert self.meter.gas_asset() is None
        assert self.meter.payment_asset() == NATIVE
