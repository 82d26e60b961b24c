"""
Relayer Meter — execution-cost metering and reimbursement for relayed calls.

Calls submitted by an allow-listed relayer are metered: the host's
execution-unit meter is read around the wrapped body, a fixed base overhead
is added, and the resulting cost (in the native metering asset) is paid back
from the custody service to the fee collector, optionally converted into a
different payment asset first.

Ceilings:
    - ``gas_price_limit`` / ``priority_fee_limit`` are checked *before* the body runs.
    - ``tx_cost_limit`` can only be checked *after* it, once the cost is known.

Permissive mode tolerates a custody service that cannot pay: the
reimbursement is skipped and the body's effects stand. Outside permissive
mode the failure propagates and the host's atomic scope reverts everything.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import TypeVar

from custody_actions.config import settings
from custody_actions.custody.interface import CustodyService, Host
from custody_actions.domain.errors import (
    ConfigurationError,
    CostAboveLimit,
    CustodyError,
    GasPriceAboveLimit,
)
from custody_actions.domain.schema import Operation, RelayConfig
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent
from custody_actions.policy.prices import PriceResolver, QuoteInput

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RelayerMeter(PolicyComponent):
    """Wraps action bodies and reimburses relayers for the cost of running them."""

    _state_fields = ("_config",)

    def __init__(
        self,
        gate,
        events: EventBuffer,
        prices: PriceResolver,
        custody: CustodyService,
        host: Host,
    ) -> None:
        super().__init__(gate, events)
        self.prices = prices
        self.custody = custody
        self.host = host
        self._config = RelayConfig()

    # ── Read accessors ──────────────────────────────────────────

    @property
    def config(self) -> RelayConfig:
        return self._config.model_copy(deep=True)

    def is_relayer(self, account: str) -> bool:
        return account in self._config.relayers

    def relayers(self) -> set[str]:
        return set(self._config.relayers)

    def gas_price_limit(self) -> Decimal:
        return self._config.gas_price_limit

    def priority_fee_limit(self) -> Decimal:
        return self._config.priority_fee_limit

    def tx_cost_limit(self) -> Decimal:
        return self._config.tx_cost_limit

    def gas_asset(self) -> str | None:
        return self._config.gas_asset

    def payment_asset(self) -> str:
        return self._config.gas_asset or settings.native_asset

    def permissive_mode(self) -> bool:
        return self._config.permissive_mode

    def fee_collector(self) -> str | None:
        return self._config.fee_collector

    # ── Metering ────────────────────────────────────────────────

    def check_gas_prices(self) -> None:
        """
        Raises:
            GasPriceAboveLimit: The ambient gas price or priority fee exceeds its ceiling.
        """
        config = self._config
        gas_price = self.host.gas_price()
        priority_fee = self.host.priority_fee()
        if config.gas_price_limit and gas_price > config.gas_price_limit:
            raise GasPriceAboveLimit(
                f"Gas price {gas_price} above limit {config.gas_price_limit}",
                gas_price=gas_price,
                limit=config.gas_price_limit,
            )
        if config.priority_fee_limit and priority_fee > config.priority_fee_limit:
            raise GasPriceAboveLimit(
                f"Priority fee {priority_fee} above limit {config.priority_fee_limit}",
                priority_fee=priority_fee,
                limit=config.priority_fee_limit,
            )

    def metered_call(
        self,
        caller: str,
        body: Callable[[], T],
        quote_bundle: QuoteInput = None,
    ) -> T:
        """
        Run ``body``, metering and reimbursing it when ``caller`` is a relayer.

        Raises:
            GasPriceAboveLimit: Before running the body.
            CostAboveLimit: After running the body.
            MissingPriceFeed / OracleFeedOutdated: The cost cannot be priced
                in the payment asset.
            CustodyError: Reimbursement failed outside permissive mode.
        """
        if not self.is_relayer(caller):
            return body()

        self.check_gas_prices()
        if not self._config.fee_collector:
            raise ConfigurationError("Relayed execution requires a fee collector")

        gas_before = self.host.gas_used()
        result = body()
        units = self.host.gas_used() - gas_before + settings.relay_base_gas

        cost = units * self.host.gas_price()
        limit = self._config.tx_cost_limit
        if limit and cost > limit:
            raise CostAboveLimit(f"Relayed cost {cost} above limit {limit}", cost=cost, limit=limit)

        self._reimburse(caller, units, cost, quote_bundle)
        return result

    def _reimburse(self, relayer: str, units: int, cost: Decimal, quote_bundle: QuoteInput) -> None:
        asset = self.payment_asset()
        amount = self.prices.convert(cost, settings.native_asset, asset, quote_bundle)
        collector = self._config.fee_collector

        if self._config.permissive_mode:
            balance = self.custody.balance_of(asset)
            if balance < amount:
                self._skip(relayer, asset, amount, f"balance {balance} below {amount}")
                return
            try:
                self._pay(asset, amount, collector)
            except CustodyError as e:
                self._skip(relayer, asset, amount, str(e))
                return
        else:
            self._pay(asset, amount, collector)

        self.events.emit(
            "RelayedCostPaid",
            relayer=relayer,
            units=units,
            cost=cost,
            asset=asset,
            amount=amount,
            fee_collector=collector,
        )

    def _pay(self, asset: str, amount: Decimal, collector: str) -> None:
        self.custody.transfer_out(asset, amount, collector, settings.relay_cost_note.encode())

    def _skip(self, relayer: str, asset: str, amount: Decimal, reason: str) -> None:
        logger.warning("Skipping relayer reimbursement in permissive mode: %s", reason)
        self.events.emit("RelayedCostSkipped", relayer=relayer, asset=asset, amount=amount, reason=reason)

    # ── Configuration ───────────────────────────────────────────

    def set_relayers(self, caller: str, allow: Iterable[str], deny: Iterable[str]) -> None:
        self._require(caller, Operation.SET_RELAYERS)
        relayers = self._config.relayers
        for relayer in allow:
            if relayer not in relayers:
                relayers.add(relayer)
                self.events.emit("RelayerAllowed", relayer=relayer)
        for relayer in deny:
            if relayer in relayers:
                relayers.discard(relayer)
                self.events.emit("RelayerDisallowed", relayer=relayer)

    def set_gas_limits(self, caller: str, gas_price_limit: Decimal, priority_fee_limit: Decimal) -> None:
        self._require(caller, Operation.SET_RELAY_GAS_LIMITS)
        if gas_price_limit < 0 or priority_fee_limit < 0:
            raise ConfigurationError("Gas limits cannot be negative")
        before = (self._config.gas_price_limit, self._config.priority_fee_limit)
        self._config.gas_price_limit = gas_price_limit
        self._config.priority_fee_limit = priority_fee_limit
        self.events.emit(
            "RelayGasLimitsSet",
            before={"gas_price_limit": before[0], "priority_fee_limit": before[1]},
            after={"gas_price_limit": gas_price_limit, "priority_fee_limit": priority_fee_limit},
        )

    def set_tx_cost_limit(self, caller: str, tx_cost_limit: Decimal) -> None:
        self._require(caller, Operation.SET_RELAY_TX_COST_LIMIT)
        if tx_cost_limit < 0:
            raise ConfigurationError("Transaction cost limit cannot be negative")
        before, self._config.tx_cost_limit = self._config.tx_cost_limit, tx_cost_limit
        self.events.emit("RelayTxCostLimitSet", before=before, after=tx_cost_limit)

    def set_gas_asset(self, caller: str, gas_asset: str | None) -> None:
        self._require(caller, Operation.SET_RELAY_GAS_ASSET)
        before, self._config.gas_asset = self._config.gas_asset, gas_asset or None
        self.events.emit("RelayGasAssetSet", before=before, after=self._config.gas_asset)

    def set_permissive_mode(self, caller: str, permissive_mode: bool) -> None:
        self._require(caller, Operation.SET_RELAY_PERMISSIVE_MODE)
        before, self._config.permissive_mode = self._config.permissive_mode, permissive_mode
        self.events.emit("RelayPermissiveModeSet", before=before, after=permissive_mode)

    def set_fee_collector(self, caller: str, fee_collector: str) -> None:
        self._require(caller, Operation.SET_FEE_COLLECTOR)
        if not fee_collector:
            raise ConfigurationError("Fee collector cannot be empty")
        before, self._config.fee_collector = self._config.fee_collector, fee_collector
        self.events.emit("FeeCollectorSet", before=before, after=fee_collector)
