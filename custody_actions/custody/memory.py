"""
In-memory Custody Service and simulated Host.

Reference implementations of the collaborator protocols in
``custody_actions.custody.interface``. They are what the test-suite and the
dashboard demo run against, and they are deliberately simple:

- ``SimulatedHost`` keeps a manual clock, configurable execution prices and
  an execution-unit meter, and implements the atomic scope by snapshotting
  every registered participant on entry and restoring it on failure.
- ``InMemoryCustody`` keeps balances in a dict, quotes its default oracle from
  a table of pairs, converts through registered adapter rates and charges a
  fixed number of execution units per primitive.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

from custody_actions.config import settings
from custody_actions.custody.interface import Participant
from custody_actions.domain.errors import AdapterFailure, InsufficientBalance
from custody_actions.domain.schema import ONE, ZERO

logger = logging.getLogger(__name__)


# Execution units charged per custody primitive
DEFAULT_UNIT_COSTS = {
    "convert": 120_000,
    "transfer_out": 40_000,
    "transfer_cross_domain": 150_000,
}


class SimulatedHost:
    """Manual-clock host with an execution-unit meter and snapshot-based atomicity."""

    def __init__(
        self,
        timestamp: int | None = None,
        gas_price: Decimal = ONE,
        priority_fee: Decimal = ZERO,
        domain_id: int | None = None,
    ) -> None:
        self.domain_id = settings.local_domain_id if domain_id is None else domain_id
        self._timestamp = int(time.time()) if timestamp is None else timestamp
        self._gas_price = Decimal(gas_price)
        self._priority_fee = Decimal(priority_fee)
        self._gas_used = 0
        self._participants: list[Participant] = []
        self._depth = 0

    # ── Clock ───────────────────────────────────────────────────

    def now(self) -> int:
        return self._timestamp

    def advance(self, seconds: int) -> int:
        self._timestamp += seconds
        return self._timestamp

    def set_time(self, timestamp: int) -> None:
        self._timestamp = timestamp

    # ── Execution prices & metering ─────────────────────────────

    def gas_price(self) -> Decimal:
        return self._gas_price

    def priority_fee(self) -> Decimal:
        return self._priority_fee

    def set_gas_price(self, gas_price: Decimal, priority_fee: Decimal | None = None) -> None:
        self._gas_price = Decimal(gas_price)
        if priority_fee is not None:
            self._priority_fee = Decimal(priority_fee)

    def gas_used(self) -> int:
        return self._gas_used

    def consume(self, units: int) -> None:
        self._gas_used += units

    # ── Atomicity ───────────────────────────────────────────────

    def register(self, participant: Participant) -> None:
        if participant not in self._participants:
            self._participants.append(participant)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._depth:
            yield
            return

        saved = [(participant, participant.snapshot()) for participant in self._participants]
        self._depth += 1
        try:
            yield
        except Exception:
            for participant, state in saved:
                participant.restore(state)
            logger.info("Atomic scope reverted: participants=%d", len(saved))
            raise
        finally:
            self._depth -= 1


class InMemoryCustody:
    """
    Dict-backed custody service.

    Usage:
        host = SimulatedHost(timestamp=1_700_000_000)
        custody = InMemoryCustody(host)
        custody.deposit("WETH", Decimal("10"))
        custody.set_price("WETH", "USDC", Decimal("1600"))
        custody.set_adapter_rate("dex", "WETH", "USDC", Decimal("1600"))
    """

    def __init__(self, host: SimulatedHost, unit_costs: dict[str, int] | None = None) -> None:
        self.host = host
        self.unit_costs = dict(unit_costs or DEFAULT_UNIT_COSTS)
        self.balances: dict[str, Decimal] = {}
        self.prices: dict[tuple[str, str], Decimal] = {}
        self.adapters: dict[str, dict[tuple[str, str], Decimal]] = {}
        self.transfers: list[dict[str, Any]] = []
        self.conversions: list[dict[str, Any]] = []
        self.bridged: list[dict[str, Any]] = []
        host.register(self)

    # ── Test/demo setup ─────────────────────────────────────────

    def deposit(self, asset: str, amount: Decimal) -> None:
        self.balances[asset] = self.balances.get(asset, ZERO) + Decimal(amount)

    def set_price(self, base: str, quote: str, rate: Decimal) -> None:
        self.prices[(base, quote)] = Decimal(rate)

    def unset_price(self, base: str, quote: str) -> None:
        self.prices.pop((base, quote), None)

    def set_adapter_rate(self, adapter_id: str, asset_in: str, asset_out: str, rate: Decimal) -> None:
        self.adapters.setdefault(adapter_id, {})[(asset_in, asset_out)] = Decimal(rate)

    # ── Participant ─────────────────────────────────────────────

    def snapshot(self) -> Any:
        return copy.deepcopy((self.balances, self.transfers, self.conversions, self.bridged))

    def restore(self, state: Any) -> None:
        self.balances, self.transfers, self.conversions, self.bridged = state

    # ── CustodyService ──────────────────────────────────────────

    def balance_of(self, asset: str) -> Decimal:
        return self.balances.get(asset, ZERO)

    def default_price(self, base: str, quote: str) -> Decimal | None:
        if (base, quote) in self.prices:
            return self.prices[(base, quote)]
        if (quote, base) in self.prices:
            return ONE / self.prices[(quote, base)]
        return None

    def convert(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        adapter_id: str,
        aux_data: bytes = b"",
    ) -> Decimal:
        self.host.consume(self.unit_costs["convert"])
        rates = self.adapters.get(adapter_id)
        if rates is None or (asset_in, asset_out) not in rates:
            raise AdapterFailure(
                f"Adapter '{adapter_id}' cannot convert {asset_in} into {asset_out}",
                adapter_id=adapter_id,
            )

        amount_out = amount_in * rates[(asset_in, asset_out)]
        if amount_out < min_amount_out:
            raise AdapterFailure(
                f"Adapter '{adapter_id}' returned {amount_out}, below minimum {min_amount_out}",
                adapter_id=adapter_id,
            )

        self._debit(asset_in, amount_in)
        self.deposit(asset_out, amount_out)
        self.conversions.append({
            "asset_in": asset_in,
            "asset_out": asset_out,
            "amount_in": amount_in,
            "amount_out": amount_out,
            "min_amount_out": min_amount_out,
            "adapter_id": adapter_id,
            "aux_data": aux_data,
        })
        return amount_out

    def transfer_out(
        self,
        asset: str,
        amount: Decimal,
        recipient: str,
        aux_data: bytes = b"",
    ) -> None:
        self.host.consume(self.unit_costs["transfer_out"])
        self._debit(asset, amount)
        self.transfers.append({
            "asset": asset,
            "amount": amount,
            "recipient": recipient,
            "aux_data": aux_data,
        })

    def transfer_cross_domain(
        self,
        asset: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        domain_id: int,
        aux_data: bytes = b"",
    ) -> None:
        self.host.consume(self.unit_costs["transfer_cross_domain"])
        self._debit(asset, amount_in)
        self.bridged.append({
            "asset": asset,
            "amount_in": amount_in,
            "min_amount_out": min_amount_out,
            "domain_id": domain_id,
            "aux_data": aux_data,
        })

    # ── Internal ────────────────────────────────────────────────

    def _debit(self, asset: str, amount: Decimal) -> None:
        balance = self.balance_of(asset)
        if balance < amount:
            raise InsufficientBalance(
                f"Custody holds {balance} {asset}, {amount} requested",
                asset=asset,
                balance=balance,
                requested=amount,
            )
        self.balances[asset] = balance - amount
