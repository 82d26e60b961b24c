"""
Limit Accrual — periodic volume limit with a rescalable accounting asset.

State machine::

    Inactive ──configure──▶ Active(window open) ──now ≥ next_reset──▶ Active(window elapsed)
                                   ▲                                          │
                                   └────────────── record() resets ───────────┘

Window boundaries are inclusive on the reset side: at ``now == next_reset_time``
the window is already elapsed.

Reconfiguring an active limit while its window is still open keeps the
window and rescales the accrued volume into the new accounting asset, so the
clock cannot be reset merely by tweaking the capacity.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from custody_actions.custody.interface import Host
from custody_actions.domain.errors import ConfigurationError, SwapLimitExceeded
from custody_actions.domain.schema import ZERO, LimitState, Operation
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent
from custody_actions.policy.prices import PriceResolver, QuoteInput

logger = logging.getLogger(__name__)


def next_window(state: LimitState, now: int) -> int:
    """Reset time of the window following an elapsed one."""
    advanced = state.next_reset_time + state.period
    return advanced if advanced > now else now + state.period


class LimitAccrual(PolicyComponent):
    """Rolling-window volume guard."""

    _state_fields = ("_state",)

    def __init__(self, gate, events: EventBuffer, prices: PriceResolver, host: Host) -> None:
        super().__init__(gate, events)
        self.prices = prices
        self.host = host
        self._state = LimitState()

    def limit(self) -> LimitState:
        return self._state.model_copy()

    def window_elapsed(self) -> bool:
        return self._state.is_active and self.host.now() >= self._state.next_reset_time

    # ── Configuration ───────────────────────────────────────────

    def configure(
        self,
        caller: str,
        asset: str,
        amount: Decimal,
        period: int,
        quote_bundle: QuoteInput = None,
    ) -> None:
        """
        Set, change or remove the limit.

        Args:
            caller: Account invoking the setter.
            asset: Accounting asset, empty to remove the limit.
            amount: Capacity per period, 0 to remove the limit.
            period: Window length in seconds, 0 to remove the limit.
            quote_bundle: Optional signed quotes used to rescale accrued volume.

        Raises:
            ConfigurationError: Some but not all of asset/amount/period are set.
        """
        self._require(caller, Operation.SET_LIMIT)
        set_fields = [bool(asset), amount != 0, period != 0]
        if any(set_fields) and not all(set_fields):
            raise ConfigurationError(
                "Limit asset, amount and period must be all set or all zero",
                asset=asset,
                amount=amount,
                period=period,
            )
        if amount < 0 or period < 0:
            raise ConfigurationError("Limit amount and period cannot be negative")

        before = self._state
        now = self.host.now()

        if not before.is_active or not all(set_fields) or now >= before.next_reset_time:
            after = LimitState(
                asset=asset,
                amount=amount,
                period=period,
                accrued=ZERO,
                next_reset_time=now + period if period else 0,
            )
        else:
            accrued = before.accrued
            if accrued:
                accrued = self.prices.convert(accrued, before.asset, asset, quote_bundle)
            after = LimitState(
                asset=asset,
                amount=amount,
                period=period,
                accrued=accrued,
                next_reset_time=before.next_reset_time,
            )

        self._state = after
        self.events.emit(
            "LimitSet",
            before=before.model_dump(mode="json"),
            after=after.model_dump(mode="json"),
        )
        logger.info("Limit configured: asset=%s amount=%s period=%d", asset, amount, period)

    # ── Guard ───────────────────────────────────────────────────

    def can_accrue(self, asset: str, amount: Decimal, quote_bundle: QuoteInput = None) -> bool:
        """Whether ``amount`` of ``asset`` fits in the current window. Never mutates."""
        state = self._state
        if not state.is_active:
            return True
        converted = self.prices.convert(amount, asset, state.asset, quote_bundle)
        accrued = ZERO if self.host.now() >= state.next_reset_time else state.accrued
        return accrued + converted <= state.amount

    def record(self, asset: str, amount: Decimal, quote_bundle: QuoteInput = None) -> Decimal:
        """
        Accrue ``amount`` of ``asset``, resetting an elapsed window first.

        Returns:
            The amount accrued, in the limit's accounting asset.

        Raises:
            SwapLimitExceeded: Capacity would be exceeded.
        """
        state = self._state
        if not state.is_active:
            return ZERO

        converted = self.prices.convert(amount, asset, state.asset, quote_bundle)
        now = self.host.now()
        accrued, next_reset_time = state.accrued, state.next_reset_time
        if now >= next_reset_time:
            accrued, next_reset_time = ZERO, next_window(state, now)

        if accrued + converted > state.amount:
            raise SwapLimitExceeded(
                f"Accruing {converted} {state.asset} on top of {accrued} exceeds capacity {state.amount}",
                accrued=accrued,
                amount=converted,
                capacity=state.amount,
            )

        self._state = state.model_copy(
            update={"accrued": accrued + converted, "next_reset_time": next_reset_time}
        )
        return converted
