"""
Custody Service & Host interfaces consumed by the policy layer.

The custody service holds balances and executes primitives on instruction
from an action. The host is the execution environment the action runs in:
it provides ledger time, the ambient execution prices, an execution-unit
meter and the atomic scope every invocation runs inside.

Both are external collaborators. The policy layer only ever calls the
operations declared here.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CustodyService(Protocol):
    """Balance-holding collaborator that executes primitives for an action."""

    def convert(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        adapter_id: str,
        aux_data: bytes = b"",
    ) -> Decimal:
        """Convert ``amount_in`` of ``asset_in`` into ``asset_out``; return the amount out."""
        ...

    def transfer_out(
        self,
        asset: str,
        amount: Decimal,
        recipient: str,
        aux_data: bytes = b"",
    ) -> None:
        ...

    def transfer_cross_domain(
        self,
        asset: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        domain_id: int,
        aux_data: bytes = b"",
    ) -> None:
        ...

    def default_price(self, base: str, quote: str) -> Decimal | None:
        """Rate from the custody service's own oracle, or None when no feed is set."""
        ...

    def balance_of(self, asset: str) -> Decimal:
        ...


@runtime_checkable
class Participant(Protocol):
    """State holder that takes part in the host's atomic scope."""

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


@runtime_checkable
class Host(Protocol):
    """Execution environment: time, execution prices, metering and atomicity."""

    domain_id: int

    def now(self) -> int:
        """Current ledger timestamp in seconds."""
        ...

    def gas_price(self) -> Decimal:
        """Native units paid per execution unit in the current invocation."""
        ...

    def priority_fee(self) -> Decimal:
        ...

    def gas_used(self) -> int:
        """Monotonic count of execution units consumed so far."""
        ...

    def register(self, participant: Participant) -> None:
        """Enlist ``participant`` in every subsequent atomic scope."""
        ...

    def atomic(self) -> AbstractContextManager[None]:
        """
        Scope in which every registered participant either commits or is restored.

        Nested scopes join the outermost one.
        """
        ...
