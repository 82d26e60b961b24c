"""
Base Action — the composition root every concrete action inherits from.

An action owns one instance of every policy component and enforces the same
pipeline around its custody primitive, whatever the primitive is:

    AuthorizationGate(EXECUTE)
      → RelayerMeter (gas price ceilings, metering)
        → TimeLock → TokenAcceptance → ThresholdGuard → LimitAccrual.can_accrue
          → custody primitive
        → LimitAccrual.record → TimeLock.record
      → reimbursement (cost ceiling, payment)
    → Executed event

The whole pipeline runs inside the host's atomic scope: the action's policy
state and the custody service are restored if any step raises, and the
events emitted along the way are discarded with them.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from decimal import Decimal
from typing import Any, ClassVar

import structlog

from custody_actions.custody.interface import CustodyService, Host
from custody_actions.domain.errors import ConfigurationError, CustodyActionError, SwapLimitExceeded
from custody_actions.domain.schema import ActionEvent, Operation
from custody_actions.governance.permissions import AuthorizationGate
from custody_actions.ledger.events import EventBuffer, EventSink
from custody_actions.policy.acceptance import AcceptanceGuard
from custody_actions.policy.component import PolicyComponent
from custody_actions.policy.limits import LimitAccrual
from custody_actions.policy.prices import PriceResolver, QuoteInput
from custody_actions.policy.relayers import RelayerMeter
from custody_actions.policy.thresholds import ThresholdGuard
from custody_actions.policy.timelock import TimeLockGuard

logger = logging.getLogger(__name__)


class BaseAction(ABC):
    """
    Base class for custody actions.

    Subclasses implement ``_primitive`` (the custody call) and expose an
    ``execute`` with the parameters of their kind that funnels into
    ``_run``. Action-level configuration is listed in ``_state_fields`` so
    that it takes part in the atomic scope like the components do.
    """

    kind: ClassVar[str] = "action"
    _state_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        name: str,
        owner: str,
        custody: CustodyService,
        host: Host,
        event_sinks: list[EventSink] | None = None,
    ) -> None:
        """
        Initialize an action and its policy components.

        Args:
            name: Identifier of this action instance; the source of its events.
            owner: Bootstrap account, granted AUTHORIZE and UNAUTHORIZE.
            custody: Custody service the action instructs.
            host: Execution environment providing time, gas and atomicity.
            event_sinks: Callables receiving every committed event, e.g.
                ``EventLedger.append``.
        """
        self.name = name
        self.owner = owner
        self.custody = custody
        self.host = host
        self.events = EventBuffer(name, host.now, sinks=event_sinks)

        self.gate = AuthorizationGate(owner, self.events)
        self.prices = PriceResolver(self.gate, self.events, custody, host)
        self.acceptance = AcceptanceGuard(self.gate, self.events)
        self.thresholds = ThresholdGuard(self.gate, self.events, self.prices)
        self.limits = LimitAccrual(self.gate, self.events, self.prices, host)
        self.relayer = RelayerMeter(self.gate, self.events, self.prices, custody, host)
        self.time_lock = TimeLockGuard(self.gate, self.events, host)

        self.log = structlog.get_logger(__name__).bind(action=name, kind=self.kind)
        host.register(self)

        logger.info("Action instantiated: name=%s kind=%s owner=%s", name, self.kind, owner)

    # ── Authorization shortcuts ─────────────────────────────────

    def authorize(self, caller: str, who: str, operation: Operation) -> None:
        self.gate.authorize(caller, who, operation)

    def unauthorize(self, caller: str, who: str, operation: Operation) -> None:
        self.gate.unauthorize(caller, who, operation)

    def is_authorized(self, who: str, operation: Operation) -> bool:
        return self.gate.is_authorized(who, operation)

    # ── Participant ─────────────────────────────────────────────

    def components(self) -> list[PolicyComponent]:
        return [
            self.gate,
            self.prices,
            self.acceptance,
            self.thresholds,
            self.limits,
            self.relayer,
            self.time_lock,
        ]

    def snapshot(self) -> dict[str, Any]:
        return {
            "components": [component.snapshot() for component in self.components()],
            "action": {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields},
        }

    def restore(self, state: dict[str, Any]) -> None:
        for component, saved in zip(self.components(), state["components"]):
            component.restore(saved)
        for name, value in state["action"].items():
            setattr(self, name, value)

    # ── Execution pipeline ──────────────────────────────────────

    def check_policies(self, asset: str, amount: Decimal, quote_bundle: QuoteInput = None) -> None:
        """
        Run the read-only guards for ``amount`` of ``asset``.

        Raises:
            ConfigurationError: ``amount`` is not positive.
            TimeLockNotExpired: The action is still time-locked.
            AssetNotAccepted, ThresholdNotMet, ThresholdExceeded, SwapLimitExceeded
            MissingPriceFeed / OracleFeedOutdated: A conversion could not be priced.
        """
        if amount <= 0:
            raise ConfigurationError(f"Amount must be positive, got {amount}", amount=amount)
        self.time_lock.validate()
        self.acceptance.validate(asset)
        self.thresholds.validate(asset, amount, quote_bundle)
        if not self.limits.can_accrue(asset, amount, quote_bundle):
            state = self.limits.limit()
            raise SwapLimitExceeded(
                f"{amount} {asset} does not fit in the current window of {state.amount} {state.asset}",
                asset=asset,
                amount=amount,
                accrued=state.accrued,
            )

    def _run(
        self,
        caller: str,
        asset: str,
        amount: Decimal,
        aux_data: bytes,
        quote_bundle: QuoteInput,
        prepare: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Execute the pipeline for one invocation.

        ``prepare`` resolves the action-specific parameters (destination,
        minimum out, ...) and validates them; its result is handed to
        ``_primitive`` and merged into the ``Executed`` event payload.
        """
        self.log.info("custody_actions.action.requested", caller=caller, asset=asset, amount=str(amount))
        try:
            with self.events.deferred():
                with self.host.atomic():
                    self.gate.require(caller, Operation.EXECUTE)
                    outputs = self.relayer.metered_call(
                        caller,
                        lambda: self._guarded(asset, amount, aux_data, quote_bundle, prepare),
                        quote_bundle,
                    )
                    payload = {
                        "caller": caller,
                        "asset": asset,
                        "amount": amount,
                        "aux_data": aux_data.hex(),
                        **outputs,
                    }
                    self.events.emit("Executed", **payload)
        except CustodyActionError as e:
            self.log.warning(
                "custody_actions.action.reverted",
                caller=caller,
                asset=asset,
                error=e.code,
                reason=str(e),
            )
            raise

        self.log.info("custody_actions.action.executed", caller=caller, asset=asset, amount=str(amount))
        return payload

    def _guarded(
        self,
        asset: str,
        amount: Decimal,
        aux_data: bytes,
        quote_bundle: QuoteInput,
        prepare: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        self.check_policies(asset, amount, quote_bundle)
        params = prepare()
        outputs = self._primitive(asset, amount, aux_data, params) or {}
        accrued = self.limits.record(asset, amount, quote_bundle)
        self.time_lock.record()
        return {**params, **outputs, "accrued": accrued}

    @abstractmethod
    def _primitive(
        self,
        asset: str,
        amount: Decimal,
        aux_data: bytes,
        params: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Invoke the custody primitive of this action kind."""
        ...

    # ── Read view ───────────────────────────────────────────────

    def describe(self) -> dict[str, Any]:
        """Every configured value of this action, JSON-ready."""
        limit = self.limits.limit()
        default_threshold = self.thresholds.default_threshold()
        return {
            "name": self.name,
            "kind": self.kind,
            "owner": self.owner,
            "permissions": {
                account: sorted(op.value for op in ops) for account, ops in self.gate.accounts().items()
            },
            "oracle_signers": sorted(self.prices.oracle_signers()),
            "acceptance": self.acceptance.acceptance.model_dump(mode="json"),
            "thresholds": {
                "default": default_threshold.model_dump(mode="json") if default_threshold else None,
                "custom": {
                    asset: threshold.model_dump(mode="json")
                    for asset, threshold in self.thresholds.custom_thresholds().items()
                },
            },
            "limit": limit.model_dump(mode="json"),
            "relay": self.relayer.config.model_dump(mode="json"),
            "time_lock": self.time_lock.time_lock().model_dump(mode="json"),
            **self._describe_action(),
        }

    def _describe_action(self) -> dict[str, Any]:
        return {}

    def recent_events(self, limit: int = 50) -> list[ActionEvent]:
        return self.events.history[-limit:]
