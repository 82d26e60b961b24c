"""
Authorization Gate — capability-based permission boundary for every entry point.

Every state-mutating entry point of every component calls
``AuthorizationGate.require(caller, operation)`` as its first statement.
A permission is a plain (account, operation) pair: no expiry, no delegation
depth, no batch revocation.

The gate is configured through itself. Granting a permission requires the
caller to hold ``Operation.AUTHORIZE``; revoking one requires
``Operation.UNAUTHORIZE``. The bootstrap owner receives both on construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from custody_actions.domain.errors import Unauthorized
from custody_actions.domain.schema import Operation
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent

logger = logging.getLogger(__name__)


class PermissionDecision(str, Enum):
    """Result of a permission check."""

    AUTHORIZED = "authorized"
    DENIED = "denied"


@dataclass
class PermissionCheckResult:
    """Result of checking an operation against an account's permissions."""

    decision: PermissionDecision
    operation: Operation
    account: str
    reason: str

    @property
    def is_allowed(self) -> bool:
        return self.decision == PermissionDecision.AUTHORIZED


class AuthorizationGate(PolicyComponent):
    """
    Central permission store and enforcement point.

    Usage:
        gate = AuthorizationGate(owner="0xowner", events=buffer)
        gate.authorize("0xowner", "0xbot", Operation.EXECUTE)
        gate.require("0xbot", Operation.EXECUTE)      # passes
        gate.require("0xother", Operation.EXECUTE)    # raises Unauthorized
    """

    _state_fields = ("_grants",)

    def __init__(self, owner: str, events: EventBuffer) -> None:
        super().__init__(self, events)
        self.owner = owner
        self._grants: dict[str, set[Operation]] = {}
        self._grant(owner, Operation.AUTHORIZE)
        self._grant(owner, Operation.UNAUTHORIZE)

    def is_authorized(self, account: str, operation: Operation) -> bool:
        return operation in self._grants.get(account, ())

    def check(self, account: str, operation: Operation) -> PermissionCheckResult:
        """Check whether ``account`` may perform ``operation``."""
        if self.is_authorized(account, operation):
            return PermissionCheckResult(
                decision=PermissionDecision.AUTHORIZED,
                operation=operation,
                account=account,
                reason=f"{account} holds {operation.value}",
            )
        return PermissionCheckResult(
            decision=PermissionDecision.DENIED,
            operation=operation,
            account=account,
            reason=f"{account} does not hold {operation.value}",
        )

    def require(self, account: str, operation: Operation) -> None:
        """
        Raise ``Unauthorized`` unless ``account`` holds ``operation``.

        Raises:
            Unauthorized: If the permission is absent.
        """
        result = self.check(account, operation)
        if not result.is_allowed:
            logger.warning("Permission denied: %s", result.reason)
            raise Unauthorized(result.reason, account=account, operation=operation.value)

    def authorize(self, caller: str, who: str, operation: Operation) -> None:
        """Grant ``operation`` to ``who``. Granting a held permission is a no-op."""
        self.require(caller, Operation.AUTHORIZE)
        if self._grant(who, operation):
            self.events.emit("Authorized", who=who, operation=operation.value, by=caller)
            logger.info("Permission granted: who=%s operation=%s", who, operation.value)

    def unauthorize(self, caller: str, who: str, operation: Operation) -> None:
        """Revoke ``operation`` from ``who``. Revoking a missing permission is a no-op."""
        self.require(caller, Operation.UNAUTHORIZE)
        held = self._grants.get(who)
        if held is None or operation not in held:
            return

        held.discard(operation)
        if not held:
            del self._grants[who]
        self.events.emit("Unauthorized", who=who, operation=operation.value, by=caller)
        logger.info("Permission revoked: who=%s operation=%s", who, operation.value)

    def permissions_of(self, account: str) -> set[Operation]:
        return set(self._grants.get(account, ()))

    def accounts(self) -> dict[str, set[Operation]]:
        return {account: set(ops) for account, ops in self._grants.items()}

    def _grant(self, who: str, operation: Operation) -> bool:
        held = self._grants.setdefault(who, set())
        if operation in held:
            return False
        held.add(operation)
        return True
