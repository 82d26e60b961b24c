"""
Error taxonomy for the custody action policy layer.

Every guard fails fast with its own exception type so callers can tell
"try a fresher quote" apart from "wait for the window to reset" or
"insufficient permission". None of these are retried inside the library:
an invocation that raises is reverted as a whole by the host's atomic scope.

Hierarchy:
    CustodyActionError
    ├── AuthorizationError  → Unauthorized
    ├── ConfigurationError
    ├── OracleError         → MissingPriceFeed, OracleFeedOutdated, InvalidQuoteSignature
    ├── PolicyViolation     → ThresholdNotMet, ThresholdExceeded, SwapLimitExceeded,
    │                         SlippageAboveMax, AssetNotAccepted, TimeLockNotExpired
    ├── CostViolation       → GasPriceAboveLimit, CostAboveLimit
    └── CustodyError        → InsufficientBalance, AdapterFailure
"""

from __future__ import annotations

from typing import Any


class CustodyActionError(Exception):
    """Root of every error raised by the policy layer."""

    code: str = "CUSTODY_ACTION_ERROR"

    def __init__(self, message: str = "", **context: Any) -> None:
        self.context = context
        super().__init__(message or self.code)


# ════════════════════════════════════════════════════════════════
# Authorization
# ════════════════════════════════════════════════════════════════


class AuthorizationError(CustodyActionError):
    code = "AUTH_ERROR"


class Unauthorized(AuthorizationError):
    """The caller does not hold the permission required by the entry point."""

    code = "AUTH_SENDER_NOT_ALLOWED"


# ════════════════════════════════════════════════════════════════
# Configuration
# ════════════════════════════════════════════════════════════════


class ConfigurationError(CustodyActionError):
    """Invalid configuration input, or an action executed while unconfigured."""

    code = "INVALID_CONFIGURATION"


# ════════════════════════════════════════════════════════════════
# Oracle
# ════════════════════════════════════════════════════════════════


class OracleError(CustodyActionError):
    code = "ORACLE_ERROR"


class MissingPriceFeed(OracleError):
    code = "MISSING_PRICE_FEED"


class OracleFeedOutdated(OracleError):
    """A quote bundle from a trusted signer carries an expired deadline."""

    code = "ORACLE_FEED_OUTDATED"


class InvalidQuoteSignature(OracleError):
    code = "INVALID_QUOTE_SIGNATURE"


# ════════════════════════════════════════════════════════════════
# Policy
# ════════════════════════════════════════════════════════════════


class PolicyViolation(CustodyActionError):
    code = "POLICY_VIOLATION"


class ThresholdNotMet(PolicyViolation):
    code = "ACTION_TOKEN_THRESHOLD_NOT_MET"


class ThresholdExceeded(PolicyViolation):
    code = "ACTION_TOKEN_THRESHOLD_EXCEEDED"


class SwapLimitExceeded(PolicyViolation):
    code = "SWAP_LIMIT_EXCEEDED"


class SlippageAboveMax(PolicyViolation):
    code = "ACTION_SLIPPAGE_TOO_HIGH"


class AssetNotAccepted(PolicyViolation):
    code = "TOKEN_ACCEPTANCE_FORBIDDEN"


class TimeLockNotExpired(PolicyViolation):
    code = "ACTION_TIME_LOCK_NOT_EXPIRED"


# ════════════════════════════════════════════════════════════════
# Relayed execution cost
# ════════════════════════════════════════════════════════════════


class CostViolation(CustodyActionError):
    code = "COST_VIOLATION"


class GasPriceAboveLimit(CostViolation):
    code = "ACTION_GAS_LIMITS_EXCEEDED"


class CostAboveLimit(CostViolation):
    code = "ACTION_TX_COST_LIMIT_EXCEEDED"


# ════════════════════════════════════════════════════════════════
# Custody service
# ════════════════════════════════════════════════════════════════


class CustodyError(CustodyActionError):
    """Failure reported by the custody service; propagated verbatim."""

    code = "CUSTODY_ERROR"


class InsufficientBalance(CustodyError):
    code = "NOT_ENOUGH_BALANCE"


class AdapterFailure(CustodyError):
    code = "ADAPTER_FAILURE"
