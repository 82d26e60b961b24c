"""
Policy Schema — Pydantic models for every configurable policy entity.

These models are the canonical data structures of the policy layer. They
govern the shape of action configuration, quote bundles, emitted events and
the snapshots served by the dashboard.

Conventions:
    - Monetary quantities and rates are ``Decimal``.
    - Ledger time is an integer timestamp in seconds.
    - Assets and accounts are opaque, non-empty strings.
    - A ceiling or capacity of ``0`` means "unbounded" / "not configured".
"""

from __future__ import annotations

import enum
import hashlib
import json
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field

ZERO = Decimal(0)
ONE = Decimal(1)


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Operation(str, enum.Enum):
    """Operation identifiers checked by the authorization gate."""

    # Authorization gate
    AUTHORIZE = "authorize"
    UNAUTHORIZE = "unauthorize"

    # Price resolution
    SET_ORACLE_SIGNERS = "set_oracle_signers"

    # Thresholds
    SET_DEFAULT_THRESHOLD = "set_default_threshold"
    UNSET_DEFAULT_THRESHOLD = "unset_default_threshold"
    SET_CUSTOM_THRESHOLDS = "set_custom_thresholds"
    UNSET_CUSTOM_THRESHOLDS = "unset_custom_thresholds"

    # Limits
    SET_LIMIT = "set_limit"

    # Time lock
    SET_TIME_LOCK_DELAY = "set_time_lock_delay"
    SET_TIME_LOCK_EXPIRATION = "set_time_lock_expiration"

    # Relayed execution
    SET_RELAYERS = "set_relayers"
    SET_RELAY_GAS_LIMITS = "set_relay_gas_limits"
    SET_RELAY_TX_COST_LIMIT = "set_relay_tx_cost_limit"
    SET_RELAY_GAS_ASSET = "set_relay_gas_asset"
    SET_RELAY_PERMISSIVE_MODE = "set_relay_permissive_mode"
    SET_FEE_COLLECTOR = "set_fee_collector"

    # Asset acceptance
    SET_TOKEN_ACCEPTANCE = "set_token_acceptance"

    # Swapper
    SET_DEFAULT_TOKEN_OUT = "set_default_token_out"
    SET_CUSTOM_TOKENS_OUT = "set_custom_tokens_out"
    SET_DEFAULT_MAX_SLIPPAGE = "set_default_max_slippage"
    SET_CUSTOM_MAX_SLIPPAGES = "set_custom_max_slippages"

    # Bridger
    SET_DEFAULT_DESTINATION_DOMAIN = "set_default_destination_domain"
    SET_CUSTOM_DESTINATION_DOMAINS = "set_custom_destination_domains"

    # Withdrawer
    SET_RECIPIENT = "set_recipient"

    # Every action
    EXECUTE = "execute"


class AcceptanceType(str, enum.Enum):
    """Whether the acceptance list names the only allowed assets or the denied ones."""

    ALLOW = "allow"
    DENY = "deny"


# ════════════════════════════════════════════════════════════════
# Oracle Models
# ════════════════════════════════════════════════════════════════


def canonical_decimal(value: Decimal) -> str:
    """Render a decimal so that equal values always produce the same text."""
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


class PriceOverride(BaseModel):
    """A single signed off-chain rate for a (base, quote) pair."""

    base: str = Field(description="Asset being priced")
    quote: str = Field(description="Asset the price is expressed in")
    rate: Decimal = Field(gt=0, description="Units of quote per unit of base")
    deadline: int = Field(gt=0, description="Last ledger timestamp at which the rate is valid")

    def canonical(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "quote": self.quote,
            "rate": canonical_decimal(self.rate),
            "deadline": self.deadline,
        }


class QuoteBundle(BaseModel):
    """
    An ordered list of price overrides plus a signature over their digest.

    The digest is SHA-256 over the canonical JSON of the ordered list; the
    signature is an Ed25519 signature of the digest and ``signer`` is the
    hex-encoded verify key of the signing oracle.
    """

    overrides: list[PriceOverride] = Field(default_factory=list)
    signer: str = Field(description="Hex-encoded Ed25519 verify key")
    signature: str = Field(description="Hex-encoded Ed25519 signature of the digest")

    def digest(self) -> str:
        return feeds_digest(self.overrides)


def feeds_digest(overrides: list[PriceOverride]) -> str:
    """
    Compute the digest a quote bundle signature must cover.

    Order matters: the same overrides in a different order are a
    different bundle.
    """
    canonical = json.dumps(
        [override.canonical() for override in overrides],
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ════════════════════════════════════════════════════════════════
# Threshold & Limit Models
# ════════════════════════════════════════════════════════════════


class Threshold(BaseModel):
    """Minimum/maximum band an amount must fall in, measured in ``asset`` units."""

    asset: str = Field(description="Accounting asset the band is expressed in")
    min: Decimal = Field(default=ZERO, ge=0, description="Lowest accepted amount")
    max: Decimal = Field(default=ZERO, ge=0, description="Highest accepted amount, 0 = unbounded")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def bounded(self) -> bool:
        return self.max != 0


class LimitState(BaseModel):
    """
    Periodic volume limit and its accrual window.

    Inactive when every field is empty/zero. While active, ``accrued`` never
    exceeds ``amount`` inside an open window.
    """

    asset: str = Field(default="", description="Accounting asset of the limit")
    amount: Decimal = Field(default=ZERO, ge=0, description="Capacity per period")
    period: int = Field(default=0, ge=0, description="Window length in seconds")
    accrued: Decimal = Field(default=ZERO, ge=0, description="Volume accrued in the current window")
    next_reset_time: int = Field(default=0, ge=0, description="Ledger time the window closes, 0 = inactive")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_active(self) -> bool:
        return self.amount != 0


class TimeLock(BaseModel):
    """Minimum spacing between executions."""

    delay: int = Field(default=0, ge=0, description="Seconds added to the expiration after each execution, 0 = none")
    expires_at: int = Field(default=0, ge=0, description="Ledger time before which execution is locked, 0 = unlocked")


# ════════════════════════════════════════════════════════════════
# Relay Models
# ════════════════════════════════════════════════════════════════


class RelayConfig(BaseModel):
    """Relayer allow-set, gas ceilings, payment asset and permissive mode."""

    relayers: set[str] = Field(default_factory=set)
    gas_price_limit: Decimal = Field(default=ZERO, ge=0, description="0 = unbounded")
    priority_fee_limit: Decimal = Field(default=ZERO, ge=0, description="0 = unbounded")
    tx_cost_limit: Decimal = Field(default=ZERO, ge=0, description="Native units, 0 = unbounded")
    gas_asset: str | None = Field(
        default=None, description="Asset reimbursements are paid in, None = native asset"
    )
    permissive_mode: bool = Field(
        default=False, description="Skip reimbursement instead of reverting when it cannot be paid"
    )
    fee_collector: str | None = Field(default=None, description="Reimbursement recipient")


class TokenAcceptance(BaseModel):
    """Allow or deny list of assets an action may operate on."""

    type: AcceptanceType = AcceptanceType.DENY
    assets: list[str] = Field(default_factory=list)

    def accepts(self, asset: str) -> bool:
        listed = asset in self.assets
        return listed if self.type == AcceptanceType.ALLOW else not listed


# ════════════════════════════════════════════════════════════════
# Event Models
# ════════════════════════════════════════════════════════════════


class ActionEvent(BaseModel):
    """
    Structured record of a configuration change or a successful execution.

    Configuration events carry both the previous and the new value so that
    the event log alone is enough to audit how an action was configured.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(description="Event name, e.g. 'DefaultThresholdSet'")
    source: str = Field(description="Name of the action that emitted the event")
    timestamp: int = Field(description="Ledger time at emission")
    payload: dict[str, Any] = Field(default_factory=dict)
