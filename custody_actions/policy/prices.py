"""
Price Resolver — pluggable chain of rate sources with a signed-quote override.

A rate is resolved by walking an ordered chain of strategies; the first one
that returns a rate wins:

1. **Identity** — an asset is always worth exactly one of itself.
2. **Signed quote** — an off-chain quote bundle signed by a trusted oracle
   signer. Malformed bundles, bad signatures and untrusted signers are
   ignored (the chain falls through). A trusted entry whose deadline has
   passed is *not* ignored: it raises ``OracleFeedOutdated``.
3. **Custody oracle** — the custody service's own default feed.

When no strategy produces a rate, ``MissingPriceFeed`` is raised.

Quote bundles are produced relayer-side with ``sign_quote_bundle`` and may be
passed to every entry point either as a ``QuoteBundle`` or as its raw JSON.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Protocol, Union

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey
from pydantic import ValidationError

from custody_actions.custody.interface import CustodyService, Host
from custody_actions.domain.errors import InvalidQuoteSignature, MissingPriceFeed, OracleFeedOutdated
from custody_actions.domain.schema import ONE, Operation, PriceOverride, QuoteBundle, feeds_digest
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent

logger = logging.getLogger(__name__)

QuoteInput = Union[QuoteBundle, str, bytes, None]


# ════════════════════════════════════════════════════════════════
# Quote bundles
# ════════════════════════════════════════════════════════════════


def sign_quote_bundle(overrides: list[PriceOverride], signing_key: SigningKey) -> QuoteBundle:
    """
    Sign an ordered list of price overrides.

    Args:
        overrides: Rates to publish, in the order they will be searched.
        signing_key: The oracle signer's Ed25519 key.

    Returns:
        A bundle whose ``signer`` is the hex verify key of ``signing_key``.
    """
    digest = feeds_digest(overrides)
    signed = signing_key.sign(bytes.fromhex(digest))
    return QuoteBundle(
        overrides=list(overrides),
        signer=signing_key.verify_key.encode(encoder=HexEncoder).decode(),
        signature=signed.signature.hex(),
    )


def parse_quote_bundle(raw: QuoteInput) -> QuoteBundle | None:
    """Return the bundle carried by ``raw``, or None when it is absent or malformed."""
    if raw is None or isinstance(raw, QuoteBundle):
        return raw
    try:
        return QuoteBundle.model_validate_json(raw)
    except ValidationError as e:
        logger.info("Ignoring malformed quote bundle: %d validation errors", e.error_count())
        return None


def verify_quote_bundle(bundle: QuoteBundle) -> None:
    """
    Check the bundle signature against its recomputed digest.

    Raises:
        InvalidQuoteSignature: If the key or signature is malformed, or the
            signature does not cover the bundle's overrides.
    """
    try:
        verify_key = VerifyKey(bytes.fromhex(bundle.signer))
        verify_key.verify(bytes.fromhex(bundle.digest()), bytes.fromhex(bundle.signature))
    except (BadSignatureError, ValueError, TypeError) as e:
        raise InvalidQuoteSignature(
            f"Quote bundle signature does not verify: {e}",
            signer=bundle.signer,
        ) from e


# ════════════════════════════════════════════════════════════════
# Strategies
# ════════════════════════════════════════════════════════════════


class PriceStrategy(Protocol):
    name: str

    def resolve(self, base: str, quote: str, bundle: QuoteBundle | None) -> Decimal | None:
        ...


class IdentityStrategy:
    name = "identity"

    def resolve(self, base: str, quote: str, bundle: QuoteBundle | None) -> Decimal | None:
        return ONE if base == quote else None


class SignedQuoteStrategy:
    """Looks the pair up in a verified bundle from a trusted signer."""

    name = "signed_quote"

    def __init__(self, is_trusted: Callable[[str], bool], clock: Callable[[], int]) -> None:
        self._is_trusted = is_trusted
        self._clock = clock

    def resolve(self, base: str, quote: str, bundle: QuoteBundle | None) -> Decimal | None:
        if bundle is None:
            return None

        try:
            verify_quote_bundle(bundle)
        except InvalidQuoteSignature as e:
            logger.info("Falling back from quote bundle: %s", e)
            return None

        if not self._is_trusted(bundle.signer):
            logger.info("Falling back from quote bundle: signer %s not trusted", bundle.signer)
            return None

        for override in bundle.overrides:
            if (override.base, override.quote) == (base, quote):
                rate = override.rate
            elif (override.base, override.quote) == (quote, base):
                rate = ONE / override.rate
            else:
                continue

            now = self._clock()
            if override.deadline < now:
                raise OracleFeedOutdated(
                    f"Quote for {override.base}/{override.quote} expired at {override.deadline}",
                    base=override.base,
                    quote=override.quote,
                    deadline=override.deadline,
                    now=now,
                )
            return rate
        return None


class CustodyOracleStrategy:
    name = "custody_oracle"

    def __init__(self, custody: CustodyService) -> None:
        self._custody = custody

    def resolve(self, base: str, quote: str, bundle: QuoteBundle | None) -> Decimal | None:
        return self._custody.default_price(base, quote)


# ════════════════════════════════════════════════════════════════
# Resolver
# ════════════════════════════════════════════════════════════════


class PriceResolver(PolicyComponent):
    """
    Resolves (base, quote) rates and owns the oracle-signer allow-set.

    Usage:
        resolver = PriceResolver(gate, events, custody, host)
        resolver.set_oracle_signers(owner, allow=[signer_hex], deny=[])
        rate = resolver.resolve("WETH", "USDC", quote_bundle=bundle)
    """

    _state_fields = ("_signers",)

    def __init__(
        self,
        gate,
        events: EventBuffer,
        custody: CustodyService,
        host: Host,
        strategies: list[PriceStrategy] | None = None,
    ) -> None:
        super().__init__(gate, events)
        self._signers: set[str] = set()
        self.strategies: list[PriceStrategy] = strategies or [
            IdentityStrategy(),
            SignedQuoteStrategy(self.is_oracle_signer, host.now),
            CustodyOracleStrategy(custody),
        ]

    # ── Resolution ──────────────────────────────────────────────

    def resolve(self, base: str, quote: str, quote_bundle: QuoteInput = None) -> Decimal:
        """
        Resolve the rate of ``base`` expressed in ``quote``.

        Raises:
            OracleFeedOutdated: A trusted bundle quotes the pair past its deadline.
            MissingPriceFeed: No strategy could price the pair.
        """
        bundle = parse_quote_bundle(quote_bundle)
        for strategy in self.strategies:
            rate = strategy.resolve(base, quote, bundle)
            if rate is not None:
                logger.debug("Resolved %s/%s = %s via %s", base, quote, rate, strategy.name)
                return rate
        raise MissingPriceFeed(f"No price feed for {base}/{quote}", base=base, quote=quote)

    def convert(
        self,
        amount: Decimal,
        asset_from: str,
        asset_to: str,
        quote_bundle: QuoteInput = None,
    ) -> Decimal:
        """Express ``amount`` of ``asset_from`` in units of ``asset_to``."""
        if asset_from == asset_to:
            return amount
        return amount * self.resolve(asset_from, asset_to, quote_bundle)

    # ── Oracle signers ──────────────────────────────────────────

    def set_oracle_signers(self, caller: str, allow: Iterable[str], deny: Iterable[str]) -> None:
        self._require(caller, Operation.SET_ORACLE_SIGNERS)
        for signer in allow:
            if signer not in self._signers:
                self._signers.add(signer)
                self.events.emit("OracleSignerAllowed", signer=signer)
        for signer in deny:
            if signer in self._signers:
                self._signers.discard(signer)
                self.events.emit("OracleSignerDisallowed", signer=signer)

    def is_oracle_signer(self, signer: str) -> bool:
        return signer in self._signers

    def oracle_signers(self) -> set[str]:
        return set(self._signers)
