"""Token acceptance — allow or deny list of the assets an action may operate on."""

from __future__ import annotations

from collections.abc import Iterable

from custody_actions.domain.errors import AssetNotAccepted, ConfigurationError
from custody_actions.domain.schema import AcceptanceType, Operation, TokenAcceptance
from custody_actions.ledger.events import EventBuffer
from custody_actions.policy.component import PolicyComponent


class AcceptanceGuard(PolicyComponent):
    """Starts as an empty deny list, accepting every asset."""

    _state_fields = ("_acceptance",)

    def __init__(self, gate, events: EventBuffer) -> None:
        super().__init__(gate, events)
        self._acceptance = TokenAcceptance()

    @property
    def acceptance(self) -> TokenAcceptance:
        return self._acceptance.model_copy(deep=True)

    def accepts(self, asset: str) -> bool:
        return self._acceptance.accepts(asset)

    def validate(self, asset: str) -> None:
        if not self.accepts(asset):
            raise AssetNotAccepted(
                f"Asset {asset} is not accepted ({self._acceptance.type.value} list)",
                asset=asset,
            )

    def set_acceptance(
        self,
        caller: str,
        acceptance_type: AcceptanceType,
        assets: Iterable[str],
    ) -> None:
        self._require(caller, Operation.SET_TOKEN_ACCEPTANCE)
        assets = list(dict.fromkeys(assets))
        if any(not asset for asset in assets):
            raise ConfigurationError("Accepted asset cannot be empty")

        before = self._acceptance
        self._acceptance = TokenAcceptance(type=acceptance_type, assets=assets)
        self.events.emit(
            "TokenAcceptanceSet",
            before=before.model_dump(mode="json"),
            after=self._acceptance.model_dump(mode="json"),
        )
