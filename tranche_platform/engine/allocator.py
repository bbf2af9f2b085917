"""
Investor Subscription Allocation
================================

Caps a requested subscription at the tranche's remaining capacity and drives
the three-step purchase on the ledger:

1. the operator credits the investor's stablecoin balance,
2. the investor approves the pool to draw it,
3. the investor invests in the tranche.

Each step is confirmed before the next is sent. Capacity is tracked across
calls when ``track_subscription_capacity`` is enabled; otherwise every
subscription is capped at the full tranche notional.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from eth_account.signers.local import LocalAccount

from ..config import Settings
from ..exceptions import PreconditionError, ValidationError
from ..web3_integration.ledger import LedgerCall
from ..web3_integration.sequencer import TransactionSequencer
from .session import InvestorSubscription, TrancheId, WorkflowSession

logger = logging.getLogger("Tranche.Allocator")


def to_token_units(amount: int, decimals: int = 18) -> int:
    """Scale a whole-unit amount to the stablecoin's smallest unit."""
    return int(amount) * 10 ** decimals


def resolve_tranche(name: str) -> TrancheId:
    try:
        return TrancheId.from_name(name)
    except (KeyError, AttributeError):
        raise ValidationError(f"Unknown tranche {name!r}; expected Senior, Mezzanine or Junior") from None


@dataclass
class SubscriptionResult:
    tranche_id: int
    tranche: str
    investor: str
    requested_amount: int
    accepted_amount: int
    remaining_before: int
    tx_hashes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class InvestorSubscriptionAllocator:
    """Allocates investor subscriptions against tranche capacity."""

    def __init__(self, sequencer: TransactionSequencer, config: Settings) -> None:
        self.sequencer = sequencer
        self.config = config

    def validate_amount(self, requested: Any) -> int:
        low, high = self.config.subscription_band
        if isinstance(requested, bool) or not isinstance(requested, int):
            raise ValidationError(f"Subscription amount must be an integer, got {requested!r}")
        if requested < low or requested > high:
            raise ValidationError(f"Subscription amount must be between {low:,} and {high:,}, got {requested:,}")
        return requested

    def remaining_notional(self, session: WorkflowSession, tranche_id: TrancheId) -> int:
        tranche = session.tranches.get(tranche_id)
        if tranche is None:
            raise PreconditionError(f"{tranche_id.label} tranche has not been created")
        if not self.config.track_subscription_capacity:
            return tranche.notional
        return max(tranche.notional - session.subscribed_total(tranche_id), 0)

    def allocate(self, session: WorkflowSession, tranche_id: TrancheId, requested: int) -> int:
        """Return ``min(requested, remaining capacity)``."""
        return min(requested, self.remaining_notional(session, tranche_id))

    def subscribe(
        self,
        session: WorkflowSession,
        operator: LocalAccount,
        investor: LocalAccount,
        tranche_name: str,
        requested: int,
    ) -> SubscriptionResult:
        """
        Subscribe ``investor`` to ``tranche_name`` for up to ``requested``.

        Raises
        ------
        ValidationError
            If the tranche name is unknown, the amount lies outside the
            configured band, or the tranche has no capacity left. No ledger
            call is made in these cases.
        """
        tranche_id = resolve_tranche(tranche_name)
        requested = self.validate_amount(requested)
        remaining = self.remaining_notional(session, tranche_id)
        accepted = min(requested, remaining)
        if accepted <= 0:
            raise ValidationError(f"{tranche_id.label} tranche is fully subscribed")

        addresses = session.deployed_addresses
        units = to_token_units(accepted, self.config.stablecoin_decimals)
        series_id = self.config.series_id

        operator_batch = self.sequencer.begin(operator)
        credit = self.sequencer.submit(
            operator_batch,
            LedgerCall("MockERC20", "mint", (investor.address, units), addresses.stablecoin_token),
        )

        investor_batch = self.sequencer.begin(investor)
        approve = self.sequencer.submit(
            investor_batch,
            LedgerCall("MockERC20", "approve", (addresses.pool_contract, units), addresses.stablecoin_token),
        )
        invest = self.sequencer.submit(
            investor_batch,
            LedgerCall("Pool", "invest", (int(tranche_id), series_id, accepted), addresses.pool_contract),
        )

        session.selected_tranche_id = tranche_id
        key = (investor.address, tranche_id)
        subscription = session.subscriptions.get(key)
        if subscription is None:
            subscription = InvestorSubscription(investor=investor.address, tranche_id=tranche_id, series_id=series_id)
            session.subscriptions[key] = subscription
        subscription.holding_amount += accepted

        if accepted < requested:
            logger.info(f"{tranche_id.label} subscription capped at {accepted:,} (requested {requested:,})")
        logger.info(f"{investor.address} invested {accepted:,} in {tranche_id.label}")
        return SubscriptionResult(
            tranche_id=int(tranche_id),
            tranche=tranche_id.label,
            investor=investor.address,
            requested_amount=requested,
            accepted_amount=accepted,
            remaining_before=remaining,
            tx_hashes=[credit.tx_hash, approve.tx_hash, invest.tx_hash],
        )
