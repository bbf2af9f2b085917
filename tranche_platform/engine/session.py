"""
Workflow Session State
======================

In-memory state of the single active securitization run. The ledger is the
source of truth; the session only mirrors values that were read back or
confirmed by a receipt, and it is replaced (never zeroed) when a new run
starts.

Classes
-------
Stage
    The thirteen lifecycle stages.
TrancheId
    Seniority classes and their on-ledger class ids.
LoanRecord
    Generated loan terms, later bound to a minted token id.
TrancheClass
    A tranche's membership and capital structure.
InvestorSubscription
    An investor's accumulated holding in one tranche.
PaymentCycle
    Result of one deposit for one tranche.
WorkflowSession
    Container owned by the workflow controller.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple


class Stage(IntEnum):
    """Lifecycle stages; each value is the stage reached after an operation."""

    INITIAL = 1
    BASE_TOKEN_DEPLOYED = 2
    INVESTOR_FUNDED = 3
    LOAN_REGISTRY_DEPLOYED = 4
    POOL_DEPLOYED = 5
    LOANS_TOKENIZED = 6
    LOAN_DETAIL_FETCHED = 7
    TRANCHES_CREATED = 8
    TRANCHE_SUBSCRIBED = 9
    HOLDINGS_QUERIED = 10
    BALANCE_QUERIED = 11
    PAYMENT_DEPOSITED = 12
    PAYMENT_DISTRIBUTED = 13


class TrancheId(IntEnum):
    """Tranche class ids as stored on the pool, most senior first."""

    SENIOR = 1
    MEZZANINE = 2
    JUNIOR = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_name(cls, name: str) -> "TrancheId":
        """Resolve ``Senior``/``Mezzanine``/``Junior`` (case-insensitive)."""
        return cls[name.strip().upper()]


@dataclass(frozen=True)
class LoanRecord:
    """
    Synthetic loan terms.

    Attributes
    ----------
    principal : int
        Original principal in whole currency units.
    interest_rate_bps : int
        Coupon in basis points.
    maturity_timestamp : int
        Maturity as epoch milliseconds.
    token_id : int, optional
        Identifier assigned by the loan registry when the loan is minted.
    """

    principal: int
    interest_rate_bps: int
    maturity_timestamp: int
    token_id: Optional[int] = None

    def with_token_id(self, token_id: int) -> "LoanRecord":
        return replace(self, token_id=token_id)

    @property
    def maturity(self) -> datetime:
        return datetime.fromtimestamp(self.maturity_timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrancheClass:
    tranche_id: TrancheId
    member_token_ids: Tuple[int, ...]
    notional: int
    interest_rate_bps: int
    fully_funded: bool = False
    loan_contract: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tranche_id": int(self.tranche_id),
            "name": self.tranche_id.label,
            "loan_ids": list(self.member_token_ids),
            "notional": self.notional,
            "interest_rate_bps": self.interest_rate_bps,
            "fully_funded": self.fully_funded,
            "loan_contract": self.loan_contract,
        }


@dataclass
class InvestorSubscription:
    investor: str
    tranche_id: TrancheId
    series_id: int = 1
    holding_amount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "investor": self.investor,
            "tranche_id": int(self.tranche_id),
            "series_id": self.series_id,
            "holding_amount": self.holding_amount,
        }


@dataclass
class PaymentCycle:
    """
    One deposit into one tranche.

    ``fully_funded`` is derived, so it always agrees with the two amounts.
    """

    tranche_id: TrancheId
    series_id: int
    deposited_amount: int
    expected_payout: int
    deposited_events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def fully_funded(self) -> bool:
        return self.deposited_amount >= self.expected_payout

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tranche_id": int(self.tranche_id),
            "series_id": self.series_id,
            "deposited": self.deposited_amount,
            "expected_payout": self.expected_payout,
            "fully_funded": self.fully_funded,
            "events": self.deposited_events,
        }


@dataclass
class DeployedAddresses:
    stablecoin_token: Optional[str] = None
    loan_token: Optional[str] = None
    pool_contract: Optional[str] = None


@dataclass
class WorkflowSession:
    """Everything the controller remembers about the current run."""

    current_stage: Stage = Stage.INITIAL
    deployed_addresses: DeployedAddresses = field(default_factory=DeployedAddresses)
    loans: List[LoanRecord] = field(default_factory=list)
    minted_loan_token_ids: List[int] = field(default_factory=list)
    tranches: Dict[TrancheId, TrancheClass] = field(default_factory=dict)
    selected_tranche_id: Optional[TrancheId] = None
    subscriptions: Dict[Tuple[str, TrancheId], InvestorSubscription] = field(default_factory=dict)
    payment_cycles: Dict[Tuple[TrancheId, int], PaymentCycle] = field(default_factory=dict)
    tranche_token: Optional[str] = None

    def subscribed_total(self, tranche_id: TrancheId) -> int:
        """Sum of recorded holdings across investors in ``tranche_id``."""
        return sum(
            sub.holding_amount for (_, tid), sub in self.subscriptions.items() if tid == tranche_id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_stage": int(self.current_stage),
            "deployed_addresses": asdict(self.deployed_addresses),
            "loans": [loan.to_dict() for loan in self.loans],
            "minted_loan_token_ids": list(self.minted_loan_token_ids),
            "tranches": {tid.label: tranche.to_dict() for tid, tranche in self.tranches.items()},
            "selected_tranche_id": int(self.selected_tranche_id) if self.selected_tranche_id else None,
            "subscriptions": [sub.to_dict() for sub in self.subscriptions.values()],
            "payment_cycles": [cycle.to_dict() for cycle in self.payment_cycles.values()],
            "tranche_token": self.tranche_token,
        }
