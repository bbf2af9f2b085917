"""
Tranche Notional Aggregation
============================

Splits minted loan tokens into the Senior/Mezzanine/Junior buckets, sums
each bucket's principal as read from the loan registry, and records the
resulting capital structure on the pool.

Partitioning
------------
Buckets are consecutive slices of the minted ids in mint order. With the
default sizes (6, 6, 7) and twenty minted loans, the first nineteen tokens
form the tranche universe and the last one is reported as unassigned.

Duplicate ids are a configuration error and are rejected before any ledger
call, so a bad partition never produces a half-created structure.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from eth_account.signers.local import LocalAccount

from ..exceptions import DuplicateLoanAssignmentError, PreconditionError, ValidationError
from ..web3_integration.ledger import Ledger, LedgerCall
from ..web3_integration.sequencer import TransactionSequencer
from .session import TrancheClass, TrancheId, WorkflowSession

logger = logging.getLogger("Tranche.Aggregator")

TRANCHE_ORDER: Tuple[TrancheId, ...] = (TrancheId.SENIOR, TrancheId.MEZZANINE, TrancheId.JUNIOR)


@dataclass
class TranchePartition:
    """Token ids per tranche plus the minted ids left outside every bucket."""

    buckets: Dict[TrancheId, Tuple[int, ...]]
    unassigned: List[int] = field(default_factory=list)


def check_disjoint(buckets: Mapping[TrancheId, Sequence[int]]) -> None:
    """Raise ``DuplicateLoanAssignmentError`` if any id appears twice, within or across buckets."""
    counts = Counter(token_id for ids in buckets.values() for token_id in ids)
    duplicates = {token_id for token_id, count in counts.items() if count > 1}
    if duplicates:
        raise DuplicateLoanAssignmentError(duplicates)


def partition_token_ids(token_ids: Sequence[int], sizes: Sequence[int]) -> TranchePartition:
    """
    Slice ``token_ids`` into one bucket per tranche.

    Parameters
    ----------
    token_ids : sequence of int
        Minted ids in mint order.
    sizes : sequence of int
        Bucket sizes, Senior first. Must have one entry per tranche.

    Returns
    -------
    TranchePartition
        The buckets and any trailing ids beyond ``sum(sizes)``.
    """
    if len(sizes) != len(TRANCHE_ORDER):
        raise ValidationError(f"Expected {len(TRANCHE_ORDER)} tranche sizes, got {len(sizes)}")
    if any(size <= 0 for size in sizes):
        raise ValidationError(f"Tranche sizes must be positive: {list(sizes)}")
    if sum(sizes) > len(token_ids):
        raise ValidationError(f"Partition needs {sum(sizes)} loans but only {len(token_ids)} were minted")

    buckets: Dict[TrancheId, Tuple[int, ...]] = {}
    start = 0
    for tranche_id, size in zip(TRANCHE_ORDER, sizes):
        buckets[tranche_id] = tuple(int(token_id) for token_id in token_ids[start:start + size])
        start += size
    check_disjoint(buckets)
    return TranchePartition(buckets=buckets, unassigned=[int(token_id) for token_id in token_ids[start:]])


class TrancheNotionalAggregator:
    """Computes tranche notionals and creates the tranches on the pool."""

    def __init__(self, ledger: Ledger, sequencer: TransactionSequencer, series_id: int = 1) -> None:
        self.ledger = ledger
        self.sequencer = sequencer
        self.series_id = series_id

    def compute_notionals(
        self, loan_token: str, buckets: Mapping[TrancheId, Sequence[int]]
    ) -> Dict[TrancheId, int]:
        check_disjoint(buckets)
        notionals: Dict[TrancheId, int] = {}
        for tranche_id, token_ids in buckets.items():
            notionals[tranche_id] = sum(
                int(self.ledger.call("LoanNFT", loan_token, "loanData", token_id)[0]) for token_id in token_ids
            )
            logger.debug(f"{tranche_id.label} notional {notionals[tranche_id]:,} over {len(token_ids)} loans")
        return notionals

    def create_tranches(
        self,
        session: WorkflowSession,
        operator: LocalAccount,
        partition: TranchePartition,
        rates_bps: Mapping[TrancheId, int],
    ) -> Dict[TrancheId, TrancheClass]:
        """
        Create all three tranches in one operator batch, then read them back.

        The session is only updated once every ``createTranche`` receipt is
        confirmed and the pool has reported the stored values.
        """
        if session.tranches:
            raise PreconditionError("Tranches were already created for this session")
        for tranche_id in TRANCHE_ORDER:
            rate = rates_bps.get(tranche_id)
            if not isinstance(rate, int) or isinstance(rate, bool) or rate <= 0:
                raise ValidationError(f"{tranche_id.label} rate must be a positive number of bps, got {rate!r}")

        addresses = session.deployed_addresses
        notionals = self.compute_notionals(addresses.loan_token, partition.buckets)

        handle = self.sequencer.begin(operator)
        for tranche_id in TRANCHE_ORDER:
            self.sequencer.submit(
                handle,
                LedgerCall(
                    "Pool",
                    "createTranche",
                    (int(tranche_id), list(partition.buckets[tranche_id]), notionals[tranche_id], rates_bps[tranche_id]),
                    addresses.pool_contract,
                ),
            )

        created = {tranche_id: self.read_tranche(addresses.pool_contract, tranche_id) for tranche_id in TRANCHE_ORDER}
        session.tranches.update(created)
        if partition.unassigned:
            logger.warning(f"Loan tokens left outside every tranche: {partition.unassigned}")
        logger.info(
            "Tranches created: "
            + ", ".join(f"{t.tranche_id.label}={t.notional:,}@{t.interest_rate_bps}bps" for t in created.values())
        )
        return created

    def read_tranche(self, pool: str, tranche_id: TrancheId) -> TrancheClass:
        """Read a tranche's stored notional, rate and membership from the pool."""
        stored: Any = self.ledger.call("Pool", pool, "tranches", int(tranche_id), self.series_id)
        loan_ids = self.ledger.call("Pool", pool, "getLoanIds", int(tranche_id), self.series_id)
        loan_contracts = self.ledger.call("Pool", pool, "getLoanContracts", int(tranche_id), self.series_id)
        return TrancheClass(
            tranche_id=tranche_id,
            member_token_ids=tuple(int(token_id) for token_id in loan_ids),
            notional=int(stored[0]),
            interest_rate_bps=int(stored[1]),
            loan_contract=loan_contracts[0] if loan_contracts else None,
        )
