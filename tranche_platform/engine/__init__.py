"""
Tranche Securitization Engine
=============================

Orchestrates a loan-securitization run against an external ledger:

1. **Deployment**: stablecoin, loan registry and pool contracts.
2. **Tokenization**: synthetic loans are minted as loan tokens held by the pool.
3. **Structuring**: tokens are split into Senior/Mezzanine/Junior tranches whose
   notional is the sum of member principals.
4. **Subscription**: investors buy into a tranche, capped at remaining capacity.
5. **Servicing**: coupon cash is deposited per tranche and distributed to holders.

The main entry point is :class:`SecuritizationWorkflow`.

Example
-------
>>> from tranche_platform.engine import SecuritizationWorkflow
>>> workflow = SecuritizationWorkflow(ledger, operator, investor)
>>> workflow.deploy_base_token()

See Also
--------
aggregator.TrancheNotionalAggregator : Tranche notionals and creation.
allocator.InvestorSubscriptionAllocator : Subscription capping and purchase.
payments.PaymentCoordinator : Deposit and distribution cycle.
"""

from .aggregator import TRANCHE_ORDER, TrancheNotionalAggregator, TranchePartition, partition_token_ids
from .allocator import InvestorSubscriptionAllocator, SubscriptionResult
from .payments import DepositReport, DistributionReport, PaymentCoordinator
from .session import (
    InvestorSubscription,
    LoanRecord,
    PaymentCycle,
    Stage,
    TrancheClass,
    TrancheId,
    WorkflowSession,
)
from .workflow import OPERATIONS, REPEATABLE, SecuritizationWorkflow

__all__ = [
    "DepositReport",
    "DistributionReport",
    "InvestorSubscription",
    "InvestorSubscriptionAllocator",
    "LoanRecord",
    "OPERATIONS",
    "PaymentCoordinator",
    "PaymentCycle",
    "REPEATABLE",
    "SecuritizationWorkflow",
    "Stage",
    "SubscriptionResult",
    "TRANCHE_ORDER",
    "TrancheClass",
    "TrancheId",
    "TrancheNotionalAggregator",
    "TranchePartition",
    "WorkflowSession",
    "partition_token_ids",
]
