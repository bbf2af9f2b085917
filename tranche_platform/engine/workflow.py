"""
Securitization Workflow Controller
==================================

Top-level state machine for one demonstration run. Stages only move forward;
each is reached through exactly one named operation:

====================  ======  ====
Operation             From    To
====================  ======  ====
deploy-base-token     1       2
fund-investor         2       3
deploy-loan-registry  3       4
deploy-pool           4       5
tokenize-loans        5       6
fetch-loan-detail     6       7
create-tranches       7       8
subscribe-tranche     8       9
query-holdings        9       10
query-balance         10      11
deposit-payment       11      12
distribute-payment    12      13
====================  ======  ====

An operation invoked at any other stage raises ``PreconditionError`` before
touching the ledger. Operations listed in ``REPEATABLE`` may also run again
while the session sits at their resulting stage. ``reset`` starts a new run
with a fresh ``WorkflowSession``.

Only one operation runs at a time; the controller holds a lock for the whole
operation, including every ledger round trip.

Example
-------
>>> workflow = SecuritizationWorkflow(ledger, operator, investor)
>>> workflow.deploy_base_token()
>>> workflow.session.current_stage
<Stage.BASE_TOKEN_DEPLOYED: 2>
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

import numpy as np
from eth_account.signers.local import LocalAccount
from web3 import Web3

from ..config import Settings, settings
from ..exceptions import PreconditionError, ValidationError
from ..web3_integration.events import decode_event
from ..web3_integration.ledger import Ledger, LedgerCall
from ..web3_integration.sequencer import TransactionSequencer
from .aggregator import TRANCHE_ORDER, TrancheNotionalAggregator, partition_token_ids
from .allocator import InvestorSubscriptionAllocator, to_token_units
from .loans import frame_to_loans, generate_loan_frame
from .payments import PaymentCoordinator
from .session import Stage, TrancheId, WorkflowSession

logger = logging.getLogger("Tranche.Workflow")


OPERATIONS: Dict[str, Tuple[Stage, Stage]] = {
    "deploy-base-token": (Stage.INITIAL, Stage.BASE_TOKEN_DEPLOYED),
    "fund-investor": (Stage.BASE_TOKEN_DEPLOYED, Stage.INVESTOR_FUNDED),
    "deploy-loan-registry": (Stage.INVESTOR_FUNDED, Stage.LOAN_REGISTRY_DEPLOYED),
    "deploy-pool": (Stage.LOAN_REGISTRY_DEPLOYED, Stage.POOL_DEPLOYED),
    "tokenize-loans": (Stage.POOL_DEPLOYED, Stage.LOANS_TOKENIZED),
    "fetch-loan-detail": (Stage.LOANS_TOKENIZED, Stage.LOAN_DETAIL_FETCHED),
    "create-tranches": (Stage.LOAN_DETAIL_FETCHED, Stage.TRANCHES_CREATED),
    "subscribe-tranche": (Stage.TRANCHES_CREATED, Stage.TRANCHE_SUBSCRIBED),
    "query-holdings": (Stage.TRANCHE_SUBSCRIBED, Stage.HOLDINGS_QUERIED),
    "query-balance": (Stage.HOLDINGS_QUERIED, Stage.BALANCE_QUERIED),
    "deposit-payment": (Stage.BALANCE_QUERIED, Stage.PAYMENT_DEPOSITED),
    "distribute-payment": (Stage.PAYMENT_DEPOSITED, Stage.PAYMENT_DISTRIBUTED),
}

REPEATABLE: FrozenSet[str] = frozenset(
    {"fund-investor", "fetch-loan-detail", "subscribe-tranche", "query-holdings", "query-balance"}
)


def _format_maturity(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _checked_address(value: Any, label: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValidationError(f"{label} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


class SecuritizationWorkflow:
    """
    Stateful controller for the tokenize → tranche → subscribe → service run.

    Parameters
    ----------
    ledger : Ledger
        External ledger the contracts live on.
    operator : LocalAccount
        Identity that deploys contracts, mints loans and services payments.
    investor : LocalAccount
        Identity that subscribes to tranches.
    config : Settings, optional
        Defaults to the module-level settings.
    rng : numpy.random.Generator, optional
        Source of randomness for loan generation.
    """

    def __init__(
        self,
        ledger: Ledger,
        operator: LocalAccount,
        investor: LocalAccount,
        config: Optional[Settings] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.ledger = ledger
        self.operator = operator
        self.investor = investor
        self.config = config or settings
        if rng is None:
            seed = self.config.loan_seed
            rng = np.random.default_rng(seed if seed >= 0 else None)
        self.rng = rng

        self.sequencer = TransactionSequencer(ledger, self.config.web3_receipt_timeout_seconds)
        self.aggregator = TrancheNotionalAggregator(ledger, self.sequencer, self.config.series_id)
        self.allocator = InvestorSubscriptionAllocator(self.sequencer, self.config)
        self.payments = PaymentCoordinator(ledger, self.sequencer, self.config.series_id)

        self._lock = threading.Lock()
        self.session = WorkflowSession()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def reset(self) -> WorkflowSession:
        """Start a new run: the previous session is discarded, not cleared."""
        with self._lock:
            self.session = WorkflowSession()
            logger.info("Workflow session reset")
            return self.session

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            state = self.session.to_dict()
        state["operator"] = self.operator.address
        state["investor"] = self.investor.address
        return state

    def allowed_operations(self) -> Tuple[str, ...]:
        with self._lock:
            stage = self.session.current_stage
        return tuple(name for name in OPERATIONS if self._stage_permits(name, stage))

    def _stage_permits(self, operation: str, stage: Stage) -> bool:
        from_stage, to_stage = OPERATIONS[operation]
        return stage == from_stage or (operation in REPEATABLE and stage == to_stage)

    def _run(self, operation: str, handler: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            stage = self.session.current_stage
            if not self._stage_permits(operation, stage):
                from_stage, _ = OPERATIONS[operation]
                raise PreconditionError(
                    f"{operation} requires stage {int(from_stage)}, session is at stage {int(stage)}"
                )
            result = handler(*args)
            self.session.current_stage = OPERATIONS[operation][1]
            logger.info(f"{operation} completed; stage {int(self.session.current_stage)}")
            return result

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def deploy_base_token(self) -> Dict[str, Any]:
        return self._run("deploy-base-token", self._deploy_base_token)

    def fund_investor(self, amount: int, recipient: Optional[str] = None) -> Dict[str, Any]:
        return self._run("fund-investor", self._fund_investor, amount, recipient)

    def deploy_loan_registry(self) -> Dict[str, Any]:
        return self._run("deploy-loan-registry", self._deploy_loan_registry)

    def deploy_pool(self, loan_registry: Optional[str] = None, stablecoin: Optional[str] = None) -> Dict[str, Any]:
        return self._run("deploy-pool", self._deploy_pool, loan_registry, stablecoin)

    def tokenize_loans(self) -> Dict[str, Any]:
        return self._run("tokenize-loans", self._tokenize_loans)

    def fetch_loan_detail(self, index: int) -> Dict[str, Any]:
        return self._run("fetch-loan-detail", self._fetch_loan_detail, index)

    def create_tranches(self, senior_bps: int, mezzanine_bps: int, junior_bps: int) -> Dict[str, Any]:
        rates = {TrancheId.SENIOR: senior_bps, TrancheId.MEZZANINE: mezzanine_bps, TrancheId.JUNIOR: junior_bps}
        return self._run("create-tranches", self._create_tranches, rates)

    def subscribe_tranche(self, tranche_name: str, amount: int) -> Dict[str, Any]:
        return self._run("subscribe-tranche", self._subscribe_tranche, tranche_name, amount)

    def query_holdings(self) -> Dict[str, Any]:
        return self._run("query-holdings", self._query_holdings)

    def query_balance(self) -> Dict[str, Any]:
        return self._run("query-balance", self._query_balance)

    def deposit_payment(self, amount: int) -> Dict[str, Any]:
        return self._run("deposit-payment", self._deposit_payment, amount)

    def distribute_payment(self) -> Dict[str, Any]:
        return self._run("distribute-payment", self._distribute_payment)

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _deploy_base_token(self) -> Dict[str, Any]:
        handle = self.sequencer.begin(self.operator)
        address = self.sequencer.deploy(handle, "MockERC20")
        self.session.deployed_addresses.stablecoin_token = address
        return {"stablecoin_token": address, "operator": self.operator.address}

    def _fund_investor(self, amount: Any, recipient: Optional[str]) -> Dict[str, Any]:
        recipient = _checked_address(recipient or self.investor.address, "Recipient")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(f"Funding amount must be a positive integer, got {amount!r}")

        handle = self.sequencer.begin(self.operator)
        receipt = self.sequencer.submit(
            handle,
            LedgerCall(
                "MockERC20",
                "mint",
                (recipient, to_token_units(amount, self.config.stablecoin_decimals)),
                self.session.deployed_addresses.stablecoin_token,
            ),
        )
        return {"recipient": recipient, "amount": amount, "tx_hash": receipt.tx_hash}

    def _deploy_loan_registry(self) -> Dict[str, Any]:
        handle = self.sequencer.begin(self.operator)
        address = self.sequencer.deploy(handle, "LoanNFT")
        self.session.deployed_addresses.loan_token = address
        return {"loan_token": address}

    def _deploy_pool(self, loan_registry: Optional[str], stablecoin: Optional[str]) -> Dict[str, Any]:
        addresses = self.session.deployed_addresses
        loan_registry = _checked_address(loan_registry or addresses.loan_token, "Loan registry")
        stablecoin = _checked_address(stablecoin or addresses.stablecoin_token, "Stablecoin")

        handle = self.sequencer.begin(self.operator)
        pool = self.sequencer.deploy(handle, "Pool", loan_registry, stablecoin)
        addresses.pool_contract = pool
        addresses.loan_token = loan_registry
        addresses.stablecoin_token = stablecoin

        config = self.config
        frame = generate_loan_frame(
            config.loan_count,
            principal_min=config.loan_principal_min,
            principal_max=config.loan_principal_max,
            rate_bps_min=config.loan_rate_bps_min,
            rate_bps_max=config.loan_rate_bps_max,
            maturity_years_min=config.loan_maturity_years_min,
            maturity_years_max=config.loan_maturity_years_max,
            rng=self.rng,
        )
        self.session.loans = frame_to_loans(frame)
        logger.info(f"Generated {len(self.session.loans)} loans totalling {int(frame['principal'].sum()):,}")
        return {"pool_contract": pool, "loans": [loan.to_dict() for loan in self.session.loans]}

    def _tokenize_loans(self) -> Dict[str, Any]:
        loan_token = self.session.deployed_addresses.loan_token
        pool = self.session.deployed_addresses.pool_contract
        handle = self.sequencer.begin(self.operator)

        # Loans minted by an earlier, interrupted attempt keep their ids
        for index, loan in enumerate(self.session.loans):
            if loan.token_id is not None:
                continue
            receipt = self.sequencer.submit(
                handle,
                LedgerCall(
                    "LoanNFT",
                    "mint",
                    (pool, loan.principal, loan.interest_rate_bps, loan.maturity_timestamp),
                    loan_token,
                ),
            )
            token_id = int(decode_event(receipt, "LoanMinted", loan_token)["tokenId"])
            self.session.loans[index] = loan.with_token_id(token_id)
            self.session.minted_loan_token_ids.append(token_id)

        logger.info(f"Tokenized {len(self.session.minted_loan_token_ids)} loans")
        return {"token_ids": list(self.session.minted_loan_token_ids)}

    def _fetch_loan_detail(self, index: Any) -> Dict[str, Any]:
        upper = len(self.session.loans) - 1
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index <= upper:
            raise ValidationError(f"Loan index must be between 0 and {upper}, got {index!r}")

        data = self.ledger.call("LoanNFT", self.session.deployed_addresses.loan_token, "getLoanData", index)
        return {
            "index": index,
            "principal": int(data[0]),
            "interest_rate": int(data[1]) / 100,
            "maturity": _format_maturity(int(data[2])),
        }

    def _create_tranches(self, rates: Dict[TrancheId, int]) -> Dict[str, Any]:
        partition = partition_token_ids(self.session.minted_loan_token_ids, self.config.partition_sizes)
        created = self.aggregator.create_tranches(self.session, self.operator, partition, rates)
        return {
            "tranches": {tranche_id.label: created[tranche_id].to_dict() for tranche_id in TRANCHE_ORDER},
            "unassigned_token_ids": partition.unassigned,
        }

    def _subscribe_tranche(self, tranche_name: str, amount: int) -> Dict[str, Any]:
        result = self.allocator.subscribe(self.session, self.operator, self.investor, tranche_name, amount)
        return result.to_dict()

    def _query_holdings(self) -> Dict[str, Any]:
        pool = self.session.deployed_addresses.pool_contract
        holdings = {
            tranche_id.label: int(
                self.ledger.call(
                    "Pool", pool, "investorHoldings", int(tranche_id), self.config.series_id, self.investor.address
                )
            )
            for tranche_id in TRANCHE_ORDER
        }
        return {"investor": self.investor.address, "holdings": holdings}

    def _query_balance(self) -> Dict[str, Any]:
        tranche_id = self.session.selected_tranche_id
        if tranche_id is None:
            raise PreconditionError("No tranche selected; subscribe to a tranche first")

        pool = self.session.deployed_addresses.pool_contract
        series_id = self.config.series_id
        tranche_token = self.ledger.call("Pool", pool, "trancheToken")
        self.session.tranche_token = tranche_token

        balance = int(self.ledger.call("ERC3475", tranche_token, "balanceOf", self.investor.address, int(tranche_id), series_id))
        expected = int(self.ledger.call("Pool", pool, "getExpectedReturn", int(tranche_id), series_id, self.investor.address))
        stored = self.ledger.call("Pool", pool, "tranches", int(tranche_id), series_id)
        return {
            "tranche": tranche_id.label,
            "balance": balance,
            "principal": balance,
            "expected_return": expected,
            "interest": expected - balance,
            "interest_rate": int(stored[1]) / 100,
        }

    def _deposit_payment(self, amount: int) -> Dict[str, Any]:
        return self.payments.deposit(self.session, self.operator, amount).to_dict()

    def _distribute_payment(self) -> Dict[str, Any]:
        signers = {self.investor.address.lower(): self.investor}
        return self.payments.distribute(self.session, self.operator, signers).to_dict()
