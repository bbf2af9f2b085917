"""
Payment Deposit & Distribution
==============================

Runs the servicing cycle against the pool:

Deposit
    The operator funds and approves ``payment_amount * 3`` once, then
    deposits ``payment_amount`` into each tranche in seniority order. Each
    deposit is read back (deposited vs expected payout) to decide whether
    the tranche is fully funded for the period.

Distribute
    For the selected tranche, computes each holder's expected principal and
    interest, makes sure every holder the platform can sign for has
    authorized the pool on the tranche token, and asks the pool to
    distribute. The ledger applies its own waterfall; this module only
    reports what it expects to be paid.

Distribution is best-effort: a failure while authorizing or distributing is
logged and reported in the result rather than raised, since the totals
computed beforehand are still meaningful to the operator.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from eth_account.signers.local import LocalAccount

from ..exceptions import EventNotFoundError, LedgerCallError, PreconditionError, ValidationError
from ..web3_integration.events import find_events
from ..web3_integration.ledger import Ledger, LedgerCall
from ..web3_integration.sequencer import TransactionSequencer
from .aggregator import TRANCHE_ORDER
from .session import PaymentCycle, WorkflowSession

logger = logging.getLogger("Tranche.Payments")


@dataclass
class DepositReport:
    payment_amount: int
    total_amount: int
    cycles: List[PaymentCycle] = field(default_factory=list)

    @property
    def payments(self) -> List[Dict[str, Any]]:
        return [event for cycle in self.cycles for event in cycle.deposited_events]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_amount": self.payment_amount,
            "total_amount": self.total_amount,
            "payments": self.payments,
            "payment_info": [cycle.to_dict() for cycle in self.cycles],
        }


@dataclass
class InvestorDistribution:
    investor: str
    principal: int
    expected_interest: int
    expected_total: int


@dataclass
class DistributionReport:
    tranche_id: int
    no_op: bool = False
    reason: Optional[str] = None
    interest_rate_percent: Optional[float] = None
    total_expected: int = 0
    total_available: int = 0
    investor_details: List[InvestorDistribution] = field(default_factory=list)
    approvals_granted: List[str] = field(default_factory=list)
    distribution_complete: bool = False
    error: Optional[str] = None

    @property
    def fully_funded(self) -> bool:
        return self.total_available >= self.total_expected

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["fully_funded"] = self.fully_funded
        return data


def _deposit_event_fields(args: Mapping[str, Any]) -> Dict[str, Any]:
    # PaymentDeposited(classId, seriesId, amount)
    class_id, series_id, amount = list(args.values())[:3]
    return {"class_id": int(class_id), "series_id": int(series_id), "amount": int(amount)}


class PaymentCoordinator:
    """Deposits coupon cash into the pool and triggers distributions."""

    def __init__(self, ledger: Ledger, sequencer: TransactionSequencer, series_id: int = 1) -> None:
        self.ledger = ledger
        self.sequencer = sequencer
        self.series_id = series_id

    def deposit(self, session: WorkflowSession, operator: LocalAccount, payment_amount: Any) -> DepositReport:
        if isinstance(payment_amount, bool) or not isinstance(payment_amount, int) or payment_amount <= 0:
            raise ValidationError(f"Payment amount must be a positive integer, got {payment_amount!r}")
        if not session.tranches:
            raise PreconditionError("Tranches must be created before payments are deposited")

        pool = session.deployed_addresses.pool_contract
        total_amount = payment_amount * len(TRANCHE_ORDER)
        stablecoin = self.ledger.call("Pool", pool, "stablecoin")

        handle = self.sequencer.begin(operator)
        self.sequencer.submit(handle, LedgerCall("MockERC20", "mint", (operator.address, total_amount), stablecoin))
        self.sequencer.submit(handle, LedgerCall("MockERC20", "approve", (pool, total_amount), stablecoin))

        report = DepositReport(payment_amount=payment_amount, total_amount=total_amount)
        for tranche_id in TRANCHE_ORDER:
            receipt = self.sequencer.submit(
                handle,
                LedgerCall("Pool", "depositPayment", (int(tranche_id), self.series_id, payment_amount), pool),
            )
            expected = int(self.ledger.call("Pool", pool, "getTotalExpectedPayout", int(tranche_id), self.series_id))
            deposited = int(self.ledger.call("Pool", pool, "payments", int(tranche_id), self.series_id))

            cycle = PaymentCycle(
                tranche_id=tranche_id,
                series_id=self.series_id,
                deposited_amount=deposited,
                expected_payout=expected,
                deposited_events=[
                    _deposit_event_fields(event.args) for event in find_events(receipt, "PaymentDeposited", pool)
                ],
            )
            session.payment_cycles[(tranche_id, self.series_id)] = cycle
            if tranche_id in session.tranches:
                session.tranches[tranche_id].fully_funded = cycle.fully_funded
            report.cycles.append(cycle)
            logger.info(
                f"{tranche_id.label}: deposited {deposited:,} against expected {expected:,}"
                f" ({'fully funded' if cycle.fully_funded else 'short'})"
            )
        return report

    def distribute(
        self,
        session: WorkflowSession,
        operator: LocalAccount,
        signers: Mapping[str, LocalAccount],
    ) -> DistributionReport:
        """
        Distribute the selected tranche's deposited payments.

        Parameters
        ----------
        signers : mapping
            Lower-cased investor address to the account able to sign for it.
            Holders missing from this mapping are reported but cannot have
            their authorization granted here.
        """
        tranche_id = session.selected_tranche_id
        if tranche_id is None:
            raise PreconditionError("No tranche selected; subscribe to a tranche first")

        pool = session.deployed_addresses.pool_contract
        series_id = self.series_id
        report = DistributionReport(tranche_id=int(tranche_id))

        report.total_expected = int(self.ledger.call("Pool", pool, "getTotalExpectedPayout", int(tranche_id), series_id))
        report.total_available = int(self.ledger.call("Pool", pool, "payments", int(tranche_id), series_id))
        if report.total_available == 0:
            logger.info("No payments to distribute")
            report.no_op = True
            report.reason = "no payments deposited"
            return report

        stored = self.ledger.call("Pool", pool, "tranches", int(tranche_id), series_id)
        report.interest_rate_percent = int(stored[1]) / 100

        investors = list(self.ledger.call("Pool", pool, "getInvestors", int(tranche_id), series_id))
        if not investors:
            logger.info("No investors found")
            report.no_op = True
            report.reason = "no investors"
            return report

        for address in investors:
            principal = int(self.ledger.call("Pool", pool, "investorHoldings", int(tranche_id), series_id, address))
            if principal <= 0:
                continue
            expected = int(self.ledger.call("Pool", pool, "getExpectedReturn", int(tranche_id), series_id, address))
            report.investor_details.append(
                InvestorDistribution(
                    investor=address,
                    principal=principal,
                    expected_interest=expected - principal,
                    expected_total=expected,
                )
            )

        try:
            tranche_token = self.ledger.call("Pool", pool, "trancheToken")
            session.tranche_token = tranche_token
            for detail in report.investor_details:
                signer = signers.get(detail.investor.lower())
                if signer is None:
                    logger.warning(f"No signing identity for {detail.investor}; skipping authorization")
                    continue
                if self.ledger.call("ERC3475", tranche_token, "isApprovedFor", detail.investor, pool):
                    continue
                self.sequencer.submit(
                    self.sequencer.begin(signer),
                    LedgerCall("ERC3475", "setApprovalFor", (pool, True), tranche_token),
                )
                report.approvals_granted.append(detail.investor)

            self.sequencer.submit(
                self.sequencer.begin(operator),
                LedgerCall("Pool", "distributePayments", (int(tranche_id), series_id), pool),
            )
            report.distribution_complete = True
            logger.info(f"{tranche_id.label} payments distributed to {len(report.investor_details)} investors")
        except (LedgerCallError, EventNotFoundError) as e:
            logger.error(f"Error distributing payments: {e}")
            report.error = str(e)

        return report
