"""
Payment Deposit & Distribution Tests
====================================

Tests verify that:
- A deposit funds and approves the three-tranche total exactly once
- One deposit call is issued per tranche, in seniority order
- fully_funded always equals deposited >= expected payout
- Distribution is a reported no-op when nothing was deposited
- Authorization is only granted when missing
- Failures during distribution are reported, not raised
"""

from __future__ import annotations

import pytest

from tranche_platform.engine import Stage, TrancheId
from tranche_platform.exceptions import PreconditionError, ValidationError


@pytest.fixture
def subscribed(workflow, drive):
    return drive(workflow, Stage.BALANCE_QUERIED)


def test_deposit_funds_total_once_and_deposits_per_tranche(subscribed, ledger, operator) -> None:
    sent_before = len(ledger.sent)

    result = subscribed.deposit_payment(1_000)

    batch = ledger.sent[sent_before:]
    assert [sent.call.function for sent in batch] == [
        "mint",
        "approve",
        "depositPayment",
        "depositPayment",
        "depositPayment",
    ]
    assert all(sent.sender == operator.address for sent in batch)
    assert batch[0].call.args == (operator.address, 3_000)
    assert batch[1].call.args == (subscribed.session.deployed_addresses.pool_contract, 3_000)
    assert [sent.call.args for sent in batch[2:]] == [(1, 1, 1_000), (2, 1, 1_000), (3, 1, 1_000)]
    nonces = [sent.nonce for sent in batch]
    assert nonces == list(range(nonces[0], nonces[0] + 5))

    assert result["total_amount"] == 3_000
    assert [payment["class_id"] for payment in result["payments"]] == [1, 2, 3]
    assert all(payment["amount"] == 1_000 for payment in result["payments"])


@pytest.mark.parametrize("amount", [1, 1_000, 300_000])
def test_fully_funded_matches_amounts(subscribed, amount) -> None:
    result = subscribed.deposit_payment(amount)

    for info in result["payment_info"]:
        assert info["fully_funded"] == (info["deposited"] >= info["expected_payout"])

    session = subscribed.session
    for (tranche_id, series_id), cycle in session.payment_cycles.items():
        assert series_id == 1
        assert cycle.fully_funded == (cycle.deposited_amount >= cycle.expected_payout)
        assert session.tranches[tranche_id].fully_funded == cycle.fully_funded


def test_unsubscribed_tranches_are_fully_funded(subscribed) -> None:
    result = subscribed.deposit_payment(1_000)
    by_class = {info["tranche_id"]: info for info in result["payment_info"]}

    # Senior holds 250,000 at 500 bps, so 1,000 falls short
    assert by_class[1]["expected_payout"] == 262_500
    assert by_class[1]["fully_funded"] is False
    assert by_class[2]["expected_payout"] == 0
    assert by_class[2]["fully_funded"] is True


@pytest.mark.parametrize("amount", [0, -5])
def test_deposit_rejects_non_positive_amount(subscribed, ledger, amount) -> None:
    sent_before = len(ledger.sent)
    with pytest.raises(ValidationError):
        subscribed.deposit_payment(amount)
    assert len(ledger.sent) == sent_before
    assert subscribed.session.current_stage == Stage.BALANCE_QUERIED


def test_distribute_reports_investor_returns(subscribed, ledger, investor) -> None:
    subscribed.deposit_payment(300_000)

    report = subscribed.distribute_payment()

    assert report["no_op"] is False
    assert report["distribution_complete"] is True
    assert report["interest_rate_percent"] == 5.0
    assert report["fully_funded"] is True
    [detail] = report["investor_details"]
    assert detail["investor"] == investor.address
    assert detail["principal"] == 250_000
    assert detail["expected_interest"] == detail["expected_total"] - detail["principal"] == 12_500
    assert report["approvals_granted"] == [investor.address]
    assert ledger.sent_functions()[-2:] == ["setApprovalFor", "distributePayments"]
    assert subscribed.session.current_stage == Stage.PAYMENT_DISTRIBUTED


def test_existing_authorization_is_not_regranted(subscribed, ledger, investor) -> None:
    subscribed.deposit_payment(1_000)
    pool = subscribed.session.deployed_addresses.pool_contract
    token = ledger.contract_at(ledger.call("Pool", pool, "trancheToken"))
    token.approvals[(investor.address.lower(), pool.lower())] = True

    report = subscribed.distribute_payment()

    assert report["approvals_granted"] == []
    assert "setApprovalFor" not in ledger.sent_functions(investor.address)
    assert ledger.sent_functions()[-1] == "distributePayments"


def test_distribute_without_deposit_is_noop(workflow, drive, ledger) -> None:
    drive(workflow, Stage.TRANCHE_SUBSCRIBED)
    coordinator = workflow.payments
    sent_before = len(ledger.sent)

    report = coordinator.distribute(workflow.session, workflow.operator, {})

    assert report.no_op is True
    assert report.reason == "no payments deposited"
    assert report.distribution_complete is False
    assert report.total_expected == 262_500
    assert report.total_available == 0
    assert report.fully_funded is False
    assert report.to_dict()["fully_funded"] is False
    assert len(ledger.sent) == sent_before


def test_distribute_without_investors_is_noop(workflow, drive, ledger) -> None:
    drive(workflow, Stage.BALANCE_QUERIED)
    workflow.deposit_payment(1_000)
    workflow.session.selected_tranche_id = TrancheId.JUNIOR

    report = workflow.distribute_payment()

    assert report["no_op"] is True
    assert report["reason"] == "no investors"
    assert report["total_available"] == 1_000
    assert workflow.session.current_stage == Stage.PAYMENT_DISTRIBUTED


def test_distribute_requires_selected_tranche(workflow, drive) -> None:
    drive(workflow, Stage.TRANCHES_CREATED)
    with pytest.raises(PreconditionError):
        workflow.payments.distribute(workflow.session, workflow.operator, {})


def test_distribution_failure_is_reported_not_raised(subscribed, ledger) -> None:
    subscribed.deposit_payment(300_000)
    ledger.fail_on["distributePayments"] = "revert"

    report = subscribed.distribute_payment()

    assert report["distribution_complete"] is False
    assert "distributePayments" in report["error"]
    assert report["investor_details"][0]["expected_total"] == 262_500
    assert subscribed.session.current_stage == Stage.PAYMENT_DISTRIBUTED


def test_unsigned_investors_are_skipped(workflow, drive, ledger, investor) -> None:
    drive(workflow, Stage.BALANCE_QUERIED)
    workflow.deposit_payment(300_000)

    # no signer for the investor: authorization cannot be granted, so the pool reverts
    report = workflow.payments.distribute(workflow.session, workflow.operator, {})

    assert report.approvals_granted == []
    assert report.distribution_complete is False
    assert report.error is not None
    assert "setApprovalFor" not in ledger.sent_functions(investor.address)
