"""
Investor Subscription Tests
===========================

Tests verify that:
- Out-of-band amounts are rejected with no ledger call
- Accepted amount is min(requested, remaining capacity)
- Credit, approval and investment are sent in order by the right identities
- Capacity tracking across repeated subscriptions follows configuration
"""

from __future__ import annotations

import pytest

from tranche_platform.engine import Stage, TrancheId
from tranche_platform.engine.allocator import resolve_tranche, to_token_units
from tranche_platform.exceptions import ValidationError


@pytest.fixture
def structured(workflow, drive):
    return drive(workflow, Stage.TRANCHES_CREATED)


@pytest.mark.parametrize("amount", [0, 9_999, 500_001, 600_000])
def test_out_of_band_rejected_without_ledger_call(structured, ledger, amount) -> None:
    sent_before, reads_before = len(ledger.sent), len(ledger.reads)

    with pytest.raises(ValidationError):
        structured.subscribe_tranche("Senior", amount)

    assert len(ledger.sent) == sent_before
    assert len(ledger.reads) == reads_before
    assert structured.session.current_stage == Stage.TRANCHES_CREATED
    assert structured.session.selected_tranche_id is None
    assert structured.session.subscriptions == {}


@pytest.mark.parametrize("amount", [10_000, 500_000])
def test_band_edges_accepted(structured, amount) -> None:
    result = structured.subscribe_tranche("Junior", amount)
    assert result["accepted_amount"] == amount


def test_unknown_tranche_rejected(structured, ledger) -> None:
    sent_before = len(ledger.sent)
    with pytest.raises(ValidationError, match="Unknown tranche"):
        structured.subscribe_tranche("Equity", 50_000)
    assert len(ledger.sent) == sent_before


def test_resolve_tranche_is_case_insensitive() -> None:
    assert resolve_tranche("mezzanine") is TrancheId.MEZZANINE
    assert resolve_tranche(" Senior ") is TrancheId.SENIOR


def test_request_below_capacity_is_accepted_in_full(structured) -> None:
    notional = structured.session.tranches[TrancheId.MEZZANINE].notional
    assert notional > 250_000

    result = structured.subscribe_tranche("Mezzanine", 250_000)

    assert result["accepted_amount"] == 250_000
    assert result["remaining_before"] == notional
    assert structured.session.selected_tranche_id is TrancheId.MEZZANINE


def test_call_sequence_and_identities(structured, ledger, operator, investor) -> None:
    sent_before = len(ledger.sent)
    structured.subscribe_tranche("Senior", 120_000)
    batch = ledger.sent[sent_before:]

    assert [(sent.sender, sent.call.function) for sent in batch] == [
        (operator.address, "mint"),
        (investor.address, "approve"),
        (investor.address, "invest"),
    ]
    mint, approve, invest = (sent.call for sent in batch)
    assert mint.args == (investor.address, to_token_units(120_000))
    assert approve.args == (structured.session.deployed_addresses.pool_contract, to_token_units(120_000))
    assert invest.args == (int(TrancheId.SENIOR), 1, 120_000)
    assert batch[2].nonce == batch[1].nonce + 1


def test_capacity_tracked_across_subscriptions(structured, ledger) -> None:
    session = structured.session
    tranche = session.tranches[TrancheId.SENIOR]
    tranche.notional = 700_000

    first = structured.subscribe_tranche("Senior", 500_000)
    second = structured.subscribe_tranche("Senior", 400_000)

    assert first["accepted_amount"] == 500_000
    assert second["remaining_before"] == 200_000
    assert second["accepted_amount"] == 200_000
    assert session.subscribed_total(TrancheId.SENIOR) == 700_000

    sent_before = len(ledger.sent)
    with pytest.raises(ValidationError, match="fully subscribed"):
        structured.subscribe_tranche("Senior", 10_000)
    assert len(ledger.sent) == sent_before


def test_capacity_not_tracked_when_disabled(structured, config) -> None:
    config.track_subscription_capacity = False
    structured.session.tranches[TrancheId.SENIOR].notional = 700_000

    structured.subscribe_tranche("Senior", 500_000)
    second = structured.subscribe_tranche("Senior", 400_000)

    assert second["remaining_before"] == 700_000
    assert second["accepted_amount"] == 400_000


def test_request_above_remaining_is_capped(structured, config) -> None:
    config.subscription_max = 1_000_000
    config.track_subscription_capacity = False
    structured.session.tranches[TrancheId.SENIOR].notional = 500_000

    result = structured.subscribe_tranche("Senior", 600_000)

    assert result["requested_amount"] == 600_000
    assert result["accepted_amount"] == 500_000


def test_holdings_recorded_per_investor(structured, investor) -> None:
    structured.subscribe_tranche("Junior", 50_000)
    structured.subscribe_tranche("Junior", 25_000)

    subscription = structured.session.subscriptions[(investor.address, TrancheId.JUNIOR)]
    assert subscription.holding_amount == 75_000
    assert subscription.series_id == 1

    holdings = structured.query_holdings()["holdings"]
    assert holdings == {"Senior": 0, "Mezzanine": 0, "Junior": 75_000}
