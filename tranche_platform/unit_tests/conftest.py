"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Callable

import numpy as np
import pytest
from eth_account import Account

from tranche_platform.config import Settings
from tranche_platform.engine import SecuritizationWorkflow, Stage
from tranche_platform.web3_integration.sequencer import TransactionSequencer

from .fake_ledger import FakeLedger


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def operator():
    """Throwaway operator identity."""
    return Account.create()


@pytest.fixture
def investor():
    """Throwaway investor identity."""
    return Account.create()


@pytest.fixture
def config() -> Settings:
    """Settings with the production defaults, independent of the environment."""
    cfg = Settings()
    cfg.loan_count = 20
    cfg.tranche_partition_sizes = [6, 6, 7]
    cfg.subscription_min = 10_000
    cfg.subscription_max = 500_000
    cfg.track_subscription_capacity = True
    cfg.stablecoin_decimals = 18
    cfg.series_id = 1
    cfg.web3_receipt_timeout_seconds = 5.0
    return cfg


@pytest.fixture
def sequencer(ledger: FakeLedger) -> TransactionSequencer:
    return TransactionSequencer(ledger, receipt_timeout=5.0)


@pytest.fixture
def workflow(ledger, operator, investor, config) -> SecuritizationWorkflow:
    return SecuritizationWorkflow(ledger, operator, investor, config, rng=np.random.default_rng(42))


def _drive(workflow: SecuritizationWorkflow, target: Stage) -> SecuritizationWorkflow:
    steps = [
        (Stage.BASE_TOKEN_DEPLOYED, lambda: workflow.deploy_base_token()),
        (Stage.INVESTOR_FUNDED, lambda: workflow.fund_investor(1_000)),
        (Stage.LOAN_REGISTRY_DEPLOYED, lambda: workflow.deploy_loan_registry()),
        (Stage.POOL_DEPLOYED, lambda: workflow.deploy_pool()),
        (Stage.LOANS_TOKENIZED, lambda: workflow.tokenize_loans()),
        (Stage.LOAN_DETAIL_FETCHED, lambda: workflow.fetch_loan_detail(0)),
        (Stage.TRANCHES_CREATED, lambda: workflow.create_tranches(500, 300, 100)),
        (Stage.TRANCHE_SUBSCRIBED, lambda: workflow.subscribe_tranche("Senior", 250_000)),
        (Stage.HOLDINGS_QUERIED, lambda: workflow.query_holdings()),
        (Stage.BALANCE_QUERIED, lambda: workflow.query_balance()),
        (Stage.PAYMENT_DEPOSITED, lambda: workflow.deposit_payment(1_000)),
        (Stage.PAYMENT_DISTRIBUTED, lambda: workflow.distribute_payment()),
    ]
    for stage, step in steps:
        if workflow.session.current_stage >= target:
            break
        step()
        assert workflow.session.current_stage == stage
    return workflow


@pytest.fixture
def drive() -> Callable[[SecuritizationWorkflow, Stage], SecuritizationWorkflow]:
    """Advance a workflow through the standard happy path up to a stage."""
    return _drive
