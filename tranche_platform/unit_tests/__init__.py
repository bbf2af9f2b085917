"""
Tranche Platform Unit Tests
===========================

Tests run against an in-memory ledger (``fake_ledger.FakeLedger``); no node
or compiled artifacts are needed.

Test Modules
------------
test_sequencer
    Nonce ordering, batch halting and timeouts.
test_events
    Receipt event decoding.
test_aggregator
    Loan partitioning and tranche notionals.
test_allocator
    Subscription band, capping and call order.
test_payments
    Deposit and distribution cycle.
test_workflow
    Stage gating and the end-to-end run.
test_loans
    Synthetic loan generation.
test_config
    Environment settings and signing identities.
test_web3_client
    Web3 ledger adapter against a stubbed node.
test_api
    HTTP endpoints and error mapping.

Running Tests
-------------
Execute all tests with pytest::

    pytest tranche_platform/unit_tests/ -v
"""
