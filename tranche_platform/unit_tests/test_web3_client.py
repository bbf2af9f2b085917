"""
Web3 Ledger Adapter Tests
=========================

Tests verify that ``Web3Ledger``:
- Maps a web3 receipt wait timeout to LedgerTimeoutError
- Maps node and transport failures during send to LedgerCallError
- Decodes receipt logs only with the ABI of the contract that emitted them

The node is replaced by stubs; receipts are built by hand with the log
layout web3.py returns.
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError
from web3 import Web3
from web3.datastructures import AttributeDict
from web3.exceptions import TimeExhausted, Web3Exception

from tranche_platform.exceptions import LedgerCallError, LedgerTimeoutError
from tranche_platform.web3_integration.ledger import LedgerCall
from tranche_platform.web3_integration.web3_client import ARTIFACT_PATHS, Web3Ledger

POOL = Web3.to_checksum_address("0x" + "11" * 20)
TOKEN = Web3.to_checksum_address("0x" + "22" * 20)
STRANGER = Web3.to_checksum_address("0x" + "33" * 20)
SENDER = Web3.to_checksum_address("0x" + "44" * 20)
TX_HASH = b"\xab" * 32


def _event(name, *fields):
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": field, "type": "uint256", "indexed": False} for field in fields],
    }


# Same event signature under two ABIs, with different field names
POOL_ABI = [_event("PaymentDeposited", "classId", "seriesId", "amount")]
TOKEN_ABI = [_event("PaymentDeposited", "x", "y", "z")]


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def artifacts_dir(tmp_path):
    for contract, abi in (("Pool", POOL_ABI), ("MockERC20", TOKEN_ABI)):
        path = tmp_path / ARTIFACT_PATHS[contract]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"abi": abi, "bytecode": "0x"}))
    return tmp_path


@pytest.fixture
def web3_ledger(artifacts_dir) -> Web3Ledger:
    return Web3Ledger("http://127.0.0.1:8545", artifacts_dir)


@pytest.fixture
def signer():
    return SimpleNamespace(address=SENDER, sign_transaction=lambda tx: SimpleNamespace(raw_transaction=b"\x02signed"))


@pytest.fixture
def call() -> LedgerCall:
    return LedgerCall("Pool", "depositPayment", (1, 1, 1_000), POOL)


class StubFunction:
    """Stands in for a bound contract function; records the built transaction."""

    def __init__(self):
        self.built = None

    def build_transaction(self, tx):
        self.built = dict(tx, to=POOL, value=0, data="0x", chainId=31337)
        return self.built


def _stub_node(web3_ledger, monkeypatch, **eth):
    function = StubFunction()
    monkeypatch.setattr(web3_ledger, "_contract_fn", lambda call: function)
    web3_ledger.w3 = SimpleNamespace(eth=SimpleNamespace(gas_price=1, **eth))
    return function


def _log(w3, address, values, index):
    return AttributeDict(
        {
            "address": address,
            "topics": [Web3.keccak(text="PaymentDeposited(uint256,uint256,uint256)")],
            "data": w3.codec.encode(["uint256", "uint256", "uint256"], values),
            "logIndex": index,
            "transactionIndex": 0,
            "transactionHash": TX_HASH,
            "blockHash": b"\x01" * 32,
            "blockNumber": 7,
        }
    )


# =============================================================================
# Send and wait
# =============================================================================

def test_send_returns_hex_hash(web3_ledger, monkeypatch, signer, call) -> None:
    function = _stub_node(web3_ledger, monkeypatch, send_raw_transaction=lambda raw: TX_HASH)

    tx_hash = web3_ledger.send(call, signer, 4)

    assert tx_hash == Web3.to_hex(TX_HASH)
    assert function.built["nonce"] == 4
    assert function.built["from"] == SENDER
    assert function.built["gas"] == web3_ledger.default_gas


@pytest.mark.parametrize(
    "failure",
    [Web3Exception("nonce too low"), RequestsConnectionError("connection refused"), ValueError("insufficient funds")],
)
def test_send_failure_becomes_ledger_call_error(web3_ledger, monkeypatch, signer, call, failure) -> None:
    def reject(raw):
        raise failure

    _stub_node(web3_ledger, monkeypatch, send_raw_transaction=reject)

    with pytest.raises(LedgerCallError) as excinfo:
        web3_ledger.send(call, signer, 0)

    assert excinfo.value.call is call
    assert excinfo.value.cause is failure
    assert not isinstance(excinfo.value, LedgerTimeoutError)


def test_receipt_wait_timeout_becomes_ledger_timeout(web3_ledger, monkeypatch, call) -> None:
    waits = []

    def never_mined(tx_hash, timeout):
        waits.append(timeout)
        raise TimeExhausted(f"Transaction {tx_hash} is not in the chain after {timeout} seconds")

    _stub_node(web3_ledger, monkeypatch, wait_for_transaction_receipt=never_mined)

    with pytest.raises(LedgerTimeoutError) as excinfo:
        web3_ledger.wait_for_receipt(call, "0xabc", 2.5)

    assert waits == [2.5]
    assert excinfo.value.call is call
    assert "0xabc" in str(excinfo.value)


def test_receipt_wait_transport_error_is_not_timeout(web3_ledger, monkeypatch, call) -> None:
    def unreachable(tx_hash, timeout):
        raise RequestsConnectionError("connection reset")

    _stub_node(web3_ledger, monkeypatch, wait_for_transaction_receipt=unreachable)

    with pytest.raises(LedgerCallError) as excinfo:
        web3_ledger.wait_for_receipt(call, "0xabc", 2.5)
    assert not isinstance(excinfo.value, LedgerTimeoutError)


# =============================================================================
# Event decoding
# =============================================================================

def test_events_decoded_with_emitter_abi_only(web3_ledger, monkeypatch, call) -> None:
    w3 = web3_ledger.w3
    web3_ledger._known_addresses.update({POOL.lower(): "Pool", TOKEN.lower(): "MockERC20"})
    raw = AttributeDict(
        {
            "transactionHash": TX_HASH,
            "status": 1,
            "blockNumber": 7,
            "contractAddress": None,
            "logs": [
                _log(w3, POOL, [1, 1, 1_000], 0),
                _log(w3, TOKEN, [9, 8, 7], 1),
                _log(w3, STRANGER, [5, 5, 5], 2),
            ],
        }
    )
    monkeypatch.setattr(w3.eth, "wait_for_transaction_receipt", lambda tx_hash, timeout: raw)

    receipt = web3_ledger.wait_for_receipt(call, Web3.to_hex(TX_HASH), 5)

    assert receipt.succeeded
    assert receipt.block_number == 7
    assert [event.log_index for event in receipt.events] == [0, 1]
    pool_event, token_event = receipt.events
    assert pool_event.address == POOL
    assert pool_event.args == {"classId": 1, "seriesId": 1, "amount": 1_000}
    assert token_event.address == TOKEN
    assert token_event.args == {"x": 9, "y": 8, "z": 7}


def test_deployment_receipt_registers_contract(web3_ledger, monkeypatch) -> None:
    raw = AttributeDict(
        {"transactionHash": TX_HASH, "status": 1, "blockNumber": 3, "contractAddress": POOL, "logs": []}
    )
    monkeypatch.setattr(web3_ledger.w3.eth, "wait_for_transaction_receipt", lambda tx_hash, timeout: raw)

    receipt = web3_ledger.wait_for_receipt(LedgerCall.deploy("Pool"), Web3.to_hex(TX_HASH), 5)

    assert receipt.contract_address == POOL
    assert web3_ledger._known_addresses[POOL.lower()] == "Pool"
    assert receipt.events == []
