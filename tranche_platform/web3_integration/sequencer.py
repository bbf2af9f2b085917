"""
Transaction Sequencer
=====================

Submits ledger calls for one signing identity in strict program order.

The ledger's account model rejects a transaction whose nonce is not exactly
the next one for its sender, so every batch reads the pending nonce once in
``begin`` and then advances a local counter, one step per confirmed receipt.
A batch halts at its first failure; nothing is retried, the caller decides
whether to start a fresh batch (which re-reads the nonce).

Example
-------
>>> sequencer = TransactionSequencer(ledger, receipt_timeout=120)
>>> handle = sequencer.begin(operator)
>>> token = sequencer.deploy(handle, "MockERC20")
>>> sequencer.submit(handle, LedgerCall("MockERC20", "mint", (investor, 10**18), token))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from eth_account.signers.local import LocalAccount

from ..exceptions import LedgerCallError
from .ledger import Ledger, LedgerCall, Receipt

logger = logging.getLogger("Tranche.Sequencer")


@dataclass
class SequencerHandle:
    """Per-identity batch state: next nonce plus the confirmed history."""

    identity: LocalAccount
    next_nonce: int
    receipts: List[Receipt] = field(default_factory=list)
    failed_call: Optional[LedgerCall] = None

    @property
    def address(self) -> str:
        return self.identity.address

    @property
    def halted(self) -> bool:
        return self.failed_call is not None


class TransactionSequencer:
    """Issues ordered, nonce-tracked calls and waits for each receipt."""

    def __init__(self, ledger: Ledger, receipt_timeout: float = 120.0) -> None:
        self.ledger = ledger
        self.receipt_timeout = receipt_timeout

    def begin(self, identity: LocalAccount) -> SequencerHandle:
        nonce = self.ledger.pending_nonce(identity.address)
        logger.debug(f"Batch for {identity.address} starts at nonce {nonce}")
        return SequencerHandle(identity=identity, next_nonce=nonce)

    def submit(self, handle: SequencerHandle, call: LedgerCall) -> Receipt:
        """
        Send ``call`` with the handle's nonce and block until it is confirmed.

        Raises
        ------
        LedgerCallError
            If the batch already failed, the ledger rejects the call, the
            receipt reports a revert, or the wait times out
            (``LedgerTimeoutError``).
        """
        if handle.halted:
            raise LedgerCallError(call, f"batch halted after failed call {handle.failed_call}")

        nonce = handle.next_nonce
        try:
            tx_hash = self.ledger.send(call, handle.identity, nonce)
            receipt = self.ledger.wait_for_receipt(call, tx_hash, self.receipt_timeout)
        except LedgerCallError:
            handle.failed_call = call
            logger.error(f"{call} from {handle.address} (nonce {nonce}) failed")
            raise

        if not receipt.succeeded:
            handle.failed_call = call
            logger.error(f"{call} from {handle.address} reverted in tx {receipt.tx_hash}")
            raise LedgerCallError(call, f"reverted in tx {receipt.tx_hash}")

        handle.next_nonce = nonce + 1
        handle.receipts.append(receipt)
        logger.info(f"{call} confirmed (nonce {nonce}, tx {receipt.tx_hash})")
        return receipt

    def deploy(self, handle: SequencerHandle, contract: str, *args: Any) -> str:
        """Deploy ``contract`` through the batch and return its address."""
        call = LedgerCall.deploy(contract, *args)
        receipt = self.submit(handle, call)
        if not receipt.contract_address:
            handle.failed_call = call
            raise LedgerCallError(call, "receipt carries no contract address")
        logger.info(f"{contract} deployed at {receipt.contract_address}")
        return receipt.contract_address
