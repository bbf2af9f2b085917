"""
In-Memory Ledger
================

A small simulation of the five workflow contracts (MockERC20, LoanNFT, Pool,
TrancheToken/ERC3475) behind the ``Ledger`` interface, with the account
nonce model enforced: a transaction is only accepted with exactly the
sender's next nonce.

Failures can be injected per function name through ``fail_on``:

- ``"reject"``: ``send`` raises, no nonce is consumed
- ``"revert"``: the transaction is mined with status 0
- ``"timeout"``: the receipt wait raises ``LedgerTimeoutError``
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from web3 import Web3

from tranche_platform.exceptions import LedgerCallError, LedgerTimeoutError
from tranche_platform.web3_integration.ledger import Ledger, LedgerCall, LedgerEvent, Receipt


class Revert(Exception):
    """A contract-level revert."""


@dataclass
class SentCall:
    sender: str
    nonce: int
    call: LedgerCall


class FakeContract:
    def __init__(self, ledger: "FakeLedger", address: str) -> None:
        self.ledger = ledger
        self.address = address

    def emit(self, name: str, **args: Any) -> LedgerEvent:
        return LedgerEvent(address=self.address, name=name, args=args)


class FakeMockERC20(FakeContract):
    def __init__(self, ledger: "FakeLedger", address: str) -> None:
        super().__init__(ledger, address)
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str], int] = defaultdict(int)

    def tx_mint(self, sender: str, to: str, amount: int) -> List[LedgerEvent]:
        self.balances[to.lower()] += amount
        return [self.emit("Transfer", src="0x" + "0" * 40, dst=to, value=amount)]

    def tx_approve(self, sender: str, spender: str, amount: int) -> List[LedgerEvent]:
        self.allowances[(sender.lower(), spender.lower())] = amount
        return [self.emit("Approval", owner=sender, spender=spender, value=amount)]

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        key = (owner.lower(), spender.lower())
        if self.allowances[key] < amount:
            raise Revert("ERC20: insufficient allowance")
        if self.balances[owner.lower()] < amount:
            raise Revert("ERC20: transfer amount exceeds balance")
        self.allowances[key] -= amount
        self.balances[owner.lower()] -= amount
        self.balances[to.lower()] += amount

    def transfer(self, owner: str, to: str, amount: int) -> None:
        if self.balances[owner.lower()] < amount:
            raise Revert("ERC20: transfer amount exceeds balance")
        self.balances[owner.lower()] -= amount
        self.balances[to.lower()] += amount

    def balanceOf(self, account: str) -> int:
        return self.balances[account.lower()]


class FakeLoanNFT(FakeContract):
    def __init__(self, ledger: "FakeLedger", address: str) -> None:
        super().__init__(ledger, address)
        self.next_token_id = 1
        self.loans: Dict[int, Tuple[int, int, int]] = {}
        self.owners: Dict[int, str] = {}

    def tx_mint(self, sender: str, to: str, principal: int, rate_bps: int, maturity: int) -> List[LedgerEvent]:
        token_id = self.next_token_id
        self.next_token_id += 1
        self.loans[token_id] = (principal, rate_bps, maturity)
        self.owners[token_id] = to
        return [
            self.emit("Transfer", src="0x" + "0" * 40, dst=to, tokenId=token_id),
            self.emit("LoanMinted", tokenId=token_id, to=to),
        ]

    def loanData(self, token_id: int) -> Tuple[int, int, int]:
        if token_id not in self.loans:
            raise Revert("LoanNFT: unknown token")
        return self.loans[token_id]

    def getLoanData(self, index: int) -> Tuple[int, int, int]:
        token_ids = sorted(self.loans)
        if not 0 <= index < len(token_ids):
            raise Revert("LoanNFT: index out of range")
        return self.loans[token_ids[index]]


class FakeERC3475(FakeContract):
    def __init__(self, ledger: "FakeLedger", address: str) -> None:
        super().__init__(ledger, address)
        self.balances: Dict[Tuple[str, int, int], int] = defaultdict(int)
        self.approvals: Dict[Tuple[str, str], bool] = {}

    def issue(self, to: str, class_id: int, series_id: int, amount: int) -> None:
        self.balances[(to.lower(), class_id, series_id)] += amount

    def balanceOf(self, account: str, class_id: int, series_id: int) -> int:
        return self.balances[(account.lower(), class_id, series_id)]

    def isApprovedFor(self, owner: str, operator: str) -> bool:
        return self.approvals.get((owner.lower(), operator.lower()), False)

    def tx_setApprovalFor(self, sender: str, operator: str, approved: bool) -> List[LedgerEvent]:
        self.approvals[(sender.lower(), operator.lower())] = approved
        return [self.emit("ApprovalFor", owner=sender, operator=operator, approved=approved)]


class FakePool(FakeContract):
    def __init__(self, ledger: "FakeLedger", address: str, loan_nft: str, stablecoin: str) -> None:
        super().__init__(ledger, address)
        self.loan_nft = loan_nft
        self.stablecoin_address = stablecoin
        self.tranche_token = ledger.register(FakeERC3475)
        self.classes: Dict[Tuple[int, int], Dict[str, Any]] = {}
        self.holdings: Dict[Tuple[int, int], Dict[str, int]] = defaultdict(dict)
        self.deposits: Dict[Tuple[int, int], int] = defaultdict(int)

    @property
    def _stablecoin(self) -> FakeMockERC20:
        return self.ledger.contract_at(self.stablecoin_address)

    @property
    def _token(self) -> FakeERC3475:
        return self.ledger.contract_at(self.tranche_token)

    def tx_createTranche(
        self, sender: str, class_id: int, loan_ids: List[int], notional: int, rate_bps: int
    ) -> List[LedgerEvent]:
        key = (class_id, 1)
        if key in self.classes:
            raise Revert("Pool: tranche exists")
        self.classes[key] = {"notional": notional, "rate": rate_bps, "loan_ids": list(loan_ids)}
        return [self.emit("TrancheCreated", classId=class_id, seriesId=1, notional=notional)]

    def tx_invest(self, sender: str, class_id: int, series_id: int, amount: int) -> List[LedgerEvent]:
        if (class_id, series_id) not in self.classes:
            raise Revert("Pool: unknown tranche")
        self._stablecoin.transfer_from(self.address, sender, self.address, amount)
        positions = self.holdings[(class_id, series_id)]
        positions[sender] = positions.get(sender, 0) + amount
        self._token.issue(sender, class_id, series_id, amount)
        return [self.emit("Invested", classId=class_id, seriesId=series_id, investor=sender, amount=amount)]

    def tx_depositPayment(self, sender: str, class_id: int, series_id: int, amount: int) -> List[LedgerEvent]:
        if (class_id, series_id) not in self.classes:
            raise Revert("Pool: unknown tranche")
        self._stablecoin.transfer_from(self.address, sender, self.address, amount)
        self.deposits[(class_id, series_id)] += amount
        return [self.emit("PaymentDeposited", classId=class_id, seriesId=series_id, amount=amount)]

    def tx_distributePayments(self, sender: str, class_id: int, series_id: int) -> List[LedgerEvent]:
        key = (class_id, series_id)
        available = self.deposits[key]
        events = []
        for investor, principal in self.holdings[key].items():
            if not self._token.isApprovedFor(investor, self.address):
                raise Revert("ERC3475: pool not approved")
            share = min(self.getExpectedReturn(class_id, series_id, investor), available)
            self._stablecoin.transfer(self.address, investor, share)
            available -= share
            events.append(self.emit("PaymentDistributed", investor=investor, amount=share))
        self.deposits[key] = available
        return events

    def tranches(self, class_id: int, series_id: int) -> Tuple[int, int]:
        stored = self.classes.get((class_id, series_id), {"notional": 0, "rate": 0})
        return stored["notional"], stored["rate"]

    def getLoanIds(self, class_id: int, series_id: int) -> List[int]:
        return list(self.classes.get((class_id, series_id), {}).get("loan_ids", []))

    def getLoanContracts(self, class_id: int, series_id: int) -> List[str]:
        return [self.loan_nft for _ in self.getLoanIds(class_id, series_id)]

    def investorHoldings(self, class_id: int, series_id: int, investor: str) -> int:
        for holder, amount in self.holdings[(class_id, series_id)].items():
            if holder.lower() == investor.lower():
                return amount
        return 0

    def getInvestors(self, class_id: int, series_id: int) -> List[str]:
        return list(self.holdings[(class_id, series_id)])

    def getExpectedReturn(self, class_id: int, series_id: int, investor: str) -> int:
        principal = self.investorHoldings(class_id, series_id, investor)
        rate = self.tranches(class_id, series_id)[1]
        return principal + principal * rate // 10_000

    def getTotalExpectedPayout(self, class_id: int, series_id: int) -> int:
        return sum(
            self.getExpectedReturn(class_id, series_id, investor)
            for investor in self.holdings[(class_id, series_id)]
        )

    def payments(self, class_id: int, series_id: int) -> int:
        return self.deposits[(class_id, series_id)]

    def trancheToken(self) -> str:
        return self.tranche_token

    def stablecoin(self) -> str:
        return self.stablecoin_address


FACTORIES: Dict[str, Callable[..., FakeContract]] = {
    "MockERC20": FakeMockERC20,
    "LoanNFT": FakeLoanNFT,
    "Pool": FakePool,
}


class FakeLedger(Ledger):
    """Deterministic ``Ledger`` used by the unit tests."""

    def __init__(self) -> None:
        self.contracts: Dict[str, FakeContract] = {}
        self.nonces: Dict[str, int] = defaultdict(int)
        self.sent: List[SentCall] = []
        self.reads: List[Tuple[str, str, Tuple[Any, ...]]] = []
        self.fail_on: Dict[str, str] = {}
        self._pending: Dict[str, Receipt] = {}
        self._tx_ids = itertools.count(1)
        self._address_ids = itertools.count(0x1000)
        self.block_number = 0

    # -- helpers used by tests ----------------------------------------------

    def register(self, factory: Callable[..., FakeContract], *args: Any) -> str:
        address = Web3.to_checksum_address(f"0x{next(self._address_ids):040x}")
        self.contracts[address.lower()] = factory(self, address, *args)
        return address

    def contract_at(self, address: str) -> Any:
        return self.contracts[address.lower()]

    def sent_functions(self, sender: Optional[str] = None) -> List[str]:
        return [
            sent.call.function
            for sent in self.sent
            if sender is None or sent.sender.lower() == sender.lower()
        ]

    # -- Ledger interface -----------------------------------------------------

    def pending_nonce(self, address: str) -> int:
        return self.nonces[address.lower()]

    def send(self, call: LedgerCall, sender: Any, nonce: int) -> str:
        expected = self.nonces[sender.address.lower()]
        if nonce != expected:
            raise LedgerCallError(call, f"nonce mismatch: expected {expected}, got {nonce}")
        mode = self.fail_on.get(call.function)
        if mode == "reject":
            raise LedgerCallError(call, "rejected by node")

        self.nonces[sender.address.lower()] += 1
        self.sent.append(SentCall(sender=sender.address, nonce=nonce, call=call))
        self.block_number += 1
        tx_hash = f"0x{next(self._tx_ids):064x}"

        if mode == "revert":
            receipt = Receipt(tx_hash=tx_hash, status=0, block_number=self.block_number)
        else:
            try:
                events, contract_address = self._execute(call, sender.address)
                receipt = Receipt(
                    tx_hash=tx_hash,
                    status=1,
                    block_number=self.block_number,
                    contract_address=contract_address,
                    events=[
                        LedgerEvent(event.address, event.name, event.args, log_index=index)
                        for index, event in enumerate(events)
                    ],
                )
            except Revert:
                receipt = Receipt(tx_hash=tx_hash, status=0, block_number=self.block_number)
        self._pending[tx_hash] = receipt
        return tx_hash

    def wait_for_receipt(self, call: LedgerCall, tx_hash: str, timeout: float) -> Receipt:
        if self.fail_on.get(call.function) == "timeout":
            raise LedgerTimeoutError(call, f"no receipt for {tx_hash} after {timeout}s")
        return self._pending.pop(tx_hash)

    def call(self, contract: str, address: str, function: str, *args: Any) -> Any:
        self.reads.append((contract, function, args))
        try:
            return getattr(self.contract_at(address), function)(*args)
        except Revert as e:
            raise LedgerCallError(f"{contract}@{address}.{function}", e) from e

    def _execute(self, call: LedgerCall, sender: str) -> Tuple[List[LedgerEvent], Optional[str]]:
        if call.is_deployment:
            return [], self.register(FACTORIES[call.contract], *call.args)
        target = self.contract_at(call.address)
        return getattr(target, f"tx_{call.function}")(sender, *call.args), None
