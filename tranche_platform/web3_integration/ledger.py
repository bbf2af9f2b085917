"""
Ledger Interface
================

The workflow never talks to a node directly. It builds ``LedgerCall`` values
and hands them to a ``Ledger`` implementation, either the JSON-RPC backed
``Web3Ledger`` or an in-memory ledger in tests.

Identities are ``eth_account`` local accounts; only ``.address`` is read by
the interface, signing stays inside the implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from eth_account.signers.local import LocalAccount

CONSTRUCTOR = "constructor"


@dataclass(frozen=True)
class LedgerCall:
    """A single state-changing call: a contract function or a deployment."""

    contract: str
    function: str
    args: Tuple[Any, ...] = ()
    address: Optional[str] = None

    @classmethod
    def deploy(cls, contract: str, *args: Any) -> "LedgerCall":
        return cls(contract=contract, function=CONSTRUCTOR, args=tuple(args))

    @property
    def is_deployment(self) -> bool:
        return self.function == CONSTRUCTOR

    def __str__(self) -> str:
        target = self.contract if self.address is None else f"{self.contract}@{self.address}"
        return f"{target}.{self.function}"


@dataclass(frozen=True)
class LedgerEvent:
    """A decoded log entry."""

    address: str
    name: str
    args: Dict[str, Any]
    log_index: int = 0


@dataclass
class Receipt:
    """Confirmation record for a mined call."""

    tx_hash: str
    status: int
    block_number: int = 0
    contract_address: Optional[str] = None
    events: List[LedgerEvent] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class Ledger(ABC):
    """Operations the workflow needs from the external ledger."""

    @abstractmethod
    def pending_nonce(self, address: str) -> int:
        """Return the next nonce for ``address``, counting pending transactions."""

    @abstractmethod
    def send(self, call: LedgerCall, sender: LocalAccount, nonce: int) -> str:
        """Sign and broadcast ``call``; return the transaction hash."""

    @abstractmethod
    def wait_for_receipt(self, call: LedgerCall, tx_hash: str, timeout: float) -> Receipt:
        """Block until ``tx_hash`` is mined or ``timeout`` seconds elapse."""

    @abstractmethod
    def call(self, contract: str, address: str, function: str, *args: Any) -> Any:
        """Run a read-only query against a deployed contract."""
