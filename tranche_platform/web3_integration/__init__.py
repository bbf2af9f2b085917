from .events import decode_event, find_event, find_events
from .ledger import Ledger, LedgerCall, LedgerEvent, Receipt
from .sequencer import SequencerHandle, TransactionSequencer

__all__ = [
    "Ledger",
    "LedgerCall",
    "LedgerEvent",
    "Receipt",
    "SequencerHandle",
    "TransactionSequencer",
    "decode_event",
    "find_event",
    "find_events",
]
