"""Typed lookup of events carried by a ``Receipt``."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..exceptions import EventNotFoundError
from .ledger import LedgerEvent, Receipt


def _same_address(left: str, right: str) -> bool:
    return left.lower() == right.lower()


def find_events(receipt: Receipt, event_name: str, address: Optional[str] = None) -> List[LedgerEvent]:
    """Return every ``event_name`` event in the receipt, optionally limited to one emitter."""
    return [
        event
        for event in receipt.events
        if event.name == event_name and (address is None or _same_address(event.address, address))
    ]


def find_event(receipt: Receipt, event_name: str, address: Optional[str] = None) -> Optional[Dict[str, Any]]:
    matches = find_events(receipt, event_name, address)
    return dict(matches[0].args) if matches else None


def decode_event(receipt: Receipt, event_name: str, address: Optional[str] = None) -> Dict[str, Any]:
    """
    Return the fields of the first ``event_name`` event in ``receipt``.

    Raises
    ------
    EventNotFoundError
        If the receipt carries no such event.
    """
    fields = find_event(receipt, event_name, address)
    if fields is None:
        raise EventNotFoundError(event_name, receipt.tx_hash)
    return fields
