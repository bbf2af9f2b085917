"""
Exception hierarchy for the tranche securitization workflow.

``ValidationError`` and ``PreconditionError`` are raised before any ledger
call is made, so the session is untouched when they surface.
``LedgerCallError`` and ``EventNotFoundError`` can be raised after earlier
calls in the same operation were confirmed; those confirmed effects stay on
the ledger.
"""

from __future__ import annotations

from typing import Any, Optional


class TranchePlatformError(Exception):
    """Base exception for all workflow errors."""


class ValidationError(TranchePlatformError):
    """Raised when operator input is outside the allowed range."""


class DuplicateLoanAssignmentError(ValidationError):
    """Raised when a loan token id is assigned to more than one tranche slot."""

    def __init__(self, token_ids: Any) -> None:
        self.token_ids = sorted(token_ids)
        super().__init__(f"Loan token ids assigned more than once: {self.token_ids}")


class PreconditionError(TranchePlatformError):
    """Raised when an operation is invoked before its stage is reachable."""


class ConfigurationError(TranchePlatformError):
    """Raised when ledger configuration (keys, artifacts, endpoint) is missing."""


class LedgerCallError(TranchePlatformError):
    """
    Raised when the ledger rejects or reverts a call.

    Attributes
    ----------
    call : Any
        The ``LedgerCall`` that failed.
    cause : Any
        The underlying exception or a short reason string.
    """

    def __init__(self, call: Any, cause: Any) -> None:
        self.call = call
        self.cause = cause
        super().__init__(f"{call}: {cause}")


class LedgerTimeoutError(LedgerCallError):
    """Raised when a receipt is not confirmed within the configured wait."""


class EventNotFoundError(TranchePlatformError):
    """Raised when a confirmed receipt lacks an expected event."""

    def __init__(self, event_name: str, tx_hash: Optional[str] = None) -> None:
        self.event_name = event_name
        self.tx_hash = tx_hash
        super().__init__(f"{event_name} event not found in receipt {tx_hash or '<unknown>'}")
