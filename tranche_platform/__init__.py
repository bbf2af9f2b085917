"""Loan securitization workflow: tokenize, tranche, subscribe and service on a ledger."""

__version__ = "1.0.0"
