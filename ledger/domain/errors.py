"""Ledger error hierarchy."""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger failures."""


class InvalidOrder(LedgerError):
    """Order quantity/price (or option details) failed validation."""


class InsufficientFunds(LedgerError):
    """Buy cost exceeds available cash."""

    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: order costs ${required:,.2f}, cash is ${available:,.2f}"
        )


class InsufficientPosition(LedgerError):
    """Sell quantity exceeds the open position."""

    def __init__(self, ticker: str, requested: float, held: float):
        self.ticker = ticker
        self.requested = requested
        self.held = held
        super().__init__(
            f"Insufficient position in {ticker}: requested {requested:g}, held {held:g}"
        )


class AccountNotFound(LedgerError):
    """Account id cannot be resolved in the store."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class StoreWriteFailed(LedgerError):
    """Durable write to the portfolio store did not complete."""


class QuoteFetchFailed(LedgerError):
    """Quote source could not provide a price for one ticker."""

    def __init__(self, ticker: str, reason: Optional[str] = None):
        self.ticker = ticker
        self.reason = reason or "unavailable"
        super().__init__(f"Quote fetch failed for {ticker}: {self.reason}")
