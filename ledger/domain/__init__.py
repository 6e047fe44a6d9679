"""Domain layer - ledger types and errors."""

from .errors import (
    LedgerError,
    InvalidOrder,
    InsufficientFunds,
    InsufficientPosition,
    AccountNotFound,
    StoreWriteFailed,
    QuoteFetchFailed,
)
from .models import (
    AccountState,
    AccountStats,
    ContractType,
    HistoryPoint,
    InstrumentKind,
    LeaderboardEntry,
    OptionDetails,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderTicket,
    PortfolioSummary,
    Position,
    PositionChange,
    PriceRefresh,
    Quote,
    Trade,
)
from .positions import PositionLedger

__all__ = [
    "LedgerError",
    "InvalidOrder",
    "InsufficientFunds",
    "InsufficientPosition",
    "AccountNotFound",
    "StoreWriteFailed",
    "QuoteFetchFailed",
    "AccountState",
    "AccountStats",
    "ContractType",
    "HistoryPoint",
    "InstrumentKind",
    "LeaderboardEntry",
    "OptionDetails",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderTicket",
    "PortfolioSummary",
    "Position",
    "PositionChange",
    "PriceRefresh",
    "Quote",
    "Trade",
    "PositionLedger",
]
