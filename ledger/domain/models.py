"""Domain models for the paper-trading ledger."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

DEFAULT_STARTING_CASH = 10000.0
DEFAULT_CATEGORY = "Student"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ticker(ticker: str) -> str:
    return ticker.strip().upper().replace("$", "")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass through a datetime), always tz-aware UTC."""
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class OrderSide(str, Enum):
    """Order direction."""
    BUY = "buy"
    SELL = "sell"


class InstrumentKind(str, Enum):
    """Tradable instrument variant."""
    EQUITY = "stock"
    OPTION = "option"


class ContractType(str, Enum):
    CALL = "call"
    PUT = "put"


class OrderStatus(str, Enum):
    """Lifecycle of an order between validation and durable write."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class OptionDetails:
    """Contract terms attached to an option trade."""
    contract_type: ContractType
    strike_price: float
    expiration_date: str  # YYYY-MM-DD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract_type": self.contract_type.value,
            "strike_price": self.strike_price,
            "expiration_date": self.expiration_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptionDetails":
        return cls(
            contract_type=ContractType(data["contract_type"]),
            strike_price=float(data["strike_price"]),
            expiration_date=str(data["expiration_date"]),
        )


@dataclass(frozen=True)
class Position:
    """Open holding in one ticker."""
    ticker: str
    quantity: float
    average_cost: float
    current_price: float
    name: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def value(self) -> float:
        return self.quantity * self.current_price

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.average_cost

    @property
    def unrealized_gain(self) -> float:
        return (self.current_price - self.average_cost) * self.quantity

    @property
    def unrealized_gain_percent(self) -> float:
        if self.average_cost <= 0:
            return 0.0
        return (self.current_price - self.average_cost) / self.average_cost * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "name": self.name,
            "quantity": self.quantity,
            "average_cost": self.average_cost,
            "current_price": self.current_price,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        updated_at = data.get("updated_at")
        return cls(
            ticker=data["ticker"],
            name=data.get("name"),
            quantity=float(data["quantity"]),
            average_cost=float(data["average_cost"]),
            current_price=float(data["current_price"]),
            updated_at=parse_timestamp(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class Trade:
    """Immutable record of one executed order."""
    trade_id: str
    ticker: str
    name: str
    kind: InstrumentKind
    side: OrderSide
    quantity: float
    price: float
    total_value: float
    timestamp: datetime
    option_details: Optional[OptionDetails] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "ticker": self.ticker,
            "name": self.name,
            "kind": self.kind.value,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "total_value": self.total_value,
            "timestamp": self.timestamp.isoformat(),
            "option_details": self.option_details.to_dict() if self.option_details else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        details = data.get("option_details")
        return cls(
            trade_id=data["trade_id"],
            ticker=data["ticker"],
            name=data.get("name") or data["ticker"],
            kind=InstrumentKind(data["kind"]),
            side=OrderSide(data["side"]),
            quantity=float(data["quantity"]),
            price=float(data["price"]),
            total_value=float(data["total_value"]),
            timestamp=parse_timestamp(data["timestamp"]),
            option_details=OptionDetails.from_dict(details) if details else None,
        )


@dataclass(frozen=True)
class OrderRequest:
    """Order intent as submitted by the presentation layer."""
    ticker: str
    side: OrderSide
    quantity: float
    price: float
    name: Optional[str] = None
    kind: InstrumentKind = InstrumentKind.EQUITY
    option_details: Optional[OptionDetails] = None

    @property
    def total_value(self) -> float:
        return self.quantity * self.price


@dataclass(frozen=True)
class PortfolioSummary:
    """Account-level figures, all derived from one total value."""
    total_value: float
    percent_gain: float
    amount_gained: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_value": self.total_value,
            "percent_gain": self.percent_gain,
            "amount_gained": self.amount_gained,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortfolioSummary":
        return cls(
            total_value=float(data["total_value"]),
            percent_gain=float(data["percent_gain"]),
            amount_gained=float(data["amount_gained"]),
        )

    @classmethod
    def flat(cls, starting_cash: float) -> "PortfolioSummary":
        return cls(total_value=starting_cash, percent_gain=0.0, amount_gained=0.0)


@dataclass(frozen=True)
class PositionChange:
    """Delta produced by one order: new position state, or None when closed."""
    ticker: str
    position: Optional[Position]

    @property
    def is_removal(self) -> bool:
        return self.position is None


@dataclass
class AccountState:
    """Full ledger state for one account (portfolio snapshot)."""
    account_id: str
    starting_cash: float
    cash: float
    created_at: datetime
    category: str = DEFAULT_CATEGORY
    positions: Dict[str, Position] = field(default_factory=dict)
    trades: List[Trade] = field(default_factory=list)
    summary: Optional[PortfolioSummary] = None

    @property
    def total_value(self) -> float:
        return self.summary.total_value if self.summary else self.starting_cash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "starting_cash": self.starting_cash,
            "cash": self.cash,
            "created_at": self.created_at.isoformat(),
            "category": self.category,
            "positions": [p.to_dict() for p in self.positions.values()],
            "trades": [t.to_dict() for t in self.trades],
            "summary": self.summary.to_dict() if self.summary else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountState":
        summary = data.get("summary")
        positions = [Position.from_dict(p) for p in data.get("positions", [])]
        return cls(
            account_id=data["account_id"],
            starting_cash=float(data["starting_cash"]),
            cash=float(data["cash"]),
            created_at=parse_timestamp(data["created_at"]),
            category=data.get("category") or DEFAULT_CATEGORY,
            positions={p.ticker: p for p in positions},
            trades=[Trade.from_dict(t) for t in data.get("trades", [])],
            summary=PortfolioSummary.from_dict(summary) if summary else None,
        )


@dataclass(frozen=True)
class HistoryPoint:
    """Approximate account value at a point in time."""
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class Quote:
    """Last/previous close from a quote source."""
    ticker: str
    price: float
    as_of: Optional[datetime] = None


@dataclass
class OrderTicket:
    """Tracks one order from validation to confirmed (or failed) persistence."""
    account_id: str
    request: OrderRequest
    status: OrderStatus = OrderStatus.PENDING
    trade: Optional[Trade] = None
    error: Optional[str] = None


@dataclass
class PriceRefresh:
    """Result of repricing open positions."""
    positions: Dict[str, Position]
    updated: Dict[str, Quote] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    summary: Optional[PortfolioSummary] = None


@dataclass(frozen=True)
class AccountStats:
    """Stored summary row for one account (leaderboard source)."""
    account_id: str
    category: str
    total_value: float
    percent_gain: float
    amount_gained: float


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    account_id: str
    category: str
    total_value: float
    percent_gain: float
    amount_gained: float
    is_current_account: bool = False
