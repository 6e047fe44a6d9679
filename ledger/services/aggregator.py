"""Portfolio aggregation - summary statistics, value history and repricing."""

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from ledger.domain.errors import QuoteFetchFailed
from ledger.domain.models import (
    HistoryPoint,
    OrderSide,
    PortfolioSummary,
    Position,
    PriceRefresh,
    Quote,
    Trade,
    utc_now,
)

logger = logging.getLogger(__name__)

TIME_RANGES = ("1D", "1W", "1M", "3M", "6M", "YTD", "1Y", "ALL")

_RANGE_DAYS = {
    "1D": 1,
    "1W": 7,
    "1M": 30,
    "3M": 90,
    "6M": 180,
    "1Y": 365,
}

PositionsArg = Union[Iterable[Position], Mapping[str, Position]]


def _iter_positions(positions: PositionsArg) -> Iterable[Position]:
    if isinstance(positions, Mapping):
        return positions.values()
    return positions


def compute_summary(
    cash: float,
    positions: PositionsArg,
    starting_cash: float,
) -> PortfolioSummary:
    """
    Compute total value, percent gain and dollar gain.

    Both gain figures are derived from the single total computed here, so
    the three numbers can never disagree with each other.

    Args:
        cash: Current cash balance
        positions: Open positions (iterable or ticker mapping)
        starting_cash: Fixed starting balance of the account

    Returns:
        PortfolioSummary
    """
    if starting_cash <= 0:
        raise ValueError("starting_cash must be > 0")

    total_value = cash + sum(p.quantity * p.current_price for p in _iter_positions(positions))
    amount_gained = total_value - starting_cash
    percent_gain = amount_gained / starting_cash * 100
    return PortfolioSummary(
        total_value=total_value,
        percent_gain=percent_gain,
        amount_gained=amount_gained,
    )


def reconstruct_history(trades: Iterable[Trade], starting_cash: float) -> List[HistoryPoint]:
    """
    Replay the trade log into an approximate account-value series.

    One point is produced per trade, in chronological order. Open holdings
    are valued at their running cost basis (the execution prices of the
    trades that built them), never at later market prices: a buy moves its
    total value from cash into the estimate, a sell credits the proceeds and
    removes the sold quantity from the estimate.

    This is a lossy approximation. Price moves between trades are invisible
    because no historical price series is stored; do not treat the result as
    an authoritative valuation.
    """
    ordered = sorted(trades, key=lambda t: t.timestamp)
    running_cash = starting_cash
    estimates: Dict[str, Dict[str, float]] = {}
    points: List[HistoryPoint] = []

    for trade in ordered:
        if trade.side == OrderSide.BUY:
            running_cash -= trade.total_value
            est = estimates.setdefault(trade.ticker, {"quantity": 0.0, "avg_cost": 0.0})
            total_cost = est["quantity"] * est["avg_cost"] + trade.total_value
            est["quantity"] += trade.quantity
            est["avg_cost"] = total_cost / est["quantity"] if est["quantity"] > 0 else 0.0
        else:
            running_cash += trade.total_value
            est = estimates.get(trade.ticker)
            if est is not None:
                est["quantity"] -= trade.quantity
                if est["quantity"] <= 0:
                    del estimates[trade.ticker]

        positions_value = sum(e["quantity"] * e["avg_cost"] for e in estimates.values())
        points.append(HistoryPoint(timestamp=trade.timestamp, value=running_cash + positions_value))

    return points


def range_start(time_range: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Return the first instant covered by a chart range, or None for ALL."""
    key = time_range.upper()
    if key not in TIME_RANGES:
        raise ValueError(f"Unknown time range: {time_range}")
    now = now or utc_now()
    if key == "ALL":
        return None
    if key == "YTD":
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now - timedelta(days=_RANGE_DAYS[key])


def history_frame(
    points: List[HistoryPoint],
    time_range: str = "ALL",
    now: Optional[datetime] = None,
) -> pd.DataFrame:
    """
    Collapse history points to one row per calendar day (UTC).

    The last value of each day wins and days without trades carry the
    previous value forward.

    Returns:
        DataFrame indexed by day with a single ``value`` column
    """
    cutoff = range_start(time_range, now)
    if not points:
        return pd.DataFrame({"value": pd.Series(dtype=float)})

    df = pd.DataFrame(
        {
            "timestamp": pd.to_datetime([p.timestamp for p in points], utc=True),
            "value": [p.value for p in points],
        }
    ).sort_values("timestamp", kind="stable")
    df["date"] = df["timestamp"].dt.normalize()

    daily = df.groupby("date")["value"].last().asfreq("D").ffill()
    if cutoff is not None:
        daily = daily[daily.index >= pd.Timestamp(cutoff).normalize()]
    daily.index.name = "date"
    return daily.to_frame("value")


def apply_quotes(
    positions: PositionsArg,
    quotes: Mapping[str, Quote],
    now: Optional[datetime] = None,
) -> Dict[str, Position]:
    """Mark positions to the given quotes; tickers without a quote keep their price."""
    now = now or utc_now()
    repriced: Dict[str, Position] = {}
    for position in _iter_positions(positions):
        quote = quotes.get(position.ticker)
        if quote is None:
            repriced[position.ticker] = position
            continue
        repriced[position.ticker] = Position(
            ticker=position.ticker,
            name=position.name,
            quantity=position.quantity,
            average_cost=position.average_cost,
            current_price=quote.price,
            updated_at=now,
        )
    return repriced


async def refresh_market_prices(
    positions: PositionsArg,
    quote_source,
) -> PriceRefresh:
    """
    Reprice open positions from a quote source.

    Each distinct ticker is fetched once and concurrently. A ticker whose
    quote cannot be fetched keeps its last known price; the failure is
    logged and reported in ``PriceRefresh.failed`` rather than aborting the
    whole refresh.

    Args:
        positions: Open positions
        quote_source: Object exposing ``async get_last_close(ticker) -> Quote``

    Returns:
        PriceRefresh with repriced positions, fetched quotes and failures
    """
    current = {p.ticker: p for p in _iter_positions(positions)}
    tickers = sorted(current)
    if not tickers:
        return PriceRefresh(positions={})

    logger.info("Refreshing prices for %d tickers", len(tickers))
    results = await asyncio.gather(
        *(quote_source.get_last_close(t) for t in tickers),
        return_exceptions=True,
    )

    updated: Dict[str, Quote] = {}
    failed: Dict[str, str] = {}

    for ticker, result in zip(tickers, results):
        if isinstance(result, QuoteFetchFailed):
            logger.warning("Keeping stale price for %s: %s", ticker, result.reason)
            failed[ticker] = result.reason
            continue
        if isinstance(result, Exception):
            logger.warning(
                "Keeping stale price for %s: unexpected quote error %s: %s",
                ticker,
                type(result).__name__,
                result,
            )
            failed[ticker] = f"error: {type(result).__name__}"
            continue
        if isinstance(result, BaseException):
            raise result
        if not (result.price > 0 and math.isfinite(result.price)):
            logger.warning("Ignoring non-positive quote for %s: %s", ticker, result.price)
            failed[ticker] = "non_positive_price"
            continue
        updated[ticker] = result
        logger.debug("%s: $%.2f", ticker, result.price)

    return PriceRefresh(
        positions=apply_quotes(current, updated),
        updated=updated,
        failed=failed,
    )
