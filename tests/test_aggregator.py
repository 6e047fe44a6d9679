"""Tests for portfolio summary, history reconstruction and price refresh."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pandas as pd
import pytest

from ledger.domain.errors import QuoteFetchFailed
from ledger.domain.models import (
    HistoryPoint,
    InstrumentKind,
    OrderSide,
    Position,
    PositionChange,
    Quote,
    Trade,
)
from ledger.domain.positions import PositionLedger
from ledger.services.aggregator import (
    apply_quotes,
    compute_summary,
    history_frame,
    range_start,
    reconstruct_history,
    refresh_market_prices,
)

T0 = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def _position(ticker, quantity, average_cost, current_price):
    return Position(
        ticker=ticker,
        quantity=quantity,
        average_cost=average_cost,
        current_price=current_price,
    )


def _trade(ticker, side, quantity, price, ts):
    return Trade(
        trade_id=f"{ticker}-{side.value}-{ts.isoformat()}",
        ticker=ticker,
        name=ticker,
        kind=InstrumentKind.EQUITY,
        side=side,
        quantity=quantity,
        price=price,
        total_value=quantity * price,
        timestamp=ts,
    )


class TestComputeSummary:

    def test_totals_and_gains(self):
        positions = [_position("AAA", 10, 50.0, 60.0), _position("BBB", 2, 100.0, 90.0)]
        summary = compute_summary(9000.0, positions, 10000.0)
        assert summary.total_value == pytest.approx(9000.0 + 600.0 + 180.0)
        assert summary.amount_gained == pytest.approx(-220.0)
        assert summary.percent_gain == pytest.approx(-2.2)

    def test_accepts_mapping(self):
        positions = {"AAA": _position("AAA", 1, 10.0, 12.0)}
        assert compute_summary(0.0, positions, 10.0).total_value == pytest.approx(12.0)

    def test_idempotent(self):
        positions = [_position("AAA", 3, 10.0, 11.0)]
        assert compute_summary(500.0, positions, 1000.0) == compute_summary(500.0, positions, 1000.0)

    def test_cash_only_account_is_flat(self):
        summary = compute_summary(10000.0, [], 10000.0)
        assert summary.total_value == 10000.0
        assert summary.percent_gain == 0.0
        assert summary.amount_gained == 0.0

    def test_rejects_non_positive_starting_cash(self):
        with pytest.raises(ValueError):
            compute_summary(0.0, [], 0.0)


class TestPositionLedger:

    def test_sorted_and_filtered(self):
        ledger = PositionLedger(
            [_position("ZZZ", 1, 1, 1), _position("AAA", 2, 1, 1), _position("DEAD", 0, 1, 1)]
        )
        assert ledger.tickers() == ["AAA", "ZZZ"]
        assert [p.ticker for p in ledger.all()] == ["AAA", "ZZZ"]
        assert "DEAD" not in ledger
        assert len(ledger) == 2

    def test_apply_returns_new_ledger(self):
        ledger = PositionLedger([_position("AAA", 2, 10, 10)])
        updated = ledger.apply(PositionChange("BBB", _position("BBB", 1, 5, 5)))
        assert "BBB" in updated
        assert "BBB" not in ledger

    def test_apply_removal(self):
        ledger = PositionLedger([_position("AAA", 2, 10, 10)])
        assert "AAA" not in ledger.apply(PositionChange("AAA", None))
        assert "AAA" not in ledger.apply(PositionChange("AAA", _position("AAA", 0, 10, 10)))
        assert ledger.get("AAA").quantity == 2


class TestReconstructHistory:

    def test_one_point_per_trade_valued_at_cost(self):
        trades = [
            _trade("ABC", OrderSide.BUY, 10, 50.0, T0),
            _trade("ABC", OrderSide.BUY, 10, 60.0, T0 + timedelta(hours=1)),
            _trade("ABC", OrderSide.SELL, 5, 70.0, T0 + timedelta(hours=2)),
            _trade("ABC", OrderSide.SELL, 15, 70.0, T0 + timedelta(hours=3)),
        ]
        points = reconstruct_history(trades, 10000.0)
        values = [p.value for p in points]

        assert len(points) == 4
        assert values[0] == pytest.approx(10000.0)
        assert values[1] == pytest.approx(10000.0)
        # 9250 cash + 15 held at the 55 average cost
        assert values[2] == pytest.approx(9250.0 + 15 * 55.0)
        assert values[3] == pytest.approx(10300.0)

    def test_sorted_chronologically(self):
        late = _trade("AAA", OrderSide.BUY, 1, 10.0, T0 + timedelta(days=1))
        early = _trade("BBB", OrderSide.BUY, 1, 20.0, T0)
        points = reconstruct_history([late, early], 1000.0)
        assert [p.timestamp for p in points] == [early.timestamp, late.timestamp]

    def test_empty(self):
        assert reconstruct_history([], 10000.0) == []


class TestHistoryFrame:

    def test_daily_resample_forward_fills(self):
        points = [
            HistoryPoint(T0, 100.0),
            HistoryPoint(T0 + timedelta(hours=2), 110.0),
            HistoryPoint(T0 + timedelta(days=3), 130.0),
        ]
        frame = history_frame(points)
        assert list(frame.columns) == ["value"]
        assert len(frame) == 4
        assert list(frame["value"]) == [110.0, 110.0, 110.0, 130.0]
        assert frame.index[0] == pd.Timestamp("2026-03-02", tz="UTC")

    def test_range_filter(self):
        now = T0 + timedelta(days=40)
        points = [HistoryPoint(T0, 100.0), HistoryPoint(now, 120.0)]
        frame = history_frame(points, time_range="1W", now=now)
        assert len(frame) == 8
        assert frame["value"].iloc[0] == 100.0
        assert frame["value"].iloc[-1] == 120.0

    def test_empty_points(self):
        assert history_frame([]).empty

    def test_unknown_range(self):
        with pytest.raises(ValueError):
            range_start("5Y", T0)

    def test_ytd_starts_january_first(self):
        assert range_start("ytd", T0) == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert range_start("ALL", T0) is None


class TestRefreshMarketPrices:

    def test_apply_quotes_keeps_unquoted(self):
        positions = {"AAA": _position("AAA", 1, 10, 10), "BBB": _position("BBB", 1, 20, 20)}
        repriced = apply_quotes(positions, {"AAA": Quote("AAA", 15.0)}, now=T0)
        assert repriced["AAA"].current_price == 15.0
        assert repriced["AAA"].updated_at == T0
        assert repriced["BBB"] is positions["BBB"]

    def test_partial_failure_keeps_stale_price(self):
        positions = [_position("AAA", 2, 10.0, 10.0), _position("BBB", 1, 20.0, 20.0)]

        def fake_quote(ticker):
            if ticker == "BBB":
                raise QuoteFetchFailed(ticker, "no_data")
            return Quote(ticker=ticker, price=12.5)

        source = AsyncMock()
        source.get_last_close.side_effect = fake_quote

        refresh = asyncio.run(refresh_market_prices(positions, source))

        assert refresh.positions["AAA"].current_price == 12.5
        assert refresh.positions["BBB"].current_price == 20.0
        assert set(refresh.updated) == {"AAA"}
        assert refresh.failed == {"BBB": "no_data"}
        assert source.get_last_close.await_count == 2

    def test_non_positive_quote_is_ignored(self):
        source = AsyncMock()
        source.get_last_close.return_value = Quote(ticker="AAA", price=0.0)
        refresh = asyncio.run(refresh_market_prices([_position("AAA", 1, 5.0, 5.0)], source))
        assert refresh.positions["AAA"].current_price == 5.0
        assert refresh.failed == {"AAA": "non_positive_price"}

    def test_no_positions(self):
        source = AsyncMock()
        refresh = asyncio.run(refresh_market_prices({}, source))
        assert refresh.positions == {}
        source.get_last_close.assert_not_called()

    def test_unexpected_quote_error_does_not_abort_refresh(self):
        positions = [_position("AAA", 2, 10.0, 10.0), _position("BBB", 1, 20.0, 20.0)]

        def fake_quote(ticker):
            if ticker == "BBB":
                raise ValueError("could not convert string to float: 'n/a'")
            return Quote(ticker=ticker, price=12.5)

        source = AsyncMock()
        source.get_last_close.side_effect = fake_quote

        refresh = asyncio.run(refresh_market_prices(positions, source))

        assert refresh.positions["AAA"].current_price == 12.5
        assert refresh.positions["BBB"].current_price == 20.0
        assert set(refresh.updated) == {"AAA"}
        assert refresh.failed == {"BBB": "error: ValueError"}

    def test_cancellation_propagates(self):
        source = AsyncMock()
        source.get_last_close.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(refresh_market_prices([_position("AAA", 1, 5.0, 5.0)], source))
