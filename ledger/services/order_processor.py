"""Order processing - validate one order and apply it to an account state."""

import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ledger.domain.errors import InsufficientFunds, InsufficientPosition, InvalidOrder
from ledger.domain.models import (
    AccountState,
    InstrumentKind,
    OrderRequest,
    OrderSide,
    Position,
    PositionChange,
    Trade,
    normalize_ticker,
    utc_now,
)
from ledger.domain.positions import PositionLedger
from ledger.services.aggregator import compute_summary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderResult:
    """New account state plus the trade and position delta that produced it."""
    state: AccountState
    trade: Trade
    change: PositionChange


def validate_order(request: OrderRequest) -> OrderRequest:
    """
    Check an order intent and return it with a normalized ticker.

    Raises:
        InvalidOrder: non-positive/non-finite quantity or price, empty ticker,
            or option details that do not match the instrument kind
    """
    ticker = normalize_ticker(request.ticker or "")
    if not ticker:
        raise InvalidOrder("ticker is required")
    if not isinstance(request.side, OrderSide):
        raise InvalidOrder(f"unknown side: {request.side!r}")
    if not _is_positive(request.quantity):
        raise InvalidOrder(f"quantity must be > 0 (got {request.quantity!r})")
    if not _is_positive(request.price):
        raise InvalidOrder(f"price must be > 0 (got {request.price!r})")

    if request.kind == InstrumentKind.OPTION:
        if request.option_details is None:
            raise InvalidOrder("option orders require option details")
        if not _is_positive(request.option_details.strike_price):
            raise InvalidOrder("option strike price must be > 0")
    elif request.option_details is not None:
        raise InvalidOrder("option details given for a non-option order")

    return replace(request, ticker=ticker, name=request.name or ticker)


def _is_positive(value) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0


def apply_order(
    state: AccountState,
    request: OrderRequest,
    now: Optional[datetime] = None,
) -> OrderResult:
    """
    Apply one order to an account state.

    The input state is never modified. Every check runs before the new
    state is built, so a rejected order has no effect at all.

    Buy: debits cash, creates the position or re-weights its average cost
    as ``(q_old * avg_old + q * price) / (q_old + q)``.
    Sell: credits cash, reduces quantity and marks the remainder at the
    execution price; average cost is left unchanged. A quantity that
    reaches zero (or below, through float rounding) closes the position.

    Raises:
        InvalidOrder, InsufficientFunds, InsufficientPosition
    """
    request = validate_order(request)
    now = now or utc_now()
    ledger = PositionLedger.from_mapping(state.positions)
    existing = ledger.get(request.ticker)
    total_value = request.quantity * request.price

    if request.side == OrderSide.BUY:
        if total_value > state.cash:
            raise InsufficientFunds(required=total_value, available=state.cash)

        if existing is None:
            position = Position(
                ticker=request.ticker,
                name=request.name,
                quantity=request.quantity,
                average_cost=request.price,
                current_price=request.price,
                updated_at=now,
            )
        else:
            new_quantity = existing.quantity + request.quantity
            new_average = (
                existing.quantity * existing.average_cost + request.quantity * request.price
            ) / new_quantity
            position = Position(
                ticker=existing.ticker,
                name=existing.name or request.name,
                quantity=new_quantity,
                average_cost=new_average,
                current_price=request.price,
                updated_at=now,
            )
        change = PositionChange(ticker=request.ticker, position=position)
        new_cash = state.cash - total_value

    else:
        held = existing.quantity if existing else 0.0
        if existing is None or existing.quantity < request.quantity:
            raise InsufficientPosition(request.ticker, requested=request.quantity, held=held)

        new_quantity = existing.quantity - request.quantity
        if new_quantity <= 0:
            change = PositionChange(ticker=request.ticker, position=None)
        else:
            change = PositionChange(
                ticker=request.ticker,
                position=replace(
                    existing,
                    quantity=new_quantity,
                    current_price=request.price,
                    updated_at=now,
                ),
            )
        new_cash = state.cash + total_value

    trade = Trade(
        trade_id=uuid.uuid4().hex,
        ticker=request.ticker,
        name=request.name,
        kind=request.kind,
        side=request.side,
        quantity=request.quantity,
        price=request.price,
        total_value=total_value,
        timestamp=now,
        option_details=request.option_details,
    )

    positions = ledger.apply(change).as_dict()
    new_state = replace(
        state,
        cash=new_cash,
        positions=positions,
        trades=[*state.trades, trade],
        summary=compute_summary(new_cash, positions, state.starting_cash),
    )

    logger.debug(
        "Applied %s %g %s @ %.4f for %s (cash %.2f -> %.2f)",
        request.side.value,
        request.quantity,
        request.ticker,
        request.price,
        state.account_id,
        state.cash,
        new_cash,
    )
    return OrderResult(state=new_state, trade=trade, change=change)
