"""Web API for the paper-trading ledger - FastAPI application with JSON endpoints."""

import logging
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ledger.domain.errors import (
    AccountNotFound,
    InsufficientFunds,
    InsufficientPosition,
    InvalidOrder,
    LedgerError,
    StoreWriteFailed,
)
from ledger.domain.models import (
    DEFAULT_CATEGORY,
    AccountState,
    ContractType,
    InstrumentKind,
    OptionDetails,
    OrderRequest,
    OrderSide,
    Position,
    Trade,
)
from ledger.services.aggregator import TIME_RANGES
from ledger.services.portfolio_service import PortfolioService

logger = logging.getLogger(__name__)

# Injected at startup by papertrade.main (or by tests)
_service: Optional[PortfolioService] = None


def configure_service(service: PortfolioService) -> None:
    """Configure API with the portfolio service it serves."""
    global _service
    _service = service


def get_service() -> PortfolioService:
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Portfolio service not configured",
        )
    return _service


# ============== PYDANTIC MODELS ==============

class OpenAccountRequest(BaseModel):
    category: str = DEFAULT_CATEGORY


class OptionDetailsBody(BaseModel):
    contract_type: ContractType
    strike_price: float
    expiration_date: str  # YYYY-MM-DD


class OrderBody(BaseModel):
    ticker: str
    side: OrderSide
    quantity: float
    price: float
    name: Optional[str] = None
    kind: InstrumentKind = InstrumentKind.EQUITY
    option_details: Optional[OptionDetailsBody] = None

    def to_request(self) -> OrderRequest:
        details = None
        if self.option_details is not None:
            details = OptionDetails(
                contract_type=self.option_details.contract_type,
                strike_price=self.option_details.strike_price,
                expiration_date=self.option_details.expiration_date,
            )
        return OrderRequest(
            ticker=self.ticker,
            side=self.side,
            quantity=self.quantity,
            price=self.price,
            name=self.name,
            kind=self.kind,
            option_details=details,
        )


# ============== FASTAPI APP ==============

web_api = FastAPI(title="Paper Trading Ledger API")

_ERROR_STATUS = (
    (InvalidOrder, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientFunds, status.HTTP_409_CONFLICT),
    (InsufficientPosition, status.HTTP_409_CONFLICT),
    (AccountNotFound, status.HTTP_404_NOT_FOUND),
    (StoreWriteFailed, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _status_for(exc: LedgerError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@web_api.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    code = _status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def _require_api_auth(x_api_key: Optional[str]) -> None:
    """Enforce API key auth when WEB_API_TOKEN is configured."""
    token = os.getenv("WEB_API_TOKEN", "").strip()
    if not token:
        return
    if not x_api_key or x_api_key != token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def _position_json(position: Position) -> Dict[str, Any]:
    data = position.to_dict()
    data.update(
        {
            "value": round(position.value, 2),
            "cost_basis": round(position.cost_basis, 2),
            "unrealized_gain": round(position.unrealized_gain, 2),
            "unrealized_gain_percent": round(position.unrealized_gain_percent, 2),
        }
    )
    return data


def _account_json(state: AccountState) -> Dict[str, Any]:
    return {
        "account_id": state.account_id,
        "category": state.category,
        "starting_cash": state.starting_cash,
        "cash": round(state.cash, 2),
        "created_at": state.created_at.isoformat(),
        "positions": [_position_json(state.positions[t]) for t in sorted(state.positions)],
        "summary": state.summary.to_dict() if state.summary else None,
        "trade_count": len(state.trades),
    }


def _trade_json(trade: Trade) -> Dict[str, Any]:
    return trade.to_dict()


@web_api.get("/healthz")
async def healthz():
    """Unauthenticated health check endpoint for external pingers."""
    return {"status": "ok", "service_configured": _service is not None}


# ============== ACCOUNTS ==============

@web_api.post("/api/accounts/{account_id}")
async def api_open_account(
    account_id: str,
    body: Optional[OpenAccountRequest] = None,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Open (or return) a paper-trading account."""
    _require_api_auth(x_api_key)
    category = body.category if body else DEFAULT_CATEGORY
    try:
        state = await get_service().open_account(account_id, category=category)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return _account_json(state)


@web_api.get("/api/accounts/{account_id}")
async def api_snapshot(
    account_id: str,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    _require_api_auth(x_api_key)
    state = await get_service().get_snapshot(account_id)
    return _account_json(state)


@web_api.get("/api/accounts/{account_id}/summary")
async def api_summary(
    account_id: str,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    _require_api_auth(x_api_key)
    summary = await get_service().get_summary(account_id)
    return summary.to_dict()


@web_api.post("/api/accounts/{account_id}/reset")
async def api_reset(
    account_id: str,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Clear positions and trades and restore the starting balance."""
    _require_api_auth(x_api_key)
    state = await get_service().reset_account(account_id)
    return _account_json(state)


# ============== ORDERS ==============

@web_api.post("/api/accounts/{account_id}/orders")
async def api_place_order(
    account_id: str,
    order: OrderBody,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Execute a buy or sell at the submitted price."""
    _require_api_auth(x_api_key)
    service = get_service()
    trade = await service.place_order(account_id, order.to_request())
    # state confirmed by place_order, no store re-read
    state = service.current_view(account_id)
    return {"trade": _trade_json(trade), "account": _account_json(state)}


@web_api.get("/api/accounts/{account_id}/trades")
async def api_trades(
    account_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    _require_api_auth(x_api_key)
    trades = await get_service().get_trade_history(account_id, limit=limit)
    return {"trades": [_trade_json(t) for t in trades]}


# ============== PRICES / HISTORY ==============

@web_api.post("/api/accounts/{account_id}/refresh")
async def api_refresh(
    account_id: str,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Reprice open positions from the quote source."""
    _require_api_auth(x_api_key)
    try:
        refresh = await get_service().refresh_prices(account_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "positions": [_position_json(refresh.positions[t]) for t in sorted(refresh.positions)],
        "updated": {t: q.price for t, q in refresh.updated.items()},
        "failed": refresh.failed,
        "summary": refresh.summary.to_dict() if refresh.summary else None,
    }


@web_api.get("/api/accounts/{account_id}/history")
async def api_history(
    account_id: str,
    time_range: str = Query(default="ALL", alias="range"),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Daily account value series for the chart range (1D, 1W, 1M, 3M, 6M, YTD, 1Y, ALL)."""
    _require_api_auth(x_api_key)
    if time_range.upper() not in TIME_RANGES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"range must be one of {', '.join(TIME_RANGES)}",
        )

    frame = await get_service().get_history_frame(account_id, time_range=time_range)
    points = [
        {"date": day.date().isoformat(), "value": round(float(value), 2)}
        for day, value in frame["value"].items()
    ]
    return {"range": time_range.upper(), "points": points}


# ============== LEADERBOARD ==============

@web_api.get("/api/leaderboard")
async def api_leaderboard(
    category: Optional[str] = Query(default=None),
    account_id: Optional[str] = Query(default=None),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Accounts ranked by percent gain; category accepts Student(s), Advanced or ALL."""
    _require_api_auth(x_api_key)
    entries = await get_service().get_leaderboard(category=category, current_account_id=account_id)
    return {
        "entries": [
            {
                "rank": e.rank,
                "account_id": e.account_id,
                "category": e.category,
                "total_value": round(e.total_value, 2),
                "percent_gain": round(e.percent_gain, 2),
                "amount_gained": round(e.amount_gained, 2),
                "is_current_account": e.is_current_account,
            }
            for e in entries
        ]
    }
