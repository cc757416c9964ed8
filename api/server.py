"""
Position API — FastAPI server exposing the position engine over HTTP.

Serves:
  - POST /positions                       open a market position
  - POST /positions/{id}/close            close at an exit price (or live price)
  - POST /users/{id}/liquidation-check    run one liquidation pass for a user
  - GET  /users/{id}/positions            positions with live PnL
  - POST /preview, GET /risk/{leverage}   trade preview for the order form
  - GET  /prices, /prices/{symbol}/history
  - GET  /api/status, /api/settlements
  - GET  /api/trades, /api/trades/summary  journal and realized PnL by symbol

Endpoints that touch the ledger are plain ``def`` handlers, so FastAPI runs
them in its thread pool and the event loop never blocks on a network call.
"""
import json
from typing import Callable, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from config import PAPER_TRADE, SUPPORTED_SYMBOLS
from data.price_oracle import PriceOracle
from execution.calculator import compute_position, risk_level_for, risk_warning_for
from execution.errors import (
    NotFoundError, PositionClosedError, SettlementError, ValidationError,
)
from execution.ledger import PaperCredential, RemoteSignerCredential, SigningCredential
from execution.liquidation import LiquidationSweeper
from execution.models import Position, TradeParameters
from execution.position_manager import PositionManager
from monitoring import telegram
from monitoring.trade_logger import load_recent, pnl_summary


# ── Request Bodies ────────────────────────────────────────────────────
class CreatePositionRequest(BaseModel):
    user_id: str
    user_address: str
    symbol: str
    side: str
    collateral: float
    leverage: float
    entry_price: Optional[float] = None    # market order at the live price when omitted
    wallet_id: str = ''


class ClosePositionRequest(BaseModel):
    user_address: str = ''
    exit_price: Optional[float] = None


class LiquidationCheckRequest(BaseModel):
    prices: Optional[dict[str, float]] = None


class PreviewRequest(BaseModel):
    entry_price: float
    current_price: Optional[float] = None
    collateral: float
    leverage: float
    direction: str


def default_credential_factory(user_address: str, wallet_id: str) -> SigningCredential:
    if PAPER_TRADE:
        return PaperCredential(user_address)
    if not wallet_id:
        raise ValidationError('wallet_id', 'is required for on-chain signing')
    return RemoteSignerCredential(wallet_id, user_address)


def create_app(
    manager: PositionManager,
    oracle: PriceOracle,
    sweeper: LiquidationSweeper = None,
    credential_factory: Callable[[str, str], SigningCredential] = default_credential_factory,
    trade_log_path: str = None,
) -> FastAPI:
    app = FastAPI(title='SEP DEX Position Engine')

    # ── Error Mapping ─────────────────────────────────────────────────
    def _error(status: int, exc: Exception, **extra):
        body = {'error': type(exc).__name__, 'detail': str(exc), **extra}
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(PositionClosedError)
    async def _closed(request: Request, exc: PositionClosedError):
        return _error(409, exc, field=exc.field)

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError):
        return _error(400, exc, field=exc.field)

    @app.exception_handler(NotFoundError)
    async def _missing(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(SettlementError)
    async def _settlement(request: Request, exc: SettlementError):
        logger.error(f'[API] Settlement failure: {exc}')
        return _error(502, exc, errors=[str(e) for e in exc.errors])

    def _live_price(symbol: str) -> float:
        price = oracle.current_price(symbol)
        if price <= 0:
            raise HTTPException(status_code=503, detail=f'No live price available for {symbol}')
        return price

    def _with_live(pos: Position, prices: dict) -> dict:
        data = pos.to_dict()
        price = prices.get(pos.symbol)
        if pos.is_open and price:
            data['live'] = {'price': price, **manager.evaluate(pos, price).to_dict()}
        return data

    # ── Positions ─────────────────────────────────────────────────────
    @app.post('/positions', status_code=201)
    def create_position(body: CreatePositionRequest, background: BackgroundTasks):
        entry = body.entry_price if body.entry_price is not None else _live_price(body.symbol)
        credential = credential_factory(body.user_address, body.wallet_id)
        pos = manager.create_position(
            user_id=body.user_id,
            user_address=body.user_address,
            symbol=body.symbol,
            side=body.side,
            entry_price=entry,
            collateral=body.collateral,
            leverage=body.leverage,
            credential=credential,
        )
        if sweeper is not None:
            sweeper.watch(body.user_id)
        background.add_task(
            telegram.notify_open, pos.symbol, pos.side, pos.entry_price,
            pos.collateral, pos.leverage, pos.liquidation_price, pos.user_id,
        )
        return pos.to_dict()

    @app.get('/positions/{position_id}')
    def get_position(position_id: str):
        pos = manager.get_position(position_id)
        prices = oracle.snapshot([pos.symbol]) if pos.is_open else {}
        return _with_live(pos, prices)

    @app.post('/positions/{position_id}/close')
    def close_position(position_id: str, body: ClosePositionRequest, background: BackgroundTasks):
        exit_price = body.exit_price
        if exit_price is None:
            exit_price = _live_price(manager.get_position(position_id).symbol)
        pos = manager.close_position(position_id, exit_price, body.user_address)
        background.add_task(
            telegram.notify_close, pos.symbol, pos.side, pos.realized_pnl,
            pos.status, bool(pos.payout_tx_id),
        )
        return pos.to_dict()

    @app.get('/users/{user_id}/positions')
    def list_positions(user_id: str, status: str = ''):
        positions = manager.get_all_positions(user_id)
        if status:
            positions = [p for p in positions if p.status == status]
        symbols = sorted({p.symbol for p in positions if p.is_open})
        prices = oracle.snapshot(symbols) if symbols else {}
        return {'positions': [_with_live(p, prices) for p in positions]}

    @app.post('/users/{user_id}/liquidation-check')
    def liquidation_check(user_id: str, body: LiquidationCheckRequest, background: BackgroundTasks):
        prices = body.prices if body.prices is not None else oracle.snapshot()
        liquidated = manager.check_liquidations(user_id, prices)
        for pos in liquidated:
            background.add_task(
                telegram.notify_liquidation, pos.symbol, pos.side, user_id,
                pos.exit_price, pos.liquidation_price,
            )
        return {
            'checked_prices': prices,
            'liquidated': [p.to_dict() for p in liquidated],
        }

    # ── Trade Preview ─────────────────────────────────────────────────
    @app.post('/preview')
    def preview(body: PreviewRequest):
        current = body.current_price if body.current_price is not None else body.entry_price
        result = compute_position(TradeParameters(
            entry_price=body.entry_price,
            current_price=current,
            collateral=body.collateral,
            leverage=body.leverage,
            direction=body.direction,
        ))
        return {
            **result.to_dict(),
            'risk_level': risk_level_for(body.leverage),
            'risk_warning': risk_warning_for(body.leverage),
        }

    @app.get('/risk/{leverage}')
    def risk(leverage: float):
        return {
            'leverage': leverage,
            'risk_level': risk_level_for(leverage),
            'risk_warning': risk_warning_for(leverage),
        }

    # ── Prices ────────────────────────────────────────────────────────
    @app.get('/prices')
    def prices():
        return {'prices': oracle.snapshot(SUPPORTED_SYMBOLS)}

    @app.get('/prices/{symbol}/history')
    def price_history(symbol: str, days: int = 1):
        if symbol not in SUPPORTED_SYMBOLS:
            raise ValidationError('symbol', f'unsupported asset {symbol!r}')
        return {'symbol': symbol, 'days': days, 'prices': oracle.price_history(symbol, days)}

    # ── Status ────────────────────────────────────────────────────────
    @app.get('/api/status')
    def status():
        sweep = None
        if sweeper is not None:
            sweep = {
                'running': sweeper.running,
                'interval': sweeper.interval,
                'users': sweeper.users,
                'cycles': sweeper.cycles,
            }
        return {
            'paper': PAPER_TRADE,
            'symbols': SUPPORTED_SYMBOLS,
            'sweeper': sweep,
            'settlement_attempts': len(manager.settlement_log),
        }

    @app.get('/api/settlements')
    def settlements(purpose: str = ''):
        return {'attempts': [a.to_dict() for a in manager.settlement_log.attempts(purpose)]}

    # ── Trade Journal ─────────────────────────────────────────────────
    @app.get('/api/trades')
    def trades(limit: int = 200):
        return {'trades': load_recent(limit, trade_log_path)}

    @app.get('/api/trades/summary')
    def trades_summary(limit: int = 1000):
        summary = pnl_summary(load_recent(limit, trade_log_path))
        return {'summary': json.loads(summary.to_json(orient='records'))}

    return app
