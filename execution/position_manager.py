"""
Position Manager — Isolated-Margin Position Lifecycle Engine.

═══════════════════════════════════════════════════════════════
PURPOSE:
  Manages the full lifecycle of a leveraged position:
    OPEN → CLOSED      (user close at exit price)
    OPEN → LIQUIDATED  (exit price crosses the liquidation price)
  Both end states are terminal.

MONEY SAFETY:
  - A position is persisted only after its collateral movement succeeded.
  - Payout happens at most once, only when realized PnL > 0, and never on
    a forced liquidation.
  - Payout failure never blocks a close; it is logged and the position is
    still closed.

CONCURRENCY:
  A per-position lock serialises the open → closed/liquidated transition,
  so a user close racing the liquidation sweep cannot pay out twice or
  leave a half-written status/realized_pnl pair.

USAGE:
  manager = PositionManager(store, ledger, oracle, collection_address=...)

  pos = manager.create_position(
      user_id='user-1', user_address='ST1...', symbol='BTC', side='long',
      entry_price=50000.0, collateral=100.0, leverage=10, credential=cred,
  )
  manager.close_position(pos.id, exit_price=55000.0, user_address='ST1...')
  manager.check_liquidations('user-1', {'BTC': 44000.0})
═══════════════════════════════════════════════════════════════
"""
import math
import threading
import time
import uuid
from dataclasses import replace
from typing import Callable, Optional, Sequence

from loguru import logger

from config import (
    MIN_COLLATERAL, MIN_LEVERAGE, MAX_LEVERAGE, MICRO_UNITS, DEFAULT_STX_USD_RATE,
    SETTLEMENT_SYMBOL, SUPPORTED_SYMBOLS, COLLECTION_ADDRESS,
)
from data.price_oracle import PriceOracle
from execution.calculator import compute_position, liquidation_price_for, position_size_for
from execution.errors import (
    NotFoundError, OracleError, PositionClosedError, SettlementError, ValidationError,
)
from execution.ledger import LedgerService, SigningCredential
from execution.models import (
    CLOSED, LIQUIDATED, SIDES, Position, TradeParameters, TradeResult,
)
from execution.position_store import PositionStore
from execution.settlement import (
    SettlementLog, SettlementStrategy, collateral_strategies, payout_strategies, settle,
)
from monitoring.trade_logger import log_trade


def to_micro(amount: float) -> int:
    """Settlement asset units → integer micro-units (floored)."""
    return math.floor(amount * MICRO_UNITS)


def new_position_id() -> str:
    return f'pos-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}'


class PositionManager:
    """
    Creates, closes and liquidates positions.

    All collaborators are injected; the manager holds no module-level
    state. ``admin_credential`` is the process-wide payout wallet used
    when a close does not supply its own.
    """

    def __init__(
        self,
        store: PositionStore,
        ledger: LedgerService,
        oracle: PriceOracle,
        collection_address: str = COLLECTION_ADDRESS,
        admin_credential: Optional[SigningCredential] = None,
        min_collateral: float = MIN_COLLATERAL,
        fallback_rate: float = DEFAULT_STX_USD_RATE,
        collateral_paths: Sequence[SettlementStrategy] = None,
        payout_paths: Sequence[SettlementStrategy] = None,
        settlement_log: SettlementLog = None,
        journal: Callable[[dict], None] = log_trade,
    ):
        self.store  = store
        self.ledger = ledger
        self.oracle = oracle
        self.collection_address = collection_address
        self.admin_credential   = admin_credential
        self.min_collateral     = min_collateral
        self.fallback_rate      = fallback_rate

        self.collateral_paths = list(collateral_paths or collateral_strategies(ledger))
        self.payout_paths     = list(payout_paths or payout_strategies(ledger))
        self.settlement_log   = settlement_log or SettlementLog()
        self._journal = journal

        self._locks: dict[str, threading.Lock] = {}   # open positions only
        self._locks_guard = threading.Lock()

    # ── Entry ─────────────────────────────────────────────────────────
    def create_position(
        self,
        user_id: str,
        user_address: str,
        symbol: str,
        side: str,
        entry_price: float,
        collateral: float,
        leverage: float,
        credential: SigningCredential,
    ) -> Position:
        """
        Open a market position and move its collateral on-chain.

        Args:
            user_id:      owner reference
            user_address: wallet the collateral is taken from
            symbol:       one of SUPPORTED_SYMBOLS
            side:         'long' or 'short'
            entry_price:  USD price the position opens at
            collateral:   margin in the settlement asset (≥ min_collateral)
            leverage:     1–100
            credential:   signs the collateral movement for user_address

        Returns:
            The persisted open Position.

        Raises:
            ValidationError: bad input or insufficient balance (no side effect)
            SettlementError: every collateral path failed (nothing persisted)
        """
        self._validate_entry(symbol, side, entry_price, collateral, leverage)
        if not user_address:
            raise ValidationError('user_address', 'is required')

        size = position_size_for(collateral, leverage, entry_price)
        liq_price = liquidation_price_for(entry_price, leverage, side)

        amount = to_micro(collateral)
        balance = self.ledger.balance_of(user_address)
        if amount > balance:
            raise ValidationError(
                'collateral',
                f'insufficient balance: {balance / MICRO_UNITS:.2f} {SETTLEMENT_SYMBOL} available, '
                f'{collateral:.2f} required',
            )

        position = Position(
            id=new_position_id(),
            user_id=user_id,
            symbol=symbol,
            side=side,
            entry_price=entry_price,
            size=size,
            leverage=leverage,
            collateral=collateral,
            liquidation_price=liq_price,
        )

        tx_id = settle(
            self.collateral_paths, 'collateral', amount,
            user_address, self.collection_address, credential, self.settlement_log,
        )
        position = replace(position, collateral_tx_id=tx_id)
        self.store.save(position)

        logger.info(
            f'[PM] OPEN {side.upper()} {symbol} | '
            f'Entry: {entry_price:.4f} | Size: {size:.6f} | '
            f'Liq: {liq_price:.4f} | {collateral:.2f} {SETTLEMENT_SYMBOL} @ {leverage}x | '
            f'tx: {tx_id}'
        )
        self._record('open', position)
        return position

    def _validate_entry(self, symbol: str, side: str, entry_price: float,
                        collateral: float, leverage: float):
        if symbol not in SUPPORTED_SYMBOLS:
            raise ValidationError('symbol', f"unsupported asset {symbol!r} (supported: {', '.join(SUPPORTED_SYMBOLS)})")
        if side not in SIDES:
            raise ValidationError('side', f"must be one of {', '.join(SIDES)}")
        if entry_price <= 0:
            raise ValidationError('entry_price', 'must be positive')
        if collateral < self.min_collateral:
            raise ValidationError(
                'collateral', f'minimum is {self.min_collateral:g} {SETTLEMENT_SYMBOL}, got {collateral:g}'
            )
        if leverage < MIN_LEVERAGE or leverage > MAX_LEVERAGE:
            raise ValidationError('leverage', f'must be between {MIN_LEVERAGE} and {MAX_LEVERAGE}')

    # ── Close Position ────────────────────────────────────────────────
    def close_position(
        self,
        position_id: str,
        exit_price: float,
        user_address: str,
        admin_credential: Optional[SigningCredential] = None,
    ) -> Position:
        """
        Close an open position at ``exit_price``.

        Status becomes 'liquidated' if the exit price is beyond the
        liquidation price, else 'closed'. A positive PnL is paid out to
        ``user_address`` when an admin credential is available (argument
        first, then the manager's own).

        Raises:
            NotFoundError:       unknown position id
            PositionClosedError: position already closed or liquidated
            ValidationError:     exit_price not positive
        """
        credential = admin_credential if admin_credential is not None else self.admin_credential
        return self._close(position_id, exit_price, user_address, credential)

    def _close(
        self,
        position_id: str,
        exit_price: float,
        user_address: str,
        credential: Optional[SigningCredential],
    ) -> Position:
        pos = self.store.find_by_id(position_id)
        if pos is None:
            raise NotFoundError(f'Position {position_id} not found')
        if not pos.is_open:
            raise PositionClosedError(position_id, pos.status)

        with self._lock_for(position_id):
            # re-read: another closer may have won the race while we waited
            pos = self.store.find_by_id(position_id)
            if not pos.is_open:
                raise PositionClosedError(position_id, pos.status)

            result = self.evaluate(pos, exit_price)
            status = LIQUIDATED if result.is_liquidated else CLOSED

            payout_tx = ''
            if result.pnl > 0 and credential is not None and user_address:
                payout_tx = self._pay_out(pos, result.pnl, user_address, credential)
            elif result.pnl > 0:
                logger.info(f'[PM] Payout skipped for {position_id} — no admin credential or address')

            closed = replace(
                pos,
                status=status,
                realized_pnl=result.pnl,
                exit_price=exit_price,
                closed_at=time.time(),
                payout_tx_id=payout_tx,
            )
            self.store.update(closed)
        self._release_lock(position_id)

        outcome = 'WIN' if result.pnl > 0 else 'LOSS'
        logger.info(
            f'[PM] {status.upper()} {outcome} {pos.symbol} {pos.side.upper()} | '
            f'Entry: {pos.entry_price:.4f} → Exit: {exit_price:.4f} | '
            f'PnL: ${result.pnl:.2f} ({result.pnl_percent:+.1f}%) | '
            f'Hold: {closed.closed_at - pos.opened_at:.0f}s'
        )
        self._record('liquidation' if status == LIQUIDATED else 'close', closed)
        return closed

    def _pay_out(
        self, pos: Position, pnl_usd: float, user_address: str, credential: SigningCredential,
    ) -> str:
        """Send profit to the user. Returns the tx id, or '' if the payout failed."""
        amount = to_micro(pnl_usd / self.settlement_rate())
        if amount <= 0:
            return ''

        try:
            return settle(
                self.payout_paths, 'payout', amount,
                credential.address, user_address, credential, self.settlement_log,
            )
        except SettlementError as e:
            logger.error(f'[PM] Payout failed for {pos.id} ({amount} micro{SETTLEMENT_SYMBOL}): {e}')
        except Exception as e:
            logger.exception(f'[PM] Payout error for {pos.id} ({amount} micro{SETTLEMENT_SYMBOL}): {e}')
        return ''

    def settlement_rate(self) -> float:
        """USD price of the settlement asset, or the fixed fallback rate."""
        try:
            try:
                rate = float(self.oracle.current_price(SETTLEMENT_SYMBOL))
            except Exception as e:
                raise OracleError(f'{SETTLEMENT_SYMBOL} price lookup failed: {type(e).__name__}: {e}') from e
            if rate <= 0:
                raise OracleError(f'no {SETTLEMENT_SYMBOL} price available')
            return rate
        except OracleError as e:
            logger.warning(f'[PM] {e} — using fallback rate {self.fallback_rate}')
            return self.fallback_rate

    # ── Liquidation Sweep ─────────────────────────────────────────────
    def check_liquidations(
        self,
        user_id: str,
        current_prices: dict,
        admin_credential: Optional[SigningCredential] = None,
    ) -> list[Position]:
        """
        Force-close every open position of ``user_id`` whose symbol price in
        ``current_prices`` is at or beyond its liquidation price.

        Symbols missing from the snapshot (or priced at 0) are skipped.
        Forced liquidations never pay out, so ``admin_credential`` is not
        used for payouts here.

        Returns:
            The positions liquidated in this call.
        """
        if admin_credential is not None:
            logger.debug('[PM] check_liquidations: forced liquidations do not pay out')

        liquidated = []
        for pos in self.store.find_open_by_user(user_id):
            price = current_prices.get(pos.symbol) or 0
            if price <= 0:
                logger.debug(f'[PM] No price for {pos.symbol} — skipping {pos.id} this cycle')
                continue

            try:
                if not self.evaluate(pos, price).is_liquidated:
                    continue

                logger.warning(
                    f'[PM] LIQUIDATION {pos.symbol} {pos.side.upper()} {pos.id} | '
                    f'Mark: {price:.4f} | Liq: {pos.liquidation_price:.4f}'
                )
                liquidated.append(self._close(pos.id, price, '', None))
            except PositionClosedError:
                logger.info(f'[PM] {pos.id} closed concurrently — skipping')
            except Exception as e:
                logger.exception(f'[PM] Liquidation of {pos.id} failed, retrying next cycle: {e}')

        return liquidated

    # ── Queries ───────────────────────────────────────────────────────
    @staticmethod
    def evaluate(pos: Position, price: float) -> TradeResult:
        """Live PnL / liquidation state of a position at ``price``. Never stored."""
        return compute_position(TradeParameters(
            entry_price=pos.entry_price,
            current_price=price,
            collateral=pos.collateral,
            leverage=pos.leverage,
            direction=pos.side,
        ))

    def get_position(self, position_id: str) -> Position:
        pos = self.store.find_by_id(position_id)
        if pos is None:
            raise NotFoundError(f'Position {position_id} not found')
        return pos

    def get_open_positions(self, user_id: str) -> list[Position]:
        return self.store.find_open_by_user(user_id)

    def get_all_positions(self, user_id: str) -> list[Position]:
        return self.store.find_by_user(user_id)

    # ── Internals ─────────────────────────────────────────────────────
    def _lock_for(self, position_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(position_id, threading.Lock())

    def _release_lock(self, position_id: str):
        """Forget the lock of a position that reached a terminal state."""
        with self._locks_guard:
            self._locks.pop(position_id, None)

    def _record(self, event: str, pos: Position):
        if self._journal is None:
            return
        self._journal({**pos.to_dict(), 'event': event})
