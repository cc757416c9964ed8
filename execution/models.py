"""
Position engine data types.

Position is the persisted record; TradeParameters / TradeResult are the
input and output of the pure risk calculator.
"""
import time
from dataclasses import dataclass, field, asdict, fields
from typing import Optional


LONG  = 'long'
SHORT = 'short'
SIDES = (LONG, SHORT)

OPEN       = 'open'
CLOSED     = 'closed'
LIQUIDATED = 'liquidated'
STATUSES   = (OPEN, CLOSED, LIQUIDATED)

MARKET = 'market'


@dataclass(frozen=True)
class TradeParameters:
    entry_price:   float
    current_price: float
    collateral:    float
    leverage:      float
    direction:     str            # 'long' | 'short'


@dataclass(frozen=True)
class TradeResult:
    position_size:     float
    pnl:               float
    pnl_percent:       float
    liquidation_price: float
    payout_if_profit:  float
    is_liquidated:     bool

    def to_dict(self) -> dict:
        return asdict(self)


# ── Position Dataclass ───────────────────────────────────────────────
@dataclass
class Position:
    """
    A single isolated-margin position.

    Everything except the closing fields is fixed at creation. PnL of an
    open position is never stored here; compute it from a live price.
    """
    # Identity
    id:        str
    user_id:   str
    symbol:    str
    side:      str            # 'long' | 'short'

    # Entry (derived fields computed once by the calculator)
    entry_price:       float
    size:              float
    leverage:          float
    collateral:        float
    liquidation_price: float

    # Lifecycle
    status:       str = OPEN
    realized_pnl: float = 0.0
    opened_at:    float = field(default_factory=time.time)
    closed_at:    Optional[float] = None
    exit_price:   Optional[float] = None

    # Audit
    order_type:       str = MARKET
    collateral_tx_id: str = ''
    payout_tx_id:     str = ''

    @property
    def is_open(self) -> bool:
        return self.status == OPEN

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Position':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
