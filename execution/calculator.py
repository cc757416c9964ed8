"""
Risk Calculator — pure position math for isolated-margin perps.

No I/O and no state: the same TradeParameters always produce the same
TradeResult.

  position_size     = collateral × leverage / entry
  pnl               = position_size × price_diff
  pnl_percent       = price_diff / entry × leverage × 100
  liquidation_price = entry × (1 ∓ 1/leverage)
  payout_if_profit  = max(0, collateral + pnl)

The liquidation price depends only on entry and leverage (the price has
moved 1/leverage against the position, so the collateral is gone). It is
computed once when a position opens. PnL always depends on the live price.
"""
from config import MIN_LEVERAGE, MAX_LEVERAGE
from execution.errors import ValidationError
from execution.models import LONG, SIDES, TradeParameters, TradeResult


# ── Risk Levels ──────────────────────────────────────────────────────
RISK_LOW      = 'low'
RISK_MODERATE = 'moderate'
RISK_HIGH     = 'high'
RISK_EXTREME  = 'extreme'

RISK_WARNINGS = {
    RISK_EXTREME:  'Extreme risk - positions can be liquidated with <1% adverse moves',
    RISK_HIGH:     'Very high risk - small price movements can result in total loss',
    RISK_MODERATE: 'Moderate risk - significant price movements can result in substantial losses',
    RISK_LOW:      'Lower risk - larger price movements needed for liquidation',
}


def _validate(params: TradeParameters):
    if params.entry_price <= 0:
        raise ValidationError('entry_price', 'must be positive')
    if params.current_price <= 0:
        raise ValidationError('current_price', 'must be positive')
    if params.collateral <= 0:
        raise ValidationError('collateral', 'must be positive')
    if params.leverage < MIN_LEVERAGE or params.leverage > MAX_LEVERAGE:
        raise ValidationError('leverage', f'must be between {MIN_LEVERAGE} and {MAX_LEVERAGE}')
    if params.direction not in SIDES:
        raise ValidationError('direction', f"must be one of {', '.join(SIDES)}")


def compute_position(params: TradeParameters) -> TradeResult:
    """Evaluate a trade configuration at the current price."""
    _validate(params)

    entry = params.entry_price
    price = params.current_price
    long  = params.direction == LONG

    position_size = position_size_for(params.collateral, params.leverage, entry)
    price_diff    = price - entry if long else entry - price
    pnl           = position_size * price_diff
    pnl_percent   = (price_diff / entry) * params.leverage * 100

    liquidation_price = liquidation_price_for(entry, params.leverage, params.direction)
    is_liquidated = price <= liquidation_price if long else price >= liquidation_price

    return TradeResult(
        position_size=position_size,
        pnl=pnl,
        pnl_percent=pnl_percent,
        liquidation_price=liquidation_price,
        payout_if_profit=max(0.0, params.collateral + pnl),
        is_liquidated=is_liquidated,
    )


def liquidation_price_for(entry_price: float, leverage: float, direction: str) -> float:
    if direction == LONG:
        return entry_price * (1 - 1 / leverage)
    return entry_price * (1 + 1 / leverage)


def position_size_for(collateral: float, leverage: float, entry_price: float) -> float:
    return (collateral * leverage) / entry_price


def risk_level_for(leverage: float) -> str:
    if leverage < 10:
        return RISK_LOW
    if leverage < 25:
        return RISK_MODERATE
    if leverage < 50:
        return RISK_HIGH
    return RISK_EXTREME


def risk_warning_for(leverage: float) -> str:
    return RISK_WARNINGS[risk_level_for(leverage)]
