"""Tests for the pure risk calculator."""

import pytest

from execution.calculator import (
    compute_position, liquidation_price_for, position_size_for,
    risk_level_for, risk_warning_for,
)
from execution.errors import ValidationError
from execution.models import TradeParameters


def _params(entry=50000.0, price=50000.0, collateral=100.0, leverage=10, direction='long'):
    return TradeParameters(entry, price, collateral, leverage, direction)


def test_btc_long_scenario() -> None:
    result = compute_position(_params(price=55000.0))
    assert result.position_size == pytest.approx(0.02)
    assert result.pnl == pytest.approx(100.0)
    assert result.pnl_percent == pytest.approx(100.0)
    assert result.liquidation_price == pytest.approx(45000.0)
    assert result.payout_if_profit == pytest.approx(200.0)
    assert result.is_liquidated is False


def test_stx_short_scenario() -> None:
    result = compute_position(_params(entry=2.5, price=2.6, leverage=100, direction='short'))
    assert result.liquidation_price == pytest.approx(2.525)
    assert result.is_liquidated is True


def test_payout_never_negative() -> None:
    result = compute_position(_params(price=40000.0))
    assert result.pnl == pytest.approx(-200.0)
    assert result.payout_if_profit == 0.0


@pytest.mark.parametrize('entry,leverage,collateral', [
    (50000.0, 10, 100.0),
    (2.5, 100, 250.0),
    (3000.0, 1, 1000.0),
    (150.0, 33, 100.0),
])
def test_position_size_formula(entry, leverage, collateral) -> None:
    assert position_size_for(collateral, leverage, entry) == collateral * leverage / entry
    result = compute_position(_params(entry=entry, price=entry, collateral=collateral, leverage=leverage))
    assert result.position_size == collateral * leverage / entry


@pytest.mark.parametrize('leverage', [1, 2, 10, 50, 100])
def test_liquidation_side_of_entry(leverage) -> None:
    # 1x long liquidates only at zero
    assert liquidation_price_for(100.0, leverage, 'long') < 100.0
    assert liquidation_price_for(100.0, leverage, 'short') > 100.0


def test_long_liquidation_boundary() -> None:
    liq = liquidation_price_for(50000.0, 10, 'long')
    assert compute_position(_params(price=liq)).is_liquidated is True
    assert compute_position(_params(price=liq + 1e-6)).is_liquidated is False


def test_short_liquidation_boundary() -> None:
    liq = liquidation_price_for(50000.0, 10, 'short')
    assert compute_position(_params(price=liq, direction='short')).is_liquidated is True
    assert compute_position(_params(price=liq - 1e-6, direction='short')).is_liquidated is False


def test_pure_and_repeatable() -> None:
    params = _params(price=51234.5, leverage=25)
    assert compute_position(params) == compute_position(params)


def test_pnl_monotonic_in_price() -> None:
    prices = [46000.0, 48000.0, 50000.0, 52000.0, 60000.0]
    longs  = [compute_position(_params(price=p)).pnl for p in prices]
    shorts = [compute_position(_params(price=p, direction='short')).pnl for p in prices]
    assert longs == sorted(longs) and len(set(longs)) == len(longs)
    assert shorts == sorted(shorts, reverse=True) and len(set(shorts)) == len(shorts)


@pytest.mark.parametrize('kwargs,field', [
    ({'entry': 0.0}, 'entry_price'),
    ({'price': -1.0}, 'current_price'),
    ({'collateral': 0.0}, 'collateral'),
    ({'leverage': 0.5}, 'leverage'),
    ({'leverage': 101}, 'leverage'),
    ({'direction': 'sideways'}, 'direction'),
])
def test_validation_names_field(kwargs, field) -> None:
    with pytest.raises(ValidationError) as exc:
        compute_position(_params(**kwargs))
    assert exc.value.field == field


@pytest.mark.parametrize('leverage,level', [
    (1, 'low'), (9.9, 'low'), (10, 'moderate'), (24, 'moderate'),
    (25, 'high'), (49, 'high'), (50, 'extreme'), (100, 'extreme'),
])
def test_risk_levels(leverage, level) -> None:
    assert risk_level_for(leverage) == level


def test_risk_warning_per_level() -> None:
    warnings = {risk_warning_for(lev) for lev in (1, 10, 25, 50)}
    assert len(warnings) == 4
    assert 'Extreme' in risk_warning_for(100)
