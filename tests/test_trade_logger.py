"""Tests for the JSONL trade journal and PnL summary."""

import pytest

from monitoring.trade_logger import load_recent, log_trade, pnl_summary


def test_log_and_load(tmp_path) -> None:
    path = tmp_path / 'nested' / 'trades.jsonl'
    for i in range(5):
        log_trade({'event': 'open', 'id': f'pos-{i}'}, path)

    records = load_recent(3, path)
    assert [r['id'] for r in records] == ['pos-2', 'pos-3', 'pos-4']
    assert all('_logged_at' in r for r in records)


def test_load_missing_file(tmp_path) -> None:
    assert load_recent(path=tmp_path / 'absent.jsonl') == []


def test_pnl_summary_groups_closes() -> None:
    records = [
        {'event': 'open', 'symbol': 'BTC', 'status': 'open', 'realized_pnl': 0.0},
        {'event': 'close', 'symbol': 'BTC', 'status': 'closed', 'realized_pnl': 100.0},
        {'event': 'close', 'symbol': 'BTC', 'status': 'closed', 'realized_pnl': -20.0},
        {'event': 'liquidation', 'symbol': 'ETH', 'status': 'liquidated', 'realized_pnl': -110.0},
    ]
    summary = pnl_summary(records)

    assert list(summary.columns) == ['symbol', 'status', 'trades', 'win_rate', 'total_pnl', 'avg_pnl']
    btc = summary[summary['symbol'] == 'BTC'].iloc[0]
    assert btc['trades'] == 2
    assert btc['win_rate'] == pytest.approx(0.5)
    assert btc['total_pnl'] == pytest.approx(80.0)
    assert btc['avg_pnl'] == pytest.approx(40.0)
    eth = summary[summary['symbol'] == 'ETH'].iloc[0]
    assert eth['status'] == 'liquidated'


def test_pnl_summary_empty() -> None:
    assert pnl_summary([{'event': 'open'}]).empty
