"""
Trade Logger — structured JSONL log of every position event (open, close,
liquidation) for audit and PnL analysis.
"""
import json
import time
from pathlib import Path

import pandas as pd
from loguru import logger

from config import TRADE_LOG_PATH

LOG_PATH = Path(TRADE_LOG_PATH)


def log_trade(event: dict, path: Path = None):
    """Append a trade event to the JSONL log."""
    path = Path(path or LOG_PATH)
    record = {**event, '_logged_at': time.time()}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'a') as f:
            f.write(json.dumps(record, default=str) + '\n')
    except OSError as e:
        logger.warning(f'[LOGGER] Could not log trade: {e}')


def load_recent(n: int = 200, path: Path = None) -> list[dict]:
    """Load last N trade records."""
    path = Path(path or LOG_PATH)
    if not path.exists():
        return []
    records = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records[-n:]


def pnl_summary(records: list[dict]) -> pd.DataFrame:
    """
    Realized PnL grouped by symbol and final status.
    Only close/liquidation events are counted.

    Columns: symbol, status, trades, win_rate, total_pnl, avg_pnl
    """
    columns = ['symbol', 'status', 'trades', 'win_rate', 'total_pnl', 'avg_pnl']
    closes = [r for r in records if r.get('event') in ('close', 'liquidation')]
    if not closes:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(closes)
    df['realized_pnl'] = df['realized_pnl'].astype(float)
    df['win'] = df['realized_pnl'] > 0

    grouped = df.groupby(['symbol', 'status'])
    summary = grouped.agg(
        trades=('realized_pnl', 'size'),
        win_rate=('win', 'mean'),
        total_pnl=('realized_pnl', 'sum'),
        avg_pnl=('realized_pnl', 'mean'),
    ).reset_index()
    summary['avg_pnl'] = summary['avg_pnl'].round(4)
    summary['total_pnl'] = summary['total_pnl'].round(4)
    return summary[columns]
