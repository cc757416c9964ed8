"""
Telegram Notifier — async Telegram bot alerts for position events.
"""
import asyncio

import aiohttp
from loguru import logger

from config import TELEGRAM_TOKEN, TELEGRAM_CHAT_ID, SETTLEMENT_SYMBOL


async def _send(text: str):
    if not TELEGRAM_TOKEN or not TELEGRAM_CHAT_ID:
        return
    url = f'https://api.telegram.org/bot{TELEGRAM_TOKEN}/sendMessage'
    payload = {'chat_id': TELEGRAM_CHAT_ID, 'text': text, 'parse_mode': 'HTML'}
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=5)) as resp:
                if resp.status != 200:
                    logger.warning(f'[TG] Failed: {resp.status}')
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f'[TG] Error: {e}')


async def notify_open(symbol: str, side: str, entry: float, collateral: float,
                      leverage: float, liq_price: float, user_id: str):
    emoji = '🟢' if side == 'long' else '🔴'
    text = (
        f'{emoji} <b>OPEN {side.upper()} {symbol}</b> ({user_id})\n'
        f'Entry: <code>{entry:.4f}</code>  Collateral: <code>{collateral:.2f} {SETTLEMENT_SYMBOL}</code> @ {leverage:g}x\n'
        f'Liq: <code>{liq_price:.4f}</code>'
    )
    await _send(text)


async def notify_close(symbol: str, side: str, pnl: float, status: str, paid_out: bool):
    emoji = '✅' if pnl > 0 else '❌'
    payout = '  Payout: sent' if paid_out else ''
    text = (
        f'{emoji} <b>{status.upper()} {side.upper()} {symbol}</b>\n'
        f'PnL: <code>${pnl:+.2f}</code>{payout}'
    )
    await _send(text)


async def notify_liquidation(symbol: str, side: str, user_id: str, mark: float, liq_price: float):
    text = (
        f'⛔ <b>LIQUIDATED {side.upper()} {symbol}</b> ({user_id})\n'
        f'Mark: <code>{mark:.4f}</code>  Liq: <code>{liq_price:.4f}</code>'
    )
    await _send(text)


async def send_startup_alert(symbols: list, paper: bool):
    """Notify that the engine has started."""
    mode = 'PAPER' if paper else 'TESTNET'
    text = (
        f'🚀 <b>SEP DEX Engine Started</b> ({mode})\n'
        f'Assets: {", ".join(symbols)}'
    )
    await _send(text)
