"""
SEP DEX Position Engine — Main Event Loop

Architecture:
  - asyncio tasks: (1) HTTP API (uvicorn), (2) liquidation sweep,
    (3) status logger
  - API serves position create / close / liquidation-check
  - Sweep runs every LIQUIDATION_CHECK_INTERVAL seconds over watched users

Wiring:
  PAPER_TRADE=true  → PaperLedger + static paper prices, paper credentials
  PAPER_TRADE=false → StacksLedgerClient + CoinGecko, custodial signer
"""
import asyncio
import signal
from loguru import logger

from config import (
    API_HOST, API_PORT, LOG_LEVEL, PAPER_TRADE, PAPER_BALANCE, PAPER_PRICES,
    POSITION_STORE_PATH, SUPPORTED_SYMBOLS, WATCH_USERS, STATUS_LOG_INTERVAL,
    ADMIN_WALLET_ID, ADMIN_WALLET_ADDR, MICRO_UNITS, CONTRACT_ADDRESS,
)
from api.server import create_app
from data.price_oracle import CoinGeckoOracle, StaticPriceOracle
from execution.ledger import (
    PaperCredential, PaperLedger, RemoteSignerCredential, StacksLedgerClient,
)
from execution.liquidation import LiquidationSweeper
from execution.position_manager import PositionManager
from execution.position_store import JsonFilePositionStore
from monitoring import telegram

logger.remove()
logger.add(
    'logs/sep_dex.log',
    level=LOG_LEVEL,
    rotation='50 MB',
    retention='7 days',
    format='{time:HH:mm:ss.SSS} | {level:<7} | {message}',
)
logger.add(
    lambda msg: print(msg, end=''),
    level='INFO',
    format='{time:HH:mm:ss} | {level:<7} | {message}',
)


# ── Wiring ────────────────────────────────────────────────────────────
def build_manager() -> PositionManager:
    store = JsonFilePositionStore(POSITION_STORE_PATH)

    if PAPER_TRADE:
        ledger = PaperLedger(default_balance=int(PAPER_BALANCE * MICRO_UNITS))
        oracle = StaticPriceOracle(PAPER_PRICES)
        admin  = PaperCredential(CONTRACT_ADDRESS)
    else:
        ledger = StacksLedgerClient()
        oracle = CoinGeckoOracle()
        admin  = None
        if ADMIN_WALLET_ID and ADMIN_WALLET_ADDR:
            admin = RemoteSignerCredential(ADMIN_WALLET_ID, ADMIN_WALLET_ADDR)
        else:
            logger.warning('[MAIN] No admin wallet configured — profitable closes will not pay out')

    return PositionManager(store, ledger, oracle, admin_credential=admin)


# ── Status Logger ─────────────────────────────────────────────────────
async def log_status(manager: PositionManager, sweeper: LiquidationSweeper):
    """Log a brief status line every STATUS_LOG_INTERVAL seconds."""
    while True:
        await asyncio.sleep(STATUS_LOG_INTERVAL)
        open_count = sum(len(manager.get_open_positions(u)) for u in sweeper.users)
        attempts = manager.settlement_log.attempts()
        failed = sum(1 for a in attempts if not a.success)
        logger.info(
            f'[STATUS] Watched={len(sweeper.users)} | Open={open_count} | '
            f'Sweeps={sweeper.cycles} | Settlements={len(attempts)} (failed {failed})'
        )


# ── Graceful Shutdown ─────────────────────────────────────────────────
def _handle_shutdown(loop: asyncio.AbstractEventLoop):
    logger.warning('[MAIN] Shutdown signal received — stopping...')
    for task in asyncio.all_tasks(loop):
        task.cancel()


# ── Entry Point ───────────────────────────────────────────────────────
async def main():
    import uvicorn

    logger.info(f'Starting SEP DEX engine — {PAPER_TRADE=}')
    logger.info(f'Assets: {SUPPORTED_SYMBOLS}')

    manager = build_manager()
    sweeper = LiquidationSweeper(manager, manager.oracle)
    for user_id in WATCH_USERS:
        sweeper.watch(user_id)

    app = create_app(manager, manager.oracle, sweeper)
    server = uvicorn.Server(uvicorn.Config(app, host=API_HOST, port=API_PORT, log_level='warning'))
    logger.info(f'API listening on http://{API_HOST}:{API_PORT}')

    await telegram.send_startup_alert(SUPPORTED_SYMBOLS, PAPER_TRADE)
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT,  lambda: _handle_shutdown(loop))
    loop.add_signal_handler(signal.SIGTERM, lambda: _handle_shutdown(loop))

    sweeper.start()
    try:
        await asyncio.gather(
            server.serve(),
            log_status(manager, sweeper),
        )
    except asyncio.CancelledError:
        pass
    finally:
        await sweeper.stop()
        logger.info('[MAIN] Stopped')


if __name__ == '__main__':
    asyncio.run(main())
