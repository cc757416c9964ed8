"""
Liquidation Sweeper — poll-based liquidation checks for watched users.

Every ``interval`` seconds:
  1. Snapshot oracle prices for all supported symbols (unknowns dropped)
  2. Run check_liquidations() for each watched user
  3. Notify on every forced liquidation

The blocking oracle and ledger calls run in the default executor so the
event loop stays responsive. stop() cancels the task; watch()/unwatch()
attach and detach users as their sessions come and go.
"""
import asyncio
from typing import Optional

from loguru import logger

from config import LIQUIDATION_CHECK_INTERVAL, SUPPORTED_SYMBOLS
from data.price_oracle import PriceOracle
from execution.position_manager import PositionManager
from monitoring import telegram


class LiquidationSweeper:

    def __init__(
        self,
        manager: PositionManager,
        oracle: PriceOracle,
        interval: float = LIQUIDATION_CHECK_INTERVAL,
        symbols: list = None,
        notify: bool = True,
    ):
        self.manager  = manager
        self.oracle   = oracle
        self.interval = interval
        self.symbols  = list(symbols or SUPPORTED_SYMBOLS)
        self.notify   = notify
        self.cycles   = 0
        self._users: set[str] = set()
        self._task: Optional[asyncio.Task] = None

    # ── Watch List ───────────────────────────────────────────────────
    def watch(self, user_id: str):
        if user_id not in self._users:
            self._users.add(user_id)
            logger.info(f'[SWEEP] Watching {user_id} ({len(self._users)} users)')

    def unwatch(self, user_id: str):
        self._users.discard(user_id)

    @property
    def users(self) -> list[str]:
        return sorted(self._users)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Single Cycle ─────────────────────────────────────────────────
    async def sweep_once(self, prices: dict = None) -> dict[str, list]:
        """
        Run one liquidation cycle. Returns {user_id: [liquidated positions]}
        for users with at least one liquidation.
        """
        loop = asyncio.get_running_loop()
        if prices is None:
            prices = await loop.run_in_executor(None, self.oracle.snapshot, self.symbols)

        missing = [s for s in self.symbols if s not in prices]
        if missing:
            logger.debug(f'[SWEEP] No price for {missing} — those positions wait for next cycle')

        results = {}
        alerts = []
        for user_id in self.users:
            try:
                liquidated = await loop.run_in_executor(
                    None, self.manager.check_liquidations, user_id, prices,
                )
            except Exception as e:
                logger.exception(f'[SWEEP] {user_id} check failed: {e}')
                continue

            if liquidated:
                results[user_id] = liquidated
                if self.notify:
                    alerts.extend(
                        telegram.notify_liquidation(
                            pos.symbol, pos.side, user_id,
                            mark=pos.exit_price, liq_price=pos.liquidation_price,
                        )
                        for pos in liquidated
                    )

        if alerts:
            for outcome in await asyncio.gather(*alerts, return_exceptions=True):
                if isinstance(outcome, Exception):
                    logger.warning(f'[SWEEP] Liquidation alert failed: {outcome}')

        self.cycles += 1
        return results

    async def run(self):
        """Loop forever until cancelled."""
        logger.info(f'[SWEEP] Liquidation sweep every {self.interval:.0f}s')
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f'[SWEEP] Unhandled error: {e}')
            await asyncio.sleep(self.interval)

    # ── Task Control ─────────────────────────────────────────────────
    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info('[SWEEP] Stopped')
