"""
Settlement — ordered fallback over ledger paths.

A movement of funds is attempted through each strategy in turn until one
succeeds. Every attempt, failed or not, lands in the SettlementLog. When
all strategies fail, a SettlementError carrying each underlying failure is
raised.

Default orderings:
  collateral: direct transfer → collection address, then contract deposit
  payout:     direct transfer from admin wallet, then contract admin-payout
"""
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Sequence

from loguru import logger

from execution.errors import SettlementError
from execution.ledger import LedgerService, SigningCredential


@dataclass(frozen=True)
class SettlementAttempt:
    purpose:   str            # 'collateral' | 'payout'
    strategy:  str
    amount:    int
    from_address: str
    to_address:   str
    success:   bool
    tx_id:     str = ''
    error:     str = ''
    timestamp: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class SettlementLog:
    """Append-only record of every settlement attempt."""

    def __init__(self, maxlen: int = 1000):
        self._attempts: list[SettlementAttempt] = []
        self._maxlen = maxlen
        self._lock = threading.Lock()

    def record(self, attempt: SettlementAttempt):
        with self._lock:
            self._attempts.append(attempt)
            if len(self._attempts) > self._maxlen:
                self._attempts.pop(0)

    def attempts(self, purpose: str = '') -> list[SettlementAttempt]:
        with self._lock:
            return [a for a in self._attempts if not purpose or a.purpose == purpose]

    def __len__(self):
        with self._lock:
            return len(self._attempts)


# ── Strategies ───────────────────────────────────────────────────────
class SettlementStrategy(ABC):
    name = ''

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    @abstractmethod
    def execute(self, amount: int, from_address: str, to_address: str,
                credential: SigningCredential) -> str:
        ...


class DirectTransfer(SettlementStrategy):
    name = 'direct_transfer'

    def execute(self, amount, from_address, to_address, credential):
        return self.ledger.transfer(amount, from_address, to_address, credential)


class ContractDeposit(SettlementStrategy):
    name = 'contract_deposit'

    def execute(self, amount, from_address, to_address, credential):
        return self.ledger.deposit(amount, from_address, credential)


class ContractPayout(SettlementStrategy):
    name = 'contract_payout'

    def execute(self, amount, from_address, to_address, credential):
        return self.ledger.payout(to_address, amount, credential)


def collateral_strategies(ledger: LedgerService) -> list[SettlementStrategy]:
    return [DirectTransfer(ledger), ContractDeposit(ledger)]


def payout_strategies(ledger: LedgerService) -> list[SettlementStrategy]:
    return [DirectTransfer(ledger), ContractPayout(ledger)]


# ── Executor ─────────────────────────────────────────────────────────
def settle(
    strategies: Sequence[SettlementStrategy],
    purpose: str,
    amount: int,
    from_address: str,
    to_address: str,
    credential: SigningCredential,
    log: SettlementLog,
) -> str:
    """
    Try each strategy in order; return the first transaction id.

    Any exception from a strategy counts as a failed attempt; unexpected
    ones are wrapped in SettlementError.

    Raises:
        SettlementError: every strategy failed. ``errors`` holds the
        individual failures in attempt order.
    """
    if not strategies:
        raise SettlementError(f'{purpose}: no settlement paths configured')

    errors = []
    for strategy in strategies:
        try:
            tx_id = strategy.execute(amount, from_address, to_address, credential)
        except Exception as e:
            if not isinstance(e, SettlementError):
                e = SettlementError(f'{strategy.name}: {type(e).__name__}: {e}')
            errors.append(e)
            log.record(SettlementAttempt(
                purpose=purpose, strategy=strategy.name, amount=amount,
                from_address=from_address, to_address=to_address,
                success=False, error=str(e), timestamp=time.time(),
            ))
            logger.warning(f'[SETTLE] {purpose} via {strategy.name} failed: {e}')
            continue

        log.record(SettlementAttempt(
            purpose=purpose, strategy=strategy.name, amount=amount,
            from_address=from_address, to_address=to_address,
            success=True, tx_id=tx_id, timestamp=time.time(),
        ))
        logger.info(f'[SETTLE] {purpose} {amount} via {strategy.name} — {tx_id}')
        return tx_id

    reasons = ' / '.join(str(e) for e in errors)
    raise SettlementError(f'all {purpose} settlement paths failed: {reasons}', errors)
