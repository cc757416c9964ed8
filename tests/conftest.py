"""Pytest fixtures: fake ledger, in-memory store, fixed prices, wired manager."""

import pytest

from data.price_oracle import StaticPriceOracle
from execution.errors import SettlementError
from execution.ledger import LedgerService, PaperCredential
from execution.position_manager import PositionManager
from execution.position_store import InMemoryPositionStore

USER_ID      = 'user-1'
USER_ADDR    = 'ST1USERADDRESS0000000000000000000000000'
ADMIN_ADDR   = 'ST1ADMINADDRESS000000000000000000000000'
COLLECTION   = 'ST1COLLECTION00000000000000000000000000'


class FakeLedger(LedgerService):
    """Records every call. Methods named in ``failing`` raise SettlementError."""

    def __init__(self, balance: int = 1_000_000_000_000):
        self.balance = balance
        self.failing: set[str] = set()
        self.calls: list[tuple] = []

    def _call(self, method: str, *args) -> str:
        self.calls.append((method, *args))
        if method in self.failing:
            raise SettlementError(f'{method} rejected')
        return f'tx-{method}-{len(self.calls)}'

    def transfer(self, amount, from_address, to_address, credential):
        return self._call('transfer', amount, from_address, to_address)

    def deposit(self, amount, from_address, credential):
        return self._call('deposit', amount, from_address)

    def payout(self, to_address, amount, credential):
        return self._call('payout', to_address, amount)

    def balance_of(self, address):
        self.calls.append(('balance_of', address))
        return self.balance

    def methods(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def store() -> InMemoryPositionStore:
    return InMemoryPositionStore()


@pytest.fixture
def oracle() -> StaticPriceOracle:
    return StaticPriceOracle({'BTC': 50000.0, 'ETH': 3000.0, 'STX': 2.5, 'SOL': 150.0})


@pytest.fixture
def user_cred() -> PaperCredential:
    return PaperCredential(USER_ADDR)


@pytest.fixture
def admin_cred() -> PaperCredential:
    return PaperCredential(ADMIN_ADDR)


@pytest.fixture
def journal() -> list:
    return []


@pytest.fixture
def manager(store, ledger, oracle, journal) -> PositionManager:
    return PositionManager(
        store, ledger, oracle,
        collection_address=COLLECTION,
        min_collateral=100,
        fallback_rate=2.5,
        journal=journal.append,
    )


@pytest.fixture
def open_btc_long(manager, user_cred):
    """BTC long: entry 50000, 100 STX collateral, 10x → liq 45000."""
    return manager.create_position(
        user_id=USER_ID, user_address=USER_ADDR, symbol='BTC', side='long',
        entry_price=50000.0, collateral=100.0, leverage=10, credential=user_cred,
    )
