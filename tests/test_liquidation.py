"""Tests for the asyncio liquidation sweeper."""

import asyncio

from execution.liquidation import LiquidationSweeper
from monitoring import telegram

from conftest import USER_ADDR, USER_ID


def _open(manager, cred, user_id=USER_ID, **overrides):
    params = dict(
        user_id=user_id, user_address=USER_ADDR, symbol='BTC', side='long',
        entry_price=50000.0, collateral=100.0, leverage=10, credential=cred,
    )
    params.update(overrides)
    return manager.create_position(**params)


def test_sweep_liquidates_watched_users(manager, oracle, user_cred) -> None:
    watched = _open(manager, user_cred)
    unwatched = _open(manager, user_cred, user_id='user-2')
    oracle.set_price('BTC', 44000.0)

    sweeper = LiquidationSweeper(manager, oracle, interval=0.01, notify=False)
    sweeper.watch(USER_ID)
    results = asyncio.run(sweeper.sweep_once())

    assert [p.id for p in results[USER_ID]] == [watched.id]
    assert manager.get_position(watched.id).status == 'liquidated'
    assert manager.get_position(unwatched.id).status == 'open'
    assert sweeper.cycles == 1


def test_sweep_with_explicit_prices(manager, oracle, user_cred) -> None:
    pos = _open(manager, user_cred, symbol='ETH', entry_price=3000.0, side='short', leverage=20)
    sweeper = LiquidationSweeper(manager, oracle, notify=False)
    sweeper.watch(USER_ID)

    assert asyncio.run(sweeper.sweep_once({'BTC': 50000.0})) == {}
    assert asyncio.run(sweeper.sweep_once({'ETH': 3200.0}))[USER_ID][0].id == pos.id


def test_watch_and_unwatch(manager, oracle) -> None:
    sweeper = LiquidationSweeper(manager, oracle, notify=False)
    sweeper.watch('b')
    sweeper.watch('a')
    sweeper.watch('a')
    assert sweeper.users == ['a', 'b']
    sweeper.unwatch('b')
    sweeper.unwatch('missing')
    assert sweeper.users == ['a']


def test_start_and_stop(manager, oracle, user_cred) -> None:
    pos = _open(manager, user_cred)
    oracle.set_price('BTC', 40000.0)
    sweeper = LiquidationSweeper(manager, oracle, interval=0.01, notify=False)
    sweeper.watch(USER_ID)

    async def scenario():
        sweeper.start()
        assert sweeper.running
        for _ in range(100):
            if sweeper.cycles:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

    asyncio.run(scenario())
    assert not sweeper.running
    assert sweeper.cycles >= 1
    assert manager.get_position(pos.id).status == 'liquidated'


def test_failing_user_check_does_not_stop_cycle(manager, oracle, user_cred, monkeypatch) -> None:
    _open(manager, user_cred)
    original = manager.check_liquidations

    def flaky(user_id, prices, admin_credential=None):
        if user_id == 'broken':
            raise RuntimeError('store unavailable')
        return original(user_id, prices, admin_credential)

    monkeypatch.setattr(manager, 'check_liquidations', flaky)
    sweeper = LiquidationSweeper(manager, oracle, notify=False)
    sweeper.watch('broken')
    sweeper.watch(USER_ID)

    results = asyncio.run(sweeper.sweep_once({'BTC': 1000.0}))
    assert list(results) == [USER_ID]


def test_liquidation_alerts_finish_within_the_cycle(manager, oracle, user_cred, monkeypatch) -> None:
    pos = _open(manager, user_cred)
    sent = []

    async def record_alert(symbol, side, user_id, mark, liq_price):
        await asyncio.sleep(0)
        sent.append((symbol, side, user_id, mark))

    async def failing_alert(*args, **kwargs):
        raise RuntimeError('telegram down')

    monkeypatch.setattr(telegram, 'notify_liquidation', record_alert)
    sweeper = LiquidationSweeper(manager, oracle, notify=True)
    sweeper.watch(USER_ID)
    asyncio.run(sweeper.sweep_once({'BTC': 44000.0}))
    assert sent == [('BTC', 'long', USER_ID, 44000.0)]

    monkeypatch.setattr(telegram, 'notify_liquidation', failing_alert)
    _open(manager, user_cred)
    results = asyncio.run(sweeper.sweep_once({'BTC': 44000.0}))
    assert len(results[USER_ID]) == 1
    assert manager.get_position(pos.id).status == 'liquidated'
