"""Tests for the in-memory and JSON-file position stores."""

import json
import os
from dataclasses import replace

import pytest

from execution.errors import NotFoundError
from execution.models import Position
from execution.position_store import InMemoryPositionStore, JsonFilePositionStore


def _position(pid: str = 'pos-1', user: str = 'u1', status: str = 'open') -> Position:
    return Position(
        id=pid, user_id=user, symbol='ETH', side='short',
        entry_price=3000.0, size=0.5, leverage=15, collateral=100.0,
        liquidation_price=3200.0, status=status, opened_at=1_700_000_000.0,
    )


def test_save_and_find() -> None:
    store = InMemoryPositionStore()
    store.save(_position('a', 'u1'))
    store.save(_position('b', 'u1', status='closed'))
    store.save(_position('c', 'u2'))

    assert store.find_by_id('a').id == 'a'
    assert store.find_by_id('zzz') is None
    assert [p.id for p in store.find_by_user('u1')] == ['a', 'b']
    assert [p.id for p in store.find_open_by_user('u1')] == ['a']


def test_returned_records_are_copies() -> None:
    store = InMemoryPositionStore()
    pos = _position()
    store.save(pos)
    pos.status = 'closed'
    fetched = store.find_by_id(pos.id)
    fetched.realized_pnl = 999.0
    assert store.find_by_id(pos.id).status == 'open'
    assert store.find_by_id(pos.id).realized_pnl == 0.0


def test_duplicate_save_rejected() -> None:
    store = InMemoryPositionStore()
    store.save(_position())
    with pytest.raises(ValueError):
        store.save(_position())


def test_update_requires_existing() -> None:
    store = InMemoryPositionStore()
    with pytest.raises(NotFoundError):
        store.update(_position())


def test_json_store_survives_restart(tmp_path) -> None:
    path = tmp_path / 'positions.json'
    store = JsonFilePositionStore(str(path))
    store.save(_position('a'))
    store.update(replace(_position('a'), status='closed', realized_pnl=-12.5, closed_at=1_700_000_100.0))

    reloaded = JsonFilePositionStore(str(path))
    pos = reloaded.find_by_id('a')
    assert pos.status == 'closed'
    assert pos.realized_pnl == -12.5
    assert pos.closed_at == 1_700_000_100.0
    assert json.loads(path.read_text())[0]['id'] == 'a'
    assert not list(tmp_path.glob('*.tmp'))


def test_json_store_ignores_unknown_fields(tmp_path) -> None:
    path = tmp_path / 'positions.json'
    record = {**_position('legacy').to_dict(), 'blockchain_tx_id': '0xabc'}
    path.write_text(json.dumps([record]))
    assert JsonFilePositionStore(str(path)).find_by_id('legacy').symbol == 'ETH'


def test_json_store_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / 'positions.json'
    path.write_text('{not json')
    with pytest.raises(RuntimeError):
        JsonFilePositionStore(str(path))


def _failing_replace(*args, **kwargs):
    raise OSError('disk full')


def test_failed_save_is_not_visible(tmp_path, monkeypatch) -> None:
    store = JsonFilePositionStore(str(tmp_path / 'positions.json'))
    monkeypatch.setattr(os, 'replace', _failing_replace)

    with pytest.raises(OSError):
        store.save(_position('pos-1'))

    assert store.find_by_id('pos-1') is None
    assert store.find_open_by_user('u1') == []
    assert not list(tmp_path.glob('*.tmp'))


def test_failed_update_keeps_previous_record(tmp_path, monkeypatch) -> None:
    store = JsonFilePositionStore(str(tmp_path / 'positions.json'))
    store.save(_position('pos-1'))
    monkeypatch.setattr(os, 'replace', _failing_replace)

    with pytest.raises(OSError):
        store.update(replace(_position('pos-1'), status='closed', realized_pnl=50.0))

    assert store.find_by_id('pos-1').status == 'open'
    assert store.find_by_id('pos-1').realized_pnl == 0.0
