"""
Position Store — keyed record store for positions.

Two implementations share one contract:
  - InMemoryPositionStore: process-local dict (tests, paper sessions)
  - JsonFilePositionStore: JSON file on disk, rewritten atomically
    (tempfile + os.replace) so a crash never leaves a half-written file

Records are copied on the way in and out; callers never hold a reference
to the stored object.
"""
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Optional

from loguru import logger

from execution.errors import NotFoundError
from execution.models import Position


class PositionStore(ABC):

    @abstractmethod
    def save(self, position: Position):
        """Insert a new position. Raises ValueError on a duplicate id."""

    @abstractmethod
    def update(self, position: Position):
        """Replace an existing position. Raises NotFoundError if absent."""

    @abstractmethod
    def find_by_id(self, position_id: str) -> Optional[Position]:
        ...

    @abstractmethod
    def find_by_user(self, user_id: str) -> list[Position]:
        ...

    def find_open_by_user(self, user_id: str) -> list[Position]:
        return [p for p in self.find_by_user(user_id) if p.is_open]


class InMemoryPositionStore(PositionStore):

    def __init__(self):
        self._positions: dict[str, Position] = {}   # id → Position, insertion ordered
        self._lock = threading.Lock()

    def save(self, position: Position):
        with self._lock:
            if position.id in self._positions:
                raise ValueError(f'Position {position.id} already exists')
            self._positions[position.id] = replace(position)

    def update(self, position: Position):
        with self._lock:
            if position.id not in self._positions:
                raise NotFoundError(f'Position {position.id} not found')
            self._positions[position.id] = replace(position)

    def find_by_id(self, position_id: str) -> Optional[Position]:
        with self._lock:
            pos = self._positions.get(position_id)
            return replace(pos) if pos else None

    def find_by_user(self, user_id: str) -> list[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values() if p.user_id == user_id]

    def all(self) -> list[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values()]


class JsonFilePositionStore(InMemoryPositionStore):
    """In-memory index backed by a JSON array on disk."""

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            records = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            raise RuntimeError(f'Could not read position store {self.path}: {e}') from e

        for record in records:
            pos = Position.from_dict(record)
            self._positions[pos.id] = pos
        logger.info(f'[STORE] Loaded {len(self._positions)} positions from {self.path}')

    def _flush(self):
        """Atomically persist all positions (caller holds the lock)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps([p.to_dict() for p in self._positions.values()], indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(data)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def save(self, position: Position):
        with self._lock:
            if position.id in self._positions:
                raise ValueError(f'Position {position.id} already exists')
            self._positions[position.id] = replace(position)
            try:
                self._flush()
            except OSError:
                del self._positions[position.id]
                raise

    def update(self, position: Position):
        with self._lock:
            previous = self._positions.get(position.id)
            if previous is None:
                raise NotFoundError(f'Position {position.id} not found')
            self._positions[position.id] = replace(position)
            try:
                self._flush()
            except OSError:
                self._positions[position.id] = previous
                raise
