from __future__ import annotations

import os
import threading
import time
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Callable, Optional

EPOCH_MS = 1_735_689_600_000  # 2025-01-01T00:00:00Z
NODE_BITS = 10
SEQUENCE_BITS = 12
MAX_NODE_ID = (1 << NODE_BITS) - 1
SEQUENCE_MASK = (1 << SEQUENCE_BITS) - 1


def node_id_from_env() -> int:
    """
    Web and worker processes that insert rows concurrently must not share a
    node id; ``ID_NODE`` is set per deployment unit.
    """
    raw = os.getenv("ID_NODE", "1")
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"ID_NODE must be an integer, got {raw!r}") from exc
    if not 0 <= value <= MAX_NODE_ID:
        raise ValueError(f"ID_NODE must be between 0 and {MAX_NODE_ID}")
    return value


class SnowflakeGenerator:
    """Time-ordered 64-bit ids: milliseconds since EPOCH_MS, node id, sequence."""

    def __init__(self, node_id: int, clock: Optional[Callable[[], float]] = None) -> None:
        if not 0 <= node_id <= MAX_NODE_ID:
            raise ValueError(f"node_id must be between 0 and {MAX_NODE_ID}")
        self.node_id = node_id
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _next_ms(self, after: int) -> int:
        now = self._now_ms()
        while now <= after:
            time.sleep(0.0001)
            now = self._now_ms()
        return now

    def next_id(self) -> int:
        with self._lock:
            now = self._now_ms()
            if now < self._last_ms:
                now = self._next_ms(self._last_ms - 1)
            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & SEQUENCE_MASK
                if self._sequence == 0:
                    now = self._next_ms(now)
            else:
                self._sequence = 0
            self._last_ms = now
            return ((now - EPOCH_MS) << (NODE_BITS + SEQUENCE_BITS)) | (self.node_id << SEQUENCE_BITS) | self._sequence


_generator: Optional[SnowflakeGenerator] = None
_generator_lock = threading.Lock()


def generate_id() -> int:
    global _generator
    if _generator is None:
        with _generator_lock:
            if _generator is None:
                _generator = SnowflakeGenerator(node_id_from_env())
    return _generator.next_id()


def id_created_at(value: int) -> datetime:
    ms = (int(value) >> (NODE_BITS + SEQUENCE_BITS)) + EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=dt_timezone.utc)


def id_node(value: int) -> int:
    return (int(value) >> SEQUENCE_BITS) & MAX_NODE_ID
