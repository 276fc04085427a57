from __future__ import annotations

from datetime import datetime
from datetime import timezone as dt_timezone

import pytest

from libs.idgen import EPOCH_MS, SnowflakeGenerator, generate_id, id_created_at, id_node, node_id_from_env


def test_generate_id_uniqueness():
    ids = {generate_id() for _ in range(5)}
    assert len(ids) == 5
    for value in ids:
        assert isinstance(value, int)
        assert value > 0


def test_ids_are_monotonic_within_one_millisecond():
    now = (EPOCH_MS + 5_000) / 1000
    generator = SnowflakeGenerator(node_id=3, clock=lambda: now)
    first, second, third = generator.next_id(), generator.next_id(), generator.next_id()
    assert first < second < third
    assert id_node(first) == 3
    assert id_created_at(first) == datetime(2025, 1, 1, 0, 0, 5, tzinfo=dt_timezone.utc)


def test_node_ids_keep_generators_apart():
    now = (EPOCH_MS + 1) / 1000
    a = SnowflakeGenerator(node_id=1, clock=lambda: now).next_id()
    b = SnowflakeGenerator(node_id=2, clock=lambda: now).next_id()
    assert a != b
    with pytest.raises(ValueError):
        SnowflakeGenerator(node_id=1024)


def test_node_id_from_env(monkeypatch):
    monkeypatch.setenv("ID_NODE", "17")
    assert node_id_from_env() == 17
    monkeypatch.setenv("ID_NODE", "worker")
    with pytest.raises(ValueError):
        node_id_from_env()
    monkeypatch.setenv("ID_NODE", "5000")
    with pytest.raises(ValueError):
        node_id_from_env()
