"""Unit tests for the in-memory sensor registry."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from datastore.registry import SensorRegistry, build_default_registry


def test_register_is_idempotent() -> None:
    registry = SensorRegistry()

    assert registry.register("temp1") is True
    assert registry.register("temp1") is False

    assert registry.contains("temp1")
    assert len(registry) == 1
    assert registry.snapshot() == ["temp1"]


def test_unknown_sensor_is_not_contained() -> None:
    registry = SensorRegistry()

    assert not registry.contains("unknown")
    assert "unknown" not in registry
    assert 42 not in registry


def test_concurrent_registration_loses_no_updates() -> None:
    registry = SensorRegistry()
    sensor_ids = [f"sensor-{index % 50}" for index in range(1000)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        newly_added = list(pool.map(registry.register, sensor_ids))

    assert sum(newly_added) == 50
    assert registry.snapshot() == sorted({*sensor_ids})


def test_default_registry_is_shared() -> None:
    build_default_registry.cache_clear()
    try:
        assert build_default_registry() is build_default_registry()
    finally:
        build_default_registry.cache_clear()
