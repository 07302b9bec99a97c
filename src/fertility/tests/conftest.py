"""Shared fixtures and record builders for fertility engine tests."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

import pytest

from src.fertility.config_loader import FertilityConfig, load_fertility_config
from src.fertility.data_manager import DataManager
from src.fertility.store import InMemoryRecordStore, StorageError
from src.fertility.temp_shift import DailyTemperature
from src.models.records import FlowLevel, MenstrualRecord

# Canonical reference day for date-sensitive tests
TEST_TODAY = date(2025, 6, 1)

# Six low days then a sustained rise on day six (2025-01-06)
BIPHASIC_START = date(2025, 1, 1)
BIPHASIC_TEMPS = [36.3, 36.2, 36.4, 36.3, 36.2, 36.7, 36.8, 36.9, 36.8, 36.7]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_temps(values: list[float | None], start: date = BIPHASIC_START) -> list[DailyTemperature]:
    """One DailyTemperature per value on consecutive days from ``start``."""
    return [
        DailyTemperature(date=start + timedelta(days=i), temperature=v)
        for i, v in enumerate(values)
    ]


def make_period(
    start: date,
    days: int = 5,
    flow: FlowLevel = FlowLevel.medium,
) -> list[MenstrualRecord]:
    """Consecutive flow days starting ``start``; the first is marked isStart."""
    return [
        MenstrualRecord(
            date=(start + timedelta(days=i)).isoformat(),
            flow=flow,
            is_start=(i == 0),
        )
        for i in range(days)
    ]


def make_history(starts: list[date], days: int = 5) -> list[MenstrualRecord]:
    records: list[MenstrualRecord] = []
    for start in starts:
        records.extend(make_period(start, days))
    return records


def temperature_input(day: str, temperature: float, **extra: Any) -> dict[str, Any]:
    return {"date": day, "time": "06:30", "temperature": temperature, **extra}


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(InMemoryRecordStore):
    """In-memory store whose writes can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.writes = 0

    async def set_item(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StorageError(f"disk full while writing {key}")
        self.writes += 1
        await super().set_item(key, value)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fertility_config() -> FertilityConfig:
    """Load the real fertility config for tests."""
    return load_fertility_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def manager(
    store: InMemoryRecordStore,
    fertility_config: FertilityConfig,
    clock: FakeClock,
) -> DataManager:
    return DataManager(store, fertility_config, clock=clock, today=lambda: TEST_TODAY)


@pytest.fixture
def biphasic_temps() -> list[DailyTemperature]:
    return make_temps(BIPHASIC_TEMPS)
