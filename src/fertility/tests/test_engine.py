"""End-to-end tests for the wired engine and process settings."""

from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path

import pytest

from src.config import Settings
from src.fertility.config_loader import FertilityConfig
from src.fertility.store import InMemoryRecordStore, JsonFileRecordStore
from src.fertility.tests.conftest import BIPHASIC_START, BIPHASIC_TEMPS
from src.main import FertilityEngine, _apply_overrides, create_engine


async def _record_biphasic_cycle(engine: FertilityEngine) -> None:
    dm = engine.data_manager
    for i, value in enumerate(BIPHASIC_TEMPS):
        day = (BIPHASIC_START + timedelta(days=i)).isoformat()
        await dm.save_temperature_record({"date": day, "time": "06:30", "temperature": value})


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.storage_backend == "memory"
        assert settings.cache_ttl_seconds is None

    def test_environment_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FERTILITY_STORAGE_BACKEND", "json")
        monkeypatch.setenv("FERTILITY_CACHE_TTL_SECONDS", "60")
        settings = Settings(_env_file=None)
        assert settings.storage_backend == "json"
        assert settings.cache_ttl_seconds == 60.0


class TestOverrides:
    def test_no_overrides_keeps_config(self, fertility_config: FertilityConfig) -> None:
        assert _apply_overrides(fertility_config, Settings(_env_file=None)) is fertility_config

    def test_cache_overrides(self, fertility_config: FertilityConfig) -> None:
        settings = Settings(_env_file=None, cache_ttl_seconds=5, cache_max_entries=50)
        config = _apply_overrides(fertility_config, settings)
        assert config.cache.ttl_seconds == 5
        assert config.cache.max_entries == 50
        assert fertility_config.cache.ttl_seconds == 300.0


class TestCreateEngine:
    def test_memory_backend(self, fertility_config: FertilityConfig) -> None:
        engine = create_engine(Settings(_env_file=None), config=fertility_config)
        assert engine.config is fertility_config
        assert engine.data_manager.cache.ttl_seconds == 300.0

    def test_json_backend(self, tmp_path: Path, fertility_config: FertilityConfig) -> None:
        settings = Settings(
            _env_file=None, storage_backend="json", storage_path=tmp_path / "records.json"
        )
        engine = create_engine(settings, config=fertility_config)
        assert isinstance(engine.data_manager._store, JsonFileRecordStore)

    @pytest.mark.asyncio
    async def test_full_analysis(self, fertility_config: FertilityConfig) -> None:
        store = InMemoryRecordStore()
        engine = create_engine(Settings(_env_file=None), store=store, config=fertility_config)
        await engine.start()
        await _record_biphasic_cycle(engine)
        await engine.data_manager.save_menstrual_record(
            {"date": "2024-12-22", "flow": "heavy", "isStart": True}
        )

        analysis = await engine.analyze(today=date(2025, 1, 10))
        assert analysis.prediction.is_valid
        assert analysis.prediction.temperature_shift.shift_date == date(2025, 1, 6)
        assert analysis.prediction.ovulation_date == date(2025, 1, 5)
        assert analysis.statistics.temperature_records == len(BIPHASIC_TEMPS)
        assert analysis.statistics.total_records == len(BIPHASIC_TEMPS) + 1
        assert analysis.history.temperature.count == len(BIPHASIC_TEMPS)
        assert analysis.history.completeness.total_days == 20

    @pytest.mark.asyncio
    async def test_analysis_persists_through_json_store(
        self, tmp_path: Path, fertility_config: FertilityConfig
    ) -> None:
        settings = Settings(
            _env_file=None, storage_backend="json", storage_path=tmp_path / "records.json"
        )
        writer = create_engine(settings, config=fertility_config)
        await writer.start()
        await _record_biphasic_cycle(writer)

        reader = create_engine(settings, config=fertility_config)
        prediction = await reader.predict(today=date(2025, 1, 10))
        assert prediction.method == "temperature"
        assert prediction.ovulation_date == date(2025, 1, 5)

    @pytest.mark.asyncio
    async def test_empty_engine_is_not_predictable(self, fertility_config: FertilityConfig) -> None:
        engine = create_engine(Settings(_env_file=None), store=InMemoryRecordStore(), config=fertility_config)
        await engine.start()
        prediction = await engine.predict(today=date(2025, 1, 10))
        assert not prediction.is_valid
        assert prediction.reason.startswith("ovulation not predictable")
