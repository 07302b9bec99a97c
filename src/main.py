"""Fertility engine composition root.

Builds a fully wired engine from settings:

    from src.main import create_engine

    engine = create_engine()
    await engine.start()
    await engine.data_manager.save_temperature_record(
        {"date": "2025-01-06", "time": "06:30", "temperature": 36.7}
    )
    analysis = await engine.analyze()
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from dataclasses import dataclass
from datetime import date

from src.config import Settings, get_settings
from src.fertility.config_loader import (
    CacheConfig,
    FertilityConfig,
    get_fertility_config,
    load_fertility_config,
)
from src.fertility.data_manager import DataManager, RecordStatistics
from src.fertility.insights import HistoryAnalyzer, HistoryReport
from src.fertility.ovulation import OvulationPrediction, OvulationPredictor
from src.fertility.store import RecordStore, create_store

logger = logging.getLogger("fertility")


# ---------- Logging ----------

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Engine ----------

@dataclass
class EngineAnalysis:
    prediction: OvulationPrediction
    history: HistoryReport
    statistics: RecordStatistics


@dataclass
class FertilityEngine:
    """One user's engine: a DataManager plus the analytics that read through it."""

    data_manager: DataManager
    predictor: OvulationPredictor
    analyzer: HistoryAnalyzer
    config: FertilityConfig

    async def start(self) -> None:
        await self.data_manager.initialize()

    async def predict(self, today: date | None = None) -> OvulationPrediction:
        dm = self.data_manager
        return self.predictor.predict(
            temperatures=await dm.get_temperature_series(),
            menstrual_records=await dm.get_menstrual_records(),
            settings=await dm.get_user_settings(),
            today=today,
            intercourse=await dm.get_intercourse_records(),
        )

    async def history_report(
        self, today: date | None = None, window_days: int = 30
    ) -> HistoryReport:
        dm = self.data_manager
        return self.analyzer.analyze(
            await dm.get_all_day_records(),
            await dm.get_cycles(),
            today=today,
            window_days=window_days,
        )

    async def analyze(self, today: date | None = None) -> EngineAnalysis:
        """Prediction, history report and storage statistics in one call."""
        return EngineAnalysis(
            prediction=await self.predict(today),
            history=await self.history_report(today),
            statistics=await self.data_manager.get_statistics(),
        )


# ---------- Factory ----------

def _apply_overrides(config: FertilityConfig, settings: Settings) -> FertilityConfig:
    if settings.cache_ttl_seconds is None and settings.cache_max_entries is None:
        return config
    cache = CacheConfig(
        ttl_seconds=(
            settings.cache_ttl_seconds
            if settings.cache_ttl_seconds is not None
            else config.cache.ttl_seconds
        ),
        max_entries=(
            settings.cache_max_entries
            if settings.cache_max_entries is not None
            else config.cache.max_entries
        ),
    )
    return dataclasses.replace(config, cache=cache)


def create_engine(
    settings: Settings | None = None,
    store: RecordStore | None = None,
    config: FertilityConfig | None = None,
) -> FertilityEngine:
    """Build an engine wired from settings.

    Args:
        settings: Process settings (defaults to environment / .env).
        store:    Storage adapter; built from ``settings.storage_backend`` if omitted.
        config:   Tuning config; loaded from ``settings.tuning_config_path`` or the
                  bundled YAML if omitted.

    Returns:
        A FertilityEngine.  Call ``start()`` before first use.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if config is None:
        config = (
            load_fertility_config(settings.tuning_config_path)
            if settings.tuning_config_path
            else get_fertility_config()
        )
    config = _apply_overrides(config, settings)

    store = store or create_store(settings.storage_backend, settings.storage_path)
    engine = FertilityEngine(
        data_manager=DataManager(store, config),
        predictor=OvulationPredictor(config),
        analyzer=HistoryAnalyzer(config),
        config=config,
    )
    logger.info(
        "Created %s v%s [%s] with %s storage",
        settings.app_name,
        settings.app_version,
        settings.environment,
        settings.storage_backend,
    )
    return engine
