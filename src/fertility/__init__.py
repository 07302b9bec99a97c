"""Fertility analytics engine.

Derives an ovulation date, a fertile window and cycle-regularity diagnostics
from daily basal body temperature, menstrual flow and intercourse records.

Core modules:
    validator      — Field-level checks for every record type
    temp_shift     — Biphasic temperature shift and cover-line detection
    cycle_stats    — Period grouping, cycle lengths and regularity
    ovulation      — Combined temperature/cycle ovulation prediction
    store          — RecordStore interface plus in-memory and JSON file adapters
    cache          — Per-key TTL cache used by the DataManager
    data_manager   — Validated, cached record access and cycle upkeep
    insights       — History summaries, trends and anomaly detection
    config_loader  — Load/validate/hot-reload fertility_config.yaml
"""

from src.fertility.config_loader import FertilityConfig, get_fertility_config
from src.fertility.cycle_stats import CycleStatistics, CycleStatisticsResult
from src.fertility.data_manager import DataManager
from src.fertility.ovulation import OvulationPrediction, OvulationPredictor
from src.fertility.store import (
    InMemoryRecordStore,
    JsonFileRecordStore,
    RecordStore,
    StorageError,
)
from src.fertility.temp_shift import (
    DailyTemperature,
    TemperatureShiftDetector,
    TemperatureShiftResult,
)
from src.fertility.validator import RecordValidationError, RecordValidator

__all__ = [
    "FertilityConfig",
    "get_fertility_config",
    "CycleStatistics",
    "CycleStatisticsResult",
    "DataManager",
    "OvulationPrediction",
    "OvulationPredictor",
    "RecordStore",
    "InMemoryRecordStore",
    "JsonFileRecordStore",
    "StorageError",
    "DailyTemperature",
    "TemperatureShiftDetector",
    "TemperatureShiftResult",
    "RecordValidationError",
    "RecordValidator",
]
