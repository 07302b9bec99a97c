"""Load, validate, and hot-reload the fertility engine tuning configuration.

The config lives in ``fertility_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_fertility_config()`` to
re-read from disk after an edit; no restart required.

Usage::

    from src.fertility.config_loader import get_fertility_config

    config = get_fertility_config()
    config.temperature.min_rise_c        # 0.2
    config.prediction.confidence_for("high")  # 0.9
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("fertility.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "fertility_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class TemperatureConfig:
    """Basal body temperature shift detection settings."""

    min_valid_c: float = 35.0
    max_valid_c: float = 42.0
    min_readings: int = 10
    low_phase_days: int = 6
    high_phase_days: int = 3
    smoothing_window: int = 3
    min_rise_c: float = 0.2
    medium_rise_c: float = 0.3
    high_rise_c: float = 0.4
    sustain_days: int = 2
    sustain_tolerance_c: float = 0.1
    cover_line_offset_c: float = 0.1
    anomaly_jump_c: float = 0.5


@dataclass
class CycleConfig:
    """Menstrual period grouping and cycle statistics settings."""

    period_gap_days: int = 2
    min_completed_cycles: int = 2
    min_regularity_cycles: int = 3
    very_regular_max_std: float = 2.0
    regular_max_std: float = 4.0
    somewhat_irregular_max_std: float = 7.0
    regularity_scale_days: float = 7.0
    max_luteal_gap_days: int = 20
    default_cycle_length: int = 28
    default_luteal_phase: int = 14
    min_cycle_days: int = 21
    max_cycle_days: int = 35


@dataclass
class PredictionConfig:
    """Ovulation estimate combination and fertile window settings."""

    combine_max_diff_days: int = 3
    combine_confidence_bonus: float = 0.1
    min_cycle_confidence: float = 0.3
    fertile_days_before: int = 5
    fertile_days_after: int = 1
    optimal_days_before: int = 2
    recent_intercourse_days: int = 7
    temperature_confidence: dict[str, float] = field(
        default_factory=lambda: {"high": 0.9, "medium": 0.7, "low": 0.5}
    )

    def confidence_for(self, label: str | None) -> float:
        """Map a temperature confidence label to a 0.0–1.0 weight.

        Args:
            label: 'high', 'medium' or 'low'.

        Returns:
            Numeric confidence; 0.0 for unknown labels.
        """
        if label is None:
            return 0.0
        return self.temperature_confidence.get(label, 0.0)


@dataclass
class CacheConfig:
    """Record cache settings."""

    ttl_seconds: float = 300.0
    max_entries: int | None = None


@dataclass
class ValidationConfig:
    """Field-level validation limits."""

    note_max_length: int = 200
    temperature_max_decimals: int = 2
    date_window_days: int | None = None
    min_cycle_length: int = 21
    max_cycle_length: int = 35
    min_luteal_phase: int = 10
    max_luteal_phase: int = 16


@dataclass
class InsightsConfig:
    """Thresholds for history anomaly detection."""

    high_temperature_c: float = 38.5
    low_temperature_c: float = 35.5
    temperature_spike_c: float = 0.8
    long_period_days: int = 8
    short_period_days: int = 2
    long_cycle_days: int = 40
    short_cycle_days: int = 20
    data_gap_days: int = 3
    trend_slope_threshold: float = 0.01
    min_trend_readings: int = 5


@dataclass
class FertilityConfig:
    """Complete, validated engine configuration.

    This is the single in-memory representation of fertility_config.yaml.
    The detector, statistics, predictor and data manager all read from it.

    Attributes:
        version:     Config schema version string.
        temperature: Temperature shift detection settings.
        cycle:       Period grouping and cycle statistics settings.
        prediction:  Ovulation estimate combination settings.
        cache:       Record cache settings.
        validation:  Field validation limits.
        insights:    History anomaly thresholds.
    """

    version: str = "1.0"
    temperature: TemperatureConfig = field(default_factory=TemperatureConfig)
    cycle: CycleConfig = field(default_factory=CycleConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    insights: InsightsConfig = field(default_factory=InsightsConfig)
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when fertility_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml  # pyyaml

    if not path.exists():
        raise FileNotFoundError(f"Fertility config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _section(raw: dict, name: str, errors: list[str]) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        errors.append(f"'{name}' must be a mapping")
        return {}
    return value


def _number(
    d: dict,
    key: str,
    default: float,
    section: str,
    errors: list[str],
    *,
    cast: type = float,
    minimum: float | None = None,
) -> float:
    """Read a numeric option, recording an error instead of raising."""
    value = d.get(key, default)
    try:
        number = cast(value)
    except (TypeError, ValueError):
        errors.append(f"{section}.{key} must be a number, got {value!r}")
        return default
    if minimum is not None and number < minimum:
        errors.append(f"{section}.{key} = {number} is below the minimum {minimum}")
    return number


def _validate_and_build(raw: dict) -> FertilityConfig:
    """Validate the raw YAML dict and construct a FertilityConfig.

    Missing options fall back to the dataclass defaults.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated FertilityConfig instance.

    Raises:
        ConfigValidationError: If any option is malformed or out of range.
    """
    errors: list[str] = []
    version = str(raw.get("version", "1.0"))

    # ── Temperature ──
    t_raw = _section(raw, "temperature", errors)
    t_def = TemperatureConfig()
    temperature = TemperatureConfig(
        min_valid_c=_number(t_raw, "min_valid_c", t_def.min_valid_c, "temperature", errors),
        max_valid_c=_number(t_raw, "max_valid_c", t_def.max_valid_c, "temperature", errors),
        min_readings=_number(t_raw, "min_readings", t_def.min_readings, "temperature", errors, cast=int, minimum=1),
        low_phase_days=_number(t_raw, "low_phase_days", t_def.low_phase_days, "temperature", errors, cast=int, minimum=1),
        high_phase_days=_number(t_raw, "high_phase_days", t_def.high_phase_days, "temperature", errors, cast=int, minimum=1),
        smoothing_window=_number(t_raw, "smoothing_window", t_def.smoothing_window, "temperature", errors, cast=int, minimum=1),
        min_rise_c=_number(t_raw, "min_rise_c", t_def.min_rise_c, "temperature", errors, minimum=0.0),
        medium_rise_c=_number(t_raw, "medium_rise_c", t_def.medium_rise_c, "temperature", errors, minimum=0.0),
        high_rise_c=_number(t_raw, "high_rise_c", t_def.high_rise_c, "temperature", errors, minimum=0.0),
        sustain_days=_number(t_raw, "sustain_days", t_def.sustain_days, "temperature", errors, cast=int, minimum=0),
        sustain_tolerance_c=_number(t_raw, "sustain_tolerance_c", t_def.sustain_tolerance_c, "temperature", errors, minimum=0.0),
        cover_line_offset_c=_number(t_raw, "cover_line_offset_c", t_def.cover_line_offset_c, "temperature", errors),
        anomaly_jump_c=_number(t_raw, "anomaly_jump_c", t_def.anomaly_jump_c, "temperature", errors, minimum=0.0),
    )
    if temperature.min_valid_c >= temperature.max_valid_c:
        errors.append("temperature.min_valid_c must be below temperature.max_valid_c")
    if not (temperature.min_rise_c <= temperature.medium_rise_c <= temperature.high_rise_c):
        errors.append("temperature rise thresholds must satisfy min ≤ medium ≤ high")

    # ── Cycle ──
    c_raw = _section(raw, "cycle", errors)
    c_def = CycleConfig()
    reg_raw = c_raw.get("regularity", {}) or {}
    cycle = CycleConfig(
        period_gap_days=_number(c_raw, "period_gap_days", c_def.period_gap_days, "cycle", errors, cast=int, minimum=1),
        min_completed_cycles=_number(c_raw, "min_completed_cycles", c_def.min_completed_cycles, "cycle", errors, cast=int, minimum=1),
        min_regularity_cycles=_number(c_raw, "min_regularity_cycles", c_def.min_regularity_cycles, "cycle", errors, cast=int, minimum=2),
        very_regular_max_std=_number(reg_raw, "very_regular_max_std", c_def.very_regular_max_std, "cycle.regularity", errors, minimum=0.0),
        regular_max_std=_number(reg_raw, "regular_max_std", c_def.regular_max_std, "cycle.regularity", errors, minimum=0.0),
        somewhat_irregular_max_std=_number(reg_raw, "somewhat_irregular_max_std", c_def.somewhat_irregular_max_std, "cycle.regularity", errors, minimum=0.0),
        regularity_scale_days=_number(reg_raw, "scale_days", c_def.regularity_scale_days, "cycle.regularity", errors, minimum=1.0),
        max_luteal_gap_days=_number(c_raw, "max_luteal_gap_days", c_def.max_luteal_gap_days, "cycle", errors, cast=int, minimum=1),
        default_cycle_length=_number(c_raw, "default_cycle_length", c_def.default_cycle_length, "cycle", errors, cast=int, minimum=1),
        default_luteal_phase=_number(c_raw, "default_luteal_phase", c_def.default_luteal_phase, "cycle", errors, cast=int, minimum=1),
        min_cycle_days=_number(c_raw, "min_cycle_days", c_def.min_cycle_days, "cycle", errors, cast=int, minimum=1),
        max_cycle_days=_number(c_raw, "max_cycle_days", c_def.max_cycle_days, "cycle", errors, cast=int, minimum=1),
    )
    if not (cycle.very_regular_max_std <= cycle.regular_max_std <= cycle.somewhat_irregular_max_std):
        errors.append("cycle.regularity bands must be ascending")

    # ── Prediction ──
    p_raw = _section(raw, "prediction", errors)
    p_def = PredictionConfig()
    fw_raw = p_raw.get("fertile_window", {}) or {}
    conf_raw = p_raw.get("temperature_confidence", {}) or {}
    temperature_confidence = dict(p_def.temperature_confidence)
    for label, value in conf_raw.items():
        if label not in temperature_confidence:
            errors.append(f"prediction.temperature_confidence.{label} is not a known label")
            continue
        score = _number(conf_raw, label, temperature_confidence[label], "prediction.temperature_confidence", errors)
        if not (0.0 <= score <= 1.0):
            errors.append(
                f"prediction.temperature_confidence.{label} = {score} is out of range [0.0, 1.0]"
            )
        temperature_confidence[label] = score
    prediction = PredictionConfig(
        combine_max_diff_days=_number(p_raw, "combine_max_diff_days", p_def.combine_max_diff_days, "prediction", errors, cast=int, minimum=0),
        combine_confidence_bonus=_number(p_raw, "combine_confidence_bonus", p_def.combine_confidence_bonus, "prediction", errors, minimum=0.0),
        min_cycle_confidence=_number(p_raw, "min_cycle_confidence", p_def.min_cycle_confidence, "prediction", errors, minimum=0.0),
        fertile_days_before=_number(fw_raw, "days_before", p_def.fertile_days_before, "prediction.fertile_window", errors, cast=int, minimum=0),
        fertile_days_after=_number(fw_raw, "days_after", p_def.fertile_days_after, "prediction.fertile_window", errors, cast=int, minimum=0),
        optimal_days_before=_number(fw_raw, "optimal_days_before", p_def.optimal_days_before, "prediction.fertile_window", errors, cast=int, minimum=0),
        recent_intercourse_days=_number(p_raw, "recent_intercourse_days", p_def.recent_intercourse_days, "prediction", errors, cast=int, minimum=1),
        temperature_confidence=temperature_confidence,
    )
    if prediction.optimal_days_before > prediction.fertile_days_before:
        errors.append("prediction.fertile_window.optimal_days_before must not exceed days_before")

    # ── Cache ──
    k_raw = _section(raw, "cache", errors)
    max_entries_raw = k_raw.get("max_entries")
    cache = CacheConfig(
        ttl_seconds=_number(k_raw, "ttl_seconds", CacheConfig.ttl_seconds, "cache", errors, minimum=0.0),
        max_entries=(
            None
            if max_entries_raw is None
            else _number(k_raw, "max_entries", 0, "cache", errors, cast=int, minimum=1)
        ),
    )

    # ── Validation ──
    v_raw = _section(raw, "validation", errors)
    v_def = ValidationConfig()
    window_raw = v_raw.get("date_window_days")
    cl_raw = v_raw.get("cycle_length", {}) or {}
    lp_raw = v_raw.get("luteal_phase", {}) or {}
    validation = ValidationConfig(
        note_max_length=_number(v_raw, "note_max_length", v_def.note_max_length, "validation", errors, cast=int, minimum=0),
        temperature_max_decimals=_number(v_raw, "temperature_max_decimals", v_def.temperature_max_decimals, "validation", errors, cast=int, minimum=0),
        date_window_days=(
            None
            if window_raw is None
            else _number(v_raw, "date_window_days", 0, "validation", errors, cast=int, minimum=1)
        ),
        min_cycle_length=_number(cl_raw, "min", v_def.min_cycle_length, "validation.cycle_length", errors, cast=int, minimum=1),
        max_cycle_length=_number(cl_raw, "max", v_def.max_cycle_length, "validation.cycle_length", errors, cast=int, minimum=1),
        min_luteal_phase=_number(lp_raw, "min", v_def.min_luteal_phase, "validation.luteal_phase", errors, cast=int, minimum=1),
        max_luteal_phase=_number(lp_raw, "max", v_def.max_luteal_phase, "validation.luteal_phase", errors, cast=int, minimum=1),
    )

    # ── Insights ──
    i_raw = _section(raw, "insights", errors)
    i_def = InsightsConfig()
    insights = InsightsConfig(
        high_temperature_c=_number(i_raw, "high_temperature_c", i_def.high_temperature_c, "insights", errors),
        low_temperature_c=_number(i_raw, "low_temperature_c", i_def.low_temperature_c, "insights", errors),
        temperature_spike_c=_number(i_raw, "temperature_spike_c", i_def.temperature_spike_c, "insights", errors, minimum=0.0),
        long_period_days=_number(i_raw, "long_period_days", i_def.long_period_days, "insights", errors, cast=int, minimum=1),
        short_period_days=_number(i_raw, "short_period_days", i_def.short_period_days, "insights", errors, cast=int, minimum=1),
        long_cycle_days=_number(i_raw, "long_cycle_days", i_def.long_cycle_days, "insights", errors, cast=int, minimum=1),
        short_cycle_days=_number(i_raw, "short_cycle_days", i_def.short_cycle_days, "insights", errors, cast=int, minimum=1),
        data_gap_days=_number(i_raw, "data_gap_days", i_def.data_gap_days, "insights", errors, cast=int, minimum=1),
        trend_slope_threshold=_number(i_raw, "trend_slope_threshold", i_def.trend_slope_threshold, "insights", errors, minimum=0.0),
        min_trend_readings=_number(i_raw, "min_trend_readings", i_def.min_trend_readings, "insights", errors, cast=int, minimum=2),
    )

    if errors:
        raise ConfigValidationError(
            f"fertility_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return FertilityConfig(
        version=version,
        temperature=temperature,
        cycle=cycle,
        prediction=prediction,
        cache=cache,
        validation=validation,
        insights=insights,
        _raw=raw,
    )


def load_fertility_config(path: Path | None = None) -> FertilityConfig:
    """Load and validate the fertility config from disk.

    Args:
        path: Override path to YAML. Uses the bundled fertility_config.yaml by default.

    Returns:
        Validated FertilityConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded fertility config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: FertilityConfig | None = None
_config_lock = threading.Lock()


def get_fertility_config() -> FertilityConfig:
    """Return the global FertilityConfig, loading it on first call.

    Thread-safe.  Use ``reload_fertility_config()`` to refresh after YAML changes.
    Components accept an explicit config too, so tests can stay isolated.

    Returns:
        The current FertilityConfig instance.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_fertility_config()
    return _config


def reload_fertility_config(path: Path | None = None) -> FertilityConfig:
    """Reload the config from disk and replace the global instance.

    If validation fails, the old config is retained and the error is re-raised.

    Args:
        path: Override path to YAML. Defaults to bundled fertility_config.yaml.

    Returns:
        The newly loaded FertilityConfig.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_fertility_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info(
        "Reloaded fertility config: %s → %s",
        old_version,
        new_config.version,
    )
    return new_config
