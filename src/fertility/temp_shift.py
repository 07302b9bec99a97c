"""Basal body temperature shift detection.

Finds the biphasic low → high transition in a series of daily BBT readings,
derives the cover-line and dates ovulation to the day before the rise.

Algorithm:
1. Drop missing and out-of-range readings, keep one reading per day (the
   last one given) and sort by date.
2. Smooth the series with a 3-day centred moving average (edge days average
   whichever neighbours exist).
3. For every candidate index ``i`` with 6 days before it and 3 days from it,
   compare the mean of the 6 smoothed days before ``i`` with the mean of the
   3 smoothed days starting at ``i``.  A rise of ≥ 0.2°C makes ``i`` a valid
   candidate; the last valid candidate wins so the most recent cycle is
   reported.
4. Smoothing drags a step out by about a day, so the shift date walks back
   from the candidate across raw readings that already sit at the elevated
   level.
5. Confidence: rise ≥ 0.4°C with both following days held within 0.1°C of
   the shift-day reading → high; rise ≥ 0.3°C with one held day → medium;
   anything else → low.
6. Cover-line: highest of the (up to) six raw readings before the shift,
   plus 0.1°C, rounded to one decimal.

All thresholds live in the ``temperature`` section of fertility_config.yaml.
"""

from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from src.fertility.config_loader import FertilityConfig, get_fertility_config
from src.models.records import TemperatureRecord

logger = logging.getLogger("fertility.engine.temp_shift")


@dataclass
class DailyTemperature:
    """Basal body temperature for a single day.

    Attributes:
        date:        Calendar date.
        temperature: Reading in °C; None when the day was skipped.
    """

    date: date
    temperature: float | None

    @classmethod
    def from_record(cls, record: TemperatureRecord) -> DailyTemperature:
        return cls(date=date.fromisoformat(record.date), temperature=record.temperature)


@dataclass
class TemperatureShiftResult:
    """Result of a temperature shift scan.

    ``is_valid=False`` means the series was too short to judge; ``reason``
    says why.  ``is_valid=True, detected=False`` is the normal "no shift yet"
    outcome.

    Attributes:
        is_valid:         Whether enough readings were available.
        detected:         Whether a low → high shift was found.
        shift_date:       First day of the elevated phase.
        cover_line:       Threshold separating the two phases (°C).  None when
                          no reading precedes the shift.
        confidence:       'high', 'medium' or 'low'.
        ovulation_date:   Day before the shift.
        pre_shift_mean:   Mean of the low-phase readings before the shift.
        post_shift_mean:  Mean of the first three elevated readings.
        temperature_rise: post_shift_mean − pre_shift_mean.
        sustained_days:   Days after the shift that held the elevated level.
        moving_average:   Smoothed series used for the scan.
        reason:           Why the result is invalid, if it is.
        notes:            Human-readable explanation.
    """

    is_valid: bool
    detected: bool = False
    shift_date: date | None = None
    cover_line: float | None = None
    confidence: str | None = None
    ovulation_date: date | None = None
    pre_shift_mean: float | None = None
    post_shift_mean: float | None = None
    temperature_rise: float | None = None
    sustained_days: int = 0
    moving_average: list[float] = field(default_factory=list)
    reason: str | None = None
    notes: str = ""


@dataclass
class TemperatureAnomaly:
    """A reading that stands out from the rest of the series.

    Attributes:
        date:        Day of the reading.
        temperature: The reading in °C.
        kind:        'outlier' (beyond mean ± 2σ) or 'jump' (large day-to-day change).
        detail:      Human-readable explanation.
    """

    date: date
    temperature: float
    kind: str
    detail: str


def _is_usable(value: float | None, low: float, high: float) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and low <= value <= high


def moving_average(values: list[float], window: int = 3) -> list[float]:
    """Centred moving average; edge points average the neighbours that exist."""
    half = window // 2
    smoothed: list[float] = []
    for i in range(len(values)):
        chunk = values[max(0, i - half): min(len(values), i + half + 1)]
        smoothed.append(statistics.mean(chunk))
    return smoothed


class TemperatureShiftDetector:
    """Detect the post-ovulatory temperature shift in daily BBT readings.

    Usage::

        detector = TemperatureShiftDetector()
        readings = [DailyTemperature(date=d, temperature=t) for d, t in data]
        result = detector.detect(readings)
        if result.detected:
            print(f"Shift on {result.shift_date}, cover-line {result.cover_line}")
    """

    def __init__(self, config: FertilityConfig | None = None) -> None:
        self._config = config or get_fertility_config()

    @property
    def _t_config(self):
        return self._config.temperature

    def clean(self, readings: Iterable[DailyTemperature]) -> list[DailyTemperature]:
        """Drop unusable readings, keep the last reading per day, sort by date."""
        cfg = self._t_config
        by_day: dict[date, float] = {}
        for reading in readings:
            if _is_usable(reading.temperature, cfg.min_valid_c, cfg.max_valid_c):
                by_day[reading.date] = float(reading.temperature)
        return [DailyTemperature(date=d, temperature=t) for d, t in sorted(by_day.items())]

    def detect(self, readings: Iterable[DailyTemperature]) -> TemperatureShiftResult:
        """Scan a series of daily readings for the most recent temperature shift.

        Args:
            readings: Daily readings in any order.  Missing and out-of-range
                      values are ignored.

        Returns:
            TemperatureShiftResult; never raises for short or flat series.
        """
        cfg = self._t_config
        low_days = cfg.low_phase_days
        high_days = cfg.high_phase_days
        exact_minimum = low_days + high_days

        series = self.clean(readings)
        n = len(series)
        if n < exact_minimum or (n < cfg.min_readings and n != exact_minimum):
            return TemperatureShiftResult(
                is_valid=False,
                reason=(
                    f"insufficient data: {n} valid temperature readings "
                    f"(need {cfg.min_readings})"
                ),
            )

        temps = [r.temperature for r in series]
        smoothed = moving_average(temps, cfg.smoothing_window)

        candidate: int | None = None
        candidate_pre = 0.0
        for i in range(low_days, n - high_days + 1):
            pre = statistics.mean(smoothed[i - low_days:i])
            post = statistics.mean(smoothed[i:i + high_days])
            if round(post - pre, 2) >= cfg.min_rise_c:
                candidate, candidate_pre = i, pre

        rounded_average = [round(v, 2) for v in smoothed]

        if candidate is None:
            if n < cfg.min_readings:
                return TemperatureShiftResult(
                    is_valid=False,
                    moving_average=rounded_average,
                    reason=(
                        f"insufficient data: {n} readings do not show "
                        f"{low_days} low and {high_days} high days"
                    ),
                )
            logger.debug("No temperature shift in %d readings", n)
            return TemperatureShiftResult(
                is_valid=True,
                detected=False,
                moving_average=rounded_average,
                notes=f"No sustained rise of {cfg.min_rise_c}°C found in {n} readings",
            )

        # Walk back to the first raw reading of the elevated run
        elevated = round(candidate_pre + cfg.min_rise_c, 2)
        shift_idx = candidate
        while shift_idx > candidate - low_days and round(temps[shift_idx - 1], 2) >= elevated:
            shift_idx -= 1

        low_phase = temps[max(0, shift_idx - low_days):shift_idx]
        high_phase = temps[shift_idx:shift_idx + high_days]
        pre_mean = statistics.mean(low_phase) if low_phase else candidate_pre
        post_mean = statistics.mean(high_phase)
        rise = round(post_mean - pre_mean, 2)

        shift_value = temps[shift_idx]
        floor = round(shift_value - cfg.sustain_tolerance_c, 2)
        following = temps[shift_idx + 1:shift_idx + 1 + cfg.sustain_days]
        sustained = sum(1 for t in following if round(t, 2) >= floor)

        if rise >= cfg.high_rise_c and sustained >= cfg.sustain_days:
            confidence = "high"
        elif rise >= cfg.medium_rise_c and sustained >= 1:
            confidence = "medium"
        else:
            confidence = "low"

        cover_line = (
            round(max(low_phase) + cfg.cover_line_offset_c, 1) if low_phase else None
        )

        shift_date = series[shift_idx].date
        ovulation_date = shift_date - timedelta(days=1)

        logger.info(
            "Temperature shift on %s (+%.2f°C, %s confidence, cover-line %s)",
            shift_date, rise, confidence, cover_line,
        )

        notes = (
            f"Temperature rose {rise:.2f}°C on {shift_date.isoformat()} "
            f"and held for {sustained} of {cfg.sustain_days} following days"
        )
        if cover_line is None:
            notes += "; cover-line unavailable without earlier readings"

        return TemperatureShiftResult(
            is_valid=True,
            detected=True,
            shift_date=shift_date,
            cover_line=cover_line,
            confidence=confidence,
            ovulation_date=ovulation_date,
            pre_shift_mean=round(pre_mean, 2),
            post_shift_mean=round(post_mean, 2),
            temperature_rise=rise,
            sustained_days=sustained,
            moving_average=rounded_average,
            notes=notes,
        )

    def detect_anomalies(self, readings: Iterable[DailyTemperature]) -> list[TemperatureAnomaly]:
        """Flag readings beyond mean ± 2σ and large day-to-day jumps.

        Args:
            readings: Daily readings in any order.

        Returns:
            Anomalies in date order (a reading may appear under both kinds).
        """
        cfg = self._t_config
        series = self.clean(readings)
        if len(series) < 3:
            return []

        temps = [r.temperature for r in series]
        mean = statistics.mean(temps)
        sd = statistics.stdev(temps)
        anomalies: list[TemperatureAnomaly] = []

        for idx, reading in enumerate(series):
            if sd > 0 and abs(reading.temperature - mean) > 2 * sd:
                anomalies.append(
                    TemperatureAnomaly(
                        date=reading.date,
                        temperature=reading.temperature,
                        kind="outlier",
                        detail=(
                            f"{reading.temperature:.2f}°C is more than two standard "
                            f"deviations from the mean {mean:.2f}°C"
                        ),
                    )
                )
            if idx > 0:
                jump = reading.temperature - series[idx - 1].temperature
                if round(abs(jump), 2) > cfg.anomaly_jump_c:
                    anomalies.append(
                        TemperatureAnomaly(
                            date=reading.date,
                            temperature=reading.temperature,
                            kind="jump",
                            detail=f"Changed {jump:+.2f}°C from the previous reading",
                        )
                    )
        return anomalies

    @staticmethod
    def follicular_luteal_averages(
        readings: Iterable[DailyTemperature],
        ovulation_date: date,
    ) -> tuple[float | None, float | None]:
        """Compute average temperatures before and after ovulation.

        The ovulation day itself counts toward the luteal phase.

        Args:
            readings:       Daily readings for one cycle.
            ovulation_date: Detected or estimated ovulation date.

        Returns:
            Tuple of (follicular_avg, luteal_avg) in °C; a phase with fewer
            than three readings yields None.
        """
        usable = [r for r in readings if r.temperature is not None]
        follicular = [r.temperature for r in usable if r.date < ovulation_date]
        luteal = [r.temperature for r in usable if r.date >= ovulation_date]
        return _phase_average(follicular), _phase_average(luteal)


def _phase_average(values: list[float]) -> float | None:
    return round(statistics.mean(values), 2) if len(values) >= 3 else None
