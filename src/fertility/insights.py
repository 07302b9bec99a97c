"""History analysis: summaries, trends, anomalies and recording advice.

Works on plain lists of DayRecord / MenstrualCycle so it can run over any
slice of history the DataManager returns.  All thresholds come from the
``insights`` section of fertility_config.yaml.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from src.fertility.config_loader import FertilityConfig, get_fertility_config
from src.fertility.cycle_stats import CycleStatistics
from src.models.records import DayRecord, MenstrualCycle

logger = logging.getLogger("fertility.engine.insights")

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def _check_window(window_days: int) -> None:
    if window_days < 1:
        raise ValueError(f"window_days must be at least 1, got {window_days}")


@dataclass
class TemperatureSummary:
    count: int = 0
    average: float = 0.0
    minimum: float | None = None
    maximum: float | None = None
    consistency: float = 0.0  # % of days between first and last reading that have one


@dataclass
class MenstrualSummary:
    total_days: int = 0
    period_count: int = 0
    average_duration: float = 0.0
    flow_distribution: dict[str, int] = field(
        default_factory=lambda: {"light": 0, "medium": 0, "heavy": 0}
    )


@dataclass
class IntercourseSummary:
    total_days: int = 0
    total_times: int = 0
    average_per_day: float = 0.0
    protection_rate: float = 0.0


@dataclass
class Completeness:
    """Recording coverage of the latest cycle.

    Attributes:
        completeness:  Recorded days as a percentage of cycle days.
        recorded_days: Days with any record.
        total_days:    Days from the latest cycle start to today.
        missing_days:  total_days − recorded_days.
    """

    completeness: float = 0.0
    recorded_days: int = 0
    total_days: int = 0
    missing_days: int = 0


@dataclass
class TemperatureTrend:
    trend: str = "insufficient_data"  # rising | falling | stable | insufficient_data
    slope: float | None = None
    data_points: int = 0


@dataclass
class RecordingTrend:
    recording_rate: float = 0.0
    recorded_days: int = 0
    total_days: int = 0


@dataclass
class HistoryAnomaly:
    """Something unusual in the history.

    Attributes:
        type:        high_temperature, low_temperature, temperature_spike,
                     long_period, short_period, long_cycle, short_cycle, data_gap.
        date:        Day the anomaly starts.
        value:       Temperature, change, or length in days.
        description: Human-readable explanation.
        end_date:    For data gaps, the next recorded day.
    """

    type: str
    date: date
    value: float
    description: str
    end_date: date | None = None

    @property
    def category(self) -> str:
        if self.type == "data_gap":
            return "data_gap"
        if "temperature" in self.type:
            return "temperature"
        return "cycle"


@dataclass
class Insight:
    category: str
    priority: str
    title: str
    content: str


@dataclass
class HistoryReport:
    temperature: TemperatureSummary
    menstrual: MenstrualSummary
    intercourse: IntercourseSummary
    completeness: Completeness
    temperature_trend: TemperatureTrend
    recording: RecordingTrend
    anomalies: list[HistoryAnomaly] = field(default_factory=list)
    recommendations: list[Insight] = field(default_factory=list)


def _temperatures(days: Iterable[DayRecord]) -> list[tuple[date, float]]:
    return sorted(
        (date.fromisoformat(d.date), d.temperature.temperature)
        for d in days
        if d.temperature is not None
    )


class HistoryAnalyzer:
    """Summarise a recorded history and flag anything unusual.

    Usage::

        analyzer = HistoryAnalyzer()
        report = analyzer.analyze(day_records, cycles, today=date(2025, 3, 1))
        for anomaly in report.anomalies:
            print(anomaly.description)
    """

    def __init__(self, config: FertilityConfig | None = None) -> None:
        self._config = config or get_fertility_config()
        self._cycle_statistics = CycleStatistics(self._config)

    @property
    def _i_config(self):
        return self._config.insights

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def temperature_summary(self, days: list[DayRecord]) -> TemperatureSummary:
        readings = _temperatures(days)
        if not readings:
            return TemperatureSummary()
        values = [t for _, t in readings]
        span = (readings[-1][0] - readings[0][0]).days + 1
        consistency = len(readings) / span * 100 if len(readings) > 1 else 0.0
        return TemperatureSummary(
            count=len(values),
            average=round(statistics.mean(values), 2),
            minimum=min(values),
            maximum=max(values),
            consistency=round(consistency, 2),
        )

    def menstrual_summary(self, days: list[DayRecord]) -> MenstrualSummary:
        records = [d.menstrual for d in days if d.menstrual is not None and d.menstrual.has_flow]
        if not records:
            return MenstrualSummary()
        summary = MenstrualSummary(total_days=len(records))
        for record in records:
            summary.flow_distribution[record.flow.value] += 1
        periods = self._cycle_statistics.group_periods(records)
        summary.period_count = len(periods)
        summary.average_duration = round(statistics.mean(p.duration for p in periods), 1)
        return summary

    @staticmethod
    def intercourse_summary(days: list[DayRecord]) -> IntercourseSummary:
        per_day = [d.recorded_intercourse for d in days if d.recorded_intercourse]
        if not per_day:
            return IntercourseSummary()
        total = sum(len(entries) for entries in per_day)
        protected = sum(1 for entries in per_day for e in entries if e.protection)
        return IntercourseSummary(
            total_days=len(per_day),
            total_times=total,
            average_per_day=round(total / len(per_day), 2),
            protection_rate=round(protected / total * 100),
        )

    @staticmethod
    def completeness(
        days: list[DayRecord],
        cycles: list[MenstrualCycle],
        today: date,
    ) -> Completeness:
        """Share of days in the latest cycle with at least one record."""
        if not cycles:
            return Completeness()
        latest = max(cycles, key=lambda c: c.start_date)
        start = date.fromisoformat(latest.start_date)
        end = today
        if end < start:
            return Completeness()
        total = (end - start).days + 1
        recorded = sum(
            1 for d in days
            if not d.is_empty and start <= date.fromisoformat(d.date) <= end
        )
        return Completeness(
            completeness=round(recorded / total * 100),
            recorded_days=recorded,
            total_days=total,
            missing_days=total - recorded,
        )

    # ------------------------------------------------------------------
    # Trends
    # ------------------------------------------------------------------

    def temperature_trend(
        self, days: list[DayRecord], today: date, window_days: int = 30
    ) -> TemperatureTrend:
        """Least-squares slope of the readings in the last ``window_days``."""
        _check_window(window_days)
        cfg = self._i_config
        first = today - timedelta(days=window_days - 1)
        values = [t for d, t in _temperatures(days) if first <= d <= today]
        if len(values) < cfg.min_trend_readings:
            return TemperatureTrend(data_points=len(values))

        slope = statistics.linear_regression(list(range(len(values))), values).slope
        if slope > cfg.trend_slope_threshold:
            trend = "rising"
        elif slope < -cfg.trend_slope_threshold:
            trend = "falling"
        else:
            trend = "stable"
        return TemperatureTrend(trend=trend, slope=round(slope, 3), data_points=len(values))

    @staticmethod
    def recording_trend(
        days: list[DayRecord], today: date, window_days: int = 30
    ) -> RecordingTrend:
        """Share of days with any record in the last ``window_days``.

        Raises:
            ValueError: If ``window_days`` is less than 1.
        """
        _check_window(window_days)
        first = today - timedelta(days=window_days - 1)
        recorded = sum(
            1 for d in days
            if not d.is_empty and first <= date.fromisoformat(d.date) <= today
        )
        return RecordingTrend(
            recording_rate=round(recorded / window_days * 100),
            recorded_days=recorded,
            total_days=window_days,
        )

    # ------------------------------------------------------------------
    # Anomalies
    # ------------------------------------------------------------------

    def detect_anomalies(self, days: list[DayRecord]) -> list[HistoryAnomaly]:
        """Flag out-of-range temperatures, spikes, odd periods/cycles and gaps."""
        cfg = self._i_config
        anomalies: list[HistoryAnomaly] = []

        readings = _temperatures(days)
        for day, temp in readings:
            if temp > cfg.high_temperature_c:
                anomalies.append(HistoryAnomaly(
                    "high_temperature", day, temp, f"Unusually high temperature: {temp}°C",
                ))
            elif temp < cfg.low_temperature_c:
                anomalies.append(HistoryAnomaly(
                    "low_temperature", day, temp, f"Unusually low temperature: {temp}°C",
                ))
        for (_, prev), (day, temp) in zip(readings, readings[1:]):
            change = round(abs(temp - prev), 2)
            if change > cfg.temperature_spike_c:
                anomalies.append(HistoryAnomaly(
                    "temperature_spike", day, change,
                    f"Temperature changed {change:.1f}°C from the previous reading",
                ))

        menstrual = [d.menstrual for d in days if d.menstrual is not None]
        periods = self._cycle_statistics.group_periods(menstrual)
        for period in periods:
            if period.duration > cfg.long_period_days:
                anomalies.append(HistoryAnomaly(
                    "long_period", period.start_date, period.duration,
                    f"Period lasted {period.duration} days",
                ))
            elif period.duration < cfg.short_period_days:
                anomalies.append(HistoryAnomaly(
                    "short_period", period.start_date, period.duration,
                    f"Period lasted only {period.duration} day(s)",
                ))
        for earlier, later in zip(periods, periods[1:]):
            length = (later.start_date - earlier.start_date).days
            if length > cfg.long_cycle_days:
                anomalies.append(HistoryAnomaly(
                    "long_cycle", later.start_date, length, f"Cycle lasted {length} days",
                ))
            elif length < cfg.short_cycle_days:
                anomalies.append(HistoryAnomaly(
                    "short_cycle", later.start_date, length, f"Cycle lasted only {length} days",
                ))

        recorded = sorted(date.fromisoformat(d.date) for d in days if not d.is_empty)
        for earlier, later in zip(recorded, recorded[1:]):
            gap = (later - earlier).days
            if gap > cfg.data_gap_days:
                anomalies.append(HistoryAnomaly(
                    "data_gap", earlier, gap - 1, f"{gap - 1} days without records",
                    end_date=later,
                ))

        if anomalies:
            logger.debug("Detected %d history anomalies", len(anomalies))
        return anomalies

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    @staticmethod
    def recommendations(report: HistoryReport) -> list[Insight]:
        recs: list[Insight] = []
        categories = {a.category for a in report.anomalies}

        if report.completeness.total_days and report.completeness.completeness < 70:
            recs.append(Insight(
                "data_quality", "high", "Record more consistently",
                "Daily temperature and period records make the analysis more accurate",
            ))
        if report.temperature.count > 1 and report.temperature.consistency < 60:
            recs.append(Insight(
                "measurement", "medium", "Measure at a regular time",
                "Take your temperature at the same time and in the same state every morning",
            ))
        if report.recording.recording_rate < 50:
            recs.append(Insight(
                "habit", "high", "Build a recording habit",
                "Fewer than half of recent days have records; a daily reminder can help",
            ))
        if "temperature" in categories:
            recs.append(Insight(
                "temperature", "high", "Unusual temperatures",
                "Check how the temperature is measured, or consult a doctor",
            ))
        if "cycle" in categories:
            recs.append(Insight(
                "cycle", "high", "Unusual cycles",
                "Keep observing and consider consulting a gynaecologist",
            ))
        if "data_gap" in categories:
            recs.append(Insight(
                "data_quality", "medium", "Gaps in the record",
                "Several days went unrecorded; daily records improve predictions",
            ))
        recs.append(Insight(
            "lifestyle", "low", "Keep a healthy routine",
            "Regular sleep, balanced meals and exercise help keep cycles regular",
        ))
        return sorted(recs, key=lambda r: _PRIORITY_ORDER[r.priority], reverse=True)

    def analyze(
        self,
        days: list[DayRecord],
        cycles: list[MenstrualCycle],
        today: date | None = None,
        window_days: int = 30,
    ) -> HistoryReport:
        """Build a full history report.

        Args:
            days:        Day records to analyse.
            cycles:      Stored cycles (the latest drives completeness).
            today:       Reference day for trends (defaults to today).
            window_days: Length of the trend window.

        Returns:
            HistoryReport with recommendations sorted by priority.

        Raises:
            ValueError: If ``window_days`` is less than 1.
        """
        today = today or date.today()
        report = HistoryReport(
            temperature=self.temperature_summary(days),
            menstrual=self.menstrual_summary(days),
            intercourse=self.intercourse_summary(days),
            completeness=self.completeness(days, cycles, today),
            temperature_trend=self.temperature_trend(days, today, window_days),
            recording=self.recording_trend(days, today, window_days),
            anomalies=self.detect_anomalies(days),
        )
        report.recommendations = self.recommendations(report)
        return report
