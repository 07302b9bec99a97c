"""Tests for history summaries, trends and anomaly detection."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from src.fertility.config_loader import FertilityConfig
from src.fertility.insights import HistoryAnalyzer
from src.models.records import (
    DayRecord,
    FlowLevel,
    IntercourseKind,
    IntercourseRecord,
    MenstrualCycle,
    MenstrualRecord,
    TemperatureRecord,
)

TODAY = date(2025, 1, 31)


@pytest.fixture
def analyzer(fertility_config: FertilityConfig) -> HistoryAnalyzer:
    return HistoryAnalyzer(fertility_config)


def temp_day(day: date, temperature: float) -> DayRecord:
    iso = day.isoformat()
    return DayRecord(date=iso, temperature=TemperatureRecord(date=iso, temperature=temperature))


def flow_day(day: date, flow: FlowLevel = FlowLevel.medium) -> DayRecord:
    iso = day.isoformat()
    return DayRecord(date=iso, menstrual=MenstrualRecord(date=iso, flow=flow))


def daily_temps(values: list[float], start: date = date(2025, 1, 1)) -> list[DayRecord]:
    return [temp_day(start + timedelta(days=i), v) for i, v in enumerate(values)]


class TestSummaries:
    def test_temperature_summary(self, analyzer: HistoryAnalyzer) -> None:
        days = [
            temp_day(date(2025, 1, 1), 36.2),
            temp_day(date(2025, 1, 2), 36.4),
            temp_day(date(2025, 1, 4), 36.6),
        ]
        summary = analyzer.temperature_summary(days)
        assert summary.count == 3
        assert summary.average == pytest.approx(36.4)
        assert summary.minimum == 36.2
        assert summary.maximum == 36.6
        assert summary.consistency == pytest.approx(75.0)

    def test_empty_temperature_summary(self, analyzer: HistoryAnalyzer) -> None:
        assert analyzer.temperature_summary([]).count == 0

    def test_menstrual_summary(self, analyzer: HistoryAnalyzer) -> None:
        days = [
            flow_day(date(2025, 1, 1), FlowLevel.heavy),
            flow_day(date(2025, 1, 2), FlowLevel.medium),
            flow_day(date(2025, 1, 3), FlowLevel.light),
            flow_day(date(2025, 1, 4), FlowLevel.none),
            flow_day(date(2025, 1, 29), FlowLevel.heavy),
            flow_day(date(2025, 1, 30), FlowLevel.light),
        ]
        summary = analyzer.menstrual_summary(days)
        assert summary.total_days == 5
        assert summary.period_count == 2
        assert summary.average_duration == pytest.approx(2.5)
        assert summary.flow_distribution == {"light": 2, "medium": 1, "heavy": 2}

    def test_intercourse_summary_ignores_markers(self) -> None:
        days = [
            DayRecord(
                date="2025-01-06",
                intercourse=[
                    IntercourseRecord(date="2025-01-06", protection=True),
                    IntercourseRecord(date="2025-01-06"),
                ],
            ),
            DayRecord(date="2025-01-08", intercourse=[IntercourseRecord(date="2025-01-08")]),
            DayRecord(
                date="2025-01-09",
                intercourse=[IntercourseRecord(date="2025-01-09", kind=IntercourseKind.none)],
            ),
        ]
        summary = HistoryAnalyzer.intercourse_summary(days)
        assert summary.total_days == 2
        assert summary.total_times == 3
        assert summary.average_per_day == pytest.approx(1.5)
        assert summary.protection_rate == 33

    def test_completeness_of_latest_cycle(self) -> None:
        cycles = [MenstrualCycle(start_date="2024-12-04"), MenstrualCycle(start_date="2025-01-22")]
        days = daily_temps([36.4] * 5, start=date(2025, 1, 22))
        result = HistoryAnalyzer.completeness(days, cycles, TODAY)
        assert result.total_days == 10
        assert result.recorded_days == 5
        assert result.missing_days == 5
        assert result.completeness == 50

    def test_completeness_without_cycles(self) -> None:
        assert HistoryAnalyzer.completeness([], [], TODAY).total_days == 0


class TestTrends:
    def test_rising_temperature(self, analyzer: HistoryAnalyzer) -> None:
        days = daily_temps([36.2, 36.3, 36.4, 36.5, 36.6, 36.7], start=date(2025, 1, 20))
        trend = analyzer.temperature_trend(days, TODAY)
        assert trend.trend == "rising"
        assert trend.slope == pytest.approx(0.1)
        assert trend.data_points == 6

    def test_stable_temperature(self, analyzer: HistoryAnalyzer) -> None:
        days = daily_temps([36.4] * 6, start=date(2025, 1, 20))
        assert analyzer.temperature_trend(days, TODAY).trend == "stable"

    def test_readings_outside_window_are_ignored(self, analyzer: HistoryAnalyzer) -> None:
        days = daily_temps([36.4] * 6, start=date(2024, 11, 1))
        trend = analyzer.temperature_trend(days, TODAY)
        assert trend.trend == "insufficient_data"
        assert trend.data_points == 0

    def test_recording_rate(self) -> None:
        days = daily_temps([36.4] * 15, start=date(2025, 1, 17))
        trend = HistoryAnalyzer.recording_trend(days, TODAY)
        assert trend.recorded_days == 15
        assert trend.recording_rate == 50

    def test_empty_window_is_rejected(self, analyzer: HistoryAnalyzer) -> None:
        days = daily_temps([36.4] * 5, start=date(2025, 1, 27))
        with pytest.raises(ValueError, match="window_days"):
            HistoryAnalyzer.recording_trend(days, TODAY, window_days=0)
        with pytest.raises(ValueError, match="window_days"):
            analyzer.analyze(days, [], today=TODAY, window_days=0)


class TestAnomalies:
    def test_out_of_range_and_spike(self, analyzer: HistoryAnalyzer) -> None:
        days = daily_temps([36.4, 36.5, 38.6, 36.5, 35.4])
        types = [a.type for a in analyzer.detect_anomalies(days)]
        assert types.count("high_temperature") == 1
        assert types.count("low_temperature") == 1
        assert types.count("temperature_spike") == 3

    def test_long_period_and_short_cycle(self, analyzer: HistoryAnalyzer) -> None:
        days = [flow_day(date(2025, 1, 1) + timedelta(days=i)) for i in range(9)]
        days += [flow_day(date(2025, 1, 19) + timedelta(days=i)) for i in range(4)]
        anomalies = analyzer.detect_anomalies(days)
        by_type = {a.type: a for a in anomalies}
        assert by_type["long_period"].value == 9
        assert by_type["long_period"].category == "cycle"
        assert by_type["short_cycle"].value == 18
        assert by_type["short_cycle"].date == date(2025, 1, 19)

    def test_data_gap(self, analyzer: HistoryAnalyzer) -> None:
        days = [temp_day(date(2025, 1, 1), 36.4), temp_day(date(2025, 1, 8), 36.5)]
        gaps = [a for a in analyzer.detect_anomalies(days) if a.type == "data_gap"]
        assert len(gaps) == 1
        assert gaps[0].value == 6
        assert gaps[0].date == date(2025, 1, 1)
        assert gaps[0].end_date == date(2025, 1, 8)
        assert gaps[0].category == "data_gap"

    def test_short_gap_is_fine(self, analyzer: HistoryAnalyzer) -> None:
        days = [temp_day(date(2025, 1, 1), 36.4), temp_day(date(2025, 1, 4), 36.5)]
        assert analyzer.detect_anomalies(days) == []


class TestReport:
    def test_sparse_history_gets_advice(self, analyzer: HistoryAnalyzer) -> None:
        days = [temp_day(date(2025, 1, 1), 36.4), temp_day(date(2025, 1, 20), 38.7)]
        cycles = [MenstrualCycle(start_date="2025-01-01")]
        report = analyzer.analyze(days, cycles, today=TODAY)

        categories = [r.category for r in report.recommendations]
        assert "temperature" in categories
        assert "habit" in categories
        assert categories[-1] == "lifestyle"
        order = {"high": 3, "medium": 2, "low": 1}
        ranks = [order[r.priority] for r in report.recommendations]
        assert ranks == sorted(ranks, reverse=True)

    def test_complete_history_only_gets_lifestyle_advice(self, analyzer: HistoryAnalyzer) -> None:
        days = daily_temps([36.4] * 31)
        cycles = [MenstrualCycle(start_date="2025-01-01")]
        report = analyzer.analyze(days, cycles, today=TODAY)
        assert report.anomalies == []
        assert report.completeness.completeness == 100
        assert [r.category for r in report.recommendations] == ["lifestyle"]
