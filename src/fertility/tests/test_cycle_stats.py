"""Tests for period grouping, cycle lengths and regularity."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from src.fertility.config_loader import FertilityConfig
from src.fertility.cycle_stats import CycleStatistics, Period
from src.fertility.tests.conftest import make_history
from src.models.records import FlowLevel, MenstrualCycle, MenstrualRecord, UserSettings

# Four periods exactly 28 days apart
REGULAR_STARTS = [date(2025, 1, 1), date(2025, 1, 29), date(2025, 2, 26), date(2025, 3, 26)]


@pytest.fixture
def stats(fertility_config: FertilityConfig) -> CycleStatistics:
    return CycleStatistics(fertility_config)


def _flow(day: str, flow: FlowLevel = FlowLevel.medium) -> MenstrualRecord:
    return MenstrualRecord(date=day, flow=flow)


class TestGroupPeriods:
    def test_gap_of_two_days_stays_in_one_period(self, stats: CycleStatistics) -> None:
        records = [
            _flow("2025-01-01", FlowLevel.heavy),
            _flow("2025-01-02"),
            _flow("2025-01-03"),
            _flow("2025-01-05", FlowLevel.light),
            _flow("2025-01-09", FlowLevel.light),
        ]
        periods = stats.group_periods(records)
        assert len(periods) == 2
        assert periods[0].start_date == date(2025, 1, 1)
        assert periods[0].end_date == date(2025, 1, 5)
        assert periods[0].duration == 5
        assert periods[0].flows == ["heavy", "medium", "medium", "light"]
        assert periods[1].start_date == date(2025, 1, 9)
        assert periods[1].duration == 1

    def test_no_flow_days_are_ignored(self, stats: CycleStatistics) -> None:
        records = [_flow("2025-01-01"), _flow("2025-01-02", FlowLevel.none)]
        periods = stats.group_periods(records)
        assert len(periods) == 1
        assert periods[0].duration == 1

    def test_order_is_irrelevant(self, stats: CycleStatistics) -> None:
        records = make_history(REGULAR_STARTS)
        assert stats.group_periods(reversed(records)) == stats.group_periods(records)

    def test_empty(self, stats: CycleStatistics) -> None:
        assert stats.group_periods([]) == []


class TestRegularity:
    def test_seven_cycle_example(self, stats: CycleStatistics) -> None:
        """σ ≈ 1.35 scores 0.81 and sits inside the regular band."""
        label, score = stats.regularity([28, 29, 27, 30, 28, 26, 29])
        assert label == "very_regular"
        assert score == pytest.approx(0.81)

    def test_seven_cycle_example_counts_as_regular(self, stats: CycleStatistics) -> None:
        starts = [date(2025, 1, 1)]
        for length in [28, 29, 27, 30, 28, 26, 29]:
            starts.append(starts[-1] + timedelta(days=length))
        result = stats.from_cycles([MenstrualCycle(start_date=d.isoformat()) for d in starts])
        assert result.cycle_lengths == [28, 29, 27, 30, 28, 26, 29]
        assert result.regularity == "very_regular"
        assert result.is_regular

    def test_somewhat_irregular(self, stats: CycleStatistics) -> None:
        label, score = stats.regularity([28, 34, 24, 31])
        assert label == "somewhat_irregular"
        assert score == pytest.approx(0.39)

    def test_irregular_scores_zero(self, stats: CycleStatistics) -> None:
        label, score = stats.regularity([20, 35, 22, 40])
        assert label == "irregular"
        assert score == 0.0

    def test_identical_lengths_score_one(self, stats: CycleStatistics) -> None:
        assert stats.regularity([28, 28, 28]) == ("very_regular", 1.0)

    def test_needs_three_lengths(self, stats: CycleStatistics) -> None:
        assert stats.regularity([28, 30]) == (None, None)


class TestLengthTrend:
    @pytest.mark.parametrize(
        ("lengths", "expected"),
        [
            ([26, 28, 30], "increasing"),
            ([30, 28, 26], "decreasing"),
            ([28, 29, 28], "stable"),
            ([20, 30, 22], "irregular"),
            ([28, 30], "stable"),
        ],
    )
    def test_trend(self, lengths: list[int], expected: str) -> None:
        assert CycleStatistics.length_trend(lengths) == expected


class TestLutealPhase:
    def _periods(self) -> list[Period]:
        return [
            Period(start_date=s, end_date=s + timedelta(days=4), duration=5)
            for s in REGULAR_STARTS
        ]

    def test_measured_from_shift(self, stats: CycleStatistics) -> None:
        length, source = stats.luteal_phase(self._periods(), date(2025, 3, 10))
        assert (length, source) == (16, "temperature")

    def test_implausible_gap_falls_back_to_settings(self, stats: CycleStatistics) -> None:
        settings = UserSettings(average_luteal_phase=12)
        length, source = stats.luteal_phase(self._periods(), date(2025, 3, 1), settings)
        assert (length, source) == (12, "settings")

    def test_no_later_period_falls_back(self, stats: CycleStatistics) -> None:
        length, source = stats.luteal_phase(self._periods(), date(2025, 4, 10))
        assert (length, source) == (14, "settings")

    def test_no_shift_uses_default(self, stats: CycleStatistics) -> None:
        assert stats.luteal_phase(self._periods(), None) == (14, "settings")


class TestAnalyze:
    def test_regular_history(self, stats: CycleStatistics) -> None:
        result = stats.analyze(make_history(REGULAR_STARTS))
        assert result.is_valid
        assert result.cycle_lengths == [28, 28, 28]
        assert result.completed_cycles == 3
        assert result.last_period_start == date(2025, 3, 26)
        assert result.average_cycle_length == 28.0
        assert result.std_deviation == 0.0
        assert result.regularity == "very_regular"
        assert result.is_regular
        assert result.regularity_score == 1.0
        assert result.average_period_length == 5.0
        assert result.luteal_phase_length == 14
        assert result.luteal_phase_source == "settings"
        assert result.follicular_phase_length == 14.0
        assert result.length_trend == "stable"
        assert result.health_status == "normal"
        assert result.recommendations

    def test_luteal_from_temperature_shift(self, stats: CycleStatistics) -> None:
        result = stats.analyze(make_history(REGULAR_STARTS), shift_date=date(2025, 3, 12))
        assert result.luteal_phase_length == 14
        assert result.luteal_phase_source == "temperature"

    def test_two_periods_are_insufficient(self, stats: CycleStatistics) -> None:
        result = stats.analyze(make_history(REGULAR_STARTS[:2]))
        assert not result.is_valid
        assert result.reason.startswith("insufficient data")
        assert result.completed_cycles == 1
        assert result.last_period_start == date(2025, 1, 29)

    def test_three_periods_are_enough_without_regularity(self, stats: CycleStatistics) -> None:
        result = stats.analyze(make_history(REGULAR_STARTS[:3]))
        assert result.is_valid
        assert result.average_cycle_length == 28.0
        assert result.regularity is None
        assert result.regularity_score is None
        assert not result.is_regular

    def test_no_records(self, stats: CycleStatistics) -> None:
        result = stats.analyze([])
        assert not result.is_valid
        assert result.last_period_start is None

    def test_short_cycles_need_attention(self, stats: CycleStatistics) -> None:
        starts = [date(2025, 1, 1) + timedelta(days=18 * i) for i in range(4)]
        result = stats.analyze(make_history(starts, days=4))
        assert result.average_cycle_length == 18.0
        assert result.health_status == "attention"
        assert "shorter than usual" in result.recommendations[0]

    def test_irregular_cycles_need_attention(self, stats: CycleStatistics) -> None:
        starts = [date(2025, 1, 1)]
        for length in (20, 35, 22, 40):
            starts.append(starts[-1] + timedelta(days=length))
        result = stats.analyze(make_history(starts, days=3))
        assert result.regularity == "irregular"
        assert result.health_status == "attention"


class TestFromCycles:
    def test_stored_cycles(self, stats: CycleStatistics) -> None:
        cycles = [
            MenstrualCycle(start_date="2025-02-26"),
            MenstrualCycle(start_date="2025-01-01", end_date="2025-01-05", length=28, is_complete=True),
            MenstrualCycle(start_date="2025-01-29", end_date="2025-02-02", length=28, is_complete=True),
        ]
        result = stats.from_cycles(cycles)
        assert result.is_valid
        assert result.cycle_lengths == [28, 28]
        assert result.last_period_start == date(2025, 2, 26)
        assert result.average_period_length == pytest.approx(3.7)
