"""Menstrual cycle statistics.

Groups daily flow records into periods, measures cycle lengths between
period starts and scores how regular those lengths are.

Regularity uses the sample standard deviation σ of cycle lengths:

    σ ≤ 2  → very_regular
    σ ≤ 4  → regular
    σ ≤ 7  → somewhat_irregular
    else   → irregular

    score = max(0, 1 − σ / 7), rounded to 2 decimals

Luteal phase length is measured from a detected temperature shift to the next
period start when that gap is plausible (≤ 20 days); otherwise the user's own
configured average is used.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from src.fertility.config_loader import FertilityConfig, get_fertility_config
from src.models.records import MenstrualCycle, MenstrualRecord, UserSettings

logger = logging.getLogger("fertility.engine.cycle_stats")


@dataclass
class Period:
    """One menstrual period: a run of flow days.

    Attributes:
        start_date: First flow day.
        end_date:   Last flow day.
        duration:   Inclusive length in days.
        flows:      Flow level of each recorded day, in date order.
    """

    start_date: date
    end_date: date
    duration: int
    flows: list[str] = field(default_factory=list)


@dataclass
class CycleStatisticsResult:
    """Cycle statistics for a menstrual history.

    Attributes:
        is_valid:                Whether at least two complete cycles exist.
        reason:                  Why the result is invalid, if it is.
        periods:                 Grouped periods in date order.
        cycle_lengths:           Days between consecutive period starts.
        completed_cycles:        Number of cycle lengths measured.
        last_period_start:       Start of the most recent period.
        average_cycle_length:    Mean cycle length (days).
        shortest_cycle:          Shortest measured cycle.
        longest_cycle:           Longest measured cycle.
        std_deviation:           Sample standard deviation of cycle lengths.
        regularity:              'very_regular', 'regular', 'somewhat_irregular',
                                 'irregular'; None with fewer than 3 cycles.
        regularity_score:        0.0–1.0; None with fewer than 3 cycles.
        average_period_length:   Mean period duration (days).
        luteal_phase_length:     Days from ovulation shift to next period.
        luteal_phase_source:     'temperature' or 'settings'.
        follicular_phase_length: average_cycle_length − luteal_phase_length.
        length_trend:            'stable', 'increasing', 'decreasing', 'irregular'.
        health_status:           'normal' or 'attention'.
        recommendations:         Human-readable suggestions.
    """

    is_valid: bool
    reason: str | None = None
    periods: list[Period] = field(default_factory=list)
    cycle_lengths: list[int] = field(default_factory=list)
    completed_cycles: int = 0
    last_period_start: date | None = None
    average_cycle_length: float | None = None
    shortest_cycle: int | None = None
    longest_cycle: int | None = None
    std_deviation: float | None = None
    regularity: str | None = None
    regularity_score: float | None = None
    average_period_length: float | None = None
    luteal_phase_length: int | None = None
    luteal_phase_source: str | None = None
    follicular_phase_length: float | None = None
    length_trend: str = "stable"
    health_status: str = "normal"
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_regular(self) -> bool:
        """True for σ within the 'regular' band (very_regular included)."""
        return self.regularity in ("very_regular", "regular")


class CycleStatistics:
    """Compute period, cycle-length and regularity statistics.

    Usage::

        stats = CycleStatistics()
        result = stats.analyze(menstrual_records, shift_date=date(2025, 3, 16))
        if result.is_valid:
            print(result.average_cycle_length, result.regularity)
    """

    def __init__(self, config: FertilityConfig | None = None) -> None:
        self._config = config or get_fertility_config()

    @property
    def _c_config(self):
        return self._config.cycle

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def group_periods(self, records: Iterable[MenstrualRecord]) -> list[Period]:
        """Group flow days into periods.

        Days separated by at most ``period_gap_days`` belong to the same
        period.  Records with flow 'none' are ignored.

        Args:
            records: Menstrual records in any order.

        Returns:
            Periods in date order.
        """
        gap = self._c_config.period_gap_days
        flow_days = sorted(
            (date.fromisoformat(r.date), r.flow.value)
            for r in records
            if r.has_flow
        )

        periods: list[Period] = []
        for day, flow in flow_days:
            current = periods[-1] if periods else None
            if current is not None and (day - current.end_date).days <= gap:
                if day != current.end_date:
                    current.end_date = day
                    current.flows.append(flow)
                current.duration = (current.end_date - current.start_date).days + 1
            else:
                periods.append(Period(start_date=day, end_date=day, duration=1, flows=[flow]))
        return periods

    @staticmethod
    def cycle_lengths(periods: list[Period]) -> list[int]:
        return [
            (later.start_date - earlier.start_date).days
            for earlier, later in zip(periods, periods[1:])
        ]

    def regularity(self, lengths: list[int]) -> tuple[str | None, float | None]:
        """Classify cycle-length variability.

        A history labelled 'very_regular' also counts as regular; test
        ``CycleStatisticsResult.is_regular`` rather than the label.

        Args:
            lengths: Cycle lengths in days.

        Returns:
            Tuple of (label, score).  Both are None with fewer than
            ``min_regularity_cycles`` lengths.
        """
        cfg = self._c_config
        if len(lengths) < cfg.min_regularity_cycles:
            return None, None

        sd = round(statistics.stdev(lengths), 2)
        if sd <= cfg.very_regular_max_std:
            label = "very_regular"
        elif sd <= cfg.regular_max_std:
            label = "regular"
        elif sd <= cfg.somewhat_irregular_max_std:
            label = "somewhat_irregular"
        else:
            label = "irregular"
        score = round(max(0.0, 1 - sd / cfg.regularity_scale_days), 2)
        return label, score

    def luteal_phase(
        self,
        periods: list[Period],
        shift_date: date | None,
        settings: UserSettings | None = None,
    ) -> tuple[int, str]:
        """Luteal phase length and where it came from.

        Args:
            periods:    Grouped periods in date order.
            shift_date: Detected temperature shift, if any.
            settings:   User settings providing the fallback average.

        Returns:
            Tuple of (length_days, source) with source 'temperature' or 'settings'.
        """
        fallback = (
            settings.average_luteal_phase if settings else self._c_config.default_luteal_phase
        )
        if shift_date is None:
            return fallback, "settings"

        for period in periods:
            if period.start_date > shift_date:
                gap = (period.start_date - shift_date).days
                if gap <= self._c_config.max_luteal_gap_days:
                    return gap, "temperature"
                break
        return fallback, "settings"

    @staticmethod
    def length_trend(lengths: list[int]) -> str:
        """Direction of the last three cycle lengths."""
        if len(lengths) < 3:
            return "stable"
        a, b, c = lengths[-3:]
        if c > b > a:
            return "increasing"
        if c < b < a:
            return "decreasing"
        return "irregular" if statistics.pvariance([a, b, c]) > 9 else "stable"

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        records: Iterable[MenstrualRecord],
        shift_date: date | None = None,
        settings: UserSettings | None = None,
    ) -> CycleStatisticsResult:
        """Analyse a menstrual history.

        Args:
            records:    Menstrual records (flow 'none' days are ignored).
            shift_date: Most recent temperature shift, used for the luteal phase.
            settings:   User settings for fallback averages.

        Returns:
            CycleStatisticsResult; ``is_valid=False`` with a reason when fewer
            than two complete cycles are recorded.
        """
        return self._summarise(self.group_periods(records), shift_date, settings)

    def from_cycles(
        self,
        cycles: Iterable[MenstrualCycle],
        shift_date: date | None = None,
        settings: UserSettings | None = None,
    ) -> CycleStatisticsResult:
        """Analyse stored cycle boundaries instead of raw flow records.

        Each cycle contributes one period starting on its start date; cycle
        lengths are the gaps between consecutive starts.
        """
        periods: list[Period] = []
        for cycle in sorted(cycles, key=lambda c: c.start_date):
            start = date.fromisoformat(cycle.start_date)
            end = date.fromisoformat(cycle.end_date) if cycle.end_date else start
            if end < start:
                end = start
            periods.append(
                Period(start_date=start, end_date=end, duration=(end - start).days + 1)
            )
        return self._summarise(periods, shift_date, settings)

    def _summarise(
        self,
        periods: list[Period],
        shift_date: date | None,
        settings: UserSettings | None,
    ) -> CycleStatisticsResult:
        cfg = self._c_config
        lengths = self.cycle_lengths(periods)
        last_start = periods[-1].start_date if periods else None

        if len(lengths) < cfg.min_completed_cycles:
            return CycleStatisticsResult(
                is_valid=False,
                reason=(
                    f"insufficient data: {len(lengths)} complete cycle(s) recorded "
                    f"(need {cfg.min_completed_cycles})"
                ),
                periods=periods,
                cycle_lengths=lengths,
                completed_cycles=len(lengths),
                last_period_start=last_start,
            )

        average = round(statistics.mean(lengths), 2)
        sd = round(statistics.stdev(lengths), 2)
        label, score = self.regularity(lengths)
        luteal, luteal_source = self.luteal_phase(periods, shift_date, settings)
        trend = self.length_trend(lengths)

        health_status = "normal"
        recommendations: list[str] = []
        if average < cfg.min_cycle_days:
            health_status = "attention"
            recommendations.append(
                f"Average cycle of {average:.0f} days is shorter than usual; "
                "consider consulting a gynaecologist"
            )
        elif average > cfg.max_cycle_days:
            health_status = "attention"
            recommendations.append(
                f"Average cycle of {average:.0f} days is longer than usual; "
                "keep an eye on ovulation and consult a doctor if it persists"
            )
        if label == "irregular":
            health_status = "attention"
            recommendations.append("Cycles are irregular; keep recording and consult a doctor")
        elif label == "somewhat_irregular":
            recommendations.append("Cycle length varies somewhat; keep recording to refine predictions")
        if trend == "irregular":
            recommendations.append(
                "Recent cycle lengths vary widely; note lifestyle changes that may explain it"
            )
        if not recommendations:
            recommendations.append("Cycles look normal; keep up the regular recording")

        logger.debug(
            "Cycle stats: %d cycles, avg=%.2f, sd=%.2f, regularity=%s",
            len(lengths), average, sd, label,
        )

        return CycleStatisticsResult(
            is_valid=True,
            periods=periods,
            cycle_lengths=lengths,
            completed_cycles=len(lengths),
            last_period_start=last_start,
            average_cycle_length=average,
            shortest_cycle=min(lengths),
            longest_cycle=max(lengths),
            std_deviation=sd,
            regularity=label,
            regularity_score=score,
            average_period_length=round(statistics.mean(p.duration for p in periods), 1),
            luteal_phase_length=luteal,
            luteal_phase_source=luteal_source,
            follicular_phase_length=round(average - luteal, 1),
            length_trend=trend,
            health_status=health_status,
            recommendations=recommendations,
        )
