"""Ovulation and fertile window prediction.

Two independent estimators feed one prediction:

- Temperature method: the day before the detected BBT shift.  Its confidence
  label (high / medium / low) maps to a number via fertility_config.yaml.
- Cycle method: last period start + average cycle length − luteal phase.
  Confidence is the regularity score, floored at 0.3.  With fewer than two
  recorded cycles the user's configured averages stand in at the floor
  confidence.

When both exist and agree within 3 days the dates are averaged, weighted by
confidence, and the combined confidence gets a small bonus.  When they
disagree the more confident estimate is used as-is.

Fertile window: ovulation − 5 days through ovulation + 1 day.
Optimal window: ovulation − 2 days through ovulation day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from src.fertility.config_loader import FertilityConfig, get_fertility_config
from src.fertility.cycle_stats import CycleStatistics, CycleStatisticsResult
from src.fertility.temp_shift import (
    DailyTemperature,
    TemperatureShiftDetector,
    TemperatureShiftResult,
)
from src.models.records import (
    IntercourseRecord,
    MenstrualRecord,
    TemperatureRecord,
    UserSettings,
)

logger = logging.getLogger("fertility.engine.ovulation")

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def label_for_confidence(confidence: float) -> str:
    """Bucket a numeric confidence into high / medium / low."""
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.6:
        return "medium"
    return "low"


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


@dataclass
class OvulationEstimate:
    """A single ovulation date estimate.

    Attributes:
        ovulation_date:   Estimated ovulation day.
        confidence:       0.0–1.0.
        method:           'temperature', 'cycle' or 'combined'.
        confidence_label: 'high', 'medium' or 'low'.
        source:           For the cycle method: 'history' or 'settings'.
        notes:            Human-readable explanation.
    """

    ovulation_date: date
    confidence: float
    method: str
    confidence_label: str | None = None
    source: str | None = None
    notes: str = ""

    def __post_init__(self) -> None:
        if self.confidence_label is None:
            self.confidence_label = label_for_confidence(self.confidence)


@dataclass
class FertileWindow:
    start: date
    end: date
    optimal_start: date
    optimal_end: date
    ovulation_date: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass
class FertileStatus:
    """Where a given day falls relative to the fertile window.

    Attributes:
        phase:                'optimal', 'fertile', 'pre_fertile', 'post_fertile'.
        days_to_ovulation:    Days until the ovulation date (negative once past).
        days_to_fertile:      Days until the window opens (pre_fertile only).
        days_since_ovulation: Days since ovulation (post_fertile only).
        fertility:            'high', 'medium' or 'low'.
        description:          Short label for display.
    """

    phase: str
    days_to_ovulation: int
    days_to_fertile: int | None = None
    days_since_ovulation: int | None = None
    fertility: str = "low"
    description: str = ""


@dataclass
class Recommendation:
    type: str
    priority: str
    title: str
    content: str
    details: list[str] = field(default_factory=list)


@dataclass
class OvulationPrediction:
    """Combined ovulation prediction.

    ``is_valid=False`` means neither method had enough data; ``reason``
    explains what is missing.

    Attributes:
        is_valid:             Whether an ovulation date could be estimated.
        reason:               Why not, when invalid.
        ovulation_date:       Final estimate.
        confidence:           0.0–1.0 confidence in the final estimate.
        confidence_label:     'high', 'medium' or 'low'.
        method:               'temperature', 'cycle' or 'combined'.
        fertile_window:       Window anchored on the final estimate.
        status:               Position of ``today`` relative to the window.
        next_period_date:     Expected start of the next period.
        temperature_estimate: Estimate from the temperature method, if any.
        cycle_estimate:       Estimate from the cycle method, if any.
        temperature_shift:    Raw shift detection result.
        cycle_statistics:     Raw cycle statistics.
        recommendations:      Suggestions sorted by priority.
    """

    is_valid: bool
    reason: str | None = None
    ovulation_date: date | None = None
    confidence: float | None = None
    confidence_label: str | None = None
    method: str | None = None
    fertile_window: FertileWindow | None = None
    status: FertileStatus | None = None
    next_period_date: date | None = None
    temperature_estimate: OvulationEstimate | None = None
    cycle_estimate: OvulationEstimate | None = None
    temperature_shift: TemperatureShiftResult | None = None
    cycle_statistics: CycleStatisticsResult | None = None
    recommendations: list[Recommendation] = field(default_factory=list)


class OvulationPredictor:
    """Predict ovulation from temperature and menstrual history.

    Usage::

        predictor = OvulationPredictor()
        prediction = predictor.predict(temperatures, menstrual_records, settings, today)
        if prediction.is_valid:
            print(prediction.ovulation_date, prediction.status.phase)
        else:
            print(prediction.reason)
    """

    def __init__(
        self,
        config: FertilityConfig | None = None,
        detector: TemperatureShiftDetector | None = None,
        cycle_statistics: CycleStatistics | None = None,
    ) -> None:
        self._config = config or get_fertility_config()
        self._detector = detector or TemperatureShiftDetector(self._config)
        self._cycle_statistics = cycle_statistics or CycleStatistics(self._config)

    @property
    def _p_config(self):
        return self._config.prediction

    # ------------------------------------------------------------------
    # Individual estimators
    # ------------------------------------------------------------------

    def temperature_estimate(self, shift: TemperatureShiftResult) -> OvulationEstimate | None:
        if not shift.is_valid or not shift.detected or shift.ovulation_date is None:
            return None
        return OvulationEstimate(
            ovulation_date=shift.ovulation_date,
            confidence=self._p_config.confidence_for(shift.confidence),
            method="temperature",
            confidence_label=shift.confidence,
            notes=f"Day before the temperature shift on {shift.shift_date.isoformat()}",
        )

    def cycle_estimate(
        self,
        stats: CycleStatisticsResult,
        settings: UserSettings | None = None,
    ) -> OvulationEstimate | None:
        """Estimate ovulation from the last period start and average lengths.

        Args:
            stats:    Cycle statistics for the menstrual history.
            settings: User settings, used when fewer than two cycles are recorded.

        Returns:
            OvulationEstimate, or None when no period has been recorded.
        """
        if stats.last_period_start is None:
            return None

        p_cfg = self._p_config
        if stats.is_valid:
            cycle_length = _round_half_up(stats.average_cycle_length)
            luteal = stats.luteal_phase_length
            confidence = max(p_cfg.min_cycle_confidence, stats.regularity_score or 0.0)
            source = "history"
        else:
            c_cfg = self._config.cycle
            cycle_length = settings.average_cycle_length if settings else c_cfg.default_cycle_length
            luteal = settings.average_luteal_phase if settings else c_cfg.default_luteal_phase
            confidence = p_cfg.min_cycle_confidence
            source = "settings"

        ovulation = stats.last_period_start + timedelta(days=cycle_length - luteal)
        return OvulationEstimate(
            ovulation_date=ovulation,
            confidence=round(confidence, 2),
            method="cycle",
            source=source,
            notes=(
                f"{cycle_length}-day cycle and {luteal}-day luteal phase from "
                f"{stats.last_period_start.isoformat()} ({source})"
            ),
        )

    def combine(
        self,
        temperature: OvulationEstimate | None,
        cycle: OvulationEstimate | None,
    ) -> OvulationEstimate | None:
        """Merge the two estimates into one.

        Args:
            temperature: Temperature-method estimate, if any.
            cycle:       Cycle-method estimate, if any.

        Returns:
            The single available estimate, a confidence-weighted combination
            when both agree within ``combine_max_diff_days``, otherwise the
            more confident estimate (temperature wins ties).  None when
            neither exists.
        """
        if temperature is None or cycle is None:
            return temperature or cycle

        p_cfg = self._p_config
        diff = abs((temperature.ovulation_date - cycle.ovulation_date).days)
        if diff > p_cfg.combine_max_diff_days:
            chosen = temperature if temperature.confidence >= cycle.confidence else cycle
            logger.debug(
                "Estimates %d days apart; using %s method", diff, chosen.method,
            )
            return chosen

        total = temperature.confidence + cycle.confidence
        t_ord = temperature.ovulation_date.toordinal()
        c_ord = cycle.ovulation_date.toordinal()
        if total > 0:
            weighted = (t_ord * temperature.confidence + c_ord * cycle.confidence) / total
        else:
            weighted = (t_ord + c_ord) / 2
        combined_date = date.fromordinal(_round_half_up(weighted))
        mean_confidence = (temperature.confidence + cycle.confidence) / 2
        confidence = round(min(1.0, mean_confidence + p_cfg.combine_confidence_bonus), 2)

        return OvulationEstimate(
            ovulation_date=combined_date,
            confidence=confidence,
            method="combined",
            notes=(
                f"Temperature ({temperature.ovulation_date.isoformat()}) and cycle "
                f"({cycle.ovulation_date.isoformat()}) estimates agree within {diff} day(s)"
            ),
        )

    # ------------------------------------------------------------------
    # Windows & status
    # ------------------------------------------------------------------

    def fertile_window(self, ovulation_date: date) -> FertileWindow:
        p_cfg = self._p_config
        return FertileWindow(
            start=ovulation_date - timedelta(days=p_cfg.fertile_days_before),
            end=ovulation_date + timedelta(days=p_cfg.fertile_days_after),
            optimal_start=ovulation_date - timedelta(days=p_cfg.optimal_days_before),
            optimal_end=ovulation_date,
            ovulation_date=ovulation_date,
        )

    @staticmethod
    def classify_status(today: date, window: FertileWindow) -> FertileStatus:
        """Place ``today`` relative to the fertile and optimal windows."""
        days_to_ovulation = (window.ovulation_date - today).days

        if window.optimal_start <= today <= window.optimal_end:
            return FertileStatus(
                phase="optimal",
                days_to_ovulation=days_to_ovulation,
                fertility="high",
                description="Optimal conception window",
            )
        if window.contains(today):
            return FertileStatus(
                phase="fertile",
                days_to_ovulation=days_to_ovulation,
                days_since_ovulation=-days_to_ovulation if days_to_ovulation < 0 else None,
                fertility="medium",
                description="Fertile window",
            )
        if today < window.start:
            return FertileStatus(
                phase="pre_fertile",
                days_to_ovulation=days_to_ovulation,
                days_to_fertile=(window.start - today).days,
                fertility="low",
                description="Before the fertile window",
            )
        return FertileStatus(
            phase="post_fertile",
            days_to_ovulation=days_to_ovulation,
            days_since_ovulation=(today - window.ovulation_date).days,
            fertility="low",
            description="After the fertile window",
        )

    # ------------------------------------------------------------------
    # Full prediction
    # ------------------------------------------------------------------

    def predict(
        self,
        temperatures: Iterable[DailyTemperature | TemperatureRecord],
        menstrual_records: Iterable[MenstrualRecord],
        settings: UserSettings | None = None,
        today: date | None = None,
        intercourse: Iterable[IntercourseRecord] | None = None,
    ) -> OvulationPrediction:
        """Predict ovulation, the fertile window and today's status.

        Args:
            temperatures:      Daily BBT readings (any order).
            menstrual_records: Menstrual records (any order).
            settings:          User settings for fallback averages.
            today:             Reference day for the status (defaults to today).
            intercourse:       Intercourse records for timing advice.

        Returns:
            OvulationPrediction; never raises for missing or short histories.
        """
        today = today or date.today()
        readings = [
            DailyTemperature.from_record(t) if isinstance(t, TemperatureRecord) else t
            for t in temperatures
        ]

        shift = self._detector.detect(readings)
        stats = self._cycle_statistics.analyze(
            menstrual_records,
            shift_date=shift.shift_date if shift.detected else None,
            settings=settings,
        )
        t_est = self.temperature_estimate(shift)
        c_est = self.cycle_estimate(stats, settings)
        final = self.combine(t_est, c_est)

        if final is None:
            reasons = [
                shift.reason or "no temperature shift detected",
                stats.reason or "no menstrual period recorded",
            ]
            prediction = OvulationPrediction(
                is_valid=False,
                reason="ovulation not predictable: " + "; ".join(reasons),
                temperature_shift=shift,
                cycle_statistics=stats,
            )
            prediction.recommendations = self._recommendations(prediction, [], today)
            return prediction

        window = self.fertile_window(final.ovulation_date)
        status = self.classify_status(today, window)

        next_period: date | None = None
        if stats.last_period_start is not None:
            if stats.is_valid:
                cycle_length = _round_half_up(stats.average_cycle_length)
            else:
                cycle_length = (
                    settings.average_cycle_length
                    if settings
                    else self._config.cycle.default_cycle_length
                )
            next_period = stats.last_period_start + timedelta(days=cycle_length)

        logger.info(
            "Predicted ovulation %s via %s (confidence=%.2f, phase=%s)",
            final.ovulation_date, final.method, final.confidence, status.phase,
        )

        prediction = OvulationPrediction(
            is_valid=True,
            ovulation_date=final.ovulation_date,
            confidence=final.confidence,
            confidence_label=final.confidence_label,
            method=final.method,
            fertile_window=window,
            status=status,
            next_period_date=next_period,
            temperature_estimate=t_est,
            cycle_estimate=c_est,
            temperature_shift=shift,
            cycle_statistics=stats,
        )
        prediction.recommendations = self._recommendations(
            prediction, list(intercourse or []), today
        )
        return prediction

    def _recommendations(
        self,
        prediction: OvulationPrediction,
        intercourse: list[IntercourseRecord],
        today: date,
    ) -> list[Recommendation]:
        recs: list[Recommendation] = []
        shift = prediction.temperature_shift
        stats = prediction.cycle_statistics

        if shift is None or not shift.is_valid:
            recs.append(Recommendation(
                type="data_quality",
                priority="high",
                title="Keep recording your temperature",
                content="Measure at the same time every morning; temperature is the key ovulation signal",
            ))
        if stats is None or not stats.is_valid:
            recs.append(Recommendation(
                type="data_quality",
                priority="high",
                title="Record your periods",
                content="Period start dates make ovulation and fertile window predictions more accurate",
            ))
        if stats is not None and stats.is_valid and stats.health_status == "attention":
            recs.append(Recommendation(
                type="health",
                priority="medium",
                title="Keep an eye on cycle health",
                content=stats.recommendations[0],
                details=stats.recommendations[1:],
            ))

        status = prediction.status
        if status is not None:
            details = {
                "optimal": ["Highest chance of conception; if trying, this is the time"],
                "fertile": ["Conception is possible; watch for signs such as cervical mucus"],
                "pre_fertile": [
                    f"Fertile window opens in {status.days_to_fertile} day(s)",
                    "Keep recording temperature and other signs",
                ],
                "post_fertile": [
                    "Chance of conception this cycle is low",
                    "Keep recording to prepare for the next cycle",
                ],
            }[status.phase]
            if prediction.confidence_label == "low":
                details.append("Prediction confidence is low; more data will improve it")
            recs.append(Recommendation(
                type="fertility",
                priority="high",
                title="Fertile window guidance",
                content=status.description,
                details=details,
            ))

            recent_days = self._p_config.recent_intercourse_days
            recent = [
                r for r in intercourse
                if not r.is_marker
                and 0 <= (today - date.fromisoformat(r.date)).days <= recent_days
            ]
            if intercourse and status.fertility == "high" and not recent:
                recs.append(Recommendation(
                    type="timing",
                    priority="high",
                    title="Best time to conceive",
                    content="Conception chances are high right now",
                ))

        return sorted(recs, key=lambda r: _PRIORITY_ORDER[r.priority], reverse=True)
