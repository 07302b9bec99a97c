"""Field-level validation for fertility records.

The ``validate_*`` functions are pure: they take a raw value and return a
``ValidationOutcome``.  ``RecordValidator`` applies them to whole records
using the limits in fertility_config.yaml and returns a field → message map;
an empty map means the record may be saved.

Usage::

    from src.fertility.validator import RecordValidator

    errors = RecordValidator().validate_temperature_record(
        {"date": "2025-01-06", "time": "06:30", "temperature": 36.7}
    )
    if errors:
        raise RecordValidationError(errors, "temperature record")
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Mapping

from src.fertility.config_loader import FertilityConfig, get_fertility_config

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

FLOW_LEVELS = ("none", "light", "medium", "heavy")


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    message: str | None = None


_OK = ValidationOutcome(True)


def _fail(message: str) -> ValidationOutcome:
    return ValidationOutcome(False, message)


class RecordValidationError(ValueError):
    """Raised when a submitted record fails one or more field rules.

    Attributes:
        errors: Mapping of field name → human-readable message.
    """

    def __init__(self, errors: Mapping[str, str], record_type: str = "record") -> None:
        self.errors = dict(errors)
        self.record_type = record_type
        summary = "; ".join(f"{name}: {msg}" for name, msg in self.errors.items())
        super().__init__(f"Invalid {record_type}: {summary}")


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------


def parse_iso_date(value: str) -> date | None:
    """Parse a strict ``YYYY-MM-DD`` string, returning None when malformed."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def validate_date(
    value: Any,
    *,
    today: date | None = None,
    max_distance_days: int | None = None,
) -> ValidationOutcome:
    """Check a ``YYYY-MM-DD`` calendar date.

    Args:
        value:             Candidate date string.
        today:             Reference day for the distance check.
        max_distance_days: Reject dates further than this from ``today``.
                           None disables the check.
    """
    if value is None or value == "":
        return _fail("Date is required")
    if not isinstance(value, str):
        return _fail("Date must be a string")
    if not _DATE_RE.match(value):
        return _fail("Date must use the YYYY-MM-DD format")
    parsed = parse_iso_date(value)
    if parsed is None:
        return _fail("Date is not a valid calendar day")

    if max_distance_days is not None:
        reference = today or date.today()
        if abs((parsed - reference).days) > max_distance_days:
            return _fail(
                f"Date must be within {max_distance_days} days of {reference.isoformat()}"
            )
    return _OK


def validate_time(value: Any) -> ValidationOutcome:
    if value is None or value == "":
        return _fail("Time is required")
    if not isinstance(value, str) or not _TIME_RE.match(value):
        return _fail("Time must use the HH:mm format (00:00–23:59)")
    return _OK


def validate_temperature(
    value: Any,
    *,
    min_c: float = 35.0,
    max_c: float = 42.0,
    max_decimals: int = 2,
) -> ValidationOutcome:
    """Check a basal body temperature in °C.

    Both bounds are inclusive.  Booleans and NaN are rejected even though
    Python treats them as numbers.
    """
    if value is None or value == "":
        return _fail("Temperature is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _fail("Temperature must be a number")
    if not math.isfinite(value):
        return _fail("Temperature must be a finite number")
    if value < min_c or value > max_c:
        return _fail(f"Temperature must be between {min_c}°C and {max_c}°C")
    if abs(round(value, max_decimals) - value) > 1e-9:
        return _fail(f"Temperature may have at most {max_decimals} decimal places")
    return _OK


def validate_menstrual_flow(value: Any) -> ValidationOutcome:
    # FlowLevel members or raw strings
    raw = getattr(value, "value", value)
    if raw not in FLOW_LEVELS:
        return _fail(f"Flow must be one of: {', '.join(FLOW_LEVELS)}")
    return _OK


def validate_note(value: Any, *, max_length: int = 200) -> ValidationOutcome:
    if value is None or value == "":
        return _OK
    if not isinstance(value, str):
        return _fail("Note must be text")
    if len(value) > max_length:
        return _fail(f"Note must be at most {max_length} characters")
    return _OK


def _validate_int_range(value: Any, low: int, high: int, label: str) -> ValidationOutcome:
    if isinstance(value, bool) or not isinstance(value, int):
        return _fail(f"{label} must be a whole number of days")
    if value < low or value > high:
        return _fail(f"{label} must be between {low} and {high} days")
    return _OK


def validate_cycle_length(value: Any, *, low: int = 21, high: int = 35) -> ValidationOutcome:
    return _validate_int_range(value, low, high, "Cycle length")


def validate_luteal_phase_length(
    value: Any, *, low: int = 10, high: int = 16
) -> ValidationOutcome:
    return _validate_int_range(value, low, high, "Luteal phase length")


def validate_fields(
    data: Mapping[str, Any],
    rules: Mapping[str, Callable[[Any], ValidationOutcome]],
) -> dict[str, str]:
    """Apply one rule per field and collect the failures.

    Args:
        data:  Record fields (missing keys are passed to the rule as None).
        rules: Field name → validator.

    Returns:
        Field name → message for every failing field.
    """
    errors: dict[str, str] = {}
    for name, rule in rules.items():
        outcome = rule(data.get(name))
        if not outcome.valid:
            errors[name] = outcome.message or "Invalid value"
    return errors


# ---------------------------------------------------------------------------
# Record validator
# ---------------------------------------------------------------------------


def _field(data: Mapping[str, Any], name: str) -> Any:
    """Read a snake_case field, falling back to its camelCase storage alias."""
    if name in data:
        return data[name]
    head, *rest = name.split("_")
    return data.get(head + "".join(part.title() for part in rest))


class RecordValidator:
    """Validate whole records against the configured limits.

    Every ``validate_*_record`` method returns a field → message dict.
    Input may use snake_case or camelCase keys.
    """

    def __init__(self, config: FertilityConfig | None = None) -> None:
        self._config = config or get_fertility_config()

    def _date_rule(self, today: date | None) -> Callable[[Any], ValidationOutcome]:
        window = self._config.validation.date_window_days

        def rule(value: Any) -> ValidationOutcome:
            return validate_date(value, today=today, max_distance_days=window)

        return rule

    def _note_rule(self, value: Any) -> ValidationOutcome:
        return validate_note(value, max_length=self._config.validation.note_max_length)

    @staticmethod
    def _optional_time(value: Any) -> ValidationOutcome:
        if value is None or value == "":
            return _OK
        return validate_time(value)

    def validate_temperature_record(
        self, data: Mapping[str, Any], today: date | None = None
    ) -> dict[str, str]:
        temp_cfg = self._config.temperature
        max_decimals = self._config.validation.temperature_max_decimals
        return validate_fields(
            {name: _field(data, name) for name in ("date", "time", "temperature", "note")},
            {
                "date": self._date_rule(today),
                "time": self._optional_time,
                "temperature": lambda v: validate_temperature(
                    v,
                    min_c=temp_cfg.min_valid_c,
                    max_c=temp_cfg.max_valid_c,
                    max_decimals=max_decimals,
                ),
                "note": self._note_rule,
            },
        )

    def validate_menstrual_record(
        self, data: Mapping[str, Any], today: date | None = None
    ) -> dict[str, str]:
        fields = {name: _field(data, name) for name in ("date", "flow", "note")}
        if fields["flow"] is None:
            fields["flow"] = "none"
        errors = validate_fields(
            fields,
            {
                "date": self._date_rule(today),
                "flow": validate_menstrual_flow,
                "note": self._note_rule,
            },
        )
        if _field(data, "is_start") and _field(data, "is_end"):
            errors["is_end"] = "A record cannot be both the start and the end of a period"
        return errors

    def validate_intercourse_record(
        self, data: Mapping[str, Any], today: date | None = None
    ) -> dict[str, str]:
        return validate_fields(
            {name: _field(data, name) for name in ("date", "time", "note")},
            {
                "date": self._date_rule(today),
                "time": self._optional_time,
                "note": self._note_rule,
            },
        )

    def validate_symptom_record(
        self, data: Mapping[str, Any], today: date | None = None
    ) -> dict[str, str]:
        errors = validate_fields(
            {name: _field(data, name) for name in ("date", "note")},
            {"date": self._date_rule(today), "note": self._note_rule},
        )
        symptoms = _field(data, "symptoms") or []
        if not isinstance(symptoms, (list, tuple)):
            errors["symptoms"] = "Symptoms must be a list of names"
        elif any(not isinstance(s, str) or not s.strip() for s in symptoms):
            errors["symptoms"] = "Symptom names must be non-empty text"
        return errors

    def validate_user_settings(self, data: Mapping[str, Any]) -> dict[str, str]:
        v = self._config.validation
        rules: dict[str, Callable[[Any], ValidationOutcome]] = {}
        fields: dict[str, Any] = {}
        cycle_length = _field(data, "average_cycle_length")
        if cycle_length is not None:
            fields["average_cycle_length"] = cycle_length
            rules["average_cycle_length"] = lambda x: validate_cycle_length(
                x, low=v.min_cycle_length, high=v.max_cycle_length
            )
        luteal = _field(data, "average_luteal_phase")
        if luteal is not None:
            fields["average_luteal_phase"] = luteal
            rules["average_luteal_phase"] = lambda x: validate_luteal_phase_length(
                x, low=v.min_luteal_phase, high=v.max_luteal_phase
            )
        return validate_fields(fields, rules)

