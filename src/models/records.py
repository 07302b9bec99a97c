"""Pydantic models for the fertility record store: daily temperature,
menstrual flow, intercourse and symptom facets, cycles and user settings."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from src.models.base import FertilityBase, TimestampMixin, generate_id


# ---------- Enums ----------

class FlowLevel(str, Enum):
    none = "none"
    light = "light"
    medium = "medium"
    heavy = "heavy"


class FacetType(str, Enum):
    temperature = "temperature"
    menstrual = "menstrual"
    intercourse = "intercourse"
    symptoms = "symptoms"


class IntercourseKind(str, Enum):
    recorded = "recorded"
    none = "none"  # explicit "no intercourse today" marker


class TemperatureUnit(str, Enum):
    celsius = "celsius"
    fahrenheit = "fahrenheit"


# ---------- Daily facets ----------

class TemperatureRecord(FertilityBase, TimestampMixin):
    id: str = Field(default_factory=generate_id)
    date: str
    time: str | None = None
    temperature: float
    note: str | None = None


class MenstrualRecord(FertilityBase, TimestampMixin):
    id: str = Field(default_factory=generate_id)
    date: str
    flow: FlowLevel = FlowLevel.none
    is_start: bool = False
    is_end: bool = False
    note: str | None = None

    @property
    def has_flow(self) -> bool:
        return self.flow != FlowLevel.none

    @property
    def is_boundary(self) -> bool:
        return self.is_start or self.is_end


class IntercourseRecord(FertilityBase, TimestampMixin):
    id: str = Field(default_factory=generate_id)
    date: str
    time: str | None = None
    protection: bool = False
    note: str | None = None
    kind: IntercourseKind = IntercourseKind.recorded

    @property
    def is_marker(self) -> bool:
        return self.kind == IntercourseKind.none


class SymptomRecord(FertilityBase, TimestampMixin):
    id: str = Field(default_factory=generate_id)
    date: str
    symptoms: list[str] = Field(default_factory=list)
    note: str | None = None


class DayRecord(FertilityBase):
    """Every facet recorded for one calendar date.

    Absent facets are ``None`` (or an empty intercourse list), never
    placeholder objects.
    """

    date: str
    temperature: TemperatureRecord | None = None
    menstrual: MenstrualRecord | None = None
    intercourse: list[IntercourseRecord] = Field(default_factory=list)
    symptoms: SymptomRecord | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.temperature is None
            and self.menstrual is None
            and not self.intercourse
            and self.symptoms is None
        )

    @property
    def recorded_intercourse(self) -> list[IntercourseRecord]:
        """Intercourse entries excluding the "none" marker."""
        return [r for r in self.intercourse if not r.is_marker]


# ---------- Cycles & settings ----------

class MenstrualCycle(FertilityBase):
    id: str = Field(default_factory=generate_id)
    start_date: str
    end_date: str | None = None
    length: int | None = None
    is_complete: bool = False
    ovulation_date: str | None = None


class UserSettings(FertilityBase, TimestampMixin):
    average_cycle_length: int = 28
    average_luteal_phase: int = 14
    age: int | None = None
    temperature_unit: TemperatureUnit = TemperatureUnit.celsius
