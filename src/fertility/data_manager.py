"""Record orchestration: validation, storage, caching and cycle upkeep.

DataManager is the only writer of day records and cycles.  Every save follows
the same path:

    validate → (write lock) read full day_records map → merge one facet
    → single set_item → invalidate the per-date and covering range cache keys

Menstrual records that start or end a period then run a separate step,
``apply_cycle_boundary()``, which updates the stored cycle list.  The step is
public so it can be re-run on its own, and ``rebuild_cycles()`` recomputes the
whole list from stored records.

Reads go through a per-instance TTL cache.  A read that raced with a write
never repopulates the cache with the pre-write value.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ValidationError

from src.fertility.cache import (
    CYCLES_KEY,
    USER_SETTINGS_KEY,
    TTLCache,
    day_record_key,
    range_covers,
    range_key,
)
from src.fertility.config_loader import FertilityConfig, get_fertility_config
from src.fertility.cycle_stats import CycleStatistics
from src.fertility.store import (
    APP_VERSION,
    CYCLES,
    DAY_RECORDS,
    USER_SETTINGS,
    RecordStore,
    StorageError,
)
from src.fertility.temp_shift import DailyTemperature
from src.fertility.validator import RecordValidationError, RecordValidator, validate_date
from src.models.base import utc_now
from src.models.records import (
    DayRecord,
    FacetType,
    IntercourseKind,
    IntercourseRecord,
    MenstrualCycle,
    MenstrualRecord,
    SymptomRecord,
    TemperatureRecord,
    UserSettings,
)

logger = logging.getLogger("fertility.data_manager")

CURRENT_APP_VERSION = "1.0.0"

RecordInput = BaseModel | Mapping[str, Any]


@dataclass
class RecordStatistics:
    """Summary of everything stored.

    Attributes:
        total_records:        Number of dates with at least one facet.
        temperature_records:  Number of dates with a temperature.
        complete_cycles:      Number of cycle lengths measured between stored
                              period starts.
        average_cycle_length: Mean of those lengths, or the user's configured
                              average when none are measured.
        average_temperature:  Mean of all temperatures (0.0 when none).
        cycle_regularity:     0.0–1.0 regularity score (0.0 with < 3 cycles).
        last_updated:         When the summary was computed.
    """

    total_records: int
    temperature_records: int
    complete_cycles: int
    average_cycle_length: float
    average_temperature: float
    cycle_regularity: float
    last_updated: datetime = field(default_factory=utc_now)


def _pydantic_errors(exc: ValidationError) -> dict[str, str]:
    return {
        ".".join(str(part) for part in err["loc"]) or "record": err["msg"]
        for err in exc.errors()
    }


class DataManager:
    """Validated, cached access to the fertility record store.

    Construct one per store; nothing is shared between instances.

    Usage::

        manager = DataManager(InMemoryRecordStore())
        await manager.initialize()
        await manager.save_temperature_record(
            {"date": "2025-01-06", "time": "06:30", "temperature": 36.7}
        )
        day = await manager.get_day_record("2025-01-06")
    """

    def __init__(
        self,
        store: RecordStore,
        config: FertilityConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        cache: TTLCache | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._config = config or get_fertility_config()
        self._validator = RecordValidator(self._config)
        self._cycle_statistics = CycleStatistics(self._config)
        self._cache = cache or TTLCache(
            ttl_seconds=self._config.cache.ttl_seconds,
            max_entries=self._config.cache.max_entries,
            clock=clock,
        )
        self._today = today
        self._records_lock = asyncio.Lock()
        self._cycles_lock = asyncio.Lock()
        # Bumped on every invalidation so in-flight reads can tell they are stale
        self._generation = 0

    @property
    def cache(self) -> TTLCache:
        return self._cache

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Write default settings and empty collections when absent.

        Also records the app version, logging a migration when the stored
        version differs.
        """
        stored_version = await self._store.get_item(APP_VERSION)
        if stored_version != CURRENT_APP_VERSION:
            self._migrate(stored_version, CURRENT_APP_VERSION)
            await self._store.set_item(APP_VERSION, CURRENT_APP_VERSION)

        if await self._store.get_item(USER_SETTINGS) is None:
            await self._store.set_item(USER_SETTINGS, UserSettings().to_storage())
            self._invalidate(USER_SETTINGS_KEY)
        if await self._store.get_item(DAY_RECORDS) is None:
            await self._store.set_item(DAY_RECORDS, {})
        if await self._store.get_item(CYCLES) is None:
            await self._store.set_item(CYCLES, [])
            self._invalidate(CYCLES_KEY)

        logger.info("Data manager initialised (app version %s)", CURRENT_APP_VERSION)

    @staticmethod
    def _migrate(from_version: str | None, to_version: str) -> None:
        if from_version is None:
            logger.info("Fresh store; no migration needed for v%s", to_version)
            return
        logger.info("Migrating stored data: v%s → v%s", from_version, to_version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _prepare(
        self,
        model_cls: type[BaseModel],
        data: RecordInput,
        record_type: str,
        validate: Callable[..., dict[str, str]],
    ) -> Any:
        """Validate raw input and build the record model.

        Raises:
            RecordValidationError: If any field rule fails.
        """
        raw = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        errors = validate(raw)
        if errors:
            raise RecordValidationError(errors, record_type)
        try:
            record = model_cls.model_validate(raw)
        except ValidationError as exc:
            raise RecordValidationError(_pydantic_errors(exc), record_type) from exc
        return record.model_copy(update={"updated_at": utc_now()})

    def _validate_day(self, value: str, field_name: str = "date") -> None:
        outcome = validate_date(value)
        if not outcome.valid:
            raise RecordValidationError({field_name: outcome.message or "Invalid date"}, "date")

    def _invalidate(self, key: str) -> None:
        self._generation += 1
        self._cache.invalidate(key)

    def _invalidate_day(self, day: str) -> None:
        self._generation += 1
        self._cache.invalidate(day_record_key(day))
        self._cache.invalidate_where(lambda key: range_covers(key, day))

    def _cache_if_current(self, key: str, value: Any, generation: int) -> None:
        if generation == self._generation:
            self._cache.set(key, value)

    async def _load_day_records(self) -> dict[str, Any]:
        records = await self._store.get_item(DAY_RECORDS)
        if records is None:
            return {}
        if not isinstance(records, dict):
            raise StorageError(f"'{DAY_RECORDS}' does not hold a mapping")
        return records

    async def _load_cycles(self) -> list[MenstrualCycle]:
        raw = await self._store.get_item(CYCLES) or []
        try:
            cycles = [MenstrualCycle.model_validate(c) for c in raw]
        except ValidationError as exc:
            raise StorageError(f"Stored cycles are malformed: {exc}") from exc
        return sorted(cycles, key=lambda c: c.start_date)

    @staticmethod
    def _parse_day(day: str, raw: Any | None) -> DayRecord:
        if raw is None:
            return DayRecord(date=day)
        try:
            return DayRecord.model_validate(raw)
        except ValidationError as exc:
            raise StorageError(f"Stored day record {day} is malformed: {exc}") from exc

    async def _update_day(self, day: str, mutate: Callable[[DayRecord], None]) -> DayRecord:
        """Read-merge-write one date under the records lock."""
        async with self._records_lock:
            records = await self._load_day_records()
            current = self._parse_day(day, records.get(day))
            mutate(current)
            if current.is_empty:
                records.pop(day, None)
            else:
                records[day] = current.to_storage()
            try:
                await self._store.set_item(DAY_RECORDS, records)
            finally:
                self._invalidate_day(day)
        return current

    # ------------------------------------------------------------------
    # Saves
    # ------------------------------------------------------------------

    async def save_temperature_record(self, record: RecordInput) -> TemperatureRecord:
        """Validate and store the temperature for a date (last write wins).

        Args:
            record: TemperatureRecord or a dict with date, time, temperature, note.

        Returns:
            The stored TemperatureRecord.

        Raises:
            RecordValidationError: If a field fails validation.
            StorageError:          If the store write fails.
        """
        temp: TemperatureRecord = self._prepare(
            TemperatureRecord,
            record,
            "temperature record",
            lambda raw: self._validator.validate_temperature_record(raw, self._today()),
        )

        def mutate(day: DayRecord) -> None:
            day.temperature = temp

        await self._update_day(temp.date, mutate)
        logger.debug("Saved temperature %.2f°C for %s", temp.temperature, temp.date)
        return temp

    async def save_menstrual_record(
        self, record: RecordInput, update_cycles: bool = True
    ) -> MenstrualRecord:
        """Validate and store the menstrual facet for a date.

        When the record starts or ends a period, ``apply_cycle_boundary()``
        runs afterwards unless ``update_cycles`` is False.  Overwriting a
        start or end record with different flags rebuilds the cycle list
        instead.

        Args:
            record:        MenstrualRecord or a dict with date, flow, isStart, isEnd, note.
            update_cycles: Run the cycle boundary step after saving.

        Returns:
            The stored MenstrualRecord.
        """
        menstrual: MenstrualRecord = self._prepare(
            MenstrualRecord,
            record,
            "menstrual record",
            lambda raw: self._validator.validate_menstrual_record(raw, self._today()),
        )

        replaced: list[MenstrualRecord] = []

        def mutate(day: DayRecord) -> None:
            if day.menstrual is not None:
                replaced.append(day.menstrual)
            day.menstrual = menstrual

        await self._update_day(menstrual.date, mutate)
        logger.debug(
            "Saved menstrual record for %s (flow=%s, start=%s, end=%s)",
            menstrual.date, menstrual.flow.value, menstrual.is_start, menstrual.is_end,
        )

        if not update_cycles:
            return menstrual
        previous = replaced[0] if replaced else None
        if previous is not None and previous.is_boundary and (
            (previous.is_start, previous.is_end) != (menstrual.is_start, menstrual.is_end)
        ):
            await self.rebuild_cycles()
        elif menstrual.is_boundary:
            await self.apply_cycle_boundary(menstrual)
        return menstrual

    async def save_intercourse_record(self, record: RecordInput) -> IntercourseRecord:
        """Add an intercourse entry, or replace the entry with the same id.

        Any "no intercourse" marker on the date is dropped.
        """
        entry: IntercourseRecord = self._prepare(
            IntercourseRecord,
            record,
            "intercourse record",
            lambda raw: self._validator.validate_intercourse_record(raw, self._today()),
        )
        entry = entry.model_copy(update={"kind": IntercourseKind.recorded})

        def mutate(day: DayRecord) -> None:
            kept = [r for r in day.intercourse if not r.is_marker]
            for idx, existing in enumerate(kept):
                if existing.id == entry.id:
                    kept[idx] = entry
                    break
            else:
                kept.append(entry)
            day.intercourse = kept

        await self._update_day(entry.date, mutate)
        logger.debug("Saved intercourse record %s for %s", entry.id, entry.date)
        return entry

    async def save_no_intercourse_record(self, record: RecordInput) -> IntercourseRecord:
        """Mark a date as explicitly having no intercourse.

        Replaces every intercourse entry on the date with a single marker.
        """
        marker: IntercourseRecord = self._prepare(
            IntercourseRecord,
            record,
            "intercourse record",
            lambda raw: self._validator.validate_intercourse_record(raw, self._today()),
        )
        marker = marker.model_copy(update={"kind": IntercourseKind.none})

        def mutate(day: DayRecord) -> None:
            day.intercourse = [marker]

        await self._update_day(marker.date, mutate)
        logger.debug("Saved no-intercourse marker for %s", marker.date)
        return marker

    async def save_symptom_record(self, record: RecordInput) -> SymptomRecord:
        symptoms: SymptomRecord = self._prepare(
            SymptomRecord,
            record,
            "symptom record",
            lambda raw: self._validator.validate_symptom_record(raw, self._today()),
        )

        def mutate(day: DayRecord) -> None:
            day.symptoms = symptoms

        await self._update_day(symptoms.date, mutate)
        return symptoms

    # ------------------------------------------------------------------
    # Cycle maintenance
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_boundary(cycles: list[MenstrualCycle], record: MenstrualRecord) -> bool:
        """Apply one period boundary to a sorted cycle list in place.

        Returns:
            True if the list changed.
        """
        if record.is_start:
            if any(c.start_date == record.date for c in cycles):
                return False
            cycles.append(MenstrualCycle(start_date=record.date))
            cycles.sort(key=lambda c: c.start_date)
            return True

        if not record.is_end or not cycles:
            return False

        latest = cycles[-1]
        if latest.end_date is not None or record.date < latest.start_date:
            return False

        end = date.fromisoformat(record.date)
        start = date.fromisoformat(latest.start_date)
        latest.end_date = record.date
        latest.length = (end - start).days + 1

        open_earlier = [c for c in cycles[:-1] if not c.is_complete]
        if len(open_earlier) > 1:
            logger.warning(
                "%d earlier cycles are still open; closing only the one before %s",
                len(open_earlier), latest.start_date,
            )
        if len(cycles) > 1:
            previous = cycles[-2]
            if not previous.is_complete:
                previous.is_complete = True
                previous.length = (start - date.fromisoformat(previous.start_date)).days
        return True

    async def _write_cycles(self, cycles: list[MenstrualCycle]) -> None:
        try:
            await self._store.set_item(CYCLES, [c.to_storage() for c in cycles])
        finally:
            self._invalidate(CYCLES_KEY)

    async def apply_cycle_boundary(self, record: MenstrualRecord) -> list[MenstrualCycle]:
        """Update stored cycles for a period start or end record.

        A start opens a new cycle (never two for the same date).  An end sets
        the latest open cycle's end date and period length, and closes the
        cycle before it, measuring its length up to the latest start.

        Args:
            record: A saved MenstrualRecord.

        Returns:
            The cycle list after the update.
        """
        async with self._cycles_lock:
            cycles = await self._load_cycles()
            if self._apply_boundary(cycles, record):
                await self._write_cycles(cycles)
                logger.info(
                    "Cycles updated for period %s on %s (%d cycles)",
                    "start" if record.is_start else "end", record.date, len(cycles),
                )
        return cycles

    async def rebuild_cycles(self) -> list[MenstrualCycle]:
        """Recompute the cycle list from every stored period boundary record."""
        records = await self._load_day_records()
        boundaries = sorted(
            (
                day.menstrual
                for day in (self._parse_day(d, raw) for d, raw in records.items())
                if day.menstrual is not None and day.menstrual.is_boundary
            ),
            key=lambda m: m.date,
        )
        cycles: list[MenstrualCycle] = []
        for record in boundaries:
            self._apply_boundary(cycles, record)

        async with self._cycles_lock:
            await self._write_cycles(cycles)
        logger.info("Rebuilt %d cycles from %d boundary records", len(cycles), len(boundaries))
        return cycles

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_day_record(self, day: str) -> DayRecord | None:
        """Return everything recorded for a date, or None.

        Args:
            day: ISO date (YYYY-MM-DD).

        Raises:
            RecordValidationError: If ``day`` is not a valid date.
        """
        self._validate_day(day)
        key = day_record_key(day)
        cached = self._cache.get(key)
        if cached is not None:
            return DayRecord.model_validate(cached)

        generation = self._generation
        raw = (await self._load_day_records()).get(day)
        if raw is None:
            return None
        record = self._parse_day(day, raw)
        self._cache_if_current(key, raw, generation)
        return record

    async def get_day_records_in_range(self, start: str, end: str) -> list[DayRecord]:
        """Return the recorded dates in ``[start, end]``, ascending.

        Dates without data are omitted.

        Raises:
            RecordValidationError: For malformed dates or ``start > end``.
        """
        self._validate_day(start, "start")
        self._validate_day(end, "end")
        if start > end:
            raise RecordValidationError({"end": "End date must not be before start date"}, "date range")

        key = range_key(start, end)
        cached = self._cache.get(key)
        if cached is not None:
            return [DayRecord.model_validate(r) for r in cached]

        generation = self._generation
        records = await self._load_day_records()
        selected = [records[d] for d in sorted(records) if start <= d <= end]
        result = [self._parse_day(raw.get("date", ""), raw) for raw in selected]
        self._cache_if_current(key, selected, generation)
        return result

    async def _records_between(self, start: str | None, end: str | None) -> list[DayRecord]:
        if start is not None and end is not None:
            return await self.get_day_records_in_range(start, end)
        records = await self._load_day_records()
        return [
            self._parse_day(d, records[d])
            for d in sorted(records)
            if (start is None or d >= start) and (end is None or d <= end)
        ]

    async def get_all_day_records(self) -> list[DayRecord]:
        """Every stored DayRecord in date order (uncached)."""
        return await self._records_between(None, None)

    async def get_temperature_series(
        self, start: str | None = None, end: str | None = None
    ) -> list[DailyTemperature]:
        return [
            DailyTemperature.from_record(day.temperature)
            for day in await self._records_between(start, end)
            if day.temperature is not None
        ]

    async def get_menstrual_records(
        self, start: str | None = None, end: str | None = None
    ) -> list[MenstrualRecord]:
        return [
            day.menstrual
            for day in await self._records_between(start, end)
            if day.menstrual is not None
        ]

    async def get_intercourse_records(
        self,
        start: str | None = None,
        end: str | None = None,
        include_markers: bool = False,
    ) -> list[IntercourseRecord]:
        entries: list[IntercourseRecord] = []
        for day in await self._records_between(start, end):
            entries.extend(day.intercourse if include_markers else day.recorded_intercourse)
        return entries

    async def get_cycles(self) -> list[MenstrualCycle]:
        cached = self._cache.get(CYCLES_KEY)
        if cached is not None:
            return [MenstrualCycle.model_validate(c) for c in cached]
        generation = self._generation
        cycles = await self._load_cycles()
        self._cache_if_current(CYCLES_KEY, [c.to_storage() for c in cycles], generation)
        return cycles

    async def get_user_settings(self) -> UserSettings:
        """Return stored settings, or the defaults when none are stored."""
        cached = self._cache.get(USER_SETTINGS_KEY)
        if cached is not None:
            return UserSettings.model_validate(cached)
        generation = self._generation
        raw = await self._store.get_item(USER_SETTINGS)
        if raw is None:
            return UserSettings()
        try:
            settings = UserSettings.model_validate(raw)
        except ValidationError as exc:
            raise StorageError(f"Stored user settings are malformed: {exc}") from exc
        self._cache_if_current(USER_SETTINGS_KEY, raw, generation)
        return settings

    async def save_user_settings(self, settings: RecordInput) -> UserSettings:
        updated: UserSettings = self._prepare(
            UserSettings, settings, "user settings", self._validator.validate_user_settings
        )
        try:
            await self._store.set_item(USER_SETTINGS, updated.to_storage())
        finally:
            self._invalidate(USER_SETTINGS_KEY)
        logger.info(
            "Saved user settings (cycle=%d, luteal=%d)",
            updated.average_cycle_length, updated.average_luteal_phase,
        )
        return updated

    # ------------------------------------------------------------------
    # Deletes & maintenance
    # ------------------------------------------------------------------

    async def delete_record(
        self,
        day: str,
        facet: FacetType | str,
        record_id: str | None = None,
    ) -> bool:
        """Remove one facet from a date.

        A date left with no facets is removed from storage entirely.

        Args:
            day:       ISO date.
            facet:     'temperature', 'menstrual', 'intercourse' or 'symptoms'.
            record_id: For intercourse, remove only this entry; otherwise all.

        Returns:
            True if something was removed, False if there was nothing to remove.

        Raises:
            RecordValidationError: For a malformed date or unknown facet.
        """
        self._validate_day(day)
        try:
            facet = FacetType(facet)
        except ValueError as exc:
            raise RecordValidationError(
                {"type": f"Unknown record type: {facet!r}"}, "delete request"
            ) from exc

        removed_boundary = False
        async with self._records_lock:
            records = await self._load_day_records()
            if day not in records:
                return False
            current = self._parse_day(day, records[day])

            if facet is FacetType.intercourse:
                if record_id is None:
                    remaining: list[IntercourseRecord] = []
                else:
                    remaining = [r for r in current.intercourse if r.id != record_id]
                if len(remaining) == len(current.intercourse):
                    return False
                current.intercourse = remaining
            else:
                existing = getattr(current, facet.value)
                if existing is None:
                    return False
                if facet is FacetType.menstrual:
                    removed_boundary = existing.is_boundary
                setattr(current, facet.value, None)

            if current.is_empty:
                del records[day]
            else:
                records[day] = current.to_storage()
            try:
                await self._store.set_item(DAY_RECORDS, records)
            finally:
                self._invalidate_day(day)

        logger.debug("Deleted %s from %s", facet.value, day)
        if removed_boundary:
            await self.rebuild_cycles()
        return True

    async def get_statistics(self) -> RecordStatistics:
        records = await self._load_day_records()
        cycles = await self.get_cycles()
        settings = await self.get_user_settings()

        temperatures = [
            raw["temperature"]["temperature"]
            for raw in records.values()
            if isinstance(raw.get("temperature"), dict)
        ]
        summary = self._cycle_statistics.from_cycles(cycles, settings=settings)
        lengths = summary.cycle_lengths
        average_cycle = (
            sum(lengths) / len(lengths) if lengths else float(settings.average_cycle_length)
        )

        return RecordStatistics(
            total_records=len(records),
            temperature_records=len(temperatures),
            complete_cycles=summary.completed_cycles,
            average_cycle_length=round(average_cycle, 1),
            average_temperature=(
                round(sum(temperatures) / len(temperatures), 2) if temperatures else 0.0
            ),
            cycle_regularity=summary.regularity_score or 0.0,
        )

    async def cleanup_old_data(self, days_to_keep: int = 365, today: date | None = None) -> int:
        """Delete day records older than ``days_to_keep`` days.

        Args:
            days_to_keep: Records on or after today − days_to_keep are kept.
            today:        Reference day (defaults to today).

        Returns:
            Number of dates removed.
        """
        cutoff = ((today or self._today()) - timedelta(days=days_to_keep)).isoformat()
        async with self._records_lock:
            records = await self._load_day_records()
            kept = {d: raw for d, raw in records.items() if d >= cutoff}
            deleted = len(records) - len(kept)
            if deleted:
                try:
                    await self._store.set_item(DAY_RECORDS, kept)
                finally:
                    self._generation += 1
                    self._cache.clear()
        logger.info("Cleanup removed %d day record(s) before %s", deleted, cutoff)
        return deleted
