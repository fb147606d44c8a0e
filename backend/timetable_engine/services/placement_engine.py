from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum

from timetable_engine.core.config import Settings, get_settings
from timetable_engine.schemas.conflict import FacultyConflictReport
from timetable_engine.schemas.subject import LabPreferences, Subject, SubjectType
from timetable_engine.schemas.timetable import Grid, SpecialHoursConfig
from timetable_engine.services.collaborators import DirectoryService, PersistenceService, fetch_or_default
from timetable_engine.services.conflict_service import FacultyConflictValidator
from timetable_engine.services.faculty_allocation import (
    AllocationMap,
    FacultyAllocationBuilder,
    allocate_faculty_to_slot,
    find_available_faculty_for_slot,
)
from timetable_engine.services.grid import (
    DAY_COUNT,
    DAYS,
    PERIODS,
    SATURDAY,
    WEEKDAY_COUNT,
    empty_grid,
    first_free_period,
    free_capacity,
    special_label,
)

logger = logging.getLogger(__name__)


class GenerationStage(str, Enum):
    empty = "empty"
    specials_locked = "specials_locked"
    labs_placed = "labs_placed"
    electives_reserved = "electives_reserved"
    theory_filled = "theory_filled"
    reallocated = "reallocated"
    relaxed = "relaxed"


@dataclass
class GenerationResult:
    grid: Grid
    stage: GenerationStage
    remaining_hours: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    conflict_report: FacultyConflictReport | None = None
    # Collaborator reads that failed and were replaced by empty data.
    degradations: list[str] = field(default_factory=list)


def is_weekday_only(subject: Subject, settings: Settings) -> bool:
    tags = {tag.strip().lower() for tag in subject.tags}
    for marker in settings.weekday_only_tags:
        if marker.lower() in tags:
            return True
        if re.search(rf"\b{re.escape(marker)}\b", subject.name, flags=re.IGNORECASE):
            return True
    return False


def evening_lab_block(hours: int, start_at_fifth: bool) -> tuple[int, int]:
    """0-based inclusive (start, end) of the afternoon block used for `hours` of lab."""
    if hours == 4:
        return 3, 6
    if hours == 3:
        return 4, 6
    if hours == 2:
        return (4, 5) if start_at_fifth else (5, 6)
    return max(0, PERIODS - hours), PERIODS - 1


def morning_lab_block(hours: int, morning_start: int | None) -> tuple[int, int]:
    max_start = 3 if hours >= 4 else 4
    start = max(1, min(max_start, morning_start or 1)) - 1
    return start, start + hours - 1


class GridPlacement:
    """Mutable state of one generation run; each method advances one stage."""

    def __init__(
        self,
        subjects: list[Subject],
        allocation_map: AllocationMap,
        lab_preferences: LabPreferences,
        settings: Settings,
    ) -> None:
        self.settings = settings
        self.allocation_map = allocation_map
        self.lab_preferences = lab_preferences
        self.grid = empty_grid()
        self.stage = GenerationStage.empty
        self.warnings: list[str] = []

        self.subjects = list(subjects)
        self.labs = [subject for subject in self.subjects if subject.is_lab]
        self.open_electives = [subject for subject in self.subjects if subject.type == SubjectType.open_elective]
        self.theory = [
            subject
            for subject in self.subjects
            if subject.type in (SubjectType.theory, SubjectType.elective)
        ]
        self.lab_names = {lab.name for lab in self.labs}
        self.remaining: dict[str, int] = {subject.id: subject.hours_per_week for subject in self.subjects}
        self.placed_labs: set[str] = set()
        self.day_capacity = [free_capacity(self.grid, day) for day in range(DAY_COUNT)]
        self.weekday_only = {subject.id for subject in self.subjects if is_weekday_only(subject, settings)}

    def _advance(self, stage: GenerationStage) -> None:
        self.stage = stage
        logger.debug("Placement stage reached | stage=%s", stage.value)

    def _fill(self, day: int, period: int, label: str) -> bool:
        if self.grid[day][period] is not None:
            return False
        self.grid[day][period] = label
        return True

    def _blocked_on_saturday(self, subject: Subject, day: int) -> bool:
        return day == SATURDAY and subject.id in self.weekday_only

    def _day_order_by_capacity(self) -> list[int]:
        return sorted(range(DAY_COUNT), key=lambda day: -self.day_capacity[day])

    def day_has_any_lab(self, day: int) -> bool:
        return any(cell is not None and cell in self.lab_names for cell in self.grid[day])

    def block_is_free(self, day: int, start: int, end: int) -> bool:
        if start < 0 or end >= PERIODS:
            return False
        return all(self.grid[day][period] is None for period in range(start, end + 1))

    def lock_special_hours(self, configs: list[SpecialHoursConfig], counselor_name: str | None) -> None:
        for config in configs:
            if not config.is_active:
                continue
            label = special_label(config.special_type, counselor_name)

            placed = 0
            for period in config.saturday_periods:
                if placed >= config.saturday_hours:
                    break
                index = period - 1
                if 0 <= index < PERIODS and self._fill(SATURDAY, index, label):
                    placed += 1

            placed = 0
            day = 0
            while placed < config.weekdays_hours and day < WEEKDAY_COUNT:
                for period in config.weekdays_periods:
                    if placed >= config.weekdays_hours:
                        break
                    index = period - 1
                    if 0 <= index < PERIODS and self._fill(day, index, label):
                        placed += 1
                day += 1

            if placed < config.weekdays_hours:
                logger.warning(
                    "Special hours short on weekdays | type=%s requested=%s placed=%s",
                    config.special_type,
                    config.weekdays_hours,
                    placed,
                )
        self._advance(GenerationStage.specials_locked)

    def _block_has_faculty(self, lab: Subject, day: int, start: int, end: int) -> bool:
        return all(
            find_available_faculty_for_slot(lab.id, day, period, self.allocation_map, True).success
            for period in range(start, end + 1)
        )

    def _allocate_block(self, lab: Subject, day: int, start: int, end: int) -> None:
        lead = find_available_faculty_for_slot(lab.id, day, start, self.allocation_map, True)
        for period in range(start, end + 1):
            if lead.success and allocate_faculty_to_slot(lead.faculty_id, day, period, self.allocation_map):
                continue
            result = find_available_faculty_for_slot(lab.id, day, period, self.allocation_map, True)
            if result.success:
                allocate_faculty_to_slot(result.faculty_id, day, period, self.allocation_map)

    def _try_lab_block(self, lab: Subject, day: int, start: int, end: int) -> bool:
        if self.day_has_any_lab(day) or not self.block_is_free(day, start, end):
            return False
        if not self._block_has_faculty(lab, day, start, end):
            return False
        for period in range(start, end + 1):
            self._fill(day, period, lab.name)
        self._allocate_block(lab, day, start, end)
        return True

    def place_morning_labs(self) -> None:
        if not self.lab_preferences:
            return

        def priority_key(lab: Subject) -> tuple[float, int]:
            preference = self.lab_preferences.get(lab.id)
            priority = preference.priority if preference is not None and preference.priority is not None else math.inf
            return priority, -lab.hours_per_week

        for lab in sorted(self.labs, key=priority_key):
            preference = self.lab_preferences.get(lab.id)
            if preference is None or not preference.morning_enabled:
                continue
            start, end = morning_lab_block(lab.hours_per_week, preference.morning_start)
            for day in range(WEEKDAY_COUNT):
                if self._try_lab_block(lab, day, start, end):
                    # One morning block always covers the whole weekly quota.
                    self.remaining[lab.id] = 0
                    self.placed_labs.add(lab.name)
                    break

    def place_remaining_labs(self) -> None:
        day_cursor = 0
        for lab in self.labs:
            hours = self.remaining.get(lab.id, 0)
            if hours <= 0 or lab.name in self.placed_labs:
                continue
            preference = self.lab_preferences.get(lab.id)
            start_at_fifth = bool(preference and preference.evening_two_hour_start_at5)

            while hours > 0:
                placed = False
                attempts = 0
                while not placed and attempts < self.settings.lab_placement_attempts:
                    day = day_cursor % WEEKDAY_COUNT
                    start, end = evening_lab_block(hours, start_at_fifth)
                    if self._try_lab_block(lab, day, start, end):
                        block_length = end - start + 1
                        hours -= block_length
                        self.remaining[lab.id] = hours
                        self.placed_labs.add(lab.name)
                        placed = True
                    day_cursor += 1
                    attempts += 1
                if not placed:
                    break

            if hours > 0:
                logger.warning(
                    "Lab could not be fully placed | subject=%s remaining_hours=%s",
                    lab.name,
                    hours,
                )
        self._advance(GenerationStage.labs_placed)

    def reserve_open_electives(self, quota: int) -> None:
        for subject in self.open_electives:
            self.remaining[subject.id] = 0

        self.day_capacity = [free_capacity(self.grid, day) for day in range(DAY_COUNT)]
        label = self.settings.open_elective_label
        cap = self.settings.open_elective_max_per_day
        left = max(0, quota)
        progress = True
        while left > 0 and progress:
            progress = False
            for day in self._day_order_by_capacity():
                if left <= 0:
                    break
                if sum(1 for cell in self.grid[day] if cell == label) >= cap:
                    continue
                period = first_free_period(self.grid, day)
                if period is None:
                    continue
                self._fill(day, period, label)
                self.day_capacity[day] -= 1
                left -= 1
                progress = True

        if left > 0:
            logger.warning("Open elective quota not fully placed | quota=%s unplaced=%s", quota, left)
        self._advance(GenerationStage.electives_reserved)

    def fill_theory(self) -> None:
        ordered = sorted(self.theory, key=lambda subject: -self.remaining.get(subject.id, 0))
        guard = 0
        placed_something = True
        while placed_something and guard < self.settings.theory_fill_guard_iterations:
            placed_something = False
            for subject in ordered:
                left = self.remaining.get(subject.id, 0)
                if left <= 0:
                    continue
                for day in self._day_order_by_capacity():
                    if self._blocked_on_saturday(subject, day):
                        continue
                    if subject.name in self.grid[day]:
                        continue
                    period = first_free_period(self.grid, day)
                    if period is None:
                        continue
                    result = find_available_faculty_for_slot(subject.id, day, period, self.allocation_map, False)
                    if not result.success:
                        continue
                    self._fill(day, period, subject.name)
                    allocate_faculty_to_slot(result.faculty_id, day, period, self.allocation_map)
                    self.remaining[subject.id] = left - 1
                    self.day_capacity[day] -= 1
                    placed_something = True
                    break
            guard += 1
        self._advance(GenerationStage.theory_filled)

    def _short_theory_subjects(self) -> list[Subject]:
        short = [subject for subject in self.theory if self.remaining.get(subject.id, 0) > 0]
        return sorted(short, key=lambda subject: -self.remaining[subject.id])

    def reallocate_gaps(self) -> None:
        empty_cells = [
            (day, period)
            for day in range(DAY_COUNT)
            for period in range(PERIODS)
            if self.grid[day][period] is None
        ]
        for subject in self._short_theory_subjects():
            left = self.remaining[subject.id]
            for day, period in empty_cells:
                if left <= 0:
                    break
                if self._blocked_on_saturday(subject, day):
                    continue
                if self.grid[day][period] is not None:
                    continue
                result = find_available_faculty_for_slot(subject.id, day, period, self.allocation_map, False)
                if not result.success:
                    continue
                self._fill(day, period, subject.name)
                allocate_faculty_to_slot(result.faculty_id, day, period, self.allocation_map)
                left -= 1
                self.remaining[subject.id] = left
        self._advance(GenerationStage.reallocated)

    def _relaxed_cells(self, subject: Subject) -> list[tuple[int, int]]:
        # Same-day repeats are allowed here; only free cells and the Saturday rule apply.
        return [
            (day, period)
            for day in range(DAY_COUNT)
            if not self._blocked_on_saturday(subject, day)
            for period in range(PERIODS)
            if self.grid[day][period] is None
        ]

    def relax_daily_limit(self) -> None:
        for subject in self._short_theory_subjects():
            left = self.remaining[subject.id]
            for day, period in self._relaxed_cells(subject):
                if left <= 0:
                    break
                result = find_available_faculty_for_slot(subject.id, day, period, self.allocation_map, False)
                if result.success:
                    allocate_faculty_to_slot(result.faculty_id, day, period, self.allocation_map)
                else:
                    message = f"No faculty available for {subject.name} at {DAYS[day]} P{period + 1}"
                    logger.warning("Relaxed placement without faculty | %s", message)
                    self.warnings.append(message)
                self._fill(day, period, subject.name)
                left -= 1
                self.remaining[subject.id] = left
        self._advance(GenerationStage.relaxed)

    def shortfall(self) -> dict[str, int]:
        return {subject_id: hours for subject_id, hours in self.remaining.items() if hours > 0}


class TimetableGenerator:
    def __init__(
        self,
        directory: DirectoryService,
        persistence: PersistenceService,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.directory = directory
        self.persistence = persistence
        self.settings = settings or get_settings()
        self.allocation_builder = FacultyAllocationBuilder(directory, persistence, settings=self.settings)
        self.conflict_validator = FacultyConflictValidator(self.allocation_builder)

    def generate(
        self,
        subjects: list[Subject],
        special_configs: list[SpecialHoursConfig] | None,
        lab_preferences: LabPreferences | None,
        department_id: str,
        year: str,
        section: str,
    ) -> Grid:
        return self.run(subjects, special_configs, lab_preferences, department_id, year, section).grid

    def run(
        self,
        subjects: list[Subject],
        special_configs: list[SpecialHoursConfig] | None,
        lab_preferences: LabPreferences | None,
        department_id: str,
        year: str,
        section: str,
    ) -> GenerationResult:
        logger.info(
            "Timetable generation started | department_id=%s year=%s section=%s subjects=%s",
            department_id,
            year,
            section,
            len(subjects),
        )
        # The section's previously stored grid is about to be replaced, so it must not block itself.
        snapshot = self.allocation_builder.build_snapshot(
            department_id, year, section, include_own_timetable=False
        )
        allocation_map = snapshot.allocation_map
        degradations = list(snapshot.degradations)
        counselor_name = next(
            (item.faculty_name for item in allocation_map.values() if item.is_class_counselor),
            None,
        )

        placement = GridPlacement(subjects, allocation_map, lab_preferences or {}, self.settings)
        placement.lock_special_hours(special_configs or [], counselor_name)
        placement.place_morning_labs()
        placement.place_remaining_labs()

        quota_outcome = fetch_or_default(
            "open elective quota",
            lambda: int(self.directory.get_open_elective_quota(department_id, year)),
            0,
        )
        if quota_outcome.degraded:
            degradations.append(quota_outcome.degraded_reason)
        placement.reserve_open_electives(quota_outcome.value)
        placement.fill_theory()
        placement.reallocate_gaps()
        placement.relax_daily_limit()

        if degradations:
            logger.warning("Generation ran on empty fallback data | degradations=%s", degradations)

        remaining = placement.shortfall()
        if remaining:
            logger.warning(
                "Subjects left short of weekly hours | department_id=%s year=%s section=%s remaining=%s",
                department_id,
                year,
                section,
                remaining,
            )

        report = self.conflict_validator.validate(placement.grid, subjects, department_id, year, section)
        if not report.valid:
            logger.warning("Faculty conflicts detected | conflicts=%s", report.conflicts)
        if report.warnings:
            logger.warning("Faculty allocation warnings | warnings=%s", report.warnings)

        return GenerationResult(
            grid=placement.grid,
            stage=placement.stage,
            remaining_hours=remaining,
            warnings=placement.warnings,
            conflict_report=report,
            degradations=degradations,
        )
