import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from timetable_engine.schemas.conflict import FacultyConflictReport, LabPlacementReport, TotalHoursCheck
from timetable_engine.schemas.subject import LabPreferences, Subject
from timetable_engine.schemas.timetable import Grid
from timetable_engine.services.faculty_allocation import FacultyAllocation, FacultyAllocationBuilder
from timetable_engine.services.grid import (
    DAY_COUNT,
    DAYS,
    PERIODS,
    TOTAL_SLOTS,
    SpecialWithAttribution,
    iter_filled_cells,
    parse_grid_cell,
    slot_key,
)

logger = logging.getLogger(__name__)

MORNING_LAST_PERIOD = 4


class FacultyConflictValidator:
    def __init__(self, allocation_builder: FacultyAllocationBuilder):
        self.allocation_builder = allocation_builder

    def validate(
        self,
        grid: Grid,
        subjects: List[Subject],
        department_id: str,
        year: str,
        section: str,
    ) -> FacultyConflictReport:
        conflicts: List[str] = []
        warnings: List[str] = []

        try:
            allocation_map = self.allocation_builder.build(
                department_id, year, section, include_own_timetable=False
            )
            subject_ids = {subject.name: subject.id for subject in subjects}
            faculty_by_name = {item.faculty_name: item for item in allocation_map.values()}
            # faculty id -> slot keys claimed inside this grid
            claimed: Dict[str, Set[str]] = defaultdict(set)

            for day, period, text in iter_filled_cells(grid):
                key = slot_key(day, period)
                owner: Optional[FacultyAllocation] = None

                cell = parse_grid_cell(text)
                if isinstance(cell, SpecialWithAttribution) and cell.faculty_name in faculty_by_name:
                    owner = faculty_by_name[cell.faculty_name]
                else:
                    subject_id = subject_ids.get(text)
                    if subject_id is None:
                        continue
                    eligible = [item for item in allocation_map.values() if subject_id in item.subject_ids]
                    if not eligible:
                        warnings.append(f"No faculty assigned for {text} at {key}")
                        continue
                    available = [item for item in eligible if key in item.available_slots]
                    if not available:
                        conflicts.append(f"Faculty conflict for {text} at {key} - all assigned faculty are busy")
                        continue
                    owner = available[0]

                if key in claimed[owner.faculty_id]:
                    conflicts.append(f"Faculty {owner.faculty_name} assigned to multiple subjects at {key}")
                else:
                    claimed[owner.faculty_id].add(key)
        except Exception:
            logger.exception(
                "Faculty conflict validation failed | department_id=%s year=%s section=%s",
                department_id,
                year,
                section,
            )
            conflicts.append("Error occurred during faculty conflict validation")

        return FacultyConflictReport(valid=not conflicts, conflicts=conflicts, warnings=warnings)


def validate_lab_placement(
    grid: Grid,
    subjects: List[Subject],
    lab_preferences: Optional[LabPreferences] = None,
) -> LabPlacementReport:
    errors: List[str] = []
    lab_days: Dict[str, List[int]] = {}
    labs = [subject for subject in subjects if subject.is_lab]
    lab_names = {lab.name for lab in labs}

    labs_by_day: Dict[int, List[str]] = defaultdict(list)
    for day, _, text in iter_filled_cells(grid):
        if text not in lab_names:
            continue
        if text not in labs_by_day[day]:
            labs_by_day[day].append(text)
        days = lab_days.setdefault(text, [])
        if day not in days:
            days.append(day)

    for day in range(DAY_COUNT):
        if len(labs_by_day.get(day, [])) > 1:
            errors.append(f"Day {DAYS[day]} has multiple labs: {', '.join(labs_by_day[day])}")

    for lab in labs:
        preference = (lab_preferences or {}).get(lab.id)
        if preference is None or not preference.morning_enabled:
            continue
        for day in lab_days.get(lab.name, []):
            periods = [
                period + 1
                for period in range(PERIODS)
                if period < len(grid[day]) and grid[day][period] == lab.name
            ]
            in_morning = any(period <= MORNING_LAST_PERIOD for period in periods)
            in_evening = any(period > MORNING_LAST_PERIOD for period in periods)
            listed = ", P".join(str(period) for period in periods)
            if not in_morning:
                errors.append(f"Lab {lab.name} should be in morning (P1-P4) but found in periods: P{listed}")
            if in_morning and in_evening:
                errors.append(f"Lab {lab.name} spans both morning and evening periods: P{listed}")

    return LabPlacementReport(valid=not errors, errors=errors, lab_days_by_name=lab_days)


def validate_total_hours(subjects: List[Subject]) -> TotalHoursCheck:
    total = sum(subject.hours_per_week for subject in subjects)
    return TotalHoursCheck(ok=total <= TOTAL_SLOTS, total=total, capacity=TOTAL_SLOTS)
