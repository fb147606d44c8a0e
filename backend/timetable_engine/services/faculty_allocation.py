from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from timetable_engine.core.config import Settings, get_settings
from timetable_engine.schemas.faculty import FacultyRecord, FacultySubjectAssignment, FacultyWorkloadSummary
from timetable_engine.schemas.timetable import Grid
from timetable_engine.services.collaborators import DirectoryService, PersistenceService, fetch_or_default
from timetable_engine.services.grid import (
    DAY_COUNT,
    PERIODS,
    SATURDAY,
    TOTAL_SLOTS,
    PlainSubject,
    Slot,
    SpecialWithAttribution,
    all_slot_keys,
    is_free_cell,
    iter_filled_cells,
    parse_grid_cell,
    slot_key,
)

logger = logging.getLogger(__name__)


@dataclass
class FacultyAllocation:
    faculty_id: str
    faculty_name: str
    assigned_slots: set[str] = field(default_factory=set)
    available_slots: set[str] = field(default_factory=set)
    lab_preference: bool = False
    subject_ids: set[str] = field(default_factory=set)
    is_class_counselor: bool = False


@dataclass(frozen=True)
class AllocationResult:
    success: bool
    day: int
    period: int
    faculty_id: str | None = None
    faculty_name: str | None = None
    conflict_reason: str | None = None


AllocationMap = dict[str, FacultyAllocation]


@dataclass
class AllocationSnapshot:
    allocation_map: AllocationMap
    # "<fetch>: <error>" for every collaborator read that fell back to empty data.
    degradations: list[str] = field(default_factory=list)


def _fetch_into(degradations: list[str], label, loader, default):
    outcome = fetch_or_default(label, loader, default)
    if outcome.degraded:
        degradations.append(outcome.degraded_reason)
    return outcome.value


def counselor_reserved_slot_keys(settings: Settings) -> set[str]:
    first_period = settings.counselor_reserved_from_period - 1
    return {slot_key(SATURDAY, period) for period in range(first_period, PERIODS)}


def eligible_subjects_by_faculty(
    assignments: list[FacultySubjectAssignment],
    section: str,
) -> dict[str, set[str]]:
    subjects: dict[str, set[str]] = defaultdict(set)
    for row in assignments:
        if row.section is None or row.section == section:
            subjects[row.faculty_id].add(row.subject_id)
    return subjects


def subject_owner_index(assignments: list[FacultySubjectAssignment], section: str) -> dict[str, str]:
    """Map subject id -> teaching faculty id, section-specific rows winning over year-wide ones."""
    owners: dict[str, str] = {}
    for row in assignments:
        if row.section == section:
            owners.setdefault(row.subject_id, row.faculty_id)
    for row in assignments:
        if row.section is None:
            owners.setdefault(row.subject_id, row.faculty_id)
    return owners


class FacultyAllocationBuilder:
    """Builds the per-faculty availability snapshot for one (department, year, section)."""

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

    def build(
        self,
        department_id: str,
        year: str,
        section: str,
        *,
        include_own_timetable: bool = True,
    ) -> AllocationMap:
        return self.build_snapshot(
            department_id, year, section, include_own_timetable=include_own_timetable
        ).allocation_map

    def build_snapshot(
        self,
        department_id: str,
        year: str,
        section: str,
        *,
        include_own_timetable: bool = True,
    ) -> AllocationSnapshot:
        degradations: list[str] = []

        roster: list[FacultyRecord] = _fetch_into(
            degradations,
            "faculty roster",
            lambda: self.directory.list_faculty_in_department(department_id),
            [],
        )
        skip_key = None if include_own_timetable else (year, section)
        existing = self.collect_existing_allocations(
            department_id, roster, skip_key=skip_key, degradations=degradations
        )

        assignments: list[FacultySubjectAssignment] = _fetch_into(
            degradations,
            "subject assignments",
            lambda: self.directory.list_faculty_subject_assignments(department_id, year, section),
            [],
        )
        counselor = _fetch_into(
            degradations,
            "class counselor",
            lambda: self.directory.get_class_counselor(department_id, year, section),
            None,
        )
        counselor_id = counselor.faculty_id if counselor is not None else None
        subjects_by_faculty = eligible_subjects_by_faculty(assignments, section)

        universe = all_slot_keys()
        reserved = counselor_reserved_slot_keys(self.settings)
        allocation_map: AllocationMap = {}
        for faculty in roster:
            assigned = set(existing.get(faculty.id, set()))
            is_class_counselor = faculty.id == counselor_id
            available = universe - assigned
            if is_class_counselor:
                available -= reserved
            allocation_map[faculty.id] = FacultyAllocation(
                faculty_id=faculty.id,
                faculty_name=faculty.name,
                assigned_slots=assigned,
                available_slots=available,
                lab_preference=faculty.lab_preference,
                subject_ids=set(subjects_by_faculty.get(faculty.id, set())),
                is_class_counselor=is_class_counselor,
            )

        logger.info(
            "Built faculty allocation map | department_id=%s year=%s section=%s faculty=%s degraded=%s",
            department_id,
            year,
            section,
            len(allocation_map),
            len(degradations),
        )
        return AllocationSnapshot(allocation_map=allocation_map, degradations=degradations)

    def collect_existing_allocations(
        self,
        department_id: str,
        roster: list[FacultyRecord],
        *,
        skip_key: tuple[str, str] | None = None,
        degradations: list[str] | None = None,
    ) -> dict[str, set[str]]:
        """Slot keys each faculty member already teaches in any stored timetable of the department."""
        if degradations is None:
            degradations = []
        timetables = _fetch_into(
            degradations,
            "stored timetables",
            lambda: self.persistence.list_all_timetables(department_id),
            [],
        )
        faculty_by_name = {faculty.name: faculty.id for faculty in roster}
        subject_ids_by_year: dict[str, dict[str, str]] = {}
        owners_by_class: dict[tuple[str, str], dict[str, str]] = {}
        existing: dict[str, set[str]] = defaultdict(set)

        for timetable in timetables:
            class_key = (timetable.year, timetable.section)
            if skip_key is not None and class_key == skip_key:
                continue
            if timetable.year not in subject_ids_by_year:
                subjects = _fetch_into(
                    degradations,
                    f"subjects for year {timetable.year}",
                    lambda: self.directory.list_subjects(department_id, timetable.year),
                    [],
                )
                subject_ids_by_year[timetable.year] = {subject.name: subject.id for subject in subjects}
            if class_key not in owners_by_class:
                rows = _fetch_into(
                    degradations,
                    f"subject assignments for {timetable.year}/{timetable.section}",
                    lambda: self.directory.list_faculty_subject_assignments(
                        department_id, timetable.year, timetable.section
                    ),
                    [],
                )
                owners_by_class[class_key] = subject_owner_index(rows, timetable.section)

            subject_ids = subject_ids_by_year[timetable.year]
            owners = owners_by_class[class_key]
            for day, period, text in iter_filled_cells(timetable.grid):
                faculty_id = resolve_cell_owner(text, faculty_by_name, subject_ids, owners)
                if faculty_id is None:
                    continue
                existing[faculty_id].add(slot_key(day, period))

        return existing


def resolve_cell_owner(
    text: str,
    faculty_by_name: dict[str, str],
    subject_ids: dict[str, str],
    owners: dict[str, str],
) -> str | None:
    cell = parse_grid_cell(text)
    if isinstance(cell, SpecialWithAttribution):
        faculty_id = faculty_by_name.get(cell.faculty_name)
        if faculty_id is not None:
            return faculty_id
        cell = PlainSubject(name=text)
    subject_id = subject_ids.get(cell.name)
    if subject_id is None:
        return None
    return owners.get(subject_id)


def find_available_faculty_for_slot(
    subject_id: str,
    day: int,
    period: int,
    allocation_map: AllocationMap,
    is_lab_subject: bool = False,
) -> AllocationResult:
    key = slot_key(day, period)
    eligible = [item for item in allocation_map.values() if subject_id in item.subject_ids]
    if not eligible:
        return AllocationResult(
            success=False,
            day=day,
            period=period,
            conflict_reason=f"No faculty assigned to subject {subject_id}",
        )

    available = [
        item
        for item in eligible
        if key in item.available_slots and (not is_lab_subject or item.lab_preference)
    ]
    if not available:
        reasons: list[str] = []
        for item in eligible:
            if key not in item.available_slots:
                reasons.append(f"{item.faculty_name} already assigned at {key}")
            if is_lab_subject and not item.lab_preference:
                reasons.append(f"{item.faculty_name} doesn't prefer lab sessions")
        return AllocationResult(success=False, day=day, period=period, conflict_reason="; ".join(reasons))

    # min() keeps the first candidate on ties.
    selected = min(available, key=lambda item: len(item.assigned_slots))
    return AllocationResult(
        success=True,
        day=day,
        period=period,
        faculty_id=selected.faculty_id,
        faculty_name=selected.faculty_name,
    )


def allocate_faculty_to_slot(faculty_id: str, day: int, period: int, allocation_map: AllocationMap) -> bool:
    faculty = allocation_map.get(faculty_id)
    if faculty is None:
        return False
    key = slot_key(day, period)
    if key not in faculty.available_slots:
        return False
    faculty.available_slots.discard(key)
    faculty.assigned_slots.add(key)
    return True


def summarize_workload(allocation_map: AllocationMap) -> list[FacultyWorkloadSummary]:
    summaries = [
        FacultyWorkloadSummary(
            faculty_id=item.faculty_id,
            faculty_name=item.faculty_name,
            total_slots=len(item.assigned_slots),
            available_slots=len(item.available_slots),
            workload_percentage=round(len(item.assigned_slots) / TOTAL_SLOTS * 100, 2),
            is_class_counselor=item.is_class_counselor,
        )
        for item in allocation_map.values()
    ]
    summaries.sort(key=lambda item: item.workload_percentage, reverse=True)
    return summaries


def find_available_slots(
    faculty_id: str,
    grid: Grid,
    allocation_map: AllocationMap,
    exclude_labs: bool = False,
) -> list[Slot]:
    faculty = allocation_map.get(faculty_id)
    if faculty is None:
        return []

    slots: list[Slot] = []
    for day in range(DAY_COUNT):
        for period in range(PERIODS):
            if slot_key(day, period) not in faculty.available_slots:
                continue
            if day < len(grid) and period < len(grid[day]) and not is_free_cell(grid[day][period]):
                continue
            # P4-P7 are the lab periods.
            if exclude_labs and not faculty.lab_preference and period >= 3:
                continue
            slots.append(Slot(day=day, period=period))
    return slots
