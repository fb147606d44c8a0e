from __future__ import annotations

import copy
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Generic, Protocol, TypeVar

from timetable_engine.schemas.faculty import ClassCounselorRecord, FacultyRecord, FacultySubjectAssignment
from timetable_engine.schemas.subject import Subject
from timetable_engine.schemas.timetable import Grid, SpecialFlags, StoredTimetable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DirectoryService(Protocol):
    def list_faculty_in_department(self, department_id: str) -> list[FacultyRecord]: ...

    def list_faculty_subject_assignments(
        self,
        department_id: str,
        year: str,
        section: str | None = None,
    ) -> list[FacultySubjectAssignment]: ...

    def get_class_counselor(self, department_id: str, year: str, section: str) -> ClassCounselorRecord | None: ...

    def list_subjects(self, department_id: str, year: str) -> list[Subject]: ...

    def get_open_elective_quota(self, department_id: str, year: str) -> int: ...


class PersistenceService(Protocol):
    def list_all_timetables(self, department_id: str) -> list[StoredTimetable]: ...

    def load_timetable(self, department_id: str, year: str, section: str) -> Grid | None: ...

    def save_timetable(
        self,
        department_id: str,
        year: str,
        section: str,
        grid: Grid,
        special_flags: SpecialFlags,
    ) -> None: ...


@dataclass(frozen=True)
class FetchOutcome(Generic[T]):
    """A collaborator read; a degraded outcome still carries a usable (empty) value."""

    value: T
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


def fetch_or_default(label: str, loader: Callable[[], T], default: T) -> FetchOutcome[T]:
    try:
        value = loader()
    except Exception as exc:
        logger.warning("Collaborator fetch failed, using empty result | fetch=%s error=%s", label, exc)
        return FetchOutcome(value=default, degraded_reason=f"{label}: {exc}")
    if value is None:
        return FetchOutcome(value=default)
    return FetchOutcome(value=value)


class InMemoryDirectory:
    def __init__(self) -> None:
        self.faculty: dict[str, list[FacultyRecord]] = defaultdict(list)
        self.assignments: dict[tuple[str, str], list[FacultySubjectAssignment]] = defaultdict(list)
        self.counselors: dict[tuple[str, str, str], ClassCounselorRecord] = {}
        self.subjects: dict[tuple[str, str], list[Subject]] = defaultdict(list)
        self.open_elective_quotas: dict[tuple[str, str], int] = {}

    def add_faculty(self, department_id: str, faculty: FacultyRecord) -> None:
        self.faculty[department_id].append(faculty)

    def assign_subject(
        self,
        department_id: str,
        year: str,
        faculty_id: str,
        subject_id: str,
        section: str | None = None,
    ) -> None:
        self.assignments[(department_id, year)].append(
            FacultySubjectAssignment(faculty_id=faculty_id, subject_id=subject_id, section=section)
        )

    def set_class_counselor(self, department_id: str, year: str, section: str, faculty_id: str) -> None:
        self.counselors[(department_id, year, section)] = ClassCounselorRecord(faculty_id=faculty_id)

    def add_subjects(self, department_id: str, year: str, subjects: list[Subject]) -> None:
        self.subjects[(department_id, year)].extend(subjects)

    def set_open_elective_quota(self, department_id: str, year: str, hours: int) -> None:
        self.open_elective_quotas[(department_id, year)] = max(0, min(42, hours))

    def list_faculty_in_department(self, department_id: str) -> list[FacultyRecord]:
        return list(self.faculty.get(department_id, []))

    def list_faculty_subject_assignments(
        self,
        department_id: str,
        year: str,
        section: str | None = None,
    ) -> list[FacultySubjectAssignment]:
        rows = self.assignments.get((department_id, year), [])
        if section is None:
            return list(rows)
        return [row for row in rows if row.section is None or row.section == section]

    def get_class_counselor(self, department_id: str, year: str, section: str) -> ClassCounselorRecord | None:
        return self.counselors.get((department_id, year, section))

    def list_subjects(self, department_id: str, year: str) -> list[Subject]:
        return list(self.subjects.get((department_id, year), []))

    def get_open_elective_quota(self, department_id: str, year: str) -> int:
        return self.open_elective_quotas.get((department_id, year), 0)


class InMemoryPersistence:
    def __init__(self) -> None:
        self.timetables: dict[str, dict[tuple[str, str], StoredTimetable]] = defaultdict(dict)

    def list_all_timetables(self, department_id: str) -> list[StoredTimetable]:
        return [item.model_copy(deep=True) for item in self.timetables.get(department_id, {}).values()]

    def load_timetable(self, department_id: str, year: str, section: str) -> Grid | None:
        record = self.timetables.get(department_id, {}).get((year, section))
        if record is None:
            return None
        return copy.deepcopy(record.grid)

    def save_timetable(
        self,
        department_id: str,
        year: str,
        section: str,
        grid: Grid,
        special_flags: SpecialFlags,
    ) -> None:
        self.timetables[department_id][(year, section)] = StoredTimetable(
            year=year,
            section=section,
            grid=copy.deepcopy(grid),
            special_flags=special_flags.model_copy(),
        )
