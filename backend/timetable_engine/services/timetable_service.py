from __future__ import annotations

import logging
import threading
import weakref

from timetable_engine.core.config import Settings, get_settings
from timetable_engine.core.exceptions import GenerationInProgressError, PersistenceError
from timetable_engine.schemas.conflict import TotalHoursCheck
from timetable_engine.schemas.faculty import FacultyWorkloadSummary
from timetable_engine.schemas.subject import LabPreferences
from timetable_engine.schemas.timetable import Grid, SpecialFlags, SpecialHoursConfig
from timetable_engine.services.collaborators import DirectoryService, PersistenceService, fetch_or_default
from timetable_engine.services.conflict_service import validate_total_hours
from timetable_engine.services.faculty_allocation import summarize_workload
from timetable_engine.services.placement_engine import GenerationResult, TimetableGenerator

logger = logging.getLogger(__name__)

SectionKey = tuple[str, str, str]


class TimetableService:
    """Generate-and-save entry point; at most one generation runs per section at a time."""

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
        self.generator = TimetableGenerator(directory, persistence, settings=self.settings)
        # Entries vanish once no caller holds or waits on the section lock.
        self._locks: weakref.WeakValueDictionary[SectionKey, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _section_lock(self, key: SectionKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def generate_and_save(
        self,
        department_id: str,
        year: str,
        section: str,
        *,
        special_configs: list[SpecialHoursConfig] | None = None,
        lab_preferences: LabPreferences | None = None,
        special_flags: SpecialFlags | None = None,
        persist: bool = True,
    ) -> GenerationResult:
        lock = self._section_lock((department_id, year, section))
        if not lock.acquire(timeout=self.settings.generation_lock_timeout_seconds):
            raise GenerationInProgressError(department_id, year, section)
        try:
            subjects = fetch_or_default(
                "subjects",
                lambda: self.directory.list_subjects(department_id, year),
                [],
            ).value
            hours = validate_total_hours(subjects)
            if not hours.ok:
                logger.warning(
                    "Weekly hours exceed grid capacity | department_id=%s year=%s total=%s capacity=%s",
                    department_id,
                    year,
                    hours.total,
                    hours.capacity,
                )

            result = self.generator.run(subjects, special_configs, lab_preferences, department_id, year, section)
            if persist:
                self._save(department_id, year, section, result.grid, special_flags or SpecialFlags())
            return result
        finally:
            lock.release()

    def _save(self, department_id: str, year: str, section: str, grid: Grid, special_flags: SpecialFlags) -> None:
        try:
            self.persistence.save_timetable(department_id, year, section, grid, special_flags)
        except Exception as exc:
            raise PersistenceError(
                f"Could not save timetable for {department_id}/{year}/{section}",
                details={"department_id": department_id, "year": year, "section": section, "error": str(exc)},
            ) from exc
        logger.info("Timetable saved | department_id=%s year=%s section=%s", department_id, year, section)

    def load_timetable(self, department_id: str, year: str, section: str) -> Grid | None:
        return fetch_or_default(
            "stored timetable",
            lambda: self.persistence.load_timetable(department_id, year, section),
            None,
        ).value

    def workload_summary(self, department_id: str, year: str, section: str) -> list[FacultyWorkloadSummary]:
        allocation_map = self.generator.allocation_builder.build(department_id, year, section)
        return summarize_workload(allocation_map)

    def check_total_hours(self, department_id: str, year: str) -> TotalHoursCheck:
        subjects = fetch_or_default(
            "subjects",
            lambda: self.directory.list_subjects(department_id, year),
            [],
        ).value
        return validate_total_hours(subjects)
