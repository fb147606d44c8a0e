from __future__ import annotations

from pydantic import Field

from timetable_engine.schemas.base import CamelModel


class FacultyRecord(CamelModel):
    id: str = Field(min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    lab_preference: bool = False


class FacultySubjectAssignment(CamelModel):
    faculty_id: str = Field(min_length=1, max_length=36)
    subject_id: str = Field(min_length=1, max_length=36)
    # None means the assignment covers every section of the year.
    section: str | None = None


class ClassCounselorRecord(CamelModel):
    faculty_id: str = Field(min_length=1, max_length=36)


class FacultyWorkloadSummary(CamelModel):
    faculty_id: str
    faculty_name: str
    total_slots: int = Field(ge=0, le=42)
    available_slots: int = Field(ge=0, le=42)
    workload_percentage: float = Field(ge=0.0, le=100.0)
    is_class_counselor: bool = False
