from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator

from timetable_engine.schemas.base import CamelModel


class SubjectType(str, Enum):
    theory = "theory"
    lab = "lab"
    elective = "elective"
    open_elective = "open-elective"


class Subject(CamelModel):
    id: str = Field(min_length=1, max_length=36)
    # Grid cells store this name, not the id.
    name: str = Field(min_length=1, max_length=200)
    hours_per_week: int = Field(ge=1, le=6)
    type: SubjectType
    tags: list[str] = Field(default_factory=list)
    code: str | None = Field(default=None, max_length=50)
    abbreviation: str | None = Field(default=None, max_length=50)
    staff_label: str | None = Field(default=None, max_length=200)
    max_faculty_count: int | None = Field(default=None, ge=1, le=20)
    credits: int | None = Field(default=None, ge=1, le=6)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
            return normalized
        return value

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("Subject name cannot be blank")
        return name

    @property
    def is_lab(self) -> bool:
        return self.type == SubjectType.lab


class LabPreference(CamelModel):
    morning_enabled: bool = False
    morning_start: int | None = 1
    evening_two_hour_start_at5: bool = False
    priority: int | None = None


LabPreferences = dict[str, LabPreference]
