from __future__ import annotations

from pydantic import AliasChoices, Field

from timetable_engine.schemas.base import CamelModel

# [day][period] -> subject name; None or "" marks a free cell.
Grid = list[list[str | None]]


class SpecialFlags(CamelModel):
    # Legacy toggles kept for storage; active SpecialHoursConfig entries decide placement.
    seminar: bool = True
    library: bool = True
    counselling: bool = True


class SpecialHoursConfig(CamelModel):
    id: str | None = None
    special_type: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("specialType", "special_type", "type"),
    )
    total_hours: int = Field(default=0, ge=0, le=42)
    saturday_hours: int = Field(default=0, ge=0, le=7)
    saturday_periods: list[int] = Field(default_factory=list)
    weekdays_hours: int = Field(default=0, ge=0, le=35)
    weekdays_periods: list[int] = Field(default_factory=list)
    is_active: bool = True


class StoredTimetable(CamelModel):
    year: str
    section: str
    grid: Grid = Field(default_factory=list)
    special_flags: SpecialFlags | None = None
