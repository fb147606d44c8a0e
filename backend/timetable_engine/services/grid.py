from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Union

from timetable_engine.schemas.timetable import Grid

DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
DAY_KEYS = tuple(day.lower() for day in DAYS)
DAY_COUNT = len(DAYS)
WEEKDAY_COUNT = 5
SATURDAY = 5
PERIODS = 7
TOTAL_SLOTS = DAY_COUNT * PERIODS

ATTRIBUTION_PATTERN = re.compile(r"^(.*?)\s*\((.*?)\)$")


@dataclass(frozen=True)
class Slot:
    day: int
    period: int

    @property
    def key(self) -> str:
        return slot_key(self.day, self.period)


def slot_key(day: int, period: int) -> str:
    return f"{DAY_KEYS[day]}-p{period + 1}"


def all_slot_keys() -> set[str]:
    return {slot_key(day, period) for day in range(DAY_COUNT) for period in range(PERIODS)}


def empty_grid() -> Grid:
    return [[None for _ in range(PERIODS)] for _ in range(DAY_COUNT)]


def is_free_cell(cell: str | None) -> bool:
    return cell is None or not str(cell).strip()


def iter_filled_cells(grid: Grid | None) -> Iterator[tuple[int, int, str]]:
    """Yield (day, period, text) for every non-empty cell, tolerating ragged stored grids."""
    for day, row in enumerate((grid or [])[:DAY_COUNT]):
        if not row:
            continue
        for period, cell in enumerate(row[:PERIODS]):
            if is_free_cell(cell):
                continue
            yield day, period, str(cell).strip()


def first_free_period(grid: Grid, day: int) -> int | None:
    for period, cell in enumerate(grid[day]):
        if cell is None:
            return period
    return None


def free_capacity(grid: Grid, day: int) -> int:
    return sum(1 for cell in grid[day] if cell is None)


@dataclass(frozen=True)
class PlainSubject:
    name: str


@dataclass(frozen=True)
class SpecialWithAttribution:
    special_type: str
    faculty_name: str

    @property
    def label(self) -> str:
        return f"{self.special_type} ({self.faculty_name})"


GridCell = Union[PlainSubject, SpecialWithAttribution]


def parse_grid_cell(text: str) -> GridCell:
    """Split a "Type (Faculty Name)" cell; anything else is a plain subject name."""
    cleaned = text.strip()
    match = ATTRIBUTION_PATTERN.match(cleaned)
    if match:
        special_type, faculty_name = match.group(1).strip(), match.group(2).strip()
        if special_type and faculty_name:
            return SpecialWithAttribution(special_type=special_type, faculty_name=faculty_name)
    return PlainSubject(name=cleaned)


def special_label(special_type: str, counselor_name: str | None) -> str:
    if counselor_name:
        return SpecialWithAttribution(special_type=special_type, faculty_name=counselor_name).label
    return special_type
