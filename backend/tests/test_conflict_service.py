import pytest

from timetable_engine.schemas.faculty import FacultyRecord
from timetable_engine.schemas.subject import LabPreference
from timetable_engine.schemas.timetable import SpecialFlags
from timetable_engine.services.conflict_service import (
    FacultyConflictValidator,
    validate_lab_placement,
    validate_total_hours,
)
from timetable_engine.services.faculty_allocation import FacultyAllocationBuilder
from timetable_engine.services.grid import empty_grid


@pytest.fixture
def validator(directory, persistence, settings):
    return FacultyConflictValidator(FacultyAllocationBuilder(directory, persistence, settings=settings))


@pytest.fixture
def maths(make_subject):
    return make_subject("m1", "Maths", 4)


@pytest.fixture
def seeded(directory, maths):
    directory.add_faculty("d1", FacultyRecord(id="fx", name="Dr. X"))
    directory.add_subjects("d1", "II", [maths])
    directory.assign_subject("d1", "II", "fx", "m1")
    return directory


def test_busy_faculty_is_reported_as_conflict(seeded, persistence, validator, maths):
    section_a = empty_grid()
    section_a[0][0] = "Maths"
    persistence.save_timetable("d1", "II", "A", section_a, SpecialFlags())
    section_b = empty_grid()
    section_b[0][0] = "Maths"
    section_b[1][0] = "Maths"

    report = validator.validate(section_b, [maths], "d1", "II", "B")

    assert report.valid is False
    assert report.conflicts == ["Faculty conflict for Maths at mon-p1 - all assigned faculty are busy"]
    assert report.warnings == []


def test_own_stored_grid_does_not_conflict_with_itself(seeded, persistence, validator, maths):
    grid = empty_grid()
    grid[0][0] = "Maths"
    persistence.save_timetable("d1", "II", "A", grid, SpecialFlags())

    report = validator.validate(grid, [maths], "d1", "II", "A")

    assert report.valid is True


def test_subject_without_faculty_only_warns(directory, validator, make_subject):
    physics = make_subject("p1", "Physics", 2)
    grid = empty_grid()
    grid[2][3] = "Physics"

    report = validator.validate(grid, [physics], "d1", "II", "A")

    assert report.valid is True
    assert report.warnings == ["No faculty assigned for Physics at wed-p4"]


def test_attributed_and_unknown_cells(seeded, validator, maths):
    grid = empty_grid()
    grid[5][0] = "Counselling (Dr. X)"
    grid[5][1] = "Seminar (Nobody)"
    grid[5][2] = "Library"
    grid[0][0] = "Maths"

    report = validator.validate(grid, [maths], "d1", "II", "A")

    assert report.valid is True
    assert report.conflicts == []
    assert report.warnings == []


def test_validation_failure_is_reported_not_raised(maths):
    class BrokenBuilder:
        def build(self, *args, **kwargs):
            raise RuntimeError("boom")

    grid = empty_grid()
    grid[0][0] = "Maths"

    report = FacultyConflictValidator(BrokenBuilder()).validate(grid, [maths], "d1", "II", "A")

    assert report.valid is False
    assert report.conflicts == ["Error occurred during faculty conflict validation"]


def test_two_labs_on_one_day(make_subject):
    labs = [make_subject("l1", "OS Lab", 2, "lab"), make_subject("l2", "Web Lab", 2, "lab")]
    grid = empty_grid()
    grid[0][3:5] = ["OS Lab", "OS Lab"]
    grid[0][5:7] = ["Web Lab", "Web Lab"]

    report = validate_lab_placement(grid, labs)

    assert report.valid is False
    assert report.errors == ["Day Mon has multiple labs: OS Lab, Web Lab"]
    assert report.lab_days_by_name == {"OS Lab": [0], "Web Lab": [0]}


def test_morning_lab_found_in_afternoon(make_subject):
    lab = make_subject("l1", "OS Lab", 2, "lab")
    preferences = {"l1": LabPreference(morning_enabled=True)}
    grid = empty_grid()
    grid[1][4:6] = ["OS Lab", "OS Lab"]

    report = validate_lab_placement(grid, [lab], preferences)

    assert report.errors == ["Lab OS Lab should be in morning (P1-P4) but found in periods: P5, P6"]


def test_morning_lab_spilling_into_afternoon(make_subject):
    lab = make_subject("l1", "OS Lab", 3, "lab")
    preferences = {"l1": LabPreference(morning_enabled=True)}
    grid = empty_grid()
    grid[2][2:5] = ["OS Lab"] * 3

    report = validate_lab_placement(grid, [lab], preferences)

    assert report.errors == ["Lab OS Lab spans both morning and evening periods: P3, P4, P5"]


def test_lab_placement_check_is_repeatable(make_subject):
    labs = [make_subject("l1", "OS Lab", 2, "lab"), make_subject("l2", "Web Lab", 2, "lab")]
    grid = empty_grid()
    grid[3][5:7] = ["OS Lab", "OS Lab"]
    grid[3][0] = "Web Lab"

    first = validate_lab_placement(grid, labs)
    second = validate_lab_placement(grid, labs)

    assert first == second
    assert grid[3][0] == "Web Lab"


def test_total_hours_against_capacity(make_subject):
    fits = [make_subject(f"s{index}", f"Subject {index}", 6) for index in range(7)]
    assert validate_total_hours(fits).ok is True
    assert validate_total_hours(fits).total == 42

    over = fits + [make_subject("extra", "Extra", 1)]
    check = validate_total_hours(over)
    assert check.ok is False
    assert check.total == 43
    assert check.capacity == 42
