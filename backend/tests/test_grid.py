from timetable_engine.services.grid import (
    PlainSubject,
    Slot,
    SpecialWithAttribution,
    all_slot_keys,
    empty_grid,
    first_free_period,
    iter_filled_cells,
    parse_grid_cell,
    slot_key,
    special_label,
)


def test_slot_keys_use_lowercase_day_and_one_based_period():
    assert slot_key(0, 0) == "mon-p1"
    assert slot_key(5, 2) == "sat-p3"
    assert Slot(day=4, period=6).key == "fri-p7"


def test_slot_universe_has_42_keys():
    keys = all_slot_keys()
    assert len(keys) == 42
    assert "sat-p7" in keys
    assert "sun-p1" not in keys


def test_empty_grid_shape():
    grid = empty_grid()
    assert len(grid) == 6
    assert all(len(row) == 7 for row in grid)
    assert all(cell is None for row in grid for cell in row)


def test_parse_attributed_special_cell():
    cell = parse_grid_cell("Counselling (Dr. Rao)")
    assert cell == SpecialWithAttribution(special_type="Counselling", faculty_name="Dr. Rao")
    assert cell.label == "Counselling (Dr. Rao)"


def test_parse_falls_back_to_plain_subject():
    assert parse_grid_cell("  Maths ") == PlainSubject(name="Maths")
    # No type before the parenthesis, so nothing to attribute.
    assert parse_grid_cell("(Dr. Rao)") == PlainSubject(name="(Dr. Rao)")


def test_iter_filled_cells_skips_blank_and_ragged_rows():
    grid = [["Maths", "", None], None, ["  ", "Physics"]]
    assert list(iter_filled_cells(grid)) == [(0, 0, "Maths"), (2, 1, "Physics")]
    assert list(iter_filled_cells(None)) == []


def test_first_free_period():
    grid = empty_grid()
    grid[1][0] = "Maths"
    grid[1][1] = "Physics"
    assert first_free_period(grid, 1) == 2
    grid[2] = ["X"] * 7
    assert first_free_period(grid, 2) is None


def test_special_label_with_and_without_counselor():
    assert special_label("Library", None) == "Library"
    assert special_label("Counselling", "Dr. Rao") == "Counselling (Dr. Rao)"
