import re

import pytest

from states import (
    INDIAN_STATES, academic_year_suffix, derive_school_id, normalize_school_number,
)

SCHOOL_ID = re.compile(r"^[A-Z]{2}\d{2}\d{2}$")


def test_derive_basic():
    assert derive_school_id("Telangana", "2025-2026", "7") == "TS2507"


def test_derive_truncates_to_two_digits():
    assert derive_school_id("Telangana", "2025-2026", "123") == "TS2512"


def test_derive_accepts_spreadsheet_numbers():
    assert derive_school_id("Karnataka", "2024-2025", 7.0) == "KA2407"
    assert derive_school_id("Delhi", "2030", 42) == "DL3042"


def test_derive_strips_state_name():
    assert derive_school_id("  Tamil Nadu ", "2025-2026", "3") == "TN2503"


@pytest.mark.parametrize("state,year,number", [
    ("Atlantis", "2025-2026", "7"),
    (None, "2025-2026", "7"),
    ("Telangana", "25-26", "7"),
    ("Telangana", "", "7"),
    ("Telangana", None, "7"),
    ("Telangana", "2025-2026", "0"),
    ("Telangana", "2025-2026", "abc"),
    ("Telangana", "2025-2026", None),
])
def test_derive_rejects_invalid_parts(state, year, number):
    assert derive_school_id(state, year, number) is None


def test_derive_is_deterministic_and_well_formed():
    for state in INDIAN_STATES:
        first = derive_school_id(state, "2025-2026", "9")
        assert first == derive_school_id(state, "2025-2026", "9")
        assert SCHOOL_ID.match(first)


def test_custom_state_table():
    assert derive_school_id("Narnia", "2025-2026", "1", states={"Narnia": "NR"}) == "NR2501"


def test_academic_year_suffix():
    assert academic_year_suffix("2025-2026") == "25"
    assert academic_year_suffix(" 2031 ") == "31"
    assert academic_year_suffix("year 2025") is None


def test_normalize_school_number():
    assert normalize_school_number("No. 07") == 7
    assert normalize_school_number("99") == 99
    assert normalize_school_number("00") is None
    assert normalize_school_number(True) is None


def test_state_table_is_read_only():
    assert len(INDIAN_STATES) == 36
    with pytest.raises(TypeError):
        INDIAN_STATES["Nowhere"] = "NW"


def test_derive_non_integral_cell_keeps_leading_digits():
    assert normalize_school_number(7.5) == 75
    assert derive_school_id("Telangana", "2025-2026", 7.5) == "TS2575"
    assert normalize_school_number(float("nan")) is None
