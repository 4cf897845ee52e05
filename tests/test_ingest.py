from conftest import make_csv, make_xlsx
from ingest import (
    ExamResultRow, RowError, StudentRow, build_exam_result_row, build_student_row,
    compute_percentage, ingest_exam_results, ingest_schools, ingest_students,
    normalize_gender, split_class_section,
)

SCHOOL_HEADER = ["School Name", "State", "Academic Year", "School Number", "Area", "District"]


def test_compute_percentage():
    assert compute_percentage(360, 400) == 90.0
    assert compute_percentage(0, 0) == 0
    assert compute_percentage(1, 3) == 33.33


def test_split_class_section():
    assert split_class_section("8-A") == ("8", "A")
    assert split_class_section(" 10 - B ") == ("10", "B")
    assert split_class_section("8") == (None, None)
    assert split_class_section("-A") == (None, None)
    assert split_class_section(None) == (None, None)


def test_normalize_gender():
    assert normalize_gender("m") == "Male"
    assert normalize_gender("GIRL") == "Female"
    assert normalize_gender("Other") == "Other"
    assert normalize_gender("") is None


def test_ingest_schools_collects_row_errors():
    content = make_csv([
        SCHOOL_HEADER,
        ["Green Valley", "Telangana", "2025-2026", "7", "Madhapur", "Hyderabad"],
        ["Hill Top", "", "2025-2026", "8", "", ""],
        ["Lake View", "Atlantis", "2025-2026", "9", "", ""],
        ["River Side", "Kerala", "2025-2026", "123", "", ""],
    ])
    result = ingest_schools("schools.csv", content)
    assert result.total_rows == 4
    assert [r.school_id for r in result.records] == ["TS2507", "KL2512"]
    assert result.error_dicts() == [
        {"row": 2, "reason": "Missing required fields"},
        {"row": 3, "reason": "Invalid SCHOOL_ID derivation"},
    ]
    first = result.records[0]
    assert first.school_number_2d == 7
    assert first.area == "Madhapur"


def test_ingest_schools_xlsx_numeric_cells():
    content = make_xlsx([SCHOOL_HEADER, ["Green Valley", "Goa", "2024-2025", 3, None, None]])
    result = ingest_schools("schools.xlsx", content)
    assert result.records[0].school_id == "GA2403"
    assert result.records[0].district is None


def test_ingest_schools_header_only():
    result = ingest_schools("schools.csv", make_csv([SCHOOL_HEADER]))
    assert result.total_rows == 0
    assert result.records == []


def test_build_student_row_splits_full_name():
    row = build_student_row(1, {"roll_no": "4", "full_name": "Asha Devi Rao", "gender": "f"},
                            "TS2507", "2025-2026", "8", "A")
    assert isinstance(row, StudentRow)
    assert row.first_name == "Asha"
    assert row.last_name == "Devi Rao"
    assert row.gender == "Female"
    assert row.roll_no == 4


def test_build_student_row_rejections():
    missing = build_student_row(3, {"roll_no": "4"}, "TS2507", None, "8", "A")
    assert missing == RowError(3, "Missing required fields: roll_no, first_name")
    text_roll = build_student_row(4, {"roll_no": "four", "first_name": "Asha"}, "TS2507", None, "8", "A")
    assert isinstance(text_roll, RowError)
    zero_roll = build_student_row(5, {"roll_no": 0, "first_name": "Asha"}, "TS2507", None, "8", "A")
    assert zero_roll.reason == "Roll number must be positive: 0"


def test_ingest_students():
    content = make_csv([
        ["Roll No", "First Name", "Last Name", "Gender", "Parent Phone"],
        ["1", "Asha", "Rao", "F", "9876543210"],
        ["", "Ravi", "", "M", ""],
        ["3", "Kiran", "", "", ""],
    ])
    result = ingest_students("class8a.csv", content, "TS2507", "2025-2026", "8", "A")
    assert result.total_rows == 3
    assert len(result.records) == 2
    assert result.errors[0].row == 2
    assert result.record_dicts()[0]["class_name"] == "8"
    assert result.record_dicts()[0]["parent_phone"] == "9876543210"


def test_build_exam_result_row_all_subjects():
    row = build_exam_result_row(
        1, {"student_id": 1001, "roll_no": 1, "student_name": "Asha",
            "physics": 90, "chemistry": 85, "maths": 95, "biology": 90},
        7, "TS2507", "8", "A", 100,
    )
    assert isinstance(row, ExamResultRow)
    assert row.total_marks == 360
    assert row.total_max_marks == 400
    assert row.percentage == 90.0
    assert (row.class_rank, row.school_rank, row.all_india_rank) == ("-", "-", "-")


def test_build_exam_result_row_no_scores():
    row = build_exam_result_row(1, {"student_id": "1001", "roll_no": "1", "student_name": "Asha"},
                                7, "TS2507", "8", "A", 100)
    assert row.total_marks == 0
    assert row.percentage == 0


def test_build_exam_result_row_partial_scores():
    row = build_exam_result_row(
        1, {"student_id": "1001", "roll_no": "1", "student_name": "Asha",
            "physics": "40", "maths": "", "chemistry": None, "biology": "AB"},
        7, "TS2507", "8", "A", 50,
    )
    assert row.physics == 40.0
    assert row.maths is None
    assert row.total_max_marks == 50
    assert row.percentage == 80.0


def test_build_exam_result_row_rejects_text_ids():
    row = build_exam_result_row(2, {"student_id": "abc", "roll_no": "1", "student_name": "Asha"},
                                7, "TS2507", "8", "A", 100)
    assert row == RowError(2, "Student ID is not a number: abc")


def test_ingest_exam_results_skips_headers():
    content = make_xlsx([
        ["S.No", "Student ID", "Roll No", "Student Name", "Physics", "Chemistry", "Maths", "Biology"],
        [1, 1001, 1, "Asha", 90, 85, 95, 90],
        [2, 1002, 2, "Ravi", 50, 50, 50, 50],
        [3, None, 3, "Kiran", 10, 10, 10, 10],
    ])
    result = ingest_exam_results("results.xlsx", content, 7, "TS2507", "8", "A", 100)
    assert result.total_rows == 3
    assert [r.roll_no for r in result.records] == [1, 2]
    assert result.records[1].percentage == 50.0
    assert result.errors == [RowError(3, "Missing required fields: student_id, roll_no, student_name")]


def test_build_exam_result_row_ignores_non_finite_scores():
    row = build_exam_result_row(
        1, {"student_id": "1001", "roll_no": "1", "student_name": "Asha",
            "physics": "nan", "chemistry": "inf", "maths": float("nan"), "biology": 40},
        7, "TS2507", "8", "A", 100,
    )
    assert (row.physics, row.chemistry, row.maths) == (None, None, None)
    assert row.total_marks == 40
    assert row.total_max_marks == 100
    assert row.percentage == 40.0
