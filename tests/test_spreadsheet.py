import pytest

from conftest import make_csv, make_xlsx
from spreadsheet import (
    HeaderRowAdapter, PositionalRowAdapter, UnreadableFileError, UnsupportedFileError,
    read_rows,
)


def test_read_csv_drops_blank_rows():
    content = make_csv([["Name", "Roll"], ["Asha", "1"], ["", ""], ["Ravi", "2"]])
    assert read_rows("students.csv", content) == [["Name", "Roll"], ["Asha", "1"], ["Ravi", "2"]]


def test_read_csv_with_bom():
    content = "\ufeffSchool Name,State\nA,Goa\n".encode("utf-8")
    assert read_rows("schools.CSV", content)[0] == ["School Name", "State"]


def test_read_xlsx_first_sheet():
    content = make_xlsx([["School Name", "School Number"], ["Green Valley", 7]])
    rows = read_rows("schools.xlsx", content)
    assert rows[1][0] == "Green Valley"
    assert rows[1][1] == 7


def test_unsupported_extension():
    with pytest.raises(UnsupportedFileError):
        read_rows("schools.pdf", b"%PDF-1.4")


def test_corrupt_workbook():
    with pytest.raises(UnreadableFileError):
        read_rows("schools.xlsx", b"not a zip archive")


def test_header_adapter_synonyms_and_case():
    adapter = HeaderRowAdapter({"school_name": ["School Name", "SCHOOL_NAME"], "state": ["State"]})
    rows = [["  school_name ", "STATE", "Extra"], ["Green Valley", "Goa", "x"], ["Hill Top"]]
    assert list(adapter.records(rows)) == [
        (1, {"school_name": "Green Valley", "state": "Goa"}),
        (2, {"school_name": "Hill Top", "state": None}),
    ]


def test_header_adapter_unknown_headers():
    adapter = HeaderRowAdapter({"roll_no": ["Roll No"]})
    assert list(adapter.records([["Foo"], ["1"]])) == [(1, {})]


COLUMNS = {0: "serial_no", 1: "student_id", 2: "roll_no", 3: "student_name"}


def test_positional_adapter_skips_label_rows():
    adapter = PositionalRowAdapter(COLUMNS, marker_columns=(1, 2))
    rows = [
        ["S.No", "Student ID", "Roll No", "Name"],
        [0, 0, 0, 0],
        [1, 1001, 1, "Asha"],
    ]
    assert list(adapter.records(rows)) == [
        (1, {"serial_no": 1, "student_id": 1001, "roll_no": 1, "student_name": "Asha"}),
    ]


def test_positional_adapter_skip_limit():
    adapter = PositionalRowAdapter(COLUMNS, marker_columns=(1, 2), max_leading_skips=1)
    rows = [["", "Student ID", "Roll", ""], ["", "Student ID", "Roll", ""], [1, 1001, 1, "Asha"]]
    records = list(adapter.records(rows))
    assert len(records) == 2
    assert records[0][1]["student_id"] == "Student ID"


def test_positional_adapter_keeps_data_first_row():
    adapter = PositionalRowAdapter(COLUMNS, marker_columns=(1, 2))
    records = list(adapter.records([[1, 1001, 1, "Asha"], [2, 1002, 2, "Ravi"]]))
    assert [n for n, _ in records] == [1, 2]


def test_corrupt_xls():
    with pytest.raises(UnreadableFileError):
        read_rows("results.xls", b"garbage")


class FakeSheet:
    def __init__(self, rows):
        self.rows = rows
        self.nrows = len(rows)

    def row_values(self, r):
        return self.rows[r]


class FakeBook:
    def __init__(self, *sheets):
        self.sheets = sheets

    def sheet_by_index(self, idx):
        return self.sheets[idx]


def test_read_xls_first_sheet_blank_cells(monkeypatch):
    opened = {}

    def open_workbook(file_contents=None):
        opened["content"] = file_contents
        return FakeBook(
            FakeSheet([["Roll No", "Name"], [1.0, ""], ["", ""], [2.0, "Ravi"]]),
            FakeSheet([["other", "sheet"]]),
        )

    monkeypatch.setattr("spreadsheet.xlrd.open_workbook", open_workbook)
    rows = read_rows("students.XLS", b"\xd0\xcf\x11\xe0")
    assert opened["content"] == b"\xd0\xcf\x11\xe0"
    assert rows == [["Roll No", "Name"], [1.0, None], [2.0, "Ravi"]]
