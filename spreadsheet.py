"""
Spreadsheet reading and row adapters for bulk uploads.
Files are turned into raw rows (lists of cell values), then an adapter resolves
logical fields either by header text or by fixed column position.
"""
import csv
import io
import logging
import math

import openpyxl
import xlrd

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")


class SpreadsheetError(Exception):
    """The uploaded file cannot be turned into rows."""


class UnsupportedFileError(SpreadsheetError):
    pass


class UnreadableFileError(SpreadsheetError):
    pass


def _int(val):
    """Convert to int; None for blanks and anything non-integral."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, int):
        return val
    if isinstance(val, float):
        return int(val) if val.is_integer() else None
    s = str(val).strip().replace(",", "")
    if not s:
        return None
    try:
        f = float(s)
    except (ValueError, TypeError):
        return None
    return int(f) if f.is_integer() else None


def _float(val):
    """Convert to float; None for blanks, text, nan and inf."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        f = float(val)
    else:
        s = str(val).strip().replace(",", "").replace("%", "")
        if not s:
            return None
        try:
            f = float(s)
        except (ValueError, TypeError):
            return None
    return f if math.isfinite(f) else None


def _str(val):
    """Stripped string, None for blanks. Integral floats lose their '.0'."""
    if val is None:
        return None
    if isinstance(val, float) and val.is_integer():
        val = int(val)
    s = str(val).strip()
    return s or None


def _is_blank(row) -> bool:
    return all(_str(v) is None for v in row)


def _read_csv(content: bytes) -> list:
    text = content.decode("utf-8-sig")
    return [list(r) for r in csv.reader(io.StringIO(text))]


def _read_xlsx(content: bytes) -> list:
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        return [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_xls(content: bytes) -> list:
    book = xlrd.open_workbook(file_contents=content)
    sheet = book.sheet_by_index(0)
    rows = []
    for r in range(sheet.nrows):
        rows.append([None if v == "" else v for v in sheet.row_values(r)])
    return rows


_READERS = {
    ".csv": _read_csv,
    ".xlsx": _read_xlsx,
    ".xls": _read_xls,
}


def read_rows(filename: str, content: bytes) -> list:
    """Parse the first sheet of a CSV/XLSX/XLS file into non-blank raw rows."""
    name = (filename or "").lower()
    ext = next((e for e in SUPPORTED_EXTENSIONS if name.endswith(e)), None)
    if ext is None:
        raise UnsupportedFileError("Unsupported file. Use CSV, XLSX, or XLS.")
    try:
        rows = _READERS[ext](content)
    except Exception as e:
        logger.warning(f"Could not parse {filename}: {e}")
        raise UnreadableFileError("Invalid file format or corrupted file") from e
    return [r for r in rows if not _is_blank(r)]


def _norm_header(value) -> str:
    return str(value).strip().lower() if value is not None else ""


class HeaderRowAdapter:
    """Resolve fields by header text.

    field_synonyms maps each logical field to the header spellings it accepts,
    e.g. {"school_name": ["School Name", "SCHOOL_NAME"]}. Matching is
    case-insensitive after trimming; the first synonym present wins.
    """

    def __init__(self, field_synonyms: dict):
        self.field_synonyms = field_synonyms

    def column_map(self, header: list) -> dict:
        positions = {}
        for idx, cell in enumerate(header):
            key = _norm_header(cell)
            if key and key not in positions:
                positions[key] = idx
        mapping = {}
        for field, synonyms in self.field_synonyms.items():
            for synonym in synonyms:
                idx = positions.get(_norm_header(synonym))
                if idx is not None:
                    mapping[field] = idx
                    break
        return mapping

    def records(self, rows: list):
        """Yield (row_number, {field: value}) for each data row after the header."""
        if not rows:
            return
        mapping = self.column_map(rows[0])
        for number, row in enumerate(rows[1:], start=1):
            yield number, {
                field: (row[idx] if idx < len(row) else None)
                for field, idx in mapping.items()
            }


MARKER_WORDS = ("roll", "name", "student", "id", "s.no", "sno")


class PositionalRowAdapter:
    """Resolve fields by fixed column index.

    Up to `max_leading_skips` leading rows are dropped when they look like
    header or label rows: a marker word at one of the marker columns, or a row
    whose non-blank cells are all numeric zeros.
    """

    def __init__(self, columns: dict, marker_columns=(), max_leading_skips: int = 2):
        self.columns = columns
        self.marker_columns = tuple(marker_columns)
        self.max_leading_skips = max_leading_skips

    def is_label_row(self, row: list) -> bool:
        for idx in self.marker_columns:
            if idx < len(row) and isinstance(row[idx], str):
                text = row[idx].strip().lower()
                if any(word in text for word in MARKER_WORDS):
                    return True
        values = [v for v in row if _str(v) is not None]
        numbers = [_float(v) for v in values]
        return bool(values) and all(n == 0 for n in numbers)

    def records(self, rows: list):
        """Yield (row_number, {field: value}) for each data row."""
        start = 0
        while start < min(self.max_leading_skips, len(rows)) and self.is_label_row(rows[start]):
            start += 1
        if start:
            logger.debug(f"Skipped {start} leading label row(s)")
        for number, row in enumerate(rows[start:], start=1):
            yield number, {
                field: (row[idx] if idx < len(row) else None)
                for idx, field in self.columns.items()
            }
