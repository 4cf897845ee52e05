"""
Bulk-upload ingestion.
Turns spreadsheet rows into typed records (schools, students, exam results),
collecting a per-row error list instead of failing on bad rows.
"""
import logging
from dataclasses import dataclass, field, asdict

from models import RANK_PLACEHOLDER, SUBJECTS
from spreadsheet import HeaderRowAdapter, PositionalRowAdapter, read_rows, _int, _float, _str
from states import INDIAN_STATES, derive_school_id, normalize_school_number

logger = logging.getLogger(__name__)

SCHOOL_HEADERS = {
    "school_name": ["School Name", "SCHOOL_NAME"],
    "state": ["State", "STATE"],
    "academic_year": ["Academic Year", "ACADEMIC_YEAR"],
    "school_number": ["School Number", "SCHOOL_NUMBER", "SCHOOL_NO", "SCHOOL_NUMBER_2D"],
    "area": ["Area", "AREA"],
    "district": ["District", "DISTRICT"],
}

STUDENT_HEADERS = {
    "roll_no": ["Roll No", "Roll Number", "roll_no", "ROLL_NO", "Roll"],
    "student_id": ["Student ID", "student_id"],
    "first_name": ["First Name", "first_name"],
    "last_name": ["Last Name", "last_name"],
    "full_name": ["Name", "Student Name", "name"],
    "date_of_birth": ["Date of Birth", "date_of_birth", "DOB"],
    "gender": ["Gender", "gender", "Sex"],
    "parent_name": ["Parent Name", "parent_name"],
    "parent_phone": ["Parent Phone", "parent_phone", "Guardian Contact"],
    "parent_email": ["Parent Email", "parent_email"],
}

# Fixed layout of the exam-result sheet handed out to schools
EXAM_RESULT_COLUMNS = {
    0: "serial_no",
    1: "student_id",
    2: "roll_no",
    3: "student_name",
    4: "physics",
    5: "chemistry",
    6: "maths",
    7: "biology",
}
EXAM_RESULT_MARKER_COLUMNS = (1, 2)

GENDERS = {
    "male": "Male", "m": "Male", "boy": "Male",
    "female": "Female", "f": "Female", "girl": "Female",
}


@dataclass(frozen=True)
class RowError:
    row: int
    reason: str


@dataclass(frozen=True)
class SchoolRow:
    school_id: str
    school_name: str
    state: str
    academic_year: str
    school_number_2d: int
    area: str | None = None
    district: str | None = None


@dataclass(frozen=True)
class StudentRow:
    school_id: str
    academic_year: str | None
    class_name: str
    section: str
    roll_no: int
    first_name: str
    last_name: str | None = None
    student_id: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None
    parent_name: str | None = None
    parent_phone: str | None = None
    parent_email: str | None = None


@dataclass(frozen=True)
class ExamResultRow:
    exam_id: int
    school_id: str
    student_id: str
    roll_no: int
    student_name: str
    class_name: str | None
    section: str | None
    physics: float | None
    chemistry: float | None
    maths: float | None
    biology: float | None
    total_marks: float
    total_max_marks: float
    percentage: float
    class_rank: str = RANK_PLACEHOLDER
    school_rank: str = RANK_PLACEHOLDER
    all_india_rank: str = RANK_PLACEHOLDER


@dataclass
class IngestResult:
    records: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    total_rows: int = 0

    def record_dicts(self) -> list:
        return [asdict(r) for r in self.records]

    def error_dicts(self) -> list:
        return [asdict(e) for e in self.errors]


def compute_percentage(total, max_total) -> float:
    """Percentage rounded to two places; 0 when there is nothing to divide by."""
    if not max_total:
        return 0
    return round(total / max_total * 100, 2)


def normalize_gender(value):
    text = _str(value)
    if text is None:
        return None
    return GENDERS.get(text.lower(), text)


def split_class_section(class_section):
    """'8-A' -> ('8', 'A'). Returns (None, None) if either part is missing."""
    parts = [p.strip() for p in str(class_section or "").split("-")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None, None
    return parts[0], parts[1]


def build_school_row(number: int, fields: dict, states=INDIAN_STATES):
    school_name = _str(fields.get("school_name"))
    state = _str(fields.get("state"))
    academic_year = _str(fields.get("academic_year"))
    school_number = fields.get("school_number")
    if not school_name or not state or not academic_year or _str(school_number) is None:
        return RowError(number, "Missing required fields")

    school_id = derive_school_id(state, academic_year, school_number, states=states)
    if not school_id:
        return RowError(number, "Invalid SCHOOL_ID derivation")

    return SchoolRow(
        school_id=school_id,
        school_name=school_name,
        state=state,
        academic_year=academic_year,
        school_number_2d=normalize_school_number(school_number),
        area=_str(fields.get("area")),
        district=_str(fields.get("district")),
    )


def build_student_row(number: int, fields: dict, school_id: str, academic_year,
                      class_name: str, section: str):
    first_name = _str(fields.get("first_name"))
    last_name = _str(fields.get("last_name"))
    if not first_name:
        full = _str(fields.get("full_name"))
        if full:
            first_name, _, rest = full.partition(" ")
            last_name = last_name or (rest.strip() or None)

    raw_roll = fields.get("roll_no")
    if not first_name or _str(raw_roll) is None:
        return RowError(number, "Missing required fields: roll_no, first_name")

    roll_no = _int(raw_roll)
    if roll_no is None:
        return RowError(number, f"Roll number is not a number: {raw_roll}")
    if roll_no <= 0:
        return RowError(number, f"Roll number must be positive: {roll_no}")

    return StudentRow(
        school_id=school_id,
        academic_year=academic_year,
        class_name=class_name,
        section=section,
        roll_no=roll_no,
        first_name=first_name,
        last_name=last_name,
        student_id=_str(fields.get("student_id")),
        date_of_birth=_str(fields.get("date_of_birth")),
        gender=normalize_gender(fields.get("gender")),
        parent_name=_str(fields.get("parent_name")),
        parent_phone=_str(fields.get("parent_phone")),
        parent_email=_str(fields.get("parent_email")),
    )


def build_exam_result_row(number: int, fields: dict, exam_id: int, school_id: str,
                          class_name, section, subject_max_marks: float):
    raw_student_id = fields.get("student_id")
    raw_roll = fields.get("roll_no")
    student_name = _str(fields.get("student_name"))
    if _str(raw_student_id) is None or _str(raw_roll) is None or not student_name:
        return RowError(number, "Missing required fields: student_id, roll_no, student_name")

    student_id = _int(raw_student_id)
    if student_id is None:
        return RowError(number, f"Student ID is not a number: {raw_student_id}")
    roll_no = _int(raw_roll)
    if roll_no is None:
        return RowError(number, f"Roll number is not a number: {raw_roll}")
    if roll_no <= 0:
        return RowError(number, f"Roll number must be positive: {roll_no}")

    scores = {s: _float(fields.get(s)) for s in SUBJECTS}
    scored = [v for v in scores.values() if v is not None]
    total = sum(scored)
    max_total = subject_max_marks * len(scored)

    return ExamResultRow(
        exam_id=exam_id,
        school_id=school_id,
        student_id=str(student_id),
        roll_no=roll_no,
        student_name=student_name,
        class_name=class_name,
        section=section,
        total_marks=total,
        total_max_marks=max_total,
        percentage=compute_percentage(total, max_total),
        **scores,
    )


def _collect(records, build) -> IngestResult:
    result = IngestResult()
    for number, fields in records:
        result.total_rows += 1
        outcome = build(number, fields)
        if isinstance(outcome, RowError):
            logger.warning(f"Row {outcome.row} rejected: {outcome.reason}")
            result.errors.append(outcome)
        else:
            result.records.append(outcome)
    return result


def ingest_schools(filename: str, content: bytes, states=INDIAN_STATES) -> IngestResult:
    rows = read_rows(filename, content)
    adapter = HeaderRowAdapter(SCHOOL_HEADERS)
    result = _collect(adapter.records(rows),
                      lambda n, f: build_school_row(n, f, states=states))
    logger.info(f"School upload {filename}: {len(result.records)} valid, {len(result.errors)} rejected")
    return result


def ingest_students(filename: str, content: bytes, school_id: str, academic_year,
                    class_name: str, section: str) -> IngestResult:
    rows = read_rows(filename, content)
    adapter = HeaderRowAdapter(STUDENT_HEADERS)
    result = _collect(
        adapter.records(rows),
        lambda n, f: build_student_row(n, f, school_id, academic_year, class_name, section),
    )
    logger.info(f"Student upload {filename}: {len(result.records)} valid, {len(result.errors)} rejected")
    return result


def ingest_exam_results(filename: str, content: bytes, exam_id: int, school_id: str,
                        class_name, section, subject_max_marks: float) -> IngestResult:
    rows = read_rows(filename, content)
    adapter = PositionalRowAdapter(EXAM_RESULT_COLUMNS, marker_columns=EXAM_RESULT_MARKER_COLUMNS)
    result = _collect(
        adapter.records(rows),
        lambda n, f: build_exam_result_row(n, f, exam_id, school_id, class_name, section,
                                           subject_max_marks),
    )
    logger.info(f"Exam {exam_id} result upload {filename}: "
                f"{len(result.records)} valid, {len(result.errors)} rejected")
    return result
