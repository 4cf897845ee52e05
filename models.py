from sqlalchemy import (
    create_engine, inspect, Column, Integer, Float, Text,
    String, DateTime, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone

from config import DATABASE_URL

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine)
Base = declarative_base()

RANK_PLACEHOLDER = "-"
SUBJECTS = ("physics", "chemistry", "maths", "biology")


class School(Base):
    __tablename__ = "schools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String, nullable=False, unique=True)  # e.g. TS2507
    school_name = Column(String, nullable=False)
    state = Column(String, nullable=False)
    academic_year = Column(String, nullable=False)  # "2025-2026"
    area = Column(String)
    district = Column(String)
    school_number_2d = Column(Integer)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class SchoolClass(Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String, nullable=False)
    class_name = Column("class", String, nullable=False)  # grade label, e.g. "8"
    foundation = Column(String)
    program = Column(String)
    group = Column("group", String)
    section = Column(String, nullable=False)
    num_students = Column(Integer)
    academic_year = Column(String)

    __table_args__ = (
        UniqueConstraint("school_id", "class", "section", name="uq_class_section"),
    )


class Teacher(Base):
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String, nullable=False)
    teacher_id = Column(String, nullable=False)  # school-issued code
    name = Column(String, nullable=False)
    contact = Column(String)
    email = Column(String)

    __table_args__ = (
        UniqueConstraint("school_id", "teacher_id", name="uq_teacher_code"),
    )


class TeacherAssignment(Base):
    __tablename__ = "teacher_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    teacher_row_id = Column(Integer, nullable=False)  # teachers.id
    class_name = Column("class", String, nullable=False)
    section = Column(String, nullable=False)
    subject = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("teacher_row_id", "class", "section", "subject",
                         name="uq_teacher_assignment"),
    )


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String, nullable=False)
    academic_year = Column(String)
    class_name = Column("class", String, nullable=False)
    section = Column(String, nullable=False)
    roll_no = Column(Integer, nullable=False)
    student_id = Column(String)
    first_name = Column(String, nullable=False)
    last_name = Column(String)
    date_of_birth = Column(String)
    gender = Column(String)
    parent_name = Column(String)
    parent_phone = Column(String)
    parent_email = Column(String)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("school_id", "academic_year", "class", "section", "roll_no",
                         name="uq_student_roll"),
    )


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String, nullable=False)
    foundation = Column(String, nullable=False)
    program = Column(String, nullable=False)
    exam_name = Column(String, nullable=False)
    exam_template = Column(String, nullable=False)
    exam_pattern = Column(String)
    class_name = Column("class", String, nullable=False)
    section = Column(String, default="")  # "" = whole class
    exam_date = Column(String)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("school_id", "exam_name", "class", "section", name="uq_exam"),
    )


class ExamResult(Base):
    __tablename__ = "exam_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exam_id = Column(Integer, nullable=False)
    school_id = Column(String, nullable=False)
    student_id = Column(String, nullable=False)
    roll_no = Column(Integer, nullable=False)
    student_name = Column(String, nullable=False)
    class_name = Column("class", String)
    section = Column(String)
    physics = Column(Float)
    chemistry = Column(Float)
    maths = Column(Float)
    biology = Column(Float)
    total_marks = Column(Float, default=0)
    total_max_marks = Column(Float, default=0)
    percentage = Column(Float, default=0)
    class_rank = Column(String, default=RANK_PLACEHOLDER)
    school_rank = Column(String, default=RANK_PLACEHOLDER)
    all_india_rank = Column(String, default=RANK_PLACEHOLDER)

    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_exam_student"),
    )


class ExamSummary(Base):
    __tablename__ = "exam_summaries"

    exam_id = Column(Integer, primary_key=True)
    student_count = Column(Integer, default=0)
    average_total = Column(Float, default=0)
    average_percentage = Column(Float, default=0)
    highest_percentage = Column(Float, default=0)
    subject_averages = Column(Text)  # JSON: {"physics": 71.5, ...}
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class GradeSummary(Base):
    __tablename__ = "grade_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(String, nullable=False)
    class_name = Column("class", String, nullable=False)
    program = Column(String, nullable=False)
    exam_count = Column(Integer, default=0)
    student_count = Column(Integer, default=0)
    average_percentage = Column(Float, default=0)
    grade_rank = Column(Integer)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("school_id", "class", "program", name="uq_grade_summary"),
    )


# Indexes
Index("idx_classes_school", SchoolClass.school_id)
Index("idx_teachers_school", Teacher.school_id)
Index("idx_assignments_teacher", TeacherAssignment.teacher_row_id)
Index("idx_students_school", Student.school_id, Student.class_name, Student.section)
Index("idx_exams_school", Exam.school_id)
Index("idx_results_exam", ExamResult.exam_id)


def row_to_dict(obj) -> dict:
    """Serialize a model instance keyed by database column name."""
    out = {}
    for attr in inspect(obj).mapper.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        out[attr.columns[0].name] = value
    return out


def init_db(bind=None):
    """Create all tables."""
    Base.metadata.create_all(bind or engine)
