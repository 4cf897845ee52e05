"""
Named store procedures.
Creation procedures validate references and natural keys before writing;
the five recalculation procedures rebuild ranks and averages after exam-result
uploads. Each procedure runs inside one store session; the caller commits.
"""
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone

from errors import ConflictError, NotFoundError
from models import (
    SUBJECTS, School, SchoolClass, Teacher, TeacherAssignment, Exam, ExamResult,
    ExamSummary, GradeSummary, row_to_dict,
)

logger = logging.getLogger(__name__)


def _school(db, school_id: str) -> School:
    school = db.query(School).filter_by(school_id=school_id).first()
    if not school:
        raise NotFoundError("School not found")
    return school


def _exam(db, exam_id: int) -> Exam:
    exam = db.get(Exam, exam_id)
    if not exam:
        raise NotFoundError(f"Exam {exam_id} not found")
    return exam


def competition_ranks(items, score) -> list:
    """Rank items by score, highest first. Ties share a rank: 1, 2, 2, 4."""
    ordered = sorted(items, key=score, reverse=True)
    ranked = []
    previous = None
    rank = 0
    for position, item in enumerate(ordered, start=1):
        value = score(item)
        if value != previous:
            rank = position
            previous = value
        ranked.append((item, rank))
    return ranked


def _percentage(result) -> float:
    return result.percentage or 0


def _mean(values) -> float:
    values = [v for v in values if v is not None]
    return round(sum(values) / len(values), 2) if values else 0


# ---------- Creation ----------

def create_school_full(db, school: dict) -> int:
    """Insert a school with its classes, teachers and teacher assignments. Returns schools.id."""
    school_id = school["school_id"]
    if db.query(School).filter_by(school_id=school_id).first():
        raise ConflictError(f"SCHOOL_ID {school_id} already exists")

    row = School(
        school_id=school_id,
        school_name=school["school_name"],
        state=school["state"],
        academic_year=school["academic_year"],
        area=school.get("area"),
        district=school.get("district"),
        school_number_2d=school.get("school_number_2d"),
    )
    db.add(row)

    for c in school.get("classes") or []:
        db.add(SchoolClass(
            school_id=school_id,
            class_name=c["class_name"],
            foundation=c.get("foundation"),
            program=c.get("program"),
            group=c.get("group"),
            section=c["section"],
            num_students=c.get("num_students"),
            academic_year=school["academic_year"],
        ))

    for t in school.get("teachers") or []:
        teacher = Teacher(
            school_id=school_id,
            teacher_id=t["teacher_id"],
            name=t["name"],
            contact=t.get("contact"),
            email=t.get("email"),
        )
        db.add(teacher)
        db.flush()
        for a in t.get("teacher_assignments") or []:
            db.add(TeacherAssignment(
                teacher_row_id=teacher.id,
                class_name=a["class_name"],
                section=a["section"],
                subject=a["subject"],
            ))

    db.flush()
    logger.info(f"Created school {school_id} (id={row.id})")
    return row.id


def create_class(db, school_id, class_name, section, foundation=None, program=None,
                 group=None, num_students=None, academic_year=None) -> dict:
    school = _school(db, school_id)
    if db.query(SchoolClass).filter_by(school_id=school_id, class_name=class_name,
                                       section=section).first():
        raise ConflictError(f"Class {class_name}-{section} already exists for school {school_id}")
    row = SchoolClass(
        school_id=school_id,
        class_name=class_name,
        section=section,
        foundation=foundation,
        program=program,
        group=group,
        num_students=num_students,
        academic_year=academic_year or school.academic_year,
    )
    db.add(row)
    db.flush()
    return row_to_dict(row)


def create_teacher(db, school_id, teacher_id, name, contact=None, email=None) -> dict:
    _school(db, school_id)
    if db.query(Teacher).filter_by(school_id=school_id, teacher_id=teacher_id).first():
        raise ConflictError(f"Teacher {teacher_id} already exists for school {school_id}")
    row = Teacher(school_id=school_id, teacher_id=teacher_id, name=name,
                  contact=contact, email=email)
    db.add(row)
    db.flush()
    return row_to_dict(row)


def assign_teacher_to_class(db, school_id, teacher_id, class_name, section, subject) -> dict:
    teacher = db.query(Teacher).filter_by(school_id=school_id, teacher_id=teacher_id).first()
    if not teacher:
        raise NotFoundError(f"Teacher {teacher_id} not found in school {school_id}")
    if not db.query(SchoolClass).filter_by(school_id=school_id, class_name=class_name,
                                           section=section).first():
        raise NotFoundError(f"Class {class_name}-{section} not found in school {school_id}")
    if db.query(TeacherAssignment).filter_by(teacher_row_id=teacher.id, class_name=class_name,
                                             section=section, subject=subject).first():
        raise ConflictError(f"Teacher {teacher_id} already teaches {subject} to {class_name}-{section}")
    row = TeacherAssignment(teacher_row_id=teacher.id, class_name=class_name,
                            section=section, subject=subject)
    db.add(row)
    db.flush()
    out = row_to_dict(row)
    out["teacher_id"] = teacher_id
    out["school_id"] = school_id
    return out


def create_exam(db, school_id, foundation, program, exam_name, exam_template, class_name,
                exam_pattern=None, section=None, exam_date=None) -> dict:
    _school(db, school_id)
    section = section or ""
    if db.query(Exam).filter_by(school_id=school_id, exam_name=exam_name,
                                class_name=class_name, section=section).first():
        raise ConflictError(f"Exam '{exam_name}' already exists for class {class_name}")
    row = Exam(
        school_id=school_id,
        foundation=foundation,
        program=program,
        exam_name=exam_name,
        exam_template=exam_template,
        exam_pattern=exam_pattern,
        class_name=class_name,
        section=section,
        exam_date=exam_date,
    )
    db.add(row)
    db.flush()
    return row_to_dict(row)


# ---------- Recalculation chain ----------

def calculate_ranks(db, exam_id) -> int:
    """Section rank (class_rank) and whole-exam rank (school_rank)."""
    _exam(db, exam_id)
    results = db.query(ExamResult).filter_by(exam_id=exam_id).all()
    for result, rank in competition_ranks(results, _percentage):
        result.school_rank = str(rank)

    by_section = defaultdict(list)
    for result in results:
        by_section[result.section or ""].append(result)
    for group in by_section.values():
        for result, rank in competition_ranks(group, _percentage):
            result.class_rank = str(rank)
    return len(results)


def calculate_exam_averages(db, exam_id) -> dict:
    _exam(db, exam_id)
    results = db.query(ExamResult).filter_by(exam_id=exam_id).all()
    summary = db.get(ExamSummary, exam_id)
    if summary is None:
        summary = ExamSummary(exam_id=exam_id)
        db.add(summary)

    summary.student_count = len(results)
    summary.average_total = _mean(r.total_marks for r in results)
    summary.average_percentage = _mean(r.percentage for r in results)
    summary.highest_percentage = max((_percentage(r) for r in results), default=0)
    subject_averages = {}
    for subject in SUBJECTS:
        scores = [getattr(r, subject) for r in results if getattr(r, subject) is not None]
        if scores:
            subject_averages[subject] = _mean(scores)
    summary.subject_averages = json.dumps(subject_averages)
    summary.updated_at = datetime.now(timezone.utc)
    db.flush()
    return row_to_dict(summary)


def calculate_grade_averages(db, exam_id) -> dict:
    """Average of every result in the exam's school for the same class and program."""
    exam = _exam(db, exam_id)
    exam_ids = [
        e.id for e in db.query(Exam).filter_by(
            school_id=exam.school_id, class_name=exam.class_name, program=exam.program,
        ).all()
    ]
    results = db.query(ExamResult).filter(ExamResult.exam_id.in_(exam_ids)).all()

    summary = db.query(GradeSummary).filter_by(
        school_id=exam.school_id, class_name=exam.class_name, program=exam.program,
    ).first()
    if summary is None:
        summary = GradeSummary(school_id=exam.school_id, class_name=exam.class_name,
                               program=exam.program)
        db.add(summary)

    summary.exam_count = len({r.exam_id for r in results})
    summary.student_count = len(results)
    summary.average_percentage = _mean(r.percentage for r in results)
    summary.updated_at = datetime.now(timezone.utc)
    db.flush()
    return row_to_dict(summary)


def calculate_grade_ranks(db, exam_id) -> int:
    """Rank schools against each other for the exam's class and program."""
    exam = _exam(db, exam_id)
    summaries = db.query(GradeSummary).filter_by(
        class_name=exam.class_name, program=exam.program,
    ).all()
    for summary, rank in competition_ranks(summaries, lambda s: s.average_percentage or 0):
        summary.grade_rank = rank
    return len(summaries)


def calculate_all_india_rank(db, exam_id) -> int:
    """Rank every result of the same exam name, class and program across all schools."""
    exam = _exam(db, exam_id)
    exam_ids = [
        e.id for e in db.query(Exam).filter_by(
            exam_name=exam.exam_name, class_name=exam.class_name, program=exam.program,
        ).all()
    ]
    results = db.query(ExamResult).filter(ExamResult.exam_id.in_(exam_ids)).all()
    for result, rank in competition_ranks(results, _percentage):
        result.all_india_rank = str(rank)
    return len(results)


RECALCULATION_STEPS = (
    "calculate_ranks",
    "calculate_exam_averages",
    "calculate_grade_averages",
    "calculate_grade_ranks",
    "calculate_all_india_rank",
)

PROCEDURES = {
    "create_school_full": create_school_full,
    "create_class": create_class,
    "create_teacher": create_teacher,
    "assign_teacher_to_class": assign_teacher_to_class,
    "create_exam": create_exam,
    "calculate_ranks": calculate_ranks,
    "calculate_exam_averages": calculate_exam_averages,
    "calculate_grade_averages": calculate_grade_averages,
    "calculate_grade_ranks": calculate_grade_ranks,
    "calculate_all_india_rank": calculate_all_india_rank,
}
