#!/usr/bin/env python3
"""
School Portal Backend: FastAPI Application
"""
import json
import logging
import math
from collections import defaultdict

from fastapi import FastAPI, HTTPException, Request, Depends, File, Form, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from config import (
    CORS_ORIGINS, PORT, LOG_LEVEL, UPLOAD_RATE_LIMIT, RATE_LIMIT_ENABLED,
    MAX_UPLOAD_BYTES, DEFAULT_SUBJECT_MAX_MARKS,
)
from errors import StoreError, ConflictError, NotFoundError
from ingest import (
    RowError, build_student_row, split_class_section,
    ingest_schools, ingest_students, ingest_exam_results,
)
from lookups import FOUNDATIONS, PROGRAMS, academic_years
from models import (
    init_db, row_to_dict, School, SchoolClass, Teacher, TeacherAssignment,
    Student, Exam, ExamResult, ExamSummary,
)
from schemas import (
    SchoolCreate, ClassCreate, TeacherCreate, AssignmentCreate, StudentCreate, ExamCreate,
)
from spreadsheet import SpreadsheetError
from states import INDIAN_STATES, derive_school_id, normalize_school_number
from store import SchoolStore, ConflictPolicy, get_store
from workflow import recalculate_exam, delete_school_cascade

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="School Portal API",
    version="1.0.0",
    description="Schools, classes, teachers, students and exam results",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Rate limiting (uploads only)
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Error responses: always a JSON object with an "error" key
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if exc.status_code == 404 and detail == "Not Found":
        detail = f"Route not found: {request.method} {request.url.path}"
    return JSONResponse(status_code=exc.status_code, content={"error": detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(SpreadsheetError)
async def spreadsheet_error_handler(request: Request, exc: SpreadsheetError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if isinstance(exc, (ConflictError, NotFoundError)):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    body = {"error": "Database operation failed"}
    if not config.is_production():
        body["message"] = str(exc)
    return JSONResponse(status_code=500, content=body)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    body = {"error": "Internal server error"}
    if not config.is_production():
        body["message"] = str(exc)
    return JSONResponse(status_code=500, content=body)


# Startup
@app.on_event("startup")
async def startup():
    logger.info("Initializing database...")
    init_db()
    logger.info(f"School portal backend ready on port {PORT}")


# Helpers
def _require(body, *names):
    missing = body.missing(*names)
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")


def _conflict_policy(value, default: ConflictPolicy) -> ConflictPolicy:
    if not value:
        return default
    try:
        return ConflictPolicy(value.strip().lower())
    except ValueError:
        raise HTTPException(status_code=400, detail="on_conflict must be one of: update, skip, fail")


async def _read_upload(file: UploadFile | None) -> bytes:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail=f"File too large (limit {MAX_UPLOAD_BYTES} bytes)")
    logger.info(f"Received upload {file.filename} ({len(content)} bytes)")
    return content


def _existing_school(store: SchoolStore, school_id: str) -> School:
    school = store.find(School, school_id=school_id)
    if not school:
        raise NotFoundError("School not found")
    return school


def _existing_exam(store: SchoolStore, exam_id: int) -> Exam:
    exam = store.find(Exam, id=exam_id)
    if not exam:
        raise NotFoundError(f"Exam {exam_id} not found")
    return exam


def _teachers_with_assignments(store: SchoolStore, school_id: str) -> list:
    teachers = store.list(Teacher, order_by=(Teacher.name,), school_id=school_id)
    assignments = store.list_in(
        TeacherAssignment, TeacherAssignment.teacher_row_id, [t.id for t in teachers],
        order_by=(TeacherAssignment.class_name, TeacherAssignment.section),
    )
    by_teacher = defaultdict(list)
    for a in assignments:
        by_teacher[a.teacher_row_id].append({
            "class": a.class_name,
            "section": a.section,
            "subject": a.subject,
        })
    return [
        {**row_to_dict(t), "teacher_assignments": by_teacher.get(t.id, [])}
        for t in teachers
    ]


# Endpoints
@app.get("/")
async def root():
    return {"ok": True, "name": "School Portal Backend"}


@app.get("/health")
async def health():
    return {"status": "ok", "service": "school-portal"}


# ---------- Schools ----------

@app.get("/api/schools")
async def list_schools(store: SchoolStore = Depends(get_store)):
    schools = store.list(School, order_by=(School.school_name,))
    return {"data": [row_to_dict(s) for s in schools]}


@app.post("/api/schools", status_code=201)
async def create_school(body: SchoolCreate, store: SchoolStore = Depends(get_store)):
    _require(body, "school_name", "state", "academic_year", "school_number_2d")

    state = body.state.strip()
    if state not in INDIAN_STATES:
        raise HTTPException(status_code=400, detail=f"Invalid state: {body.state}")

    school_id = derive_school_id(state, body.academic_year, body.school_number_2d)
    if not school_id:
        raise HTTPException(status_code=400,
                            detail="Invalid school_id derivation (check state/year/number)")

    payload = {
        "school_id": school_id,
        "school_name": body.school_name.strip(),
        "state": state,
        "academic_year": body.academic_year.strip(),
        "area": body.area or None,
        "district": body.district or None,
        "school_number_2d": normalize_school_number(body.school_number_2d),
        "classes": [c.model_dump() for c in body.classes],
        "teachers": [t.model_dump() for t in body.teachers],
    }
    new_id = store.rpc("create_school_full", school=payload)
    school = store.get(School, id=new_id)
    return {"data": row_to_dict(school)}


@app.get("/api/schools/{school_id}")
async def get_school(school_id: str, store: SchoolStore = Depends(get_store)):
    school = _existing_school(store, school_id)
    classes = store.list(SchoolClass, order_by=(SchoolClass.class_name, SchoolClass.section),
                         school_id=school_id)
    return {
        "school": row_to_dict(school),
        "classes": [row_to_dict(c) for c in classes],
        "teachers": _teachers_with_assignments(store, school_id),
    }


@app.delete("/api/schools/{school_id}")
async def delete_school(school_id: str, store: SchoolStore = Depends(get_store)):
    _existing_school(store, school_id)
    report = delete_school_cascade(store, school_id)
    steps = report.to_dict()["steps"]
    if not report.completed:
        failed = report.failed_steps[0]
        return JSONResponse(status_code=500, content={
            "error": f"Failed to delete {failed}",
            "school_id": school_id,
            "steps": steps,
        })
    return {
        "message": f"School {school_id} and all associated data deleted successfully.",
        "school_id": school_id,
        "steps": steps,
    }


@app.get("/api/schools/{school_id}/classes")
async def list_classes(school_id: str, store: SchoolStore = Depends(get_store)):
    _existing_school(store, school_id)
    classes = store.list(SchoolClass, order_by=(SchoolClass.class_name, SchoolClass.section),
                         school_id=school_id)
    return {"data": [row_to_dict(c) for c in classes]}


@app.get("/api/schools/{school_id}/teachers")
async def list_teachers(school_id: str, store: SchoolStore = Depends(get_store)):
    _existing_school(store, school_id)
    return {"data": _teachers_with_assignments(store, school_id)}


@app.get("/api/schools/{school_id}/students")
async def list_students(
    school_id: str,
    class_name: str | None = Query(None, alias="class"),
    section: str | None = None,
    store: SchoolStore = Depends(get_store),
):
    _existing_school(store, school_id)
    filters = {"school_id": school_id}
    if class_name:
        filters["class_name"] = class_name
    if section:
        filters["section"] = section
    students = store.list(Student, order_by=(Student.class_name, Student.section, Student.roll_no),
                          **filters)
    return {"data": [row_to_dict(s) for s in students]}


@app.get("/api/schools/{school_id}/exams")
async def list_exams(school_id: str, store: SchoolStore = Depends(get_store)):
    _existing_school(store, school_id)
    exams = store.list(Exam, order_by=(Exam.class_name, Exam.exam_name), school_id=school_id)
    return {"data": [row_to_dict(e) for e in exams]}


@app.post("/api/upload-schools")
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_schools(
    request: Request,
    file: UploadFile | None = File(None),
    on_conflict: str | None = Form(None),
    store: SchoolStore = Depends(get_store),
):
    content = await _read_upload(file)
    policy = _conflict_policy(on_conflict, ConflictPolicy.UPDATE)

    result = ingest_schools(file.filename, content)
    if not result.total_rows:
        return {"inserted": 0, "skipped": 0, "errors": [], "message": "No data in file"}

    counts = store.upsert_many(School, result.record_dicts(), key=("school_id",), policy=policy)
    return {
        "inserted": counts.written,
        "skipped": len(result.errors) + counts.skipped,
        "errors": result.error_dicts(),
    }


# ---------- Classes & teachers ----------

@app.post("/api/classes", status_code=201)
async def create_class(body: ClassCreate, store: SchoolStore = Depends(get_store)):
    _require(body, "school_id", "class_name", "section")
    data = store.rpc(
        "create_class",
        school_id=body.school_id,
        class_name=body.class_name,
        section=body.section,
        foundation=body.foundation,
        program=body.program,
        group=body.group,
        num_students=body.num_students,
        academic_year=body.academic_year,
    )
    return {"success": True, "data": data}


@app.post("/api/teachers", status_code=201)
async def create_teacher(body: TeacherCreate, store: SchoolStore = Depends(get_store)):
    _require(body, "school_id", "teacher_id", "name")
    data = store.rpc(
        "create_teacher",
        school_id=body.school_id,
        teacher_id=body.teacher_id,
        name=body.name,
        contact=body.contact,
        email=body.email,
    )
    return {"success": True, "data": data}


@app.post("/api/teacher-assignments", status_code=201)
async def assign_teacher(body: AssignmentCreate, store: SchoolStore = Depends(get_store)):
    _require(body, "school_id", "teacher_id", "class_name", "section", "subject")
    data = store.rpc(
        "assign_teacher_to_class",
        school_id=body.school_id,
        teacher_id=body.teacher_id,
        class_name=body.class_name,
        section=body.section,
        subject=body.subject,
    )
    return {"success": True, "data": data}


# ---------- Students ----------

@app.post("/api/students", status_code=201)
async def create_student(body: StudentCreate, store: SchoolStore = Depends(get_store)):
    _require(body, "school_id", "class_name", "section", "roll_no", "first_name")
    school = _existing_school(store, body.school_id)
    fields = body.model_dump(exclude={"school_id", "class_name", "section"})
    outcome = build_student_row(1, fields, school.school_id, school.academic_year,
                                body.class_name.strip(), body.section.strip())
    if isinstance(outcome, RowError):
        raise HTTPException(status_code=400, detail=outcome.reason)
    student = store.insert(Student, vars(outcome))
    return {"data": row_to_dict(student)}


@app.post("/api/schools/{school_id}/students/upload", status_code=201)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_students(
    request: Request,
    school_id: str,
    file: UploadFile | None = File(None),
    class_section: str | None = Form(None),
    on_conflict: str | None = Form(None),
    store: SchoolStore = Depends(get_store),
):
    if not class_section:
        raise HTTPException(status_code=400, detail="class_section is required")
    content = await _read_upload(file)
    policy = _conflict_policy(on_conflict, ConflictPolicy.FAIL)
    class_name, section = split_class_section(class_section)
    if not class_name:
        raise HTTPException(status_code=400, detail="class_section must look like <class>-<section>")

    school = _existing_school(store, school_id)
    result = ingest_students(file.filename, content, school_id, school.academic_year,
                             class_name, section)
    if not result.total_rows:
        raise HTTPException(status_code=400, detail="No data found in file")
    if not result.records:
        return JSONResponse(status_code=400, content={
            "error": "No valid student records found",
            "errors": result.error_dicts(),
        })

    counts = store.upsert_many(
        Student, result.record_dicts(),
        key=("school_id", "academic_year", "class_name", "section", "roll_no"),
        policy=policy,
    )
    students = store.list(Student, order_by=(Student.roll_no,), school_id=school_id,
                          class_name=class_name, section=section)
    return {
        "message": f"{counts.written} students uploaded successfully",
        "count": counts.written,
        "skipped": len(result.errors) + counts.skipped,
        "errors": result.error_dicts(),
        "data": [row_to_dict(s) for s in students],
    }


# ---------- Exams ----------

@app.post("/api/exams", status_code=201)
async def create_exam(body: ExamCreate, store: SchoolStore = Depends(get_store)):
    _require(body, "school_id", "foundation", "program", "exam_name", "exam_template", "class_name")
    data = store.rpc(
        "create_exam",
        school_id=body.school_id,
        foundation=body.foundation,
        program=body.program,
        exam_name=body.exam_name,
        exam_template=body.exam_template,
        exam_pattern=body.exam_pattern,
        class_name=body.class_name,
        section=body.section,
        exam_date=body.exam_date,
    )
    return {"success": True, "data": data}


@app.get("/api/exams/{exam_id}/results")
async def list_exam_results(exam_id: int, store: SchoolStore = Depends(get_store)):
    exam = _existing_exam(store, exam_id)
    results = store.list(ExamResult, order_by=(ExamResult.roll_no,), exam_id=exam_id)
    summary = store.find(ExamSummary, exam_id=exam_id)
    summary_data = None
    if summary:
        summary_data = row_to_dict(summary)
        summary_data["subject_averages"] = json.loads(summary.subject_averages or "{}")
    return {
        "exam": row_to_dict(exam),
        "summary": summary_data,
        "results": [row_to_dict(r) for r in results],
    }


@app.post("/api/exams/{exam_id}/results/upload", status_code=201)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_exam_results(
    request: Request,
    exam_id: int,
    file: UploadFile | None = File(None),
    subject_max_marks: float | None = Form(None),
    section: str | None = Form(None),
    on_conflict: str | None = Form(None),
    store: SchoolStore = Depends(get_store),
):
    content = await _read_upload(file)
    policy = _conflict_policy(on_conflict, ConflictPolicy.UPDATE)
    max_marks = DEFAULT_SUBJECT_MAX_MARKS if subject_max_marks is None else subject_max_marks
    if not math.isfinite(max_marks) or max_marks <= 0:
        raise HTTPException(status_code=400, detail="subject_max_marks must be a positive number")

    exam = _existing_exam(store, exam_id)
    result = ingest_exam_results(file.filename, content, exam.id, exam.school_id,
                                 exam.class_name, section or exam.section or None, max_marks)
    if not result.total_rows:
        raise HTTPException(status_code=400, detail="No data found in file")
    if not result.records:
        return JSONResponse(status_code=400, content={
            "error": "No valid result rows found",
            "errors": result.error_dicts(),
        })

    counts = store.upsert_many(ExamResult, result.record_dicts(),
                               key=("exam_id", "student_id"), policy=policy)

    recalculation = None
    if counts.written:
        report = recalculate_exam(store, exam.id)
        if not report.completed:
            logger.warning(f"Exam {exam.id}: recalculation incomplete, "
                           f"failed steps: {report.failed_steps}")
        recalculation = report.to_dict()

    return {
        "message": f"{counts.written} results uploaded successfully",
        "inserted": counts.written,
        "skipped": len(result.errors) + counts.skipped,
        "errors": result.error_dicts(),
        "recalculation": recalculation,
    }


@app.post("/api/exams/{exam_id}/recalculate")
async def recalculate(exam_id: int, store: SchoolStore = Depends(get_store)):
    _existing_exam(store, exam_id)
    report = recalculate_exam(store, exam_id)
    return {"exam_id": exam_id, "recalculation": report.to_dict()}


# ---------- Reference data ----------

@app.get("/api/foundations")
async def get_foundations():
    return FOUNDATIONS


@app.get("/api/programs")
async def get_programs():
    return PROGRAMS


@app.get("/api/academic-years")
async def get_academic_years():
    return academic_years()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=PORT, reload=True)
