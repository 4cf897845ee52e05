"""
Request bodies.
Fields are optional at the pydantic level so that handlers can answer missing
values with a 400 naming every absent field.
"""
from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def missing(self, *names) -> list:
        """Required fields that are absent or empty."""
        out = []
        for name in names:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                out.append(type(self).model_fields[name].alias or name)
        return out


class AssignmentSpec(BaseModel):
    class_name: str = Field(alias="class")
    section: str
    subject: str

    model_config = ConfigDict(populate_by_name=True)


class ClassSpec(BaseModel):
    class_name: str = Field(alias="class")
    section: str
    foundation: str | None = None
    program: str | None = None
    group: str | None = None
    num_students: int | None = None

    model_config = ConfigDict(populate_by_name=True)


class TeacherSpec(BaseModel):
    teacher_id: str = Field(alias="teacherId")
    name: str
    contact: str | None = None
    email: str | None = None
    teacher_assignments: list[AssignmentSpec] = Field(default_factory=list, alias="assignments")

    model_config = ConfigDict(populate_by_name=True)


class SchoolCreate(_Body):
    school_name: str | None = None
    state: str | None = None
    academic_year: str | None = None
    area: str | None = None
    district: str | None = None
    school_number_2d: int | str | None = None
    classes: list[ClassSpec] = Field(default_factory=list)
    teachers: list[TeacherSpec] = Field(default_factory=list)


class ClassCreate(_Body):
    school_id: str | None = None
    class_name: str | None = Field(None, alias="class")
    foundation: str | None = None
    program: str | None = None
    group: str | None = None
    section: str | None = None
    num_students: int | None = None
    academic_year: str | None = None


class TeacherCreate(_Body):
    school_id: str | None = None
    teacher_id: str | None = None
    name: str | None = None
    contact: str | None = None
    email: str | None = None


class AssignmentCreate(_Body):
    school_id: str | None = None
    teacher_id: str | None = None
    class_name: str | None = Field(None, alias="class")
    section: str | None = None
    subject: str | None = None


class StudentCreate(_Body):
    school_id: str | None = None
    class_name: str | None = Field(None, alias="class")
    section: str | None = None
    roll_no: int | str | None = None
    first_name: str | None = None
    last_name: str | None = None
    student_id: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None
    parent_name: str | None = None
    parent_phone: str | None = None
    parent_email: str | None = None


class ExamCreate(_Body):
    school_id: str | None = None
    foundation: str | None = None
    program: str | None = None
    exam_name: str | None = None
    exam_template: str | None = None
    exam_pattern: str | None = None
    class_name: str | None = Field(None, alias="class")
    section: str | None = None
    exam_date: str | None = None
