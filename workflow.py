"""
Multi-step store workflows.
Steps commit one by one; nothing is rolled back when a later step fails. The
returned report records what ran, what failed and what never started so the
caller can see exactly which state the data was left in.
"""
import logging
from dataclasses import dataclass, field

from errors import StoreError
from procedures import RECALCULATION_STEPS
from models import School, SchoolClass, Teacher, TeacherAssignment

logger = logging.getLogger(__name__)

OK = "ok"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class StepOutcome:
    name: str
    status: str
    error: str | None = None


@dataclass
class WorkflowReport:
    workflow: str
    steps: list = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return all(s.status == OK for s in self.steps)

    @property
    def failed_steps(self) -> list:
        return [s.name for s in self.steps if s.status == FAILED]

    def to_dict(self) -> dict:
        return {
            "workflow": self.workflow,
            "completed": self.completed,
            "steps": [
                {"name": s.name, "status": s.status, "error": s.error}
                for s in self.steps
            ],
        }


def run_steps(workflow: str, steps: list, stop_on_failure: bool) -> WorkflowReport:
    """Run (name, callable) pairs in order.

    With stop_on_failure the remaining steps are reported as skipped after the
    first failure; otherwise every step runs regardless.
    """
    report = WorkflowReport(workflow)
    halted = False
    for name, action in steps:
        if halted:
            report.steps.append(StepOutcome(name, SKIPPED))
            continue
        try:
            action()
        except StoreError as e:
            logger.warning(f"{workflow}: step '{name}' failed: {e}")
            report.steps.append(StepOutcome(name, FAILED, str(e)))
            halted = stop_on_failure
        else:
            report.steps.append(StepOutcome(name, OK))
    if report.completed:
        logger.info(f"{workflow}: all {len(report.steps)} steps completed")
    return report


def recalculate_exam(store, exam_id: int) -> WorkflowReport:
    """Ranks, exam averages, grade averages, grade ranks, all-India rank.

    Each step is independent; a failure leaves stale or placeholder values.
    """
    steps = [
        (name, lambda name=name: store.rpc(name, exam_id=exam_id))
        for name in RECALCULATION_STEPS
    ]
    return run_steps(f"recalculate exam {exam_id}", steps, stop_on_failure=False)


def delete_school_cascade(store, school_id: str) -> WorkflowReport:
    """Teachers (with assignments), then classes, then the school row.

    Not transactional: a failure stops the chain and keeps what was already deleted.
    Students and exams of the school are not touched.
    """
    def delete_teachers():
        teacher_ids = [t.id for t in store.list(Teacher, school_id=school_id)]
        store.delete_in(TeacherAssignment, TeacherAssignment.teacher_row_id, teacher_ids)
        store.delete_where(Teacher, school_id=school_id)

    steps = [
        ("teachers", delete_teachers),
        ("classes", lambda: store.delete_where(SchoolClass, school_id=school_id)),
        ("school", lambda: store.delete_where(School, school_id=school_id)),
    ]
    return run_steps(f"delete school {school_id}", steps, stop_on_failure=True)
