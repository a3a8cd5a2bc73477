"""
students.py
Student enrollment: save (insert/update) and delete.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

import db
from errors import ValidationError
from models import CourseStructure, Student
from normalize import student_to_row
from utils import today_iso

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"


@dataclass
class StudentDraft:
    name: str = ""
    parent_name: str = ""
    roll_number: str = ""
    course_id: Optional[int] = None
    branch: str = ""
    semester: str = ""
    session_id: str = ""
    email: str = ""
    phone: str = ""
    enrollment_date: str = ""


def draft_from_student(student: Student) -> StudentDraft:
    data = asdict(student)
    data.pop("id")
    return StudentDraft(**data)


def save_student(draft: StudentDraft, student_id: Optional[int] = None) -> int:
    if not draft.name.strip() or draft.course_id is None:
        raise ValidationError("Student name and course are required.")
    values = student_to_row(asdict(draft))
    values["name"] = draft.name.strip()
    values["enrollment_date"] = draft.enrollment_date or today_iso()
    if student_id is not None:
        db.update("students", values, {"id": student_id})
    else:
        student_id = db.insert("students", values)["id"]
    logger.info("Saved student %s (%s)", student_id, values["name"])
    return student_id


def delete_student(student_id: int) -> None:
    db.delete("students", {"id": student_id})
    logger.info("Deleted student %s", student_id)


def course_label(student: Student, courses: Iterable[CourseStructure]) -> str:
    course = next((c for c in courses if c.id == student.course_id), None)
    return course.course_name if course else UNASSIGNED
