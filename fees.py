"""
fees.py
Fee structure editor: in-progress course drafts and their persistence (admin only).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

import db
from auth import require_admin
from errors import ValidationError
from models import FREQUENCIES, HEAD_TYPES, CourseStructure, FeeHead, SessionUser, Student
from normalize import course_to_row, head_to_row

logger = logging.getLogger(__name__)


@dataclass
class CourseDraft:
    course_name: str = ""
    frequency: str = "Semester"
    heads: list[FeeHead] = field(default_factory=list)

    @property
    def total_amount(self) -> float:
        # Derived from the heads, never stored on the draft
        return float(sum(h.amount for h in self.heads))

    def add_head(self, name: str, amount, head_type: str = "Base") -> FeeHead:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Fee head name is required.")
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("Fee head amount must be numeric.") from None
        if not math.isfinite(value):
            raise ValidationError("Fee head amount must be numeric.")
        if value < 0:
            raise ValidationError("Fee head amount cannot be negative.")
        if head_type not in HEAD_TYPES:
            raise ValidationError(f"Unknown fee head type: {head_type}")
        local_id = max((h.id for h in self.heads if h.id is not None), default=0) + 1
        head = FeeHead(id=local_id, course_id=None, name=name, amount=value, type=head_type)
        self.heads.append(head)
        return head

    def remove_head(self, head_id) -> None:
        self.heads = [h for h in self.heads if h.id != head_id]


def draft_from_course(course: CourseStructure) -> CourseDraft:
    return CourseDraft(course_name=course.course_name, frequency=course.frequency, heads=list(course.heads))


def validate_draft(draft: CourseDraft) -> list[str]:
    errors: list[str] = []
    if not draft.course_name.strip():
        errors.append("Course name is required.")
    if draft.frequency not in FREQUENCIES:
        errors.append(f"Billing frequency must be one of {', '.join(FREQUENCIES)}.")
    if not draft.heads:
        errors.append("Add at least one fee head.")
    if any(h.amount < 0 for h in draft.heads):
        errors.append("Fee head amounts cannot be negative.")
    return errors


def save_course(user: Optional[SessionUser], draft: CourseDraft, course_id: Optional[int] = None) -> int:
    """
    Create or update a course. Heads use replace-all semantics: on update every stored head of
    the course is deleted and the draft's set inserted, all in one transaction. Caller refreshes
    afterwards.
    """
    require_admin(user)
    errors = validate_draft(draft)
    if errors:
        raise ValidationError(errors[0], errors)

    values = course_to_row(draft.course_name.strip(), draft.frequency, draft.total_amount)
    with db.transaction() as conn:
        if course_id is not None:
            db.update("courses", values, {"id": course_id}, conn=conn)
            db.delete("fee_heads", {"course_id": course_id}, conn=conn)
        else:
            course_id = db.insert("courses", values, conn=conn)["id"]
        db.insert_many("fee_heads", [head_to_row(h, course_id) for h in draft.heads], conn=conn)
    logger.info("Saved course %s with %d heads (total %.2f)", course_id, len(draft.heads), draft.total_amount)
    return course_id


def delete_course(user: Optional[SessionUser], course_id: int, students: Iterable[Student] = ()) -> int:
    """
    Delete a course together with its fee heads. Students enrolled in it are kept and show
    as "Unassigned"; returns how many were affected.
    """
    require_admin(user)
    orphaned = sum(1 for s in students if s.course_id == course_id)
    with db.transaction() as conn:
        db.delete("fee_heads", {"course_id": course_id}, conn=conn)
        db.delete("courses", {"id": course_id}, conn=conn)
    if orphaned:
        logger.warning("Course %s deleted; %d student(s) now unassigned", course_id, orphaned)
    else:
        logger.info("Course %s deleted", course_id)
    return orphaned
