"""
state.py
Application state: one immutable snapshot of every collection + the signed-in user.
The snapshot is only ever replaced as a whole (see sync.refresh).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from models import (
    Accountant,
    AppNotification,
    CourseStructure,
    InstitutionSettings,
    Payment,
    PendingChange,
    SessionUser,
    Student,
)
from normalize import settings_from_row


@dataclass(frozen=True)
class Snapshot:
    settings: InstitutionSettings = field(default_factory=lambda: settings_from_row(None))
    courses: tuple[CourseStructure, ...] = ()
    students: tuple[Student, ...] = ()
    payments: tuple[Payment, ...] = ()
    accountants: tuple[Accountant, ...] = ()
    notifications: tuple[AppNotification, ...] = ()
    pending_changes: tuple[PendingChange, ...] = ()

    def course(self, course_id) -> Optional[CourseStructure]:
        return next((c for c in self.courses if c.id == course_id), None)

    def student(self, student_id) -> Optional[Student]:
        return next((s for s in self.students if s.id == student_id), None)

    def payment(self, payment_id) -> Optional[Payment]:
        return next((p for p in self.payments if p.id == payment_id), None)

    def pending_change(self, change_id) -> Optional[PendingChange]:
        return next((c for c in self.pending_changes if c.id == change_id), None)

    def student_name(self, student_id, default: str = "Unknown") -> str:
        s = self.student(student_id)
        return s.name if s else default


class AppState:
    """Owns the current snapshot and session user; mutate only through the setters."""

    def __init__(self, snapshot: Snapshot | None = None, user: SessionUser | None = None):
        self._snapshot = snapshot or Snapshot()
        self._user = user
        self._generation = 0
        self.loaded = False

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def user(self) -> Optional[SessionUser]:
        return self._user

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self.loaded = True

    def begin_refresh(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def set_user(self, user: SessionUser) -> None:
        self._user = user

    def clear_user(self) -> None:
        self._user = None

