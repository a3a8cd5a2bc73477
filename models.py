"""
models.py
Domain dataclasses for the in-memory snapshot + the enumerations the store checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

FREQUENCIES = ("Annual", "Semester", "Monthly")
HEAD_TYPES = ("Base", "One-Time", "Optional")
PAYMENT_METHODS = ("UPI", "Cash", "Bank Transfer")
CHANGE_STATUSES = ("Pending", "Approved", "Rejected")
NOTIFICATION_TYPES = ("Info", "Warning", "Alert")

ROLE_ADMIN = "Admin"
ROLE_ACCOUNTANT = "Accountant"
ROLES = (ROLE_ADMIN, ROLE_ACCOUNTANT)


@dataclass(frozen=True)
class InstitutionSettings:
    id: Optional[int]
    institution_name: str
    address: str
    contact_number: str
    logo_url: str = ""
    website_url: str = ""
    available_branches: tuple[str, ...] = ()
    available_semesters: tuple[str, ...] = ()
    available_sessions: tuple[str, ...] = ()


@dataclass(frozen=True)
class FeeHead:
    id: Optional[int]
    course_id: Optional[int]
    name: str
    amount: float
    type: str  # Base / One-Time / Optional


@dataclass(frozen=True)
class CourseStructure:
    id: int
    course_name: str
    frequency: str
    total_amount: float
    heads: tuple[FeeHead, ...] = ()


@dataclass(frozen=True)
class Student:
    id: int
    name: str
    parent_name: str
    roll_number: str
    course_id: Optional[int]
    branch: str
    semester: str
    session_id: str
    email: str
    phone: str
    enrollment_date: str


@dataclass(frozen=True)
class Payment:
    id: int
    student_id: Optional[int]
    amount: float
    date: str
    time: str
    payment_method: str  # UPI / Cash / Bank Transfer
    receipt_number: str
    fee_head_ids: tuple[int, ...] = ()
    remarks: str = ""
    upi_id: str = ""
    transaction_id: str = ""
    bank_account: str = ""
    session_id: str = ""
    collected_by: str = ""
    edited_by: str = ""
    is_edited: bool = False


@dataclass(frozen=True)
class Accountant:
    id: Optional[int]
    name: str
    user_id: str
    password_hash: str = field(repr=False, default="")


@dataclass(frozen=True)
class PendingChange:
    id: Optional[int]
    payment_id: Optional[int]
    requested_by: str
    requested_at: str
    old_data: dict[str, Any]
    new_data: dict[str, Any]
    status: str  # one of CHANGE_STATUSES


@dataclass(frozen=True)
class AppNotification:
    id: Optional[int]
    message: str
    timestamp: str
    type: str
    read: bool = False


@dataclass(frozen=True)
class SessionUser:
    name: str
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
