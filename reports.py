"""
reports.py
Derived views over a snapshot (no writes): dashboard totals, balances, course breakdown,
statement matching and CSV exports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

import pandas as pd

from models import Payment, Student
from state import Snapshot
from students import course_label
from utils import format_inr, in_range

HISTORY_COLUMNS = ["Receipt No", "Date", "Student", "Roll No", "Method", "Txn ID", "Amount"]
LEDGER_COLUMNS = ["Student", "Roll No", "Course", "Session", "Phone", "Course Total", "Paid", "Balance"]


@dataclass(frozen=True)
class FinancialSummary:
    receivable: float
    collected: float

    @property
    def outstanding(self) -> float:
        return self.receivable - self.collected


@dataclass(frozen=True)
class LedgerRow:
    student_id: int
    name: str
    roll_number: str
    course_name: str
    session_id: str
    phone: str
    course_total: float
    paid: float

    @property
    def balance(self) -> float:
        return self.course_total - self.paid


def course_total(snapshot: Snapshot, student: Student) -> float:
    course = snapshot.course(student.course_id)
    return course.total_amount if course else 0.0


def financial_summary(snapshot: Snapshot) -> FinancialSummary:
    receivable = sum(course_total(snapshot, s) for s in snapshot.students)
    collected = sum(p.amount for p in snapshot.payments)
    return FinancialSummary(receivable=float(receivable), collected=float(collected))


def student_paid(snapshot: Snapshot, student_id, start: Optional[str] = None, end: Optional[str] = None) -> float:
    return float(sum(
        p.amount for p in snapshot.payments
        if p.student_id == student_id and in_range(p.date, start, end)
    ))


def student_balance(snapshot: Snapshot, student: Student, start: Optional[str] = None, end: Optional[str] = None) -> float:
    """Course total minus the student's payments in [start, end]; no course counts as 0 receivable."""
    return course_total(snapshot, student) - student_paid(snapshot, student.id, start, end)


def student_ledger(snapshot: Snapshot, start: Optional[str] = None, end: Optional[str] = None) -> list[LedgerRow]:
    return [
        LedgerRow(
            student_id=s.id,
            name=s.name,
            roll_number=s.roll_number,
            course_name=course_label(s, snapshot.courses),
            session_id=s.session_id,
            phone=s.phone,
            course_total=course_total(snapshot, s),
            paid=student_paid(snapshot, s.id, start, end),
        )
        for s in snapshot.students
    ]


def collections_by_course(snapshot: Snapshot) -> dict[int, float]:
    """course id -> sum of payments made by students enrolled in it."""
    course_of = {s.id: s.course_id for s in snapshot.students}
    totals = {c.id: 0.0 for c in snapshot.courses}
    for p in snapshot.payments:
        cid = course_of.get(p.student_id)
        if cid in totals:
            totals[cid] += p.amount
    return totals


def matches(snapshot: Snapshot, payment: Payment, query: str) -> bool:
    """Case-insensitive substring of txn id, UPI id, bank account, student name or receipt number."""
    q = (query or "").strip().lower()
    if not q:
        return True
    fields = (
        payment.transaction_id,
        payment.upi_id,
        payment.bank_account,
        snapshot.student_name(payment.student_id, ""),
        payment.receipt_number,
    )
    return any(q in (f or "").lower() for f in fields)


def filter_payments(snapshot: Snapshot, query: str = "", start: Optional[str] = None, end: Optional[str] = None) -> list[Payment]:
    return [p for p in snapshot.payments if in_range(p.date, start, end) and matches(snapshot, p, query)]


def recent_activity(snapshot: Snapshot, limit: int = 5) -> list[Payment]:
    """Most recently recorded first."""
    return list(reversed(snapshot.payments[-limit:])) if limit > 0 else []


# ---------- Exports ----------

def payment_history_frame(snapshot: Snapshot, payments: Iterable[Payment]) -> pd.DataFrame:
    rows = []
    for p in payments:
        student = snapshot.student(p.student_id)
        rows.append([
            p.receipt_number,
            p.date,
            student.name if student else "Unknown",
            (student.roll_number if student else "") or "---",
            p.payment_method,
            p.transaction_id or "---",
            p.amount,
        ])
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def ledger_frame(rows: Iterable[LedgerRow]) -> pd.DataFrame:
    return pd.DataFrame(
        [[r.name, r.roll_number, r.course_name, r.session_id, r.phone, r.course_total, r.paid, r.balance] for r in rows],
        columns=LEDGER_COLUMNS,
    )


def to_csv_bytes(frame: pd.DataFrame) -> bytes:
    # pandas quotes any field holding the delimiter, quotes or newlines
    return frame.to_csv(index=False).encode("utf-8")


def export_filename(report: str, on: Optional[date] = None) -> str:
    return f"{report}_{(on or date.today()).isoformat()}.csv"


def due_reminder_message(snapshot: Snapshot, row: LedgerRow) -> str:
    return (
        "*PENDING FEE REMINDER*\n\n"
        f"Dear {row.name},\n"
        f"This is a friendly reminder that you have a pending fee balance of *{format_inr(row.balance)}* "
        f"for the {row.course_name} program (Session: {row.session_id}) at {snapshot.settings.institution_name}."
    )
