"""
utils.py
Dates, currency formatting, phone cleanup, sample data.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

import config
import db
from models import FeeHead, Payment
from normalize import course_to_row, head_to_row, payment_to_row, student_to_row


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def now_time() -> str:
    """Clock time as shown on receipts, e.g. 03:45 PM."""
    return datetime.now().strftime("%I:%M %p")


def now_ts() -> str:
    return datetime.now().isoformat(timespec="seconds")


def in_range(day: str, start: Optional[str] = None, end: Optional[str] = None) -> bool:
    """Inclusive bounds; ISO dates compare correctly as strings."""
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True


def format_inr(value) -> str:
    """Rupee amount with Indian digit grouping: 150000 -> ₹1,50,000."""
    amount = float(value or 0)
    whole, frac = f"{abs(amount):.2f}".split(".")
    head, tail = whole[:-3], whole[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    text = ",".join(groups + [tail])
    if frac != "00":
        text += "." + frac
    return ("-" if amount < 0 else "") + "₹" + text


def digits_only(phone: str) -> str:
    return re.sub(r"[^0-9]", "", phone or "")


def insert_sample_data() -> None:
    """
    Insert 2 courses (with heads), 2 students and a payment each
    (safe to run multiple times: adds new rows each time).
    """
    courses = [
        ("B.Tech Computer Science", "Semester", [
            FeeHead(None, None, "Tuition Fee", 60000, "Base"),
            FeeHead(None, None, "Library & Lab", 10000, "Base"),
            FeeHead(None, None, "Admission Charges", 5000, "One-Time"),
        ]),
        ("MBA Marketing", "Annual", [
            FeeHead(None, None, "Annual Tuition", 200000, "Base"),
            FeeHead(None, None, "Development Fee", 40000, "One-Time"),
            FeeHead(None, None, "Placement Training", 10000, "Optional"),
        ]),
    ]
    course_ids = []
    head_ids = []
    for name, frequency, heads in courses:
        with db.transaction() as conn:
            cid = db.insert("courses", course_to_row(name, frequency, sum(h.amount for h in heads)), conn=conn)["id"]
            first = db.insert("fee_heads", head_to_row(heads[0], cid), conn=conn)
            db.insert_many("fee_heads", [head_to_row(h, cid) for h in heads[1:]], conn=conn)
        course_ids.append(cid)
        head_ids.append(first["id"])

    students = [
        ("Aarav Sharma", "Mr. Sunil Sharma", "BT24001", course_ids[0], "CSE", "I", "aarav@outlook.com", "919876543210", "2024-07-01"),
        ("Ishani Gupta", "Mr. Alok Gupta", "MB24105", course_ids[1], "MBA", "I", "ishani.g@gmail.com", "918765432109", "2024-08-10"),
    ]
    student_ids = []
    for name, parent, roll, cid, branch, sem, email, phone, enrolled in students:
        sid = db.insert("students", student_to_row({
            "name": name,
            "parent_name": parent,
            "roll_number": roll,
            "course_id": cid,
            "branch": branch,
            "semester": sem,
            "session_id": "2024-25",
            "email": email,
            "phone": phone,
            "enrollment_date": enrolled,
        }))["id"]
        student_ids.append(sid)

    payments = [
        (student_ids[0], 45000, "2024-08-01", "Bank Transfer", head_ids[0]),
        (student_ids[1], 150000, "2024-09-15", "UPI", head_ids[1]),
    ]
    for sid, amount, paid_on, method, head_id in payments:
        payment = Payment(
            id=None,
            student_id=sid,
            amount=amount,
            date=paid_on,
            time="10:00 AM",
            payment_method=method,
            receipt_number="",
            fee_head_ids=(head_id,),
            session_id="2024-25",
            collected_by=config.ADMIN_ID,
        )
        db.insert_numbered("payments", payment_to_row(payment), "receipt_number", config.RECEIPT_PREFIX, config.RECEIPT_BASE)
