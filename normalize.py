"""
normalize.py
Field normalizer: the one place that reconciles snake_case column names with camelCase names.

Reads fall back camelCase -> snake_case -> type default. Writes always emit the store's
snake_case columns. No other module should look at raw rows.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Iterable

from models import (
    CHANGE_STATUSES,
    NOTIFICATION_TYPES,
    Accountant,
    AppNotification,
    CourseStructure,
    FeeHead,
    InstitutionSettings,
    Payment,
    PendingChange,
    Student,
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

PAYMENT_COLUMNS = tuple(f.name for f in dataclasses.fields(Payment))


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def _absent(value: Any) -> bool:
    return value is None or value == ""


def pick(raw: dict[str, Any], name: str, default: Any = "") -> Any:
    """Value for `name` (either convention) from `raw`: camelCase first, then snake_case, else default."""
    snake = snake_case(name)
    for key in (camel_case(snake), snake):
        value = raw.get(key)
        if not _absent(value):
            return value
    return default


# ---------- Coercions ----------

def _text(raw, name) -> str:
    return str(pick(raw, name, ""))


def _number(raw, name) -> float:
    try:
        return float(pick(raw, name, 0))
    except (TypeError, ValueError):
        return 0.0


def _ref(raw, name) -> int | None:
    value = pick(raw, name, None)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _strings(raw, name) -> tuple[str, ...]:
    value = pick(raw, name, [])
    if isinstance(value, str):
        value = [value]
    return tuple(str(v) for v in value or [])


def _refs(raw, name) -> tuple[int, ...]:
    out = []
    for v in pick(raw, name, []) or []:
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            continue
    return tuple(out)


def _flag(raw, name) -> bool:
    return bool(pick(raw, name, False))


# ---------- Readers (row -> entity) ----------

def settings_from_row(raw: dict[str, Any] | None) -> InstitutionSettings:
    raw = raw or {}
    return InstitutionSettings(
        id=_ref(raw, "id"),
        institution_name=str(pick(raw, "institution_name", "Institution")),
        address=_text(raw, "address"),
        contact_number=_text(raw, "contact_number"),
        logo_url=_text(raw, "logo_url"),
        website_url=_text(raw, "website_url"),
        available_branches=_strings(raw, "available_branches"),
        available_semesters=_strings(raw, "available_semesters"),
        available_sessions=_strings(raw, "available_sessions"),
    )


def head_from_row(raw: dict[str, Any]) -> FeeHead:
    return FeeHead(
        id=_ref(raw, "id"),
        course_id=_ref(raw, "course_id"),
        name=_text(raw, "name"),
        amount=_number(raw, "amount"),
        type=str(pick(raw, "type", "Base")),
    )


def course_from_row(raw: dict[str, Any], heads: Iterable[FeeHead] = ()) -> CourseStructure:
    return CourseStructure(
        id=_ref(raw, "id"),
        course_name=_text(raw, "course_name"),
        frequency=str(pick(raw, "frequency", "Annual")),
        total_amount=_number(raw, "total_amount"),
        heads=tuple(heads),
    )


def student_from_row(raw: dict[str, Any]) -> Student:
    return Student(
        id=_ref(raw, "id"),
        name=_text(raw, "name"),
        parent_name=_text(raw, "parent_name"),
        roll_number=_text(raw, "roll_number"),
        course_id=_ref(raw, "course_id"),
        branch=_text(raw, "branch"),
        semester=_text(raw, "semester"),
        session_id=_text(raw, "session_id"),
        email=_text(raw, "email"),
        phone=_text(raw, "phone"),
        enrollment_date=_text(raw, "enrollment_date"),
    )


def payment_from_row(raw: dict[str, Any]) -> Payment:
    return Payment(
        id=_ref(raw, "id"),
        student_id=_ref(raw, "student_id"),
        amount=_number(raw, "amount"),
        date=_text(raw, "date"),
        time=_text(raw, "time"),
        payment_method=_text(raw, "payment_method"),
        receipt_number=_text(raw, "receipt_number"),
        fee_head_ids=_refs(raw, "fee_head_ids"),
        remarks=_text(raw, "remarks"),
        upi_id=_text(raw, "upi_id"),
        transaction_id=_text(raw, "transaction_id"),
        bank_account=_text(raw, "bank_account"),
        session_id=_text(raw, "session_id"),
        collected_by=_text(raw, "collected_by"),
        edited_by=_text(raw, "edited_by"),
        is_edited=_flag(raw, "is_edited"),
    )


def accountant_from_row(raw: dict[str, Any]) -> Accountant:
    return Accountant(
        id=_ref(raw, "id"),
        name=_text(raw, "name"),
        user_id=_text(raw, "user_id"),
        password_hash=_text(raw, "password_hash"),
    )


def pending_change_from_row(raw: dict[str, Any]) -> PendingChange:
    return PendingChange(
        id=_ref(raw, "id"),
        payment_id=_ref(raw, "payment_id"),
        requested_by=_text(raw, "requested_by"),
        requested_at=_text(raw, "requested_at"),
        old_data=dict(pick(raw, "old_data", {}) or {}),
        new_data=dict(pick(raw, "new_data", {}) or {}),
        status=str(pick(raw, "status", "Pending")),
    )


def notification_from_row(raw: dict[str, Any]) -> AppNotification:
    return AppNotification(
        id=_ref(raw, "id"),
        message=_text(raw, "message"),
        timestamp=_text(raw, "timestamp"),
        type=str(pick(raw, "type", "Info")),
        read=_flag(raw, "read"),
    )


# ---------- Writers (entity/draft -> row) ----------

def _plain(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def to_row(entity: Any, exclude: Iterable[str] = ("id",)) -> dict[str, Any]:
    """snake_case column dict for a dataclass entity (tuples become lists)."""
    skip = set(exclude)
    return {
        f.name: _plain(getattr(entity, f.name))
        for f in dataclasses.fields(entity)
        if f.name not in skip
    }


def snake_keys(values: dict[str, Any]) -> dict[str, Any]:
    """Rename the keys of a loosely-named dict to snake_case; a camelCase key wins over its snake twin."""
    out: dict[str, Any] = {}
    for key in sorted(values, key=lambda k: k != snake_case(k)):
        out[snake_case(key)] = values[key]
    return out


def payment_values(raw: dict[str, Any]) -> dict[str, Any]:
    """Payment columns present in `raw` (either convention), in store naming."""
    data = snake_keys(raw)
    return {k: _plain(data[k]) for k in PAYMENT_COLUMNS if k in data}


def payment_to_row(payment: Payment, include_id: bool = False) -> dict[str, Any]:
    return to_row(payment, exclude=() if include_id else ("id",))


def course_to_row(course_name: str, frequency: str, total_amount: float) -> dict[str, Any]:
    return {"course_name": course_name, "frequency": frequency, "total_amount": total_amount}


def head_to_row(head: FeeHead, course_id: int) -> dict[str, Any]:
    return {"course_id": course_id, "name": head.name, "amount": head.amount, "type": head.type}


def student_to_row(values: dict[str, Any]) -> dict[str, Any]:
    columns = [f.name for f in dataclasses.fields(Student) if f.name != "id"]
    data = snake_keys(values)
    return {k: data.get(k) for k in columns}


def settings_to_row(settings: InstitutionSettings, fields: Iterable[str] | None = None) -> dict[str, Any]:
    """Store columns for the settings row; `fields` limits the write to the columns being changed."""
    row = to_row(settings)
    return row if fields is None else {k: row[k] for k in fields}


def accountant_to_row(name: str, user_id: str, password_hash: str | None = None) -> dict[str, Any]:
    """Columns for an accountant write; leaving out the hash keeps the stored one on update."""
    row = {"name": name, "user_id": user_id}
    if password_hash:
        row["password_hash"] = password_hash
    return row


def pending_change_to_row(change: PendingChange) -> dict[str, Any]:
    if change.status not in CHANGE_STATUSES:
        raise ValueError(f"Unknown change status: {change.status}")
    return to_row(change)


def notification_to_row(note: AppNotification) -> dict[str, Any]:
    if note.type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {note.type}")
    return to_row(note)
