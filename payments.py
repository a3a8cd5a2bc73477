"""
payments.py
Payment collection: validation, duplicate-transaction guard, receipt numbering, the
edit/approval workflow, and receipt sharing text.

The transaction-id scan here is only a fast pre-check for the user; the unique index in
db.py is the authority and its rejection is reported the same way.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import quote

import config
import db
from auth import require_admin
from errors import ConstraintError, DuplicateTransactionError, ValidationError
from models import PAYMENT_METHODS, AppNotification, Payment, PendingChange, SessionUser
from normalize import notification_to_row, payment_to_row, payment_values, pending_change_to_row
from state import Snapshot
from utils import digits_only, format_inr, now_time, now_ts, today_iso

logger = logging.getLogger(__name__)

APPLIED = "applied"
SUBMITTED = "submitted"

# Fields a payment edit may change
EDITABLE_FIELDS = (
    "student_id",
    "amount",
    "date",
    "payment_method",
    "transaction_id",
    "upi_id",
    "bank_account",
    "session_id",
    "fee_head_ids",
    "remarks",
)


@dataclass
class PaymentDraft:
    student_id: Optional[int] = None
    amount: float = 0
    date: str = field(default_factory=today_iso)
    payment_method: str = "UPI"
    transaction_id: str = ""
    upi_id: str = ""
    bank_account: str = ""
    session_id: str = ""
    fee_head_ids: list[int] = field(default_factory=list)
    remarks: str = ""

    def values(self) -> dict:
        txn = (self.transaction_id or "").strip()
        return {
            "student_id": self.student_id,
            "amount": float(self.amount),
            "date": self.date,
            "payment_method": self.payment_method,
            "transaction_id": txn or None,
            "upi_id": (self.upi_id or "").strip() or None,
            "bank_account": (self.bank_account or "").strip() or None,
            "session_id": self.session_id,
            "fee_head_ids": list(self.fee_head_ids),
            "remarks": (self.remarks or "").strip() or None,
        }


@dataclass(frozen=True)
class SaveOutcome:
    status: str
    payment_id: Optional[int]
    receipt_number: str = ""
    change_id: Optional[int] = None

    @property
    def message(self) -> str:
        if self.status == SUBMITTED:
            return "Approval request submitted."
        return "Payment recorded." if self.receipt_number else "Updated successfully."


def draft_from_payment(payment: Payment) -> PaymentDraft:
    return PaymentDraft(
        student_id=payment.student_id,
        amount=payment.amount,
        date=payment.date,
        payment_method=payment.payment_method,
        transaction_id=payment.transaction_id,
        upi_id=payment.upi_id,
        bank_account=payment.bank_account,
        session_id=payment.session_id,
        fee_head_ids=list(payment.fee_head_ids),
        remarks=payment.remarks,
    )


def default_session_for(snapshot: Snapshot, student_id) -> str:
    student = snapshot.student(student_id)
    return student.session_id if student else ""


def validate_draft(draft: PaymentDraft) -> None:
    try:
        amount = float(draft.amount or 0)
    except (TypeError, ValueError):
        amount = 0
    if draft.student_id is None or not math.isfinite(amount) or amount <= 0:
        raise ValidationError("Select student & amount.")
    if draft.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of {', '.join(PAYMENT_METHODS)}.")


# ---------- Duplicate guard ----------

def normalize_transaction_id(transaction_id: Optional[str]) -> str:
    return (transaction_id or "").strip().lower()


def find_duplicate(payments: Iterable[Payment], transaction_id: Optional[str], exclude_id=None) -> Optional[Payment]:
    key = normalize_transaction_id(transaction_id)
    if not key:
        return None
    return next(
        (p for p in payments if p.id != exclude_id and normalize_transaction_id(p.transaction_id) == key),
        None,
    )


def check_duplicate(snapshot: Snapshot, transaction_id: Optional[str], exclude_id=None) -> None:
    dup = find_duplicate(snapshot.payments, transaction_id, exclude_id)
    if dup is not None:
        raise DuplicateTransactionError(transaction_id.strip(), snapshot.student_name(dup.student_id, None))


def _constraint_to_duplicate(exc: ConstraintError, snapshot: Snapshot, transaction_id, exclude_id=None):
    """Map the store's unique-index rejection to the same error the pre-check raises."""
    if db.TRANSACTION_INDEX not in exc.detail:
        return exc
    dup = find_duplicate(snapshot.payments, transaction_id, exclude_id)
    name = snapshot.student_name(dup.student_id, None) if dup else None
    return DuplicateTransactionError((transaction_id or "").strip(), name)


# ---------- Writes ----------

def receipt_number(count: int) -> str:
    return f"{config.RECEIPT_PREFIX}{config.RECEIPT_BASE + count}"


def record_payment(snapshot: Snapshot, draft: PaymentDraft, user: SessionUser) -> SaveOutcome:
    """Insert a new payment; the receipt number is assigned inside the insert transaction."""
    validate_draft(draft)
    check_duplicate(snapshot, draft.transaction_id)

    values = draft.values()
    values["session_id"] = values["session_id"] or default_session_for(snapshot, draft.student_id)
    values["time"] = now_time()
    values["collected_by"] = user.user_id
    try:
        row = db.insert_numbered("payments", values, "receipt_number", config.RECEIPT_PREFIX, config.RECEIPT_BASE)
    except ConstraintError as exc:
        raise _constraint_to_duplicate(exc, snapshot, draft.transaction_id) from exc

    logger.info("Recorded payment %s (%s) by %s", row["id"], row["receipt_number"], user.user_id)
    return SaveOutcome(APPLIED, row["id"], receipt_number=row["receipt_number"])


def edit_payment(snapshot: Snapshot, payment_id: int, draft: PaymentDraft, user: SessionUser) -> SaveOutcome:
    """
    Admin edits are applied in place. Accountant edits leave the payment untouched and
    become a PendingChange (old snapshot + merged new snapshot) plus an Info notification.
    """
    validate_draft(draft)
    check_duplicate(snapshot, draft.transaction_id, exclude_id=payment_id)
    old = snapshot.payment(payment_id)
    if old is None:
        raise ValidationError("Payment not found. Refresh and try again.")

    edits = {k: v for k, v in draft.values().items() if k in EDITABLE_FIELDS}

    if user.is_admin:
        try:
            db.update("payments", {**edits, "is_edited": True, "edited_by": user.user_id}, {"id": payment_id})
        except ConstraintError as exc:
            raise _constraint_to_duplicate(exc, snapshot, draft.transaction_id, payment_id) from exc
        logger.info("Payment %s edited by %s", payment_id, user.user_id)
        return SaveOutcome(APPLIED, payment_id)

    old_data = payment_to_row(old, include_id=True)
    change = PendingChange(
        id=None,
        payment_id=payment_id,
        requested_by=user.user_id,
        requested_at=now_ts(),
        old_data=old_data,
        new_data={**old_data, **edits},
        status="Pending",
    )
    note = AppNotification(
        id=None,
        message=f"{user.name} requested an edit to receipt {old.receipt_number}.",
        timestamp=now_ts(),
        type="Info",
    )
    with db.transaction() as conn:
        change_id = db.insert("pending_changes", pending_change_to_row(change), conn=conn)["id"]
        db.insert("notifications", notification_to_row(note), conn=conn)
    logger.info("Edit of payment %s by %s queued for approval (change %s)", payment_id, user.user_id, change_id)
    return SaveOutcome(SUBMITTED, payment_id, change_id=change_id)


def save_payment(snapshot: Snapshot, draft: PaymentDraft, user: SessionUser, payment_id: Optional[int] = None) -> SaveOutcome:
    if payment_id is None:
        return record_payment(snapshot, draft, user)
    return edit_payment(snapshot, payment_id, draft, user)


def approve_change(user: Optional[SessionUser], snapshot: Snapshot, change_id: int) -> None:
    """Apply the proposed fields to the payment (edited by the requester), then drop the request."""
    require_admin(user)
    change = snapshot.pending_change(change_id)
    if change is None:
        raise ValidationError("Change request not found. Refresh and try again.")

    values = payment_values(change.new_data)
    values.pop("id", None)
    txn = values.get("transaction_id")
    check_duplicate(snapshot, txn, exclude_id=change.payment_id)
    if isinstance(txn, str):
        values["transaction_id"] = txn.strip() or None
    values["is_edited"] = True
    values["edited_by"] = change.requested_by

    try:
        with db.transaction() as conn:
            db.update("payments", values, {"id": change.payment_id}, conn=conn)
            db.delete("pending_changes", {"id": change_id}, conn=conn)
    except ConstraintError as exc:
        raise _constraint_to_duplicate(exc, snapshot, txn, change.payment_id) from exc
    logger.info("Change %s approved by %s; payment %s updated", change_id, user.user_id, change.payment_id)


def reject_change(user: Optional[SessionUser], change_id: int) -> None:
    require_admin(user)
    db.delete("pending_changes", {"id": change_id})
    logger.info("Change %s rejected by %s", change_id, user.user_id)


# ---------- Receipt sharing ----------

def receipt_message(snapshot: Snapshot, payment: Payment) -> str:
    student = snapshot.student(payment.student_id)
    return (
        "*FEE PAYMENT RECEIPT*\n\n"
        f"*Institution:* {snapshot.settings.institution_name}\n"
        f"*Receipt No:* {payment.receipt_number}\n"
        f"*Student:* {student.name if student else 'Unknown'}\n"
        f"*Amount:* {format_inr(payment.amount)}\n"
        f"*Date:* {payment.date}\n"
        f"*Method:* {payment.payment_method}\n"
        f"*Txn ID:* {payment.transaction_id or 'N/A'}\n\n"
        "Thank you for your payment! - _Sent via EduPay Cloud_"
    )


def whatsapp_link(phone: str, message: str) -> str:
    number = digits_only(phone)
    if not number:
        raise ValidationError("No student phone number found.")
    return f"https://wa.me/{number}?text={quote(message)}"
