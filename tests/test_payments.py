from urllib.parse import unquote

import pytest

import db
import payments
import reports
from conftest import make_course, make_payment, make_student
from errors import AuthorizationError, DuplicateTransactionError, StoreError, ValidationError
from sync import refresh_now


@pytest.fixture
def ledger(state):
    """S1 (B.Tech, 75,000) paid 45,000 via P1 'TXN123'; S2 (MBA, 250,000) paid 150,000 via P2."""
    btech = make_course()
    mba = make_course("MBA Marketing", (("Annual Tuition", 200000, "Base"), ("Development Fee", 50000, "One-Time")))
    s1 = make_student("Aarav Sharma", btech)
    s2 = make_student("Ishani Gupta", mba, phone="918765432109")
    p1 = make_payment(s1, 45000, "2024-08-01", "Bank Transfer", transaction_id="TXN123")
    p2 = make_payment(s2, 150000, "2024-09-15", "UPI", transaction_id="UPI-77")
    refresh_now(state)
    return {"s1": s1, "s2": s2, "p1": p1, "p2": p2, "btech": btech}


def test_new_payment_scenario(state, admin):
    cid = make_course()
    sid = make_student(course_id=cid)
    refresh_now(state)

    draft = payments.PaymentDraft(student_id=sid, amount=45000, date="2024-08-01", payment_method="Bank Transfer")
    outcome = payments.record_payment(state.snapshot, draft, admin)
    refresh_now(state)

    assert outcome.status == payments.APPLIED
    assert outcome.receipt_number == "DC-1000"
    assert outcome.message == "Payment recorded."
    student = state.snapshot.student(sid)
    assert reports.student_balance(state.snapshot, student) == 30000
    assert reports.recent_activity(state.snapshot)[0].id == outcome.payment_id
    p = state.snapshot.payment(outcome.payment_id)
    assert p.collected_by == "admin"
    assert p.session_id == "2024-25"
    assert p.time


def test_receipt_number_follows_count(ledger, state, admin):
    draft = payments.PaymentDraft(student_id=ledger["s1"], amount=1000)
    outcome = payments.record_payment(state.snapshot, draft, admin)
    assert outcome.receipt_number == payments.receipt_number(2) == "DC-1002"


@pytest.mark.parametrize("draft", [
    payments.PaymentDraft(student_id=None, amount=100),
    payments.PaymentDraft(student_id=1, amount=0),
    payments.PaymentDraft(student_id=1, amount=-5),
    payments.PaymentDraft(student_id=1, amount=float("nan")),
    payments.PaymentDraft(student_id=1, amount=float("inf")),
    payments.PaymentDraft(student_id=1, amount=100, payment_method="Cheque"),
])
def test_validation_happens_before_write(state, admin, draft):
    with pytest.raises(ValidationError):
        payments.record_payment(state.snapshot, draft, admin)
    assert db.select_all("payments") == []


def test_duplicate_rejected_case_and_space_insensitive(ledger, state, admin):
    draft = payments.PaymentDraft(student_id=ledger["s2"], amount=500, transaction_id="txn123 ")
    with pytest.raises(DuplicateTransactionError) as err:
        payments.record_payment(state.snapshot, draft, admin)
    assert err.value.student_name == "Aarav Sharma"
    assert "Aarav Sharma" in err.value.message
    assert len(db.select_all("payments")) == 2


def test_store_index_backs_up_stale_snapshot(ledger, state, admin):
    stale = state.snapshot
    make_payment(ledger["s1"], 10, transaction_id="LATE-1")
    draft = payments.PaymentDraft(student_id=ledger["s2"], amount=500, transaction_id="late-1")
    with pytest.raises(DuplicateTransactionError):
        payments.record_payment(stale, draft, admin)
    assert len(db.select_all("payments")) == 3


def test_editing_keeps_own_transaction_id(ledger, state, admin):
    draft = payments.draft_from_payment(state.snapshot.payment(ledger["p1"]))
    draft.transaction_id = " txn123"
    draft.amount = 46000
    outcome = payments.edit_payment(state.snapshot, ledger["p1"], draft, admin)
    refresh_now(state)

    assert outcome.status == payments.APPLIED
    assert outcome.message == "Updated successfully."
    p = state.snapshot.payment(ledger["p1"])
    assert p.amount == 46000
    assert p.is_edited
    assert p.edited_by == "admin"


def test_edit_cannot_take_another_payments_transaction(ledger, state, admin):
    draft = payments.draft_from_payment(state.snapshot.payment(ledger["p2"]))
    draft.transaction_id = "TXN123"
    with pytest.raises(DuplicateTransactionError):
        payments.edit_payment(state.snapshot, ledger["p2"], draft, admin)


def test_accountant_edit_creates_pending_change(ledger, state, accountant):
    before = db.select_all("payments")
    draft = payments.draft_from_payment(state.snapshot.payment(ledger["p2"]))
    draft.amount = 140000

    outcome = payments.edit_payment(state.snapshot, ledger["p2"], draft, accountant)
    refresh_now(state)

    assert outcome.status == payments.SUBMITTED
    assert outcome.message == "Approval request submitted."
    assert db.select_all("payments") == before
    (change,) = state.snapshot.pending_changes
    assert change.status == "Pending"
    assert change.payment_id == ledger["p2"]
    assert change.requested_by == "ravi"
    assert change.old_data["amount"] == 150000
    assert change.new_data["amount"] == 140000
    assert change.new_data["receipt_number"] == change.old_data["receipt_number"]
    (note,) = state.snapshot.notifications
    assert note.type == "Info"
    assert not note.read


def _submit(ledger, state, accountant, **changes):
    draft = payments.draft_from_payment(state.snapshot.payment(ledger["p2"]))
    for k, v in changes.items():
        setattr(draft, k, v)
    payments.edit_payment(state.snapshot, ledger["p2"], draft, accountant)
    refresh_now(state)
    return state.snapshot.pending_changes[0]


def test_reject_leaves_payment_untouched(ledger, state, admin, accountant):
    before = db.select_all("payments")
    change = _submit(ledger, state, accountant, amount=140000)

    payments.reject_change(admin, change.id)
    refresh_now(state)

    assert db.select_all("payments") == before
    assert state.snapshot.pending_changes == ()


def test_approve_applies_proposed_fields(ledger, state, admin, accountant):
    change = _submit(ledger, state, accountant, amount=140000, remarks="Scholarship adjusted")

    payments.approve_change(admin, state.snapshot, change.id)
    refresh_now(state)

    p = state.snapshot.payment(ledger["p2"])
    assert p.amount == 140000
    assert p.remarks == "Scholarship adjusted"
    assert p.is_edited
    assert p.edited_by == "ravi"
    assert p.receipt_number == change.old_data["receipt_number"]
    assert state.snapshot.pending_changes == ()


def test_only_admin_resolves_changes(ledger, state, accountant):
    change = _submit(ledger, state, accountant, amount=1)
    with pytest.raises(AuthorizationError):
        payments.approve_change(accountant, state.snapshot, change.id)
    with pytest.raises(AuthorizationError):
        payments.reject_change(accountant, change.id)
    assert len(db.select_all("pending_changes")) == 1


def test_approve_rechecks_duplicates(ledger, state, admin, accountant):
    change = _submit(ledger, state, accountant, transaction_id="NEW-9")
    make_payment(ledger["s1"], 10, transaction_id="new-9")
    refresh_now(state)
    with pytest.raises(DuplicateTransactionError):
        payments.approve_change(admin, state.snapshot, change.id)
    assert len(db.select_all("pending_changes")) == 1


def test_save_payment_dispatches(ledger, state, admin):
    new = payments.save_payment(state.snapshot, payments.PaymentDraft(student_id=ledger["s1"], amount=5), admin)
    assert new.receipt_number
    draft = payments.draft_from_payment(state.snapshot.payment(ledger["p1"]))
    edited = payments.save_payment(state.snapshot, draft, admin, ledger["p1"])
    assert edited.payment_id == ledger["p1"]


def test_whatsapp_link_uses_digits_only(ledger, state):
    p = state.snapshot.payment(ledger["p1"])
    link = payments.whatsapp_link("+91 98765-43210", payments.receipt_message(state.snapshot, p))
    assert link.startswith("https://wa.me/919876543210?text=")
    text = unquote(link.split("text=", 1)[1])
    assert "Aarav Sharma" in text
    assert "₹45,000" in text
    assert "TXN123" in text
    with pytest.raises(ValidationError):
        payments.whatsapp_link("n/a", "hello")


def test_failed_approval_changes_nothing(ledger, state, admin, accountant, monkeypatch):
    before = db.select_all("payments")
    change = _submit(ledger, state, accountant, amount=140000)

    def failing_delete(table, match, conn=None):
        raise StoreError()

    monkeypatch.setattr(db, "delete", failing_delete)
    with pytest.raises(StoreError):
        payments.approve_change(admin, state.snapshot, change.id)

    assert db.select_all("payments") == before
    assert len(db.select_all("pending_changes")) == 1


def test_submission_is_all_or_nothing(ledger, state, accountant, monkeypatch):
    real_insert = db.insert

    def insert(table, values, conn=None):
        if table == "notifications":
            raise StoreError()
        return real_insert(table, values, conn=conn)

    monkeypatch.setattr(db, "insert", insert)
    draft = payments.draft_from_payment(state.snapshot.payment(ledger["p2"]))
    draft.amount = 140000
    with pytest.raises(StoreError):
        payments.edit_payment(state.snapshot, ledger["p2"], draft, accountant)

    assert db.select_all("pending_changes") == []
    assert db.select_all("notifications") == []
