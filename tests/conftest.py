import pytest

import db
from models import ROLE_ACCOUNTANT, ROLE_ADMIN, SessionUser
from state import AppState
from sync import refresh_now


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "edupay_test.db")
    db.init_db()
    return tmp_path


@pytest.fixture
def admin():
    return SessionUser(name="Super Admin", user_id="admin", role=ROLE_ADMIN)


@pytest.fixture
def accountant():
    return SessionUser(name="Ravi Kumar", user_id="ravi", role=ROLE_ACCOUNTANT)


@pytest.fixture
def state(store):
    s = AppState()
    refresh_now(s)
    return s


def make_course(name="B.Tech Computer Science", heads=(("Tuition Fee", 60000, "Base"), ("Library & Lab", 10000, "Base"), ("Admission Charges", 5000, "One-Time"))):
    cid = db.insert("courses", {"course_name": name, "frequency": "Semester", "total_amount": sum(h[1] for h in heads)})["id"]
    db.insert_many("fee_heads", [{"course_id": cid, "name": n, "amount": a, "type": t} for n, a, t in heads])
    return cid


def make_student(name="Aarav Sharma", course_id=None, phone="91 98765-43210"):
    return db.insert("students", {
        "name": name,
        "parent_name": "Mr. Sunil Sharma",
        "roll_number": "BT24001",
        "course_id": course_id,
        "session_id": "2024-25",
        "phone": phone,
        "enrollment_date": "2024-07-01",
    })["id"]


def make_payment(student_id, amount, paid_on="2024-08-01", method="UPI", transaction_id=None, receipt=None):
    values = {
        "student_id": student_id,
        "amount": amount,
        "date": paid_on,
        "time": "10:00 AM",
        "payment_method": method,
        "transaction_id": transaction_id,
        "session_id": "2024-25",
        "collected_by": "admin",
    }
    if receipt:
        return db.insert("payments", {**values, "receipt_number": receipt})["id"]
    return db.insert_numbered("payments", values, "receipt_number", "DC-", 1000)["id"]
