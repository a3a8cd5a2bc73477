import pytest

import db
from conftest import make_course, make_payment, make_student
from errors import ConstraintError


def test_init_seeds_single_settings_row(store):
    db.init_db()
    rows = db.select_all("settings")
    assert len(rows) == 1
    assert rows[0]["institution_name"] == "Digital Communique Academy"
    assert "CSE" in rows[0]["available_branches"]


def test_insert_returns_row_with_id(store):
    row = db.insert("notifications", {"message": "hi", "timestamp": "2024-01-01T10:00:00", "type": "Info", "read": False})
    assert row["id"] > 0
    assert row["read"] is False


def test_update_and_delete_by_match(store):
    sid = make_student()
    assert db.update("students", {"branch": "CSE"}, {"id": sid}) == 1
    assert db.select_all("students")[0]["branch"] == "CSE"
    assert db.delete("students", {"id": sid}) == 1
    assert db.select_all("students") == []


def test_match_is_required(store):
    with pytest.raises(ValueError):
        db.delete("students", {})


def test_unknown_table_rejected(store):
    with pytest.raises(ValueError):
        db.select_all("users")


def test_numbered_insert_uses_row_count(store):
    sid = make_student()
    make_payment(sid, 100)
    make_payment(sid, 200)
    receipts = [r["receipt_number"] for r in db.select_all("payments")]
    assert receipts == ["DC-1000", "DC-1001"]


def test_transaction_id_unique_ignoring_case_and_spaces(store):
    sid = make_student()
    make_payment(sid, 100, transaction_id="TXN123")
    with pytest.raises(ConstraintError) as err:
        make_payment(sid, 200, transaction_id=" txn123 ")
    assert db.TRANSACTION_INDEX in err.value.detail
    assert len(db.select_all("payments")) == 1


def test_blank_transaction_ids_do_not_collide(store):
    sid = make_student()
    make_payment(sid, 100, transaction_id=None)
    make_payment(sid, 200, transaction_id="")
    make_payment(sid, 300, transaction_id=None)
    assert len(db.select_all("payments")) == 3


def test_fee_heads_cascade_with_course(store):
    cid = make_course()
    assert len(db.select_all("fee_heads")) == 3
    db.delete("courses", {"id": cid})
    assert db.select_all("fee_heads") == []


def test_json_columns_round_trip(store):
    sid = make_student()
    pid = make_payment(sid, 100)
    db.update("payments", {"fee_head_ids": [1, 2]}, {"id": pid})
    assert db.select_all("payments")[0]["fee_head_ids"] == [1, 2]


def test_transaction_rolls_back_every_step(store):
    cid = make_course()
    with pytest.raises(ConstraintError):
        with db.transaction() as conn:
            db.update("courses", {"course_name": "Renamed"}, {"id": cid}, conn=conn)
            db.delete("fee_heads", {"course_id": cid}, conn=conn)
            db.insert("fee_heads", {"course_id": cid, "name": "Bad", "amount": -1, "type": "Base"}, conn=conn)
    assert db.select_all("courses")[0]["course_name"] == "B.Tech Computer Science"
    assert len(db.select_all("fee_heads")) == 3


def test_transaction_commits_together(store):
    with db.transaction() as conn:
        cid = db.insert("courses", {"course_name": "BCA", "frequency": "Annual", "total_amount": 100}, conn=conn)["id"]
        db.insert_many("fee_heads", [{"course_id": cid, "name": "Tuition", "amount": 100, "type": "Base"}], conn=conn)
    assert [h["course_id"] for h in db.select_all("fee_heads")] == [cid]
