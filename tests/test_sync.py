import asyncio
import time

import pytest

import db
import sync
from conftest import make_course, make_payment, make_student
from errors import StoreError
from state import AppState
from students import StudentDraft, save_student


@pytest.mark.asyncio
async def test_refresh_loads_and_joins_heads(store):
    cid = make_course()
    make_course("MBA Marketing", (("Annual Tuition", 200000, "Base"),))
    state = AppState()

    result = await sync.refresh(state)

    assert result.ok
    assert state.loaded
    course = state.snapshot.course(cid)
    assert [h.name for h in course.heads] == ["Tuition Fee", "Library & Lab", "Admission Charges"]
    assert all(h.course_id == cid for h in course.heads)
    assert state.snapshot.settings.institution_name == "Digital Communique Academy"


@pytest.mark.asyncio
async def test_refresh_twice_is_idempotent(store):
    cid = make_course()
    sid = make_student(course_id=cid)
    make_payment(sid, 45000, transaction_id="UTR1")
    state = AppState()

    await sync.refresh(state)
    first = state.snapshot
    await sync.refresh(state)

    assert state.snapshot == first
    assert state.snapshot is not first


@pytest.mark.asyncio
async def test_failed_collection_keeps_previous_values(store, monkeypatch):
    cid = make_course()
    make_student(course_id=cid)
    state = AppState()
    await sync.refresh(state)
    before = state.snapshot

    make_student("Ishani Gupta", course_id=cid)
    real = db.select_all

    def flaky(table):
        if table == "students":
            raise StoreError()
        return real(table)

    monkeypatch.setattr(db, "select_all", flaky)
    result = await sync.refresh(state)

    assert not result.ok
    assert result.failed == ("students",)
    assert state.snapshot.students == before.students
    assert state.snapshot.courses == before.courses


@pytest.mark.asyncio
async def test_failed_heads_fetch_keeps_old_heads(store, monkeypatch):
    cid = make_course()
    state = AppState()
    await sync.refresh(state)
    real = db.select_all

    def flaky(table):
        if table == "fee_heads":
            raise StoreError()
        return real(table)

    monkeypatch.setattr(db, "select_all", flaky)
    await sync.refresh(state)
    assert len(state.snapshot.course(cid).heads) == 3


@pytest.mark.asyncio
async def test_timeout_keeps_snapshot(store, monkeypatch):
    make_student()
    state = AppState()
    await sync.refresh(state)
    before = state.snapshot

    def slow(table):
        time.sleep(0.5)
        return []

    monkeypatch.setattr(db, "select_all", slow)
    result = await sync.refresh(state, timeout=0.05)

    assert set(result.failed) == set(db.TABLES)
    assert state.snapshot == before


@pytest.mark.asyncio
async def test_superseded_refresh_is_dropped(store, monkeypatch):
    state = AppState()
    await sync.refresh(state)
    make_student()
    real = db.select_all

    def slow(table):
        time.sleep(0.2)
        return real(table)

    monkeypatch.setattr(db, "select_all", slow)
    older = asyncio.create_task(sync.refresh(state))
    await asyncio.sleep(0.05)
    monkeypatch.setattr(db, "select_all", real)
    newer = await sync.refresh(state)
    old_result = await older

    assert newer.ok
    assert old_result.superseded
    assert len(state.snapshot.students) == 1


def test_student_round_trip(state):
    draft = StudentDraft(
        name="Aarav Sharma",
        parent_name="Mr. Sunil Sharma",
        roll_number="BT24001",
        course_id=1,
        branch="CSE",
        semester="I",
        session_id="2024-25",
        email="aarav@outlook.com",
        phone="919876543210",
        enrollment_date="2024-07-01",
    )
    sid = save_student(draft)
    sync.refresh_now(state)

    s = state.snapshot.student(sid)
    assert s.name == draft.name
    assert s.parent_name == draft.parent_name
    assert s.roll_number == draft.roll_number
    assert s.course_id == 1
    assert s.branch == "CSE"
    assert s.session_id == "2024-25"
    assert s.email == draft.email
    assert s.phone == draft.phone
    assert s.enrollment_date == "2024-07-01"


def test_student_round_trip_defaults(state):
    sid = save_student(StudentDraft(name="Ishani", course_id=2))
    sync.refresh_now(state)
    s = state.snapshot.student(sid)
    assert s.email == ""
    assert s.branch == ""
    assert s.enrollment_date != ""


def test_blocking_refresh_returns_within_timeout(store, monkeypatch):
    state = AppState()
    sync.refresh_now(state)
    before = state.snapshot

    def stalled(table):
        time.sleep(1.5)
        return []

    monkeypatch.setattr(db, "select_all", stalled)
    started = time.monotonic()
    result = sync.refresh_now(state, timeout=0.1)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert set(result.failed) == set(db.TABLES)
    assert state.snapshot == before
