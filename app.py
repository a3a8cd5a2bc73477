"""
app.py
Streamlit fee management console (admin + accountants).
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
from datetime import date

import pandas as pd
import streamlit as st

import auth
import config
import db
import fees
import payments
import reports
import staff
import students
import utils
from errors import EduPayError
from models import FREQUENCIES, HEAD_TYPES, PAYMENT_METHODS
from state import AppState
from sync import refresh_now

st.set_page_config(page_title=config.APP_NAME, layout="wide")

logger = logging.getLogger(__name__)


SESSION_PARAM = "session"


def session_storage() -> auth.SessionStorage:
    """This browser's session store, addressed by the token in its own URL."""
    return auth.SessionStorage(token=st.query_params.get(SESSION_PARAM))


def init_once():
    config.setup_logging()
    if "app_state" not in st.session_state:
        db.init_db()
        st.session_state.app_state = AppState()
    state = app_state()
    if not state.loaded:
        result = refresh_now(state)
        if not result.ok:
            st.warning(result.summary)
        auth.restore_session(state, session_storage())


def app_state() -> AppState:
    return st.session_state.app_state


def flash(message: str, kind: str = "success") -> None:
    st.session_state.setdefault("flash", []).append((kind, message))


def show_flash() -> None:
    for kind, msg in st.session_state.pop("flash", []):
        getattr(st, kind)(msg)


def busy() -> bool:
    return bool(st.session_state.get("busy"))


def queue_action(session, action, success: str | None = None) -> bool:
    """
    Park a write for the next run. That run renders the page with saves disabled and then
    performs it, so a second click cannot start another write meanwhile.
    """
    if session.get("busy"):
        return False
    session["busy"] = True
    session["pending_action"] = (action, success)
    return True


def perform_pending(session) -> str | None:
    """Run the parked write and return its success message; busy is cleared either way."""
    pending = session.pop("pending_action", None)
    if pending is None:
        session["busy"] = False
        return None
    action, success = pending
    try:
        result = action()
    finally:
        session["busy"] = False
    return success or getattr(result, "message", None) or "Saved."


def run_action(action, success: str | None = None) -> None:
    if not queue_action(st.session_state, action, success):
        st.info("Another save is still in progress.")
        return
    st.rerun()


def finish_pending_action() -> None:
    """Called at the end of a run: perform a queued write, re-sync and rerun."""
    if "pending_action" not in st.session_state:
        return
    try:
        message = perform_pending(st.session_state)
    except EduPayError as exc:
        logger.warning("Action rejected: %s", exc.message)
        flash(exc.message, "error")
    else:
        if message:
            flash(message)
    sync = refresh_now(app_state())
    if not sync.ok:
        flash(sync.summary, "warning")
    st.rerun()


def login_screen():
    st.title(f"🔐 {config.APP_NAME} Login")
    col1, _ = st.columns([1, 1])
    with col1:
        user_id = st.text_input("Login ID")
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            storage = session_storage()
            try:
                auth.login(app_state(), user_id.strip(), password, storage)
            except EduPayError as exc:
                st.error(exc.message)
                return
            st.query_params[SESSION_PARAM] = storage.token
            st.rerun()


def dashboard_page():
    st.header("📊 Dashboard")
    snap = app_state().snapshot
    summary = reports.financial_summary(snap)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total receivable", utils.format_inr(summary.receivable))
    c2.metric("Total collected", utils.format_inr(summary.collected))
    c3.metric("Outstanding", utils.format_inr(summary.outstanding))
    c4.metric("Students", len(snap.students))

    st.divider()

    left, right = st.columns([2, 1])
    with left:
        st.subheader("Collections by course")
        totals = reports.collections_by_course(snap)
        if totals:
            names = {c.id: c.course_name or "Unnamed" for c in snap.courses}
            df = pd.DataFrame({"Course": [names[cid] for cid in totals], "Collected": list(totals.values())})
            st.bar_chart(df, x="Course", y="Collected")
        else:
            st.caption("No fee plans yet.")
    with right:
        st.subheader("Recent activity")
        recent = reports.recent_activity(snap)
        for p in recent:
            st.write(f"**{snap.student_name(p.student_id, 'Payment')}** · {p.date} · +{utils.format_inr(p.amount)}")
        if not recent:
            st.caption("No recent transactions.")


def fee_structures_page():
    st.header("💰 Fee Plans")
    state = app_state()
    user = state.user
    if not user.is_admin:
        st.error("Access restricted to administrators.")
        return

    snap = state.snapshot
    for course in snap.courses:
        with st.expander(f"{course.course_name} · {course.frequency} · {utils.format_inr(course.total_amount)}"):
            st.dataframe(
                pd.DataFrame([{"Head": h.name, "Type": h.type, "Amount": h.amount} for h in course.heads]),
                use_container_width=True,
                hide_index=True,
            )
            c1, c2, c3 = st.columns(3)
            if c1.button("Edit", key=f"edit_course_{course.id}"):
                st.session_state.course_draft = fees.draft_from_course(course)
                st.session_state.edit_course_id = course.id
                st.rerun()
            confirm = c2.checkbox("Confirm delete", key=f"del_course_confirm_{course.id}")
            if c3.button("Delete", key=f"del_course_{course.id}", disabled=not confirm):
                run_action(lambda cid=course.id: fees.delete_course(user, cid, snap.students), "Fee plan deleted.")

    st.divider()

    draft: fees.CourseDraft = st.session_state.setdefault("course_draft", fees.CourseDraft())
    editing = st.session_state.get("edit_course_id")
    st.subheader(f"✏️ Edit fee plan (ID: {editing})" if editing else "➕ New fee plan")

    c1, c2 = st.columns(2)
    draft.course_name = c1.text_input("Course name", value=draft.course_name)
    draft.frequency = c2.selectbox("Billing frequency", FREQUENCIES, index=FREQUENCIES.index(draft.frequency))

    h1, h2, h3, h4 = st.columns([2, 1, 1, 1])
    head_name = h1.text_input("Fee head")
    head_amount = h2.number_input("Amount", min_value=0.0, step=500.0)
    head_type = h3.selectbox("Type", HEAD_TYPES)
    if h4.button("Add head"):
        try:
            draft.add_head(head_name, head_amount, head_type)
        except EduPayError as exc:
            st.error(exc.message)

    for head in list(draft.heads):
        r1, r2 = st.columns([4, 1])
        r1.write(f"{head.name} ({head.type}) · {utils.format_inr(head.amount)}")
        if r2.button("Remove", key=f"rm_head_{head.id}"):
            draft.remove_head(head.id)
            st.rerun()
    st.metric("Plan total", utils.format_inr(draft.total_amount))

    s1, s2 = st.columns(2)
    if s1.button("Save plan", type="primary", disabled=busy()):
        def save():
            fees.save_course(user, draft, editing)
            st.session_state.course_draft = fees.CourseDraft()
            st.session_state.edit_course_id = None
        run_action(save, "Fee plan saved.")
    if editing and s2.button("Cancel edit"):
        st.session_state.course_draft = fees.CourseDraft()
        st.session_state.edit_course_id = None
        st.rerun()


def students_page():
    st.header("🎓 Students")
    snap = app_state().snapshot

    search = st.text_input("Search (name/roll)")
    q = search.strip().lower()
    rows = [
        {
            "ID": s.id,
            "Name": s.name,
            "Roll No": s.roll_number,
            "Course": students.course_label(s, snap.courses),
            "Branch": s.branch,
            "Semester": s.semester,
            "Session": s.session_id,
            "Phone": s.phone,
            "Balance": reports.student_balance(snap, s),
        }
        for s in snap.students
        if not q or q in s.name.lower() or q in s.roll_number.lower()
    ]
    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)

    st.divider()

    ids = ["(none)"] + [str(s.id) for s in snap.students]
    selected = st.selectbox("Student ID", ids)
    if selected != "(none)":
        sid = int(selected)
        c1, c2, c3 = st.columns(3)
        if c1.button("Edit"):
            st.session_state.edit_student_id = sid
            st.rerun()
        confirm = c2.checkbox("Confirm delete", key="del_student_confirm")
        if c3.button("Delete", disabled=not confirm):
            run_action(lambda: students.delete_student(sid), "Student deleted.")

    st.divider()

    editing = st.session_state.get("edit_student_id")
    existing = snap.student(editing) if editing else None
    draft = students.draft_from_student(existing) if existing else students.StudentDraft()
    st.subheader(f"✏️ Edit Student (ID: {editing})" if existing else "➕ Enroll Student")

    course_ids = [c.id for c in snap.courses]
    course_names = {c.id: c.course_name for c in snap.courses}
    settings = snap.settings

    def _choice(label, options, current):
        options = list(options)
        if current and current not in options:
            options.insert(0, current)
        return st.selectbox(label, [""] + options, index=([""] + options).index(current or ""))

    with st.form("student_form", clear_on_submit=not existing):
        c1, c2, c3 = st.columns(3)
        with c1:
            draft.name = st.text_input("Full name", value=draft.name)
            draft.parent_name = st.text_input("Guardian name", value=draft.parent_name)
            draft.roll_number = st.text_input("Roll number", value=draft.roll_number)
        with c2:
            draft.course_id = st.selectbox(
                "Course",
                [None] + course_ids,
                index=([None] + course_ids).index(draft.course_id) if draft.course_id in course_ids else 0,
                format_func=lambda cid: "Select course" if cid is None else course_names[cid],
            )
            draft.branch = _choice("Branch", settings.available_branches, draft.branch)
            draft.semester = _choice("Semester", settings.available_semesters, draft.semester)
        with c3:
            draft.session_id = _choice("Session", settings.available_sessions, draft.session_id)
            draft.email = st.text_input("Email", value=draft.email)
            draft.phone = st.text_input("Phone", value=draft.phone)
            enrolled = utils.parse_iso(draft.enrollment_date) if draft.enrollment_date else date.today()
            draft.enrollment_date = st.date_input("Enrollment date", value=enrolled).isoformat()
        submitted = st.form_submit_button("Save", type="primary")

    if submitted:
        def save():
            students.save_student(draft, editing if existing else None)
            st.session_state.edit_student_id = None
        run_action(save, "Student saved.")
    if existing and st.button("Cancel edit"):
        st.session_state.edit_student_id = None
        st.rerun()


def _payment_form(snap, user):
    editing = st.session_state.get("edit_payment_id")
    existing = snap.payment(editing) if editing else None
    draft = payments.draft_from_payment(existing) if existing else payments.PaymentDraft()
    if existing:
        st.subheader(f"✏️ Edit receipt {existing.receipt_number}")
        if not user.is_admin:
            st.caption("Changes are sent to an administrator for approval.")
    else:
        st.subheader("💵 New payment")

    student_ids = [s.id for s in snap.students]
    labels = {s.id: f"{s.name} ({s.roll_number})" for s in snap.students}

    c1, c2, c3 = st.columns(3)
    with c1:
        draft.student_id = st.selectbox(
            "Student",
            [None] + student_ids,
            index=([None] + student_ids).index(draft.student_id) if draft.student_id in student_ids else 0,
            format_func=lambda sid: "Select student" if sid is None else labels[sid],
        )
        draft.amount = st.number_input("Amount", min_value=0.0, step=500.0, value=float(draft.amount))
    with c2:
        draft.date = st.date_input("Date", value=utils.parse_iso(draft.date) if draft.date else date.today()).isoformat()
        draft.payment_method = st.selectbox("Method", PAYMENT_METHODS, index=PAYMENT_METHODS.index(draft.payment_method))
    with c3:
        draft.transaction_id = st.text_input("Transaction ID", value=draft.transaction_id, placeholder="Optional for Cash")
        if draft.payment_method == "UPI":
            draft.upi_id = st.text_input("UPI ID", value=draft.upi_id)
        elif draft.payment_method == "Bank Transfer":
            draft.bank_account = st.text_input("Bank account", value=draft.bank_account)

    course = snap.course(snap.student(draft.student_id).course_id) if snap.student(draft.student_id) else None
    if course and course.heads:
        heads = {h.id: h.name for h in course.heads}
        draft.fee_head_ids = st.multiselect(
            "Fee heads covered",
            list(heads),
            default=[h for h in draft.fee_head_ids if h in heads],
            format_func=lambda hid: heads[hid],
        )
    draft.remarks = st.text_input("Remarks", value=draft.remarks)

    b1, b2 = st.columns(2)
    if b1.button("Save payment", type="primary", disabled=busy()):
        def save():
            outcome = payments.save_payment(snap, draft, user, editing if existing else None)
            st.session_state.edit_payment_id = None
            return outcome
        run_action(save)
    if existing and b2.button("Cancel edit"):
        st.session_state.edit_payment_id = None
        st.rerun()


def _receipt_view(snap, payment):
    settings = snap.settings
    student = snap.student(payment.student_id)
    course = snap.course(student.course_id) if student else None
    with st.container(border=True):
        if settings.logo_url:
            st.image(settings.logo_url, width=64)
        st.markdown(f"### {settings.institution_name}")
        st.caption(f"{settings.address} · Contact: {settings.contact_number}")
        c1, c2 = st.columns(2)
        c1.write(f"**Receipt No:** {payment.receipt_number}")
        c1.write(f"**Student:** {student.name if student else '---'}")
        c1.write(f"**Course:** {course.course_name if course else students.UNASSIGNED}")
        c2.write(f"**Date:** {payment.date} {payment.time}")
        c2.write(f"**Method:** {payment.payment_method}")
        c2.write(f"**Txn ID:** {payment.transaction_id or 'N/A'}")
        st.markdown(f"## {utils.format_inr(payment.amount)}")
        if payment.is_edited:
            st.caption(f"Edited by {payment.edited_by}")
        if student and student.phone:
            try:
                link = payments.whatsapp_link(student.phone, payments.receipt_message(snap, payment))
            except EduPayError as exc:
                st.caption(exc.message)
            else:
                st.link_button("Share on WhatsApp", link)


def payments_page():
    st.header("💵 Payments")
    state = app_state()
    snap, user = state.snapshot, state.user

    tabs = ["History"] + ([f"Pending ({len(snap.pending_changes)})"] if user.is_admin else [])
    tab_objs = st.tabs(tabs)

    with tab_objs[0]:
        history = list(reversed(snap.payments))
        frame = reports.payment_history_frame(snap, history)
        st.dataframe(frame, use_container_width=True, hide_index=True)
        if history:
            st.download_button(
                "📊 Export CSV",
                data=reports.to_csv_bytes(frame),
                file_name=reports.export_filename("Payment_History"),
                mime="text/csv",
            )
            receipts = {p.id: p.receipt_number for p in history}
            chosen = st.selectbox("Receipt", list(receipts), format_func=lambda pid: receipts[pid])
            c1, _ = st.columns([1, 3])
            if c1.button("Edit payment"):
                st.session_state.edit_payment_id = chosen
                st.rerun()
            _receipt_view(snap, snap.payment(chosen))
        st.divider()
        _payment_form(snap, user)

    if user.is_admin:
        with tab_objs[1]:
            if not snap.pending_changes:
                st.caption("No pending approvals.")
            for change in snap.pending_changes:
                old, new = change.old_data, change.new_data
                with st.container(border=True):
                    st.write(f"**{old.get('receipt_number', '')}** · requested by {change.requested_by} at {change.requested_at}")
                    diff = [
                        {"Field": k, "Current": old.get(k), "Proposed": new.get(k)}
                        for k in payments.EDITABLE_FIELDS
                        if old.get(k) != new.get(k)
                    ]
                    st.dataframe(pd.DataFrame(diff), use_container_width=True, hide_index=True)
                    c1, c2 = st.columns(2)
                    if c1.button("Approve", key=f"approve_{change.id}", type="primary"):
                        run_action(lambda cid=change.id: payments.approve_change(user, snap, cid), "Change approved.")
                    if c2.button("Reject", key=f"reject_{change.id}"):
                        run_action(lambda cid=change.id: payments.reject_change(user, cid), "Change rejected.")


def reports_page():
    st.header("🧾 Reports")
    snap = app_state().snapshot

    report = st.radio("Report", ["Collections", "Ledger / Dues"], horizontal=True)
    c1, c2 = st.columns(2)
    start = c1.date_input("From", value=None)
    end = c2.date_input("To", value=None)
    start_iso = start.isoformat() if start else None
    end_iso = end.isoformat() if end else None

    if report == "Collections":
        query = st.text_input("Match bank statement (Txn ID / UPI / Student / Receipt)")
        found = reports.filter_payments(snap, query, start_iso, end_iso)
        st.metric("Matches found", len(found))
        frame = reports.payment_history_frame(snap, found)
        name = "Collections"
    else:
        rows = reports.student_ledger(snap, start_iso, end_iso)
        frame = reports.ledger_frame(rows)
        name = "Ledger"
        due = [r for r in rows if r.balance > 0 and utils.digits_only(r.phone)]
        if due:
            labels = {r.student_id: f"{r.name} · {utils.format_inr(r.balance)}" for r in due}
            chosen = st.selectbox("Send due reminder", list(labels), format_func=lambda sid: labels[sid])
            row = next(r for r in due if r.student_id == chosen)
            st.link_button("Open WhatsApp", payments.whatsapp_link(row.phone, reports.due_reminder_message(snap, row)))

    st.dataframe(frame, use_container_width=True, hide_index=True)
    if frame.empty:
        st.caption("No records for this view.")
    else:
        st.download_button(
            f"Download {name.lower()}.csv",
            data=reports.to_csv_bytes(frame),
            file_name=reports.export_filename(name),
            mime="text/csv",
        )


def settings_page():
    st.header("⚙️ Settings")
    state = app_state()
    user = state.user
    if not user.is_admin:
        st.error("Access restricted to administrators.")
        return
    snap = state.snapshot
    settings = snap.settings

    st.subheader("Institution profile")
    name = st.text_input("Institution name", value=settings.institution_name)
    address = st.text_area("Address", value=settings.address)
    contact = st.text_input("Contact number", value=settings.contact_number)
    if st.button("Save profile", type="primary"):
        run_action(lambda: staff.update_profile(user, settings, name, address, contact), "Profile updated successfully!")

    logo = st.file_uploader("Logo", type=["png", "jpg", "jpeg"])
    if logo is not None and st.button("Upload logo"):
        run_action(lambda: staff.update_logo(user, settings, logo.getvalue(), logo.type), "Logo updated.")

    st.divider()

    st.subheader("Academic lists")
    cols = st.columns(3)
    for col, (field, title) in zip(cols, [
        ("available_branches", "Branches"),
        ("available_semesters", "Semesters"),
        ("available_sessions", "Sessions"),
    ]):
        with col:
            st.markdown(f"**{title}**")
            for item in getattr(settings, field):
                a, b = st.columns([3, 1])
                a.write(item)
                if b.button("✕", key=f"rm_{field}_{item}"):
                    run_action(lambda f=field, i=item: staff.remove_list_item(user, settings, f, i), f"{title} updated.")
            new_item = st.text_input(f"Add to {title.lower()}", key=f"new_{field}")
            if st.button("Add", key=f"add_{field}"):
                run_action(lambda f=field, v=new_item: staff.add_list_item(user, settings, f, v), f"{title} updated.")

    st.divider()

    st.subheader("Accountants")
    st.dataframe(
        pd.DataFrame([{"ID": a.id, "Name": a.name, "Login ID": a.user_id} for a in snap.accountants]),
        use_container_width=True,
        hide_index=True,
    )
    ids = ["(new)"] + [str(a.id) for a in snap.accountants]
    selected = st.selectbox("Accountant", ids)
    current = next((a for a in snap.accountants if str(a.id) == selected), None)
    c1, c2, c3 = st.columns(3)
    acc_name = c1.text_input("Name", value=current.name if current else "", key=f"acc_name_{selected}")
    acc_login = c2.text_input("Login ID", value=current.user_id if current else "", key=f"acc_login_{selected}")
    acc_pw = c3.text_input(
        "Password" + (" (leave blank to keep)" if current else ""), type="password", key=f"acc_pw_{selected}"
    )
    if st.button("Save accountant", type="primary"):
        run_action(
            lambda: staff.save_accountant(
                user, snap.accountants, acc_name, acc_login, acc_pw, current.id if current else None
            ),
            "Accountant saved.",
        )
    if current:
        confirm = st.checkbox("Confirm revoke", key="revoke_confirm")
        if st.button("Revoke access", disabled=not confirm):
            run_action(lambda: staff.delete_accountant(user, current.id), "Access revoked.")

    st.divider()

    st.subheader("Notifications")
    unread = [n for n in snap.notifications if not n.read]
    for n in reversed(snap.notifications):
        st.write(f"{'🔵' if not n.read else '⚪'} {n.timestamp} · {n.message}")
    if unread and st.button("Mark all read"):
        run_action(staff.mark_notifications_read, "Notifications cleared.")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 2 fee plans, 2 students and 2 payments for testing (adds new rows each run).")
    if st.button("Insert sample data"):
        run_action(utils.insert_sample_data, "Sample data inserted.")


def main_app():
    state = app_state()
    user = state.user
    settings = state.snapshot.settings

    if settings.logo_url:
        st.sidebar.image(settings.logo_url, width=48)
    st.sidebar.title(settings.institution_name)
    st.sidebar.caption(f"Logged in as: {user.name} ({user.role})")

    pages = ["Dashboard", "Students", "Payments", "Reports"]
    if user.is_admin:
        pages.insert(1, "Fee Plans")
        pages.append("Settings")
    if st.session_state.get("page") not in pages:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Refresh data"):
        result = refresh_now(state)
        flash(result.summary, "success" if result.ok else "warning")
        st.rerun()

    if st.sidebar.button("Logout"):
        auth.logout(state, session_storage())
        st.query_params.pop(SESSION_PARAM, None)
        st.rerun()

    show_flash()

    page = st.session_state.page
    if page == "Dashboard":
        dashboard_page()
    elif page == "Fee Plans":
        fee_structures_page()
    elif page == "Students":
        students_page()
    elif page == "Payments":
        payments_page()
    elif page == "Reports":
        reports_page()
    elif page == "Settings":
        settings_page()

    finish_pending_action()


# --------- App entry ---------

def run():
    init_once()

    if app_state().user is None:
        login_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
