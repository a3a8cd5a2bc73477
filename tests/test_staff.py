import pytest

import auth
import config
import db
import staff
from errors import AuthorizationError, ValidationError
from sync import refresh_now


def test_update_profile(state, admin):
    staff.update_profile(admin, state.snapshot.settings, " Digital Communique ", "Pune", "+91 20 5555 0101")
    refresh_now(state)
    s = state.snapshot.settings
    assert s.institution_name == "Digital Communique"
    assert s.address == "Pune"
    assert s.contact_number == "+91 20 5555 0101"


def test_profile_requires_name(state, admin):
    with pytest.raises(ValidationError):
        staff.update_profile(admin, state.snapshot.settings, "  ", "", "")


def test_add_and_remove_list_items(state, admin):
    staff.add_list_item(admin, state.snapshot.settings, "available_branches", " AIML ")
    refresh_now(state)
    assert "AIML" in state.snapshot.settings.available_branches

    staff.add_list_item(admin, state.snapshot.settings, "available_branches", "AIML")
    refresh_now(state)
    assert state.snapshot.settings.available_branches.count("AIML") == 1

    staff.remove_list_item(admin, state.snapshot.settings, "available_branches", "AIML")
    refresh_now(state)
    assert "AIML" not in state.snapshot.settings.available_branches

    with pytest.raises(ValueError):
        staff.add_list_item(admin, state.snapshot.settings, "institution_name", "x")


def test_logo_stored_as_data_url(state, admin):
    url = staff.update_logo(admin, state.snapshot.settings, b"\x89PNG", "image/png")
    refresh_now(state)
    assert url.startswith("data:image/png;base64,")
    assert state.snapshot.settings.logo_url == url

    with pytest.raises(ValidationError):
        staff.update_logo(admin, state.snapshot.settings, b"0" * (config.MAX_LOGO_BYTES + 1), "image/png")


def test_accountant_password_is_hashed(state, admin):
    aid = staff.save_accountant(admin, (), "Ravi Kumar", "ravi", "ledger#1")
    refresh_now(state)
    (acc,) = state.snapshot.accountants
    assert acc.id == aid
    assert acc.password_hash != "ledger#1"
    assert auth.verify_password("ledger#1", acc.password_hash)


def test_accountant_update_keeps_password_when_blank(state, admin):
    aid = staff.save_accountant(admin, (), "Ravi Kumar", "ravi", "ledger#1")
    refresh_now(state)
    staff.save_accountant(admin, state.snapshot.accountants, "Ravi K.", "ravi", "", aid)
    refresh_now(state)
    (acc,) = state.snapshot.accountants
    assert acc.name == "Ravi K."
    assert auth.verify_password("ledger#1", acc.password_hash)


@pytest.mark.parametrize("login_id", ["ravi", config.ADMIN_ID])
def test_login_ids_are_unique(state, admin, login_id):
    staff.save_accountant(admin, (), "Ravi Kumar", "ravi", "ledger#1")
    refresh_now(state)
    with pytest.raises(ValidationError):
        staff.save_accountant(admin, state.snapshot.accountants, "Someone", login_id, "pw")
    assert len(db.select_all("accountants")) == 1


def test_stale_list_still_rejects_duplicate_login(state, admin):
    staff.save_accountant(admin, (), "Ravi Kumar", "ravi", "ledger#1")
    with pytest.raises(ValidationError):
        staff.save_accountant(admin, (), "Other", "ravi", "pw")


def test_delete_accountant(state, admin):
    aid = staff.save_accountant(admin, (), "Ravi Kumar", "ravi", "ledger#1")
    staff.delete_accountant(admin, aid)
    assert db.select_all("accountants") == []


def test_mark_notifications_read(state):
    for msg in ("a", "b"):
        db.insert("notifications", {"message": msg, "timestamp": "2024-09-16T10:00:00", "type": "Info", "read": False})
    assert staff.mark_notifications_read() == 2
    refresh_now(state)
    assert all(n.read for n in state.snapshot.notifications)
    assert staff.mark_notifications_read() == 0


def test_settings_are_admin_only(state, accountant):
    settings = state.snapshot.settings
    with pytest.raises(AuthorizationError):
        staff.update_profile(accountant, settings, "X", "", "")
    with pytest.raises(AuthorizationError):
        staff.add_list_item(accountant, settings, "available_sessions", "2025-26")
    with pytest.raises(AuthorizationError):
        staff.save_accountant(accountant, (), "Eve", "eve", "pw")
    with pytest.raises(AuthorizationError):
        staff.delete_accountant(accountant, 1)
