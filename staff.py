"""
staff.py
Institution settings + accountant accounts (admin only).
"""

from __future__ import annotations

import base64
import logging
from dataclasses import replace
from typing import Iterable, Optional

import config
import db
from auth import hash_password, require_admin
from errors import ConstraintError, ValidationError
from models import Accountant, InstitutionSettings, SessionUser
from normalize import accountant_to_row, settings_to_row

logger = logging.getLogger(__name__)

LIST_FIELDS = ("available_branches", "available_semesters", "available_sessions")


def _settings_id(settings: InstitutionSettings) -> int:
    if settings.id is None:
        raise ValidationError("Settings record ID missing. Refresh and try again.")
    return settings.id


def update_profile(user: Optional[SessionUser], settings: InstitutionSettings,
                   institution_name: str, address: str, contact_number: str) -> None:
    require_admin(user)
    if not institution_name.strip():
        raise ValidationError("Institution name is required.")
    changed = replace(
        settings,
        institution_name=institution_name.strip(),
        address=address.strip(),
        contact_number=contact_number.strip(),
    )
    db.update(
        "settings",
        settings_to_row(changed, ("institution_name", "address", "contact_number")),
        {"id": _settings_id(settings)},
    )
    logger.info("Institution profile updated by %s", user.user_id)


def _set_list(settings: InstitutionSettings, field: str, items: list[str]) -> None:
    if field not in LIST_FIELDS:
        raise ValueError(f"Not a list setting: {field}")
    row = settings_to_row(replace(settings, **{field: tuple(items)}), (field,))
    db.update("settings", row, {"id": _settings_id(settings)})


def add_list_item(user: Optional[SessionUser], settings: InstitutionSettings, field: str, value: str) -> None:
    require_admin(user)
    value = (value or "").strip()
    if not value:
        raise ValidationError("Enter a value to add.")
    items = list(getattr(settings, field))
    if value in items:
        return
    _set_list(settings, field, items + [value])


def remove_list_item(user: Optional[SessionUser], settings: InstitutionSettings, field: str, value: str) -> None:
    require_admin(user)
    _set_list(settings, field, [i for i in getattr(settings, field) if i != value])


def update_logo(user: Optional[SessionUser], settings: InstitutionSettings, content: bytes, mime: str) -> str:
    """Store an uploaded logo inline as a data URL."""
    require_admin(user)
    if len(content) > config.MAX_LOGO_BYTES:
        raise ValidationError("Logo must be smaller than 1 MB.")
    url = f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"
    db.update("settings", settings_to_row(replace(settings, logo_url=url), ("logo_url",)), {"id": _settings_id(settings)})
    return url


def save_accountant(user: Optional[SessionUser], accountants: Iterable[Accountant], name: str,
                    login_id: str, password: str, accountant_id: Optional[int] = None) -> int:
    """
    Create or update an accountant. Login ids are unique (also enforced by the store).
    On update an empty password keeps the current one.
    """
    require_admin(user)
    name, login_id, password = name.strip(), login_id.strip(), password.strip()
    if not name or not login_id or (accountant_id is None and not password):
        raise ValidationError("Name, login ID and password are required.")
    if login_id == config.ADMIN_ID or any(a.user_id == login_id and a.id != accountant_id for a in accountants):
        raise ValidationError(f"Login ID {login_id} is already taken.")

    values = accountant_to_row(name, login_id, hash_password(password) if password else None)
    try:
        if accountant_id is not None:
            db.update("accountants", values, {"id": accountant_id})
        else:
            accountant_id = db.insert("accountants", values)["id"]
    except ConstraintError as exc:
        raise ValidationError(f"Login ID {login_id} is already taken.") from exc
    logger.info("Saved accountant %s (%s)", accountant_id, login_id)
    return accountant_id


def delete_accountant(user: Optional[SessionUser], accountant_id: int) -> None:
    require_admin(user)
    db.delete("accountants", {"id": accountant_id})
    logger.info("Revoked accountant %s", accountant_id)


def mark_notifications_read() -> int:
    return db.update("notifications", {"read": True}, {"read": False})
