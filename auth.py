"""
auth.py
Authentication utilities (bcrypt hashing, verify, login, durable session).

Every principal goes through the same Principal.verify path; the administrator is just a
principal built from configuration instead of a stored row.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

import bcrypt

import config
from errors import AuthenticationError, AuthorizationError
from models import ROLE_ACCOUNTANT, ROLE_ADMIN, ROLES, Accountant, SessionUser
from state import AppState

logger = logging.getLogger(__name__)


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str) -> str:
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(secret, salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    secret = _to_bcrypt_secret(password)
    try:
        return bcrypt.checkpw(secret, password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the store
        logger.warning("Unreadable password hash; treating as mismatch")
        return False


@dataclass(frozen=True)
class Principal:
    name: str
    user_id: str
    role: str
    password_hash: str

    def verify(self, password: str) -> bool:
        return verify_password(password, self.password_hash)

    def session_user(self) -> SessionUser:
        return SessionUser(name=self.name, user_id=self.user_id, role=self.role)


@lru_cache(maxsize=None)
def _admin_hash(password: str) -> str:
    return hash_password(password)


def admin_principal() -> Principal:
    return Principal(
        name=config.ADMIN_NAME,
        user_id=config.ADMIN_ID,
        role=ROLE_ADMIN,
        password_hash=_admin_hash(config.ADMIN_PASSWORD),
    )


def principals(accountants: Iterable[Accountant]) -> list[Principal]:
    """Evaluation order for login: the administrator first, then stored accountants."""
    out = [admin_principal()]
    out.extend(
        Principal(name=a.name, user_id=a.user_id, role=ROLE_ACCOUNTANT, password_hash=a.password_hash)
        for a in accountants
    )
    return out


# ---------- Durable session ----------

class SessionStorage:
    """
    Per-client session store. Each browser holds a random token (kept in its URL); the JSON file
    maps token -> {config.SESSION_KEY: {name, userId, role}}. Without its token a client can
    neither read nor clear anyone's session.
    """

    def __init__(self, token: str | None = None, path: Path | None = None, key: str = config.SESSION_KEY):
        self.token = token or None
        self.path = Path(path or config.SESSION_FILE)
        self.key = key

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable session file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")

    def save(self, user: SessionUser) -> str:
        """Store the user under this client's token (issuing a fresh token if it has none)."""
        self.token = self.token or secrets.token_urlsafe(32)
        data = self._read()
        data[self.token] = {self.key: {"name": user.name, "userId": user.user_id, "role": user.role}}
        self._write(data)
        return self.token

    def load(self) -> Optional[SessionUser]:
        if not self.token:
            return None
        entry = self._read().get(self.token)
        record = entry.get(self.key) if isinstance(entry, dict) else None
        if not isinstance(record, dict):
            return None
        role = record.get("role")
        user_id = record.get("userId") or record.get("user_id")
        if role not in ROLES or not user_id:
            return None
        return SessionUser(name=str(record.get("name", user_id)), user_id=str(user_id), role=role)

    def clear(self) -> None:
        if not self.token:
            return
        data = self._read()
        if data.pop(self.token, None) is not None:
            self._write(data)
        self.token = None


# ---------- Login / logout ----------

def authenticate(user_id: str, password: str, accountants: Iterable[Accountant]) -> SessionUser:
    """Exact, case-sensitive login id match; no distinction between unknown id and wrong password."""
    for principal in principals(accountants):
        if principal.user_id == user_id and principal.verify(password):
            return principal.session_user()
    raise AuthenticationError()


def login(state: AppState, user_id: str, password: str, storage: SessionStorage | None = None) -> SessionUser:
    user = authenticate(user_id, password, state.snapshot.accountants)
    (storage or SessionStorage()).save(user)
    state.set_user(user)
    logger.info("%s signed in as %s", user.user_id, user.role)
    return user


def restore_session(state: AppState, storage: SessionStorage | None = None) -> Optional[SessionUser]:
    """Restore this client's persisted session on start; no expiry and no revalidation against the store."""
    user = (storage or SessionStorage()).load()
    if user is not None:
        state.set_user(user)
    return user


def logout(state: AppState, storage: SessionStorage | None = None) -> None:
    (storage or SessionStorage()).clear()
    state.clear_user()


def require_admin(user: Optional[SessionUser]) -> SessionUser:
    if user is None or user.role != ROLE_ADMIN:
        raise AuthorizationError()
    return user
