"""
db.py
SQLite helpers + initialization (creates DB/tables, seeds the settings row) and the
table-level CRUD used by every service: select-all, insert, update-by-match, delete-by-match.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import config
from errors import ConstraintError, StoreError

logger = logging.getLogger(__name__)

DB_FILE = config.DB_FILE

TABLES = (
    "settings",
    "courses",
    "fee_heads",
    "students",
    "payments",
    "accountants",
    "notifications",
    "pending_changes",
)

# Columns holding lists/dicts, stored as JSON text
JSON_COLUMNS = {
    "available_branches",
    "available_semesters",
    "available_sessions",
    "fee_head_ids",
    "old_data",
    "new_data",
}
BOOL_COLUMNS = {"is_edited", "read"}

TRANSACTION_INDEX = "idx_payments_transaction"

_IDENT = re.compile(r"^[a-z_][a-z0-9_]*$")


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False, timeout=5.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


# ---------- Encoding ----------

def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")


def _check_columns(columns) -> None:
    for c in columns:
        if not _IDENT.match(c):
            raise ValueError(f"Invalid column name: {c}")


def _encode(values: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for k, v in values.items():
        if k in JSON_COLUMNS and v is not None and not isinstance(v, str):
            v = json.dumps(v)
        elif isinstance(v, bool):
            v = int(v)
        out[k] = v
    return out


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    d = dict(row)
    for k in JSON_COLUMNS.intersection(d):
        if isinstance(d[k], str):
            try:
                d[k] = json.loads(d[k])
            except ValueError:
                logger.warning("Column %s holds invalid JSON; reading it as empty", k)
                d[k] = None
    for k in BOOL_COLUMNS.intersection(d):
        if d[k] is not None:
            d[k] = bool(d[k])
    return d


def _where(match: dict[str, Any]) -> tuple[str, tuple]:
    if not match:
        raise ValueError("A match condition is required")
    _check_columns(match)
    clause = " AND ".join(f"{k} = ?" for k in match)
    return clause, tuple(_encode(match).values())


@contextmanager
def _store_errors(action: str, table: str):
    try:
        yield
    except sqlite3.IntegrityError as exc:
        logger.warning("%s on %s rejected: %s", action, table, exc)
        raise ConstraintError(str(exc)) from exc
    except sqlite3.Error as exc:
        logger.exception("%s on %s failed", action, table)
        raise StoreError() from exc


# ---------- Table-level CRUD ----------

@contextmanager
def transaction():
    """
    One connection for a multi-step write. Pass it as `conn=` to insert/update/delete;
    everything commits together at the end or is rolled back together on any error.
    """
    with _store_errors("write", "transaction"):
        with get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn


@contextmanager
def _connection(conn=None):
    if conn is not None:
        yield conn
        return
    with get_conn() as own:
        yield own


def select_all(table: str) -> list[dict[str, Any]]:
    _check_table(table)
    with _store_errors("select", table):
        rows = fetch_all(f"SELECT * FROM {table} ORDER BY id ASC")
    return [_decode(r) for r in rows]


def _insert(conn, table: str, values: dict[str, Any]) -> dict[str, Any]:
    data = _encode(values)
    _check_columns(data)
    cols = ", ".join(data)
    marks = ", ".join("?" for _ in data)
    cur = conn.execute(f"INSERT INTO {table}({cols}) VALUES({marks})", tuple(data.values()))
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _decode(row)


def insert(table: str, values: dict[str, Any], conn=None) -> dict[str, Any]:
    """Insert one row and return it as stored (including the generated id)."""
    _check_table(table)
    with _store_errors("insert", table):
        with _connection(conn) as c:
            return _insert(c, table, values)


def insert_many(table: str, rows: list[dict[str, Any]], conn=None) -> None:
    _check_table(table)
    if not rows:
        return
    with _store_errors("insert", table):
        with _connection(conn) as c:
            for values in rows:
                _insert(c, table, values)


def insert_numbered(table: str, values: dict[str, Any], column: str, prefix: str, base: int) -> dict[str, Any]:
    """
    Insert a row whose `column` is PREFIX + (BASE + current row count).
    Count and insert run in one IMMEDIATE transaction so two writers cannot read the same count;
    the column's UNIQUE constraint backs this up across processes.
    """
    _check_table(table)
    _check_columns([column])
    with transaction() as conn:
        with _store_errors("insert", table):
            count = conn.execute(f"SELECT COUNT(*) AS c FROM {table}").fetchone()["c"]
            return _insert(conn, table, {**values, column: f"{prefix}{base + int(count)}"})


def update(table: str, values: dict[str, Any], match: dict[str, Any], conn=None) -> int:
    _check_table(table)
    data = _encode(values)
    _check_columns(data)
    where, params = _where(match)
    sets = ", ".join(f"{k} = ?" for k in data)
    with _store_errors("update", table):
        with _connection(conn) as c:
            cur = c.execute(f"UPDATE {table} SET {sets} WHERE {where}", tuple(data.values()) + params)
            return cur.rowcount


def delete(table: str, match: dict[str, Any], conn=None) -> int:
    _check_table(table)
    where, params = _where(match)
    with _store_errors("delete", table):
        with _connection(conn) as c:
            cur = c.execute(f"DELETE FROM {table} WHERE {where}", params)
            return cur.rowcount


# ---------- Schema ----------

def _create_tables() -> None:
    with get_conn() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS settings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                institution_name TEXT NOT NULL DEFAULT 'Institution',
                address TEXT NOT NULL DEFAULT '',
                contact_number TEXT NOT NULL DEFAULT '',
                logo_url TEXT,
                website_url TEXT,
                available_branches TEXT NOT NULL DEFAULT '[]',
                available_semesters TEXT NOT NULL DEFAULT '[]',
                available_sessions TEXT NOT NULL DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS courses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                course_name TEXT NOT NULL,
                frequency TEXT NOT NULL CHECK(frequency IN ('Annual','Semester','Monthly')),
                total_amount REAL NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS fee_heads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                course_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                type TEXT NOT NULL CHECK(type IN ('Base','One-Time','Optional')),
                FOREIGN KEY(course_id) REFERENCES courses(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS students (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                parent_name TEXT,
                roll_number TEXT,
                course_id INTEGER,
                branch TEXT,
                semester TEXT,
                session_id TEXT,
                email TEXT,
                phone TEXT,
                enrollment_date TEXT
            );

            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                student_id INTEGER NOT NULL,
                amount REAL NOT NULL CHECK(amount > 0),
                date TEXT NOT NULL,
                time TEXT,
                payment_method TEXT NOT NULL CHECK(payment_method IN ('UPI','Cash','Bank Transfer')),
                receipt_number TEXT NOT NULL UNIQUE,
                fee_head_ids TEXT NOT NULL DEFAULT '[]',
                remarks TEXT,
                upi_id TEXT,
                transaction_id TEXT,
                bank_account TEXT,
                session_id TEXT,
                collected_by TEXT,
                edited_by TEXT,
                is_edited INTEGER NOT NULL DEFAULT 0
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_payments_transaction
                ON payments(lower(trim(transaction_id)))
                WHERE transaction_id IS NOT NULL AND trim(transaction_id) != '';

            CREATE TABLE IF NOT EXISTS accountants (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                user_id TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('Info','Warning','Alert')),
                read INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS pending_changes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                payment_id INTEGER NOT NULL,
                requested_by TEXT NOT NULL,
                requested_at TEXT NOT NULL,
                old_data TEXT NOT NULL,
                new_data TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('Pending','Approved','Rejected')),
                FOREIGN KEY(payment_id) REFERENCES payments(id) ON DELETE CASCADE
            );
            """
        )


DEFAULT_SETTINGS = {
    "institution_name": "Digital Communique Academy",
    "address": "Plot No. 45, Sector 18, Gurugram, Haryana - 122015",
    "contact_number": "+91 124 456 7890",
    "available_branches": ["CSE", "ME", "CE", "ECE", "MBA", "BCA"],
    "available_semesters": ["I", "II", "III", "IV", "V", "VI", "VII", "VIII"],
    "available_sessions": ["2023-24", "2024-25", "2025-26"],
}


def init_db() -> None:
    """
    Initialize the database.
    - Create tables and indexes
    - Insert the singleton settings row if none exists
    """
    _create_tables()
    if fetch_one("SELECT id FROM settings LIMIT 1") is None:
        insert("settings", DEFAULT_SETTINGS)
        logger.info("Seeded settings row at %s", datetime.now().isoformat(timespec="seconds"))
