"""
sync.py
Refresh routine: fetch every collection concurrently, normalize, join fee heads into courses,
then swap the whole snapshot in one assignment.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace

import config
import db
from normalize import (
    accountant_from_row,
    course_from_row,
    head_from_row,
    notification_from_row,
    payment_from_row,
    pending_change_from_row,
    settings_from_row,
    student_from_row,
)
from state import AppState, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshResult:
    failed: tuple[str, ...] = ()
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.superseded

    @property
    def summary(self) -> str:
        if self.superseded:
            return "Refresh superseded by a newer one."
        if self.failed:
            return f"Could not sync: {', '.join(self.failed)}. Showing last loaded data."
        return "Synced."


async def _fetch_all(timeout: float) -> dict[str, list | BaseException]:
    # One pool per refresh; on timeout its stalled fetches are abandoned, never joined
    loop = asyncio.get_running_loop()
    pool = ThreadPoolExecutor(max_workers=len(db.TABLES), thread_name_prefix="edupay-refresh")
    tasks = [loop.run_in_executor(pool, db.select_all, t) for t in db.TABLES]
    try:
        results = await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout)
    except asyncio.TimeoutError as exc:
        logger.error("Refresh timed out after %.1fs", timeout)
        return {t: exc for t in db.TABLES}
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return dict(zip(db.TABLES, results))


def build_snapshot(previous: Snapshot, fetched: dict[str, list | BaseException]) -> Snapshot:
    """Normalize fetched rows; a collection whose fetch failed keeps its previous value."""

    def rows(table):
        value = fetched.get(table)
        return None if value is None or isinstance(value, BaseException) else value

    settings_rows = rows("settings")
    settings = previous.settings if settings_rows is None else settings_from_row(settings_rows[0] if settings_rows else None)

    head_rows = rows("fee_heads")
    if head_rows is None:
        heads = [h for c in previous.courses for h in c.heads]
    else:
        heads = [head_from_row(r) for r in head_rows]

    course_rows = rows("courses")
    bases = list(previous.courses) if course_rows is None else [course_from_row(r) for r in course_rows]
    courses = tuple(replace(c, heads=tuple(h for h in heads if h.course_id == c.id)) for c in bases)

    def collection(table, reader, prev):
        r = rows(table)
        return prev if r is None else tuple(reader(x) for x in r)

    return Snapshot(
        settings=settings,
        courses=courses,
        students=collection("students", student_from_row, previous.students),
        payments=collection("payments", payment_from_row, previous.payments),
        accountants=collection("accountants", accountant_from_row, previous.accountants),
        notifications=collection("notifications", notification_from_row, previous.notifications),
        pending_changes=collection("pending_changes", pending_change_from_row, previous.pending_changes),
    )


async def refresh(state: AppState, timeout: float | None = None) -> RefreshResult:
    generation = state.begin_refresh()
    fetched = await _fetch_all(config.REFRESH_TIMEOUT if timeout is None else timeout)

    failed = tuple(t for t, v in fetched.items() if isinstance(v, BaseException))
    for table in failed:
        err = fetched[table]
        if not isinstance(err, asyncio.TimeoutError):
            logger.warning("Fetching %s failed: %s", table, err)

    if not state.is_current(generation):
        logger.info("Dropping results of superseded refresh #%d", generation)
        return RefreshResult(failed=failed, superseded=True)

    state.replace_snapshot(build_snapshot(state.snapshot, fetched))
    return RefreshResult(failed=failed)


def refresh_now(state: AppState, timeout: float | None = None) -> RefreshResult:
    """Blocking refresh for Streamlit pages (called after every mutation)."""
    return asyncio.run(refresh(state, timeout))
