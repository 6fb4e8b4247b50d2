"""
Allocation of new record identifiers.

All trees share one counter, the next_xref site setting. Its row is locked
for the rest of the caller's transaction, so concurrent allocators queue up
behind each other instead of computing the same number.
"""
from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .exceptions import XrefContentionError, XrefExhaustedError
from .models import SiteSetting
from .record_store import xref_in_use
from .settings import NEXT_XREF

logger = logging.getLogger(__name__)

XREF_PREFIX = "X"
MAX_PROBES = 10000
INCREMENT_GROWTH = 1.01


def _lock_counter(session: Session) -> SiteSetting:
    try:
        if session.get_bind().dialect.name == "sqlite":
            # No row locks in SQLite: a write takes the database write lock until commit.
            touched = session.execute(
                update(SiteSetting)
                .where(SiteSetting.setting_name == NEXT_XREF)
                .values(setting_value=SiteSetting.setting_value)
                .execution_options(synchronize_session=False)
            )
            if touched.rowcount == 0:
                session.add(SiteSetting(setting_name=NEXT_XREF, setting_value="0"))
                session.flush()
        row = session.execute(
            select(SiteSetting).where(SiteSetting.setting_name == NEXT_XREF).with_for_update()
        ).scalar_one_or_none()
        if row is None:
            row = SiteSetting(setting_name=NEXT_XREF, setting_value="0")
            session.add(row)
            session.flush()
    except (OperationalError, IntegrityError) as exc:
        raise XrefContentionError(f"Could not lock the {NEXT_XREF} counter: {exc.orig}") from exc
    return row


def _counter_value(row: SiteSetting) -> int:
    try:
        return int(row.setting_value or 0)
    except ValueError:
        logger.warning("Ignoring non-numeric %s value %r", NEXT_XREF, row.setting_value)
        return 0


def allocate_xref(session: Session, prefix: str = XREF_PREFIX, max_probes: int = MAX_PROBES) -> str:
    """
    Return an xref that no record or change in any tree uses.

    Candidates are counter + int(increment), where increment starts at 1 and
    grows by 1% per probe. This crosses large blocks of imported xrefs
    quickly, at the cost of never revisiting small gaps it has jumped over.
    The lock is held until the caller commits or rolls back.
    """
    row = _lock_counter(session)
    base = _counter_value(row)

    increment = 1.0
    previous = None
    for _ in range(max_probes):
        num = base + int(increment)
        increment *= INCREMENT_GROWTH
        if num == previous:
            continue
        previous = num

        xref = f"{prefix}{num}"
        if not xref_in_use(session, xref):
            row.setting_value = str(num)
            session.flush()
            logger.debug("Allocated %s (counter was %d)", xref, base)
            return xref

    raise XrefExhaustedError(f"No free xref after {max_probes} probes from {NEXT_XREF}={base}")
