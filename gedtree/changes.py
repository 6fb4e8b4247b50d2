"""
The change ledger: every edit to a record is proposed here first.

A change moves from pending to accepted or rejected exactly once. Accepting
applies the new content to the record store; rejecting leaves the store
untouched, so it keeps the old content (or nothing, for a proposed
creation). Resolved rows are kept as audit history.

None of these functions commit. The caller owns the transaction.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .logging_config import log_info
from .models import Change, ChangeStatus, User
from .record_store import RecordStore

logger = logging.getLogger(__name__)


def propose(session: Session, tree_id: int, xref: str, old_gedcom: str, new_gedcom: str, user: Optional[User]) -> Change:
    change = Change(
        tree_id=tree_id,
        xref=xref,
        old_gedcom=old_gedcom or "",
        new_gedcom=new_gedcom or "",
        user_id=user.id if user is not None else None,
        status=ChangeStatus.PENDING.value,
    )
    session.add(change)
    session.flush()
    log_info(logger, "Change proposed", {"tree_id": tree_id, "xref": xref, "change_id": change.id})
    return change


def _transition(session: Session, change: Change, status: ChangeStatus) -> bool:
    # Only one caller can move a given row out of pending.
    result = session.execute(
        update(Change)
        .where(Change.id == change.id, Change.status == ChangeStatus.PENDING.value)
        .values(status=status.value)
    )
    if result.rowcount != 1:
        logger.debug("Change %s already %s; nothing to do", change.id, change.status)
        return False
    return True


def accept(session: Session, change: Change) -> bool:
    """Apply a pending change. Returns False if it was already resolved."""
    if not _transition(session, change, ChangeStatus.ACCEPTED):
        return False

    store = RecordStore(session, change.tree_id)
    if change.new_gedcom == "":
        store.remove(change.xref)
    else:
        store.put(change.new_gedcom)

    session.flush()
    log_info(logger, "Change accepted", {"tree_id": change.tree_id, "xref": change.xref, "change_id": change.id})
    return True


def reject(session: Session, change: Change) -> bool:
    """Discard a pending change. Returns False if it was already resolved."""
    if not _transition(session, change, ChangeStatus.REJECTED):
        return False
    session.flush()
    log_info(logger, "Change rejected", {"tree_id": change.tree_id, "xref": change.xref, "change_id": change.id})
    return True


def pending_changes(session: Session, tree_id: int, xref: Optional[str] = None) -> List[Change]:
    stmt = select(Change).where(Change.tree_id == tree_id, Change.status == ChangeStatus.PENDING.value)
    if xref is not None:
        stmt = stmt.where(Change.xref == xref)
    return list(session.execute(stmt.order_by(Change.id)).scalars().all())


def latest_pending(session: Session, tree_id: int, xref: str) -> Optional[Change]:
    return session.execute(
        select(Change)
        .where(Change.tree_id == tree_id, Change.xref == xref, Change.status == ChangeStatus.PENDING.value)
        .order_by(Change.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def pending_count(session: Session, tree_id: int) -> int:
    return session.execute(
        select(func.count(Change.id)).where(Change.tree_id == tree_id, Change.status == ChangeStatus.PENDING.value)
    ).scalar_one()


def accept_record(session: Session, tree_id: int, xref: str) -> int:
    """Accept every pending change to one record, oldest first."""
    return sum(1 for change in pending_changes(session, tree_id, xref) if accept(session, change))


def reject_record(session: Session, tree_id: int, xref: str) -> int:
    return sum(1 for change in pending_changes(session, tree_id, xref) if reject(session, change))


def get_change(session: Session, change_id: int) -> Optional[Change]:
    return session.get(Change, change_id)
