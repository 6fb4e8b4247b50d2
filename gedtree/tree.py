"""
A family tree: its preferences, privacy defaults and every operation that
creates, edits, imports, exports or deletes its data.

A Tree is built per request from the database and caches its preferences
for its own lifetime only. Every cached value is rewritten when it is set
and the whole cache is dropped if a transaction that wrote it rolls back.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import BinaryIO, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import gedcom as ged
from .changes import accept_record, pending_count, propose
from .db import transaction
from .exceptions import InvalidRecordError, RecordNotFoundError, TreeExistsError, TreeNotFoundError
from .exporter import BUFFER_SIZE, GedcomExporter
from .importer import BLOCK_SIZE, ChunkProcessor, GedcomImporter
from .logging_config import log_info
from .models import (
    Change,
    DefaultResn,
    Family,
    FamilyTree,
    GedcomChunk,
    Individual,
    Link,
    Media,
    MediaFile,
    Name,
    OtherRecord,
    Source,
    TreeSetting,
    User,
    UserTreeSetting,
)
from .record_store import EXPORT_BATCH_SIZE, FAMILY, INDIVIDUAL, GedcomRecord, RecordStore, kind_for_tag
from .settings import (
    DEFAULT_TREE,
    PREF_TREE_ACCOUNT_XREF,
    PREF_TREE_DEFAULT_XREF,
    PREF_TREE_ROLE,
    ROLE_ACCEPT,
    ROLE_ADMIN,
    auto_accepts_edits,
    get_site_preference,
    set_site_preference,
)
from .xref import MAX_PROBES, allocate_xref

logger = logging.getLogger(__name__)

# Access levels
PRIV_PRIVATE = 2
PRIV_USER = 1
PRIV_NONE = 0
PRIV_HIDE = -1

# GEDCOM RESN values and the access level they require
RESN_PRIVACY = {
    "none": PRIV_PRIVATE,
    "privacy": PRIV_USER,
    "confidential": PRIV_NONE,
    "hidden": PRIV_HIDE,
}

DEFAULT_TREE_PREFERENCES = {
    "imported": "1",
    "keep_media": "0",
}


class Tree:
    max_xref_probes = MAX_PROBES

    def __init__(self, session: Session, tree_id: int, name: str, title: str):
        self.session = session
        self.id = tree_id
        self.name = name
        self.title = title
        self.records = RecordStore(session, tree_id)

        self._preferences: Optional[Dict[str, str]] = None
        self._user_preferences: Dict[int, Dict[str, str]] = {}

        self.fact_privacy: Dict[str, int] = {}
        self.individual_privacy: Dict[str, int] = {}
        self.individual_fact_privacy: Dict[str, Dict[str, int]] = {}

        rows = session.execute(select(DefaultResn).where(DefaultResn.tree_id == tree_id)).scalars()
        for row in rows:
            level = RESN_PRIVACY.get(row.resn)
            if level is None:
                logger.warning("Ignoring unknown RESN %r for tree %s", row.resn, tree_id)
                continue
            if row.xref is not None:
                if row.tag_type is not None:
                    self.individual_fact_privacy.setdefault(row.xref, {})[row.tag_type] = level
                else:
                    self.individual_privacy[row.xref] = level
            else:
                self.fact_privacy[row.tag_type] = level

    @classmethod
    def from_row(cls, session: Session, row: FamilyTree) -> "Tree":
        return cls(session, row.id, row.name, row.title)

    def __repr__(self) -> str:
        return f"Tree(id={self.id!r}, name={self.name!r})"

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with transaction(self.session):
                yield self.session
        except BaseException:
            # cached values written inside the failed transaction are gone from the database
            self.invalidate_preferences()
            raise

    # Preferences

    def invalidate_preferences(self) -> None:
        self._preferences = None
        self._user_preferences.clear()

    def get_preference(self, setting_name: str, default: str = "") -> str:
        if self._preferences is None:
            rows = self.session.execute(
                select(TreeSetting.setting_name, TreeSetting.setting_value).where(TreeSetting.tree_id == self.id)
            ).all()
            self._preferences = {name: value for name, value in rows}
        return self._preferences.get(setting_name, default)

    def set_preference(self, setting_name: str, setting_value: str) -> "Tree":
        if setting_value != self.get_preference(setting_name):
            self.session.merge(TreeSetting(tree_id=self.id, setting_name=setting_name, setting_value=setting_value))
            self.session.flush()
            self._preferences[setting_name] = setting_value
            logger.info('Tree preference "%s" set to "%s" (tree %s)', setting_name, setting_value, self.name)
        return self

    def get_user_preference(self, user: Optional[User], setting_name: str, default: str = "") -> str:
        if user is None:
            return default
        # Lots of these are read per request, so fetch them all in one go.
        if user.id not in self._user_preferences:
            rows = self.session.execute(
                select(UserTreeSetting.setting_name, UserTreeSetting.setting_value).where(
                    UserTreeSetting.user_id == user.id,
                    UserTreeSetting.tree_id == self.id,
                )
            ).all()
            self._user_preferences[user.id] = {name: value for name, value in rows}
        return self._user_preferences[user.id].get(setting_name, default)

    def set_user_preference(self, user: User, setting_name: str, setting_value: str) -> "Tree":
        if self.get_user_preference(user, setting_name) != setting_value:
            self.session.merge(
                UserTreeSetting(user_id=user.id, tree_id=self.id, setting_name=setting_name, setting_value=setting_value)
            )
            self.session.flush()
            self._user_preferences[user.id][setting_name] = setting_value
            logger.info(
                'Tree preference "%s" set to "%s" for user "%s" (tree %s)',
                setting_name, setting_value, user.user_name, self.name,
            )
        return self

    # Moderation

    def can_accept_changes(self, user: Optional[User]) -> bool:
        return self.get_user_preference(user, PREF_TREE_ROLE) in (ROLE_ACCEPT, ROLE_ADMIN)

    def has_pending_edit(self) -> bool:
        return pending_count(self.session, self.id) > 0

    # Record creation and editing

    def get_new_xref(self) -> str:
        return allocate_xref(self.session, max_probes=self.max_xref_probes)

    def _propose_new(self, user: User, gedcom: str, placeholder: str, method: str) -> GedcomRecord:
        if not gedcom.startswith(placeholder):
            raise InvalidRecordError(f"{method}({gedcom[:40]!r}) does not begin {placeholder.strip()}")

        with self._transaction():
            xref = self.get_new_xref()
            gedcom = f"0 @{xref}@ " + gedcom[len("0 @@ "):]
            gedcom += ged.change_block(user.user_name, datetime.now())
            kind = kind_for_tag(ged.record_header(gedcom)[1])

            propose(self.session, self.id, xref, "", gedcom, user)
            if auto_accepts_edits(self.session, user):
                accept_record(self.session, self.id, xref)
                record = GedcomRecord(xref=xref, tree_id=self.id, kind=kind, gedcom=gedcom)
            else:
                record = GedcomRecord(xref=xref, tree_id=self.id, kind=kind, gedcom="", pending=gedcom)

        log_info(logger, "Record created", {"tree_id": self.id, "xref": xref, "kind": kind.name, "accepted": record.gedcom != ""})
        return record

    def create_record(self, user: User, gedcom: str) -> GedcomRecord:
        return self._propose_new(user, gedcom, "0 @@ ", "create_record")

    def create_individual(self, user: User, gedcom: str) -> GedcomRecord:
        return self._propose_new(user, gedcom, "0 @@ INDI", "create_individual")

    def create_family(self, user: User, gedcom: str) -> GedcomRecord:
        return self._propose_new(user, gedcom, "0 @@ FAM", "create_family")

    def create_media_object(self, user: User, gedcom: str) -> GedcomRecord:
        return self._propose_new(user, gedcom, "0 @@ OBJE", "create_media_object")

    def _latest_content(self, xref: str) -> GedcomRecord:
        record = self.records.make(xref)
        if record is None or record.latest == "":
            raise RecordNotFoundError(f"No record {xref} in tree {self.name}")
        return record

    def update_record(self, user: User, xref: str, gedcom: str, update_chan: bool = True) -> GedcomRecord:
        """Propose new content for an existing record. The old side is its latest pending or accepted content."""
        if ged.record_header(gedcom)[0] != xref:
            raise InvalidRecordError(f"update_record({xref}) was given GEDCOM for a different record")

        with self._transaction():
            record = self._latest_content(xref)
            if update_chan:
                gedcom = ged.strip_structure(gedcom, "CHAN") + ged.change_block(user.user_name, datetime.now())
            propose(self.session, self.id, xref, record.latest, gedcom, user)
            if auto_accepts_edits(self.session, user):
                accept_record(self.session, self.id, xref)
                record = GedcomRecord(xref=xref, tree_id=self.id, kind=kind_for_tag(ged.record_header(gedcom)[1]), gedcom=gedcom)
            else:
                record.pending = gedcom
        return record

    def delete_record(self, user: User, xref: str) -> None:
        with self._transaction():
            record = self._latest_content(xref)
            propose(self.session, self.id, xref, record.latest, "", user)
            if auto_accepts_edits(self.session, user):
                accept_record(self.session, self.id, xref)

    # Tree lifecycle

    def delete_genealogy_data(self, keep_media: bool) -> None:
        """
        Remove all genealogy data ahead of a new import. keep_media retains the
        media records and links to them, for files edited offline in programs
        that drop media.
        """
        for model in (GedcomChunk, Individual, Family, Source, OtherRecord, Name, Change):
            self.session.execute(delete(model).where(model.tree_id == self.id))

        if keep_media:
            self.session.execute(delete(Link).where(Link.tree_id == self.id, Link.type != "OBJE"))
        else:
            for model in (Link, MediaFile, Media):
                self.session.execute(delete(model).where(model.tree_id == self.id))
        self.session.flush()

    def delete(self) -> None:
        """Delete the tree and every row that belongs to it."""
        with self._transaction():
            if get_site_preference(self.session, DEFAULT_TREE) == self.name:
                set_site_preference(self.session, DEFAULT_TREE, "")

            self.delete_genealogy_data(False)
            for model in (UserTreeSetting, TreeSetting, DefaultResn):
                self.session.execute(delete(model).where(model.tree_id == self.id))
            self.session.execute(delete(FamilyTree).where(FamilyTree.id == self.id))
        self.invalidate_preferences()
        log_info(logger, "Tree deleted", {"tree_id": self.id, "tree_name": self.name})

    def import_gedcom_file(self, stream: BinaryIO, filename: str, block_size: int = BLOCK_SIZE) -> int:
        """
        Replace the tree's data with an uploaded GEDCOM file, stored as chunks.

        The tree is marked imported=0 until import_chunks() has processed
        every chunk. If the stream fails part way, the chunks already
        written stay in place and GedcomImportError is raised.
        """
        with self._transaction():
            self.delete_genealogy_data(self.get_preference("keep_media") not in ("", "0"))
            self.set_preference("gedcom_filename", filename)
            self.set_preference("imported", "0")

        return GedcomImporter(self.session, self.id, block_size).write_chunks(stream)

    def import_chunks(self) -> int:
        """Turn the stored chunks into records and mark the tree imported."""
        try:
            stored = ChunkProcessor(self.session, self.id).import_pending()
        except BaseException:
            self.invalidate_preferences()
            raise
        with self._transaction():
            self.set_preference("imported", "1")
        return stored

    def export_gedcom(self, stream: BinaryIO, batch_size: int = EXPORT_BATCH_SIZE, buffer_size: int = BUFFER_SIZE) -> int:
        return GedcomExporter(self, batch_size=batch_size, buffer_size=buffer_size).export(stream)

    # Navigation

    def _first_individual(self, xrefs: Iterable[str]) -> Optional[GedcomRecord]:
        for xref in xrefs:
            individual = self.records.make(xref, INDIVIDUAL)
            if individual is not None:
                return individual
        return None

    def significant_individual(self, user: Optional[User], xref: str = "") -> GedcomRecord:
        """
        The individual to show when nobody in particular was asked for.

        Tries, in order: the given xref (or a spouse, then a child, when it
        names a family), the user's default individual, the user's own
        individual, the tree's pedigree root, the lowest individual xref, and
        finally a placeholder so that a record is always returned.
        """
        individual = None
        if xref:
            individual = self.records.make(xref, INDIVIDUAL)
            if individual is None:
                family = self.records.make(xref, FAMILY)
                if family is not None:
                    spouses, children = ged.family_members(family.latest)
                    individual = self._first_individual(spouses) or self._first_individual(children)

        default_xref = self.get_user_preference(user, PREF_TREE_DEFAULT_XREF)
        if individual is None and default_xref != "":
            individual = self.records.make(default_xref, INDIVIDUAL)

        account_xref = self.get_user_preference(user, PREF_TREE_ACCOUNT_XREF)
        if individual is None and account_xref != "":
            individual = self.records.make(account_xref, INDIVIDUAL)

        root_xref = self.get_preference("PEDIGREE_ROOT_ID")
        if individual is None and root_xref != "":
            individual = self.records.make(root_xref, INDIVIDUAL)

        if individual is None:
            first_xref = self.records.min_individual_xref()
            if first_xref:
                individual = self.records.make(first_xref, INDIVIDUAL)

        if individual is None:
            individual = GedcomRecord(xref="I", tree_id=self.id, kind=INDIVIDUAL, gedcom="0 @I@ INDI")

        return individual


def find_tree(session: Session, tree_id: int) -> Tree:
    row = session.get(FamilyTree, tree_id)
    if row is None:
        raise TreeNotFoundError(f"No tree with id {tree_id}")
    return Tree.from_row(session, row)


def find_tree_by_name(session: Session, name: str) -> Optional[Tree]:
    row = session.execute(select(FamilyTree).where(FamilyTree.name == name)).scalar_one_or_none()
    return Tree.from_row(session, row) if row is not None else None


def all_trees(session: Session) -> List[Tree]:
    rows = session.execute(select(FamilyTree).order_by(FamilyTree.title, FamilyTree.name)).scalars().all()
    return [Tree.from_row(session, row) for row in rows]


def create_tree(session: Session, name: str, title: str) -> Tree:
    if find_tree_by_name(session, name) is not None:
        raise TreeExistsError(f"A tree called {name!r} already exists")

    with transaction(session):
        row = FamilyTree(name=name, title=title)
        session.add(row)
        session.flush()
        for setting_name, setting_value in DEFAULT_TREE_PREFERENCES.items():
            session.add(TreeSetting(tree_id=row.id, setting_name=setting_name, setting_value=setting_value))
        tree_id = row.id

    log_info(logger, "Tree created", {"tree_id": tree_id, "tree_name": name})
    return Tree(session, tree_id, name, title)
