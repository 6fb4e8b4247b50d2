"""
Access to the genealogy record tables of one tree.

Records of every kind live in their own table keyed by (tree_id, xref). The
raw GEDCOM is stored as-is; sex, spouses, titles, names, links and media
files are derived from it on every write so they never drift from the
content they index.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Type

from sqlalchemy import delete, func, literal, select, union_all
from sqlalchemy.orm import Session

from . import gedcom as ged
from .exceptions import InvalidRecordError
from .models import Base, Change, Family, Individual, Link, Media, MediaFile, Name, OtherRecord, Source

logger = logging.getLogger(__name__)

EXPORT_BATCH_SIZE = 1000
HEADER_TAGS = ("HEAD", "TRLR")


@dataclass(frozen=True)
class RecordKind:
    name: str
    rank: int
    tag: Optional[str]
    model: Type[Base]


INDIVIDUAL = RecordKind("individual", 1, "INDI", Individual)
FAMILY = RecordKind("family", 2, "FAM", Family)
SOURCE = RecordKind("source", 3, "SOUR", Source)
OTHER = RecordKind("other", 4, None, OtherRecord)
MEDIA = RecordKind("media", 5, "OBJE", Media)

KINDS: Tuple[RecordKind, ...] = (INDIVIDUAL, FAMILY, SOURCE, OTHER, MEDIA)


def kind_for_tag(tag: Optional[str]) -> RecordKind:
    for kind in KINDS:
        if kind.tag is not None and kind.tag == tag:
            return kind
    return OTHER


@dataclass
class GedcomRecord:
    """
    A record as seen by an editor: the accepted content from the store plus
    the latest proposed content, if any.

    gedcom is "" when the record has never been accepted. pending is None
    when nothing is proposed and "" when a deletion is proposed.
    """
    xref: str
    tree_id: int
    kind: RecordKind
    gedcom: str = ""
    pending: Optional[str] = None

    @property
    def is_pending_addition(self) -> bool:
        return self.gedcom == "" and bool(self.pending)

    @property
    def is_pending_deletion(self) -> bool:
        return self.gedcom != "" and self.pending == ""

    @property
    def latest(self) -> str:
        return self.gedcom if self.pending is None else self.pending


def xref_in_use(session: Session, xref: str) -> bool:
    """Exact-string check across every record table and the change ledger, in all trees."""
    for model in (Individual, Family, Source, Media, OtherRecord, Change):
        found = session.execute(select(model.xref).where(model.xref == xref).limit(1)).first()
        if found is not None:
            return True
    return False


class RecordStore:
    def __init__(self, session: Session, tree_id: int):
        self.session = session
        self.tree_id = tree_id

    def get(self, xref: str, kind: Optional[RecordKind] = None) -> Optional[GedcomRecord]:
        for k in ([kind] if kind else KINDS):
            row = self.session.get(k.model, (self.tree_id, xref))
            if row is not None:
                return GedcomRecord(xref=xref, tree_id=self.tree_id, kind=k, gedcom=row.gedcom)
        return None

    def exists(self, xref: str) -> bool:
        return self.get(xref) is not None

    def make(self, xref: str, kind: Optional[RecordKind] = None) -> Optional[GedcomRecord]:
        """The accepted record with its latest pending content attached, or a pending creation."""
        from .changes import latest_pending

        record = self.get(xref, kind)
        change = latest_pending(self.session, self.tree_id, xref)
        pending = change.new_gedcom if change is not None else None

        if record is not None:
            record.pending = pending
            return record
        if not pending:
            return None
        pending_kind = kind_for_tag(ged.record_header(pending)[1])
        if kind is not None and pending_kind is not kind:
            return None
        return GedcomRecord(xref=xref, tree_id=self.tree_id, kind=pending_kind, gedcom="", pending=pending)

    def put(self, gedcom: str, xref: Optional[str] = None) -> GedcomRecord:
        """
        Create or replace a record, moving it between tables if its type changed.

        xref is only needed for records whose level-0 line carries none (HEAD).
        """
        header_xref, tag = ged.record_header(gedcom)
        xref = xref or header_xref
        if not xref or not tag:
            raise InvalidRecordError(f"Cannot store a record without an xref: {gedcom[:40]!r}")
        kind = kind_for_tag(tag)

        for other in KINDS:
            if other is not kind and self._delete_row(other, xref):
                logger.info("Record %s in tree %s moved from %s to %s", xref, self.tree_id, other.name, kind.name)

        self.session.merge(kind.model(tree_id=self.tree_id, xref=xref, gedcom=gedcom, **_derived_fields(kind, tag, gedcom)))
        self._rebuild_indices(kind, xref, gedcom)
        self.session.flush()
        return GedcomRecord(xref=xref, tree_id=self.tree_id, kind=kind, gedcom=gedcom)

    def remove(self, xref: str) -> bool:
        removed = False
        for kind in KINDS:
            removed = self._delete_row(kind, xref) or removed
        self._clear_indices(xref)
        self.session.flush()
        return removed

    def min_individual_xref(self) -> Optional[str]:
        return self.session.execute(
            select(func.min(Individual.xref)).where(Individual.tree_id == self.tree_id)
        ).scalar_one_or_none()

    def iter_export_rows(self, batch_size: int = EXPORT_BATCH_SIZE) -> Iterator[str]:
        """
        Every record's GEDCOM ordered by (kind rank, xref length, xref).

        Length before lexical order keeps X2 ahead of X10. Rows are fetched
        batch_size at a time.
        """
        selects = []
        for kind in KINDS:
            model = kind.model
            stmt = select(
                model.gedcom.label("gedcom"),
                model.xref.label("xref"),
                func.length(model.xref).label("len"),
                literal(kind.rank).label("n"),
            ).where(model.tree_id == self.tree_id)
            if kind is OTHER:
                stmt = stmt.where(OtherRecord.type.not_in(HEADER_TAGS))
            selects.append(stmt)

        everything = union_all(*selects).subquery()
        stmt = select(everything.c.gedcom).order_by(everything.c.n, everything.c.len, everything.c.xref)
        result = self.session.execute(stmt.execution_options(yield_per=batch_size))
        for partition in result.partitions():
            for row in partition:
                yield row.gedcom

    def _delete_row(self, kind: RecordKind, xref: str) -> bool:
        result = self.session.execute(
            delete(kind.model).where(kind.model.tree_id == self.tree_id, kind.model.xref == xref)
        )
        return result.rowcount > 0

    def _clear_indices(self, xref: str) -> None:
        self.session.execute(delete(Link).where(Link.tree_id == self.tree_id, Link.from_xref == xref))
        self.session.execute(delete(Name).where(Name.tree_id == self.tree_id, Name.xref == xref))
        self.session.execute(delete(MediaFile).where(MediaFile.tree_id == self.tree_id, MediaFile.media_xref == xref))

    def _rebuild_indices(self, kind: RecordKind, xref: str, gedcom: str) -> None:
        self._clear_indices(xref)
        for tag, to_xref in ged.pointers(gedcom):
            self.session.add(Link(tree_id=self.tree_id, from_xref=xref, type=tag, to_xref=to_xref))
        if kind is INDIVIDUAL:
            for num, (full, given, surname) in enumerate(ged.names(gedcom)):
                self.session.add(Name(tree_id=self.tree_id, xref=xref, num=num, full=full[:255], given=given[:255], surname=surname[:255]))
        elif kind is MEDIA:
            for filename, file_format, title in _media_files(gedcom):
                self.session.add(MediaFile(tree_id=self.tree_id, media_xref=xref, filename=filename, file_format=file_format, title=title))


def _derived_fields(kind: RecordKind, tag: str, gedcom: str) -> dict:
    if kind is INDIVIDUAL:
        sex = (ged.first_value(gedcom, "SEX") or "U")[:1].upper()
        return {"sex": sex if sex in ("M", "F", "U", "X") else "U"}
    if kind is FAMILY:
        _, children = ged.family_members(gedcom)
        husb = next((x for t, x in ged.pointers(gedcom) if t == "HUSB"), None)
        wife = next((x for t, x in ged.pointers(gedcom) if t == "WIFE"), None)
        return {"husb": husb, "wife": wife, "numchil": len(children)}
    if kind is SOURCE:
        return {"name": (ged.first_value(gedcom, "TITL") or "")[:255]}
    if kind is OTHER:
        return {"type": tag[:15]}
    return {}


def _media_files(gedcom: str) -> List[Tuple[str, str, str]]:
    """(filename, format, title) for each level-1 FILE structure of an OBJE record."""
    files: List[List[str]] = []
    in_file = False
    for line in gedcom.split("\n"):
        parsed = ged.parse_line(line)
        if parsed is None:
            continue
        level, _, tag, value = parsed
        if level == 1:
            in_file = tag == "FILE"
            if in_file:
                files.append([value[:248], "", ""])
        elif in_file and tag == "FORM":
            files[-1][1] = value[:4]
        elif in_file and tag == "TITL":
            files[-1][2] = value[:248]
    return [(f[0], f[1], f[2]) for f in files]
