from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, ForeignKey, Index, LargeBinary, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum

class Base(DeclarativeBase):
    pass

class ChangeStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

class FamilyTree(Base):
    __tablename__ = 'trees'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

class TreeSetting(Base):
    __tablename__ = 'tree_settings'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    setting_name: Mapped[str] = mapped_column(String(32), primary_key=True)
    setting_value: Mapped[str] = mapped_column(Text, nullable=False)

class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_name: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    real_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

class UserSetting(Base):
    __tablename__ = 'user_settings'

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    setting_name: Mapped[str] = mapped_column(String(32), primary_key=True)
    setting_value: Mapped[str] = mapped_column(Text, nullable=False)

class UserTreeSetting(Base):
    __tablename__ = 'user_tree_settings'

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    setting_name: Mapped[str] = mapped_column(String(32), primary_key=True)
    setting_value: Mapped[str] = mapped_column(Text, nullable=False)

class SiteSetting(Base):
    __tablename__ = 'site_settings'

    setting_name: Mapped[str] = mapped_column(String(32), primary_key=True)
    setting_value: Mapped[str] = mapped_column(Text, nullable=False)

class DefaultResn(Base):
    """Tree-wide privacy overrides: per fact, per individual, or per individual fact."""
    __tablename__ = 'default_resn'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), nullable=False, index=True)
    xref: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tag_type: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    resn: Mapped[str] = mapped_column(String(12), nullable=False)  # 'none', 'privacy', 'confidential', 'hidden'

class GedcomChunk(Base):
    __tablename__ = 'gedcom_chunks'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), nullable=False)
    chunk_data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    imported: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('idx_gedcom_chunks_tree_imported', 'tree_id', 'imported'),
    )

class Change(Base):
    __tablename__ = 'changes'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    change_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ChangeStatus.PENDING.value)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), nullable=False)
    xref: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    old_gedcom: Mapped[str] = mapped_column(Text, nullable=False, default="")
    new_gedcom: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    user: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        Index('idx_changes_tree_status', 'tree_id', 'status'),
        Index('idx_changes_tree_xref', 'tree_id', 'xref'),
    )

# Genealogy records. Every kind is keyed by (tree_id, xref) and keeps the raw GEDCOM.

class Individual(Base):
    __tablename__ = 'individuals'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    xref: Mapped[str] = mapped_column(String(20), primary_key=True, index=True)
    sex: Mapped[str] = mapped_column(String(1), nullable=False, default="U")
    gedcom: Mapped[str] = mapped_column(Text, nullable=False)

class Family(Base):
    __tablename__ = 'families'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    xref: Mapped[str] = mapped_column(String(20), primary_key=True, index=True)
    husb: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    wife: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    numchil: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gedcom: Mapped[str] = mapped_column(Text, nullable=False)

class Source(Base):
    __tablename__ = 'sources'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    xref: Mapped[str] = mapped_column(String(20), primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    gedcom: Mapped[str] = mapped_column(Text, nullable=False)

class OtherRecord(Base):
    """NOTE, REPO, SUBM and any other top-level record, plus the imported HEAD."""
    __tablename__ = 'other_records'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    xref: Mapped[str] = mapped_column(String(20), primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(15), nullable=False)
    gedcom: Mapped[str] = mapped_column(Text, nullable=False)

class Media(Base):
    __tablename__ = 'media'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    xref: Mapped[str] = mapped_column(String(20), primary_key=True, index=True)
    gedcom: Mapped[str] = mapped_column(Text, nullable=False)

class MediaFile(Base):
    __tablename__ = 'media_files'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), nullable=False)
    media_xref: Mapped[str] = mapped_column(String(20), nullable=False)
    filename: Mapped[str] = mapped_column(String(248), nullable=False, default="")
    file_format: Mapped[str] = mapped_column(String(4), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(248), nullable=False, default="")

    __table_args__ = (
        Index('idx_media_files_tree_xref', 'tree_id', 'media_xref'),
    )

class Link(Base):
    __tablename__ = 'links'

    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), primary_key=True)
    from_xref: Mapped[str] = mapped_column(String(20), primary_key=True)
    type: Mapped[str] = mapped_column(String(15), primary_key=True)
    to_xref: Mapped[str] = mapped_column(String(20), primary_key=True)

    __table_args__ = (
        Index('idx_links_tree_to', 'tree_id', 'to_xref'),
    )

class Name(Base):
    __tablename__ = 'names'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey('trees.id', ondelete='CASCADE'), nullable=False)
    xref: Mapped[str] = mapped_column(String(20), nullable=False)
    num: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    full: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    given: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    surname: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    __table_args__ = (
        Index('idx_names_tree_xref', 'tree_id', 'xref'),
        Index('idx_names_surname', 'surname', 'given'),
    )
