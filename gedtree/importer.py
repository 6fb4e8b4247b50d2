"""
GEDCOM import in two stages.

1. GedcomImporter copies the upload into gedcom_chunks. Each chunk ends just
   before a line starting with "0", so no chunk splits a record or a
   multi-byte character, and the chunks concatenate back to the exact file.
   Every chunk is committed as soon as it is written: a failed upload leaves
   the chunks read so far behind, and the tree stays marked unimported.

2. ChunkProcessor turns chunks into records, one committed chunk at a time.
   It only picks up chunks not yet marked imported, so an interrupted run
   can simply be started again.
"""
from __future__ import annotations

import logging
from typing import BinaryIO, Iterator, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import gedcom as ged
from .db import transaction
from .exceptions import GedcomImportError
from .logging_config import log_info
from .models import GedcomChunk
from .record_store import RecordStore

logger = logging.getLogger(__name__)

BLOCK_SIZE = 65536


def _last_boundary(buffer: bytearray, start: int = 0) -> int:
    """Offset of the last "0" that follows a line break, at or after start; 0 if there is none."""
    pos = max(buffer.rfind(b"\n0", start), buffer.rfind(b"\r0", start))
    return pos + 1 if pos >= 0 else 0


def iter_chunks(stream: BinaryIO, block_size: int = BLOCK_SIZE) -> Iterator[bytes]:
    """
    Read a binary stream block by block and yield record-aligned chunks.

    When the buffer holds no boundary yet (one record bigger than a block),
    reading simply continues; the buffer is never split inside a record.
    Whatever is left at end of stream is the final chunk.
    """
    buffer = bytearray()
    while True:
        block = stream.read(block_size)
        if not block:
            break
        # The retained buffer has no boundary past offset 0, so only the join and the new bytes need scanning.
        start = max(len(buffer) - 1, 0)
        buffer += block
        cut = _last_boundary(buffer, start)
        if cut:
            yield bytes(buffer[:cut])
            del buffer[:cut]
    if buffer:
        yield bytes(buffer)


class GedcomImporter:
    def __init__(self, session: Session, tree_id: int, block_size: int = BLOCK_SIZE):
        self.session = session
        self.tree_id = tree_id
        self.block_size = block_size

    def write_chunks(self, stream: BinaryIO) -> int:
        """Persist the stream as ordered chunks. Returns the number written."""
        written = 0
        total_bytes = 0
        try:
            for data in iter_chunks(stream, self.block_size):
                self.session.add(GedcomChunk(tree_id=self.tree_id, chunk_data=data))
                self.session.commit()
                written += 1
                total_bytes += len(data)
        except (OSError, ValueError) as exc:
            self.session.rollback()
            logger.error("GEDCOM upload for tree %s failed after %d chunks: %s", self.tree_id, written, exc)
            raise GedcomImportError(f"Reading the GEDCOM stream failed: {exc}", chunks_written=written) from exc

        log_info(logger, "GEDCOM chunks written", {"tree_id": self.tree_id, "chunks": written, "bytes": total_bytes})
        return written


class ChunkProcessor:
    def __init__(self, session: Session, tree_id: int):
        self.session = session
        self.tree_id = tree_id
        self.store = RecordStore(session, tree_id)

    def pending_chunk_ids(self) -> List[int]:
        return list(
            self.session.execute(
                select(GedcomChunk.id)
                .where(GedcomChunk.tree_id == self.tree_id, GedcomChunk.imported.is_(False))
                .order_by(GedcomChunk.id)
            ).scalars().all()
        )

    def import_pending(self) -> int:
        """Store the records of every unprocessed chunk. Returns the number of records stored."""
        stored = 0
        for chunk_id in self.pending_chunk_ids():
            with transaction(self.session):
                chunk = self.session.get(GedcomChunk, chunk_id)
                stored += self.import_chunk(chunk.chunk_data)
                chunk.imported = True
        log_info(logger, "GEDCOM chunks imported", {"tree_id": self.tree_id, "records": stored})
        return stored

    def import_chunk(self, data: bytes) -> int:
        # Chunks never split a character, so each one decodes on its own.
        text = data.decode("utf-8-sig", errors="replace")
        return sum(1 for record in ged.split_records(text) if self.import_record(record))

    def import_record(self, record: str) -> bool:
        record = ged.normalize_record(record)
        xref, tag = ged.record_header(record)
        if tag == "TRLR":
            return False
        if tag == "HEAD":
            self.store.put(record, xref="HEAD")
            return True
        if not xref:
            logger.warning("Skipping record without an xref in tree %s: %r", self.tree_id, record[:40])
            return False
        self.store.put(record)
        return True
