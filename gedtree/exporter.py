"""
GEDCOM export: a generated header, every record of the tree, and a trailer.

Records come out ordered by (kind rank, xref length, xref), so a given
database state always exports to the same bytes.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, BinaryIO, List, Optional

from . import __version__
from . import gedcom as ged
from .exceptions import GedcomExportError
from .logging_config import log_info
from .record_store import EXPORT_BATCH_SIZE, OTHER, RecordStore

if TYPE_CHECKING:
    from .tree import Tree

logger = logging.getLogger(__name__)

BUFFER_SIZE = 65535
# Sub-structures of an imported HEAD that describe the data rather than the file
CARRIED_HEADER_TAGS = ("COPR", "LANG", "PLAC", "SUBM", "SUBN")


def _carried_header_lines(stored_head: str) -> List[str]:
    lines: List[str] = []
    keep = False
    for line in stored_head.split("\n")[1:]:
        parsed = ged.parse_line(line)
        if parsed is None:
            continue
        level, _, tag, _ = parsed
        if level == 1:
            keep = tag in CARRIED_HEADER_TAGS
        if keep:
            lines.append(line)
    return lines


def gedcom_header(tree: "Tree", encoding: str = "UTF-8", when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    filename = tree.get_preference("gedcom_filename") or f"{tree.name}.ged"
    lines = [
        "0 HEAD",
        "1 SOUR GEDTREE",
        "2 NAME gedtree",
        f"2 VERS {__version__}",
        "1 DEST DISKETTE",
        f"1 DATE {ged.gedcom_date(when)}",
        f"2 TIME {when.strftime('%H:%M:%S')}",
        "1 GEDC",
        "2 VERS 5.5.1",
        "2 FORM Lineage-Linked",
        f"1 CHAR {encoding}",
        f"1 FILE {filename}",
    ]
    stored = RecordStore(tree.session, tree.id).get("HEAD", OTHER)
    if stored is not None:
        lines.extend(_carried_header_lines(stored.gedcom))
    return "\n".join(lines)


class GedcomExporter:
    def __init__(self, tree: "Tree", batch_size: int = EXPORT_BATCH_SIZE, buffer_size: int = BUFFER_SIZE):
        self.tree = tree
        self.batch_size = batch_size
        self.buffer_size = buffer_size

    def export(self, stream: BinaryIO) -> int:
        """
        Write the whole tree to a binary stream as UTF-8. Returns the number of records.

        Output is flushed whenever more than buffer_size bytes are waiting. If
        the stream fails, GedcomExportError is raised and whatever reached the
        stream must be thrown away.
        """
        buffer = bytearray(ged.reformat_record(gedcom_header(self.tree)).encode("utf-8"))
        count = 0
        for gedcom in RecordStore(self.tree.session, self.tree.id).iter_export_rows(self.batch_size):
            buffer += ged.reformat_record(gedcom).encode("utf-8")
            count += 1
            if len(buffer) > self.buffer_size:
                self._write(stream, buffer, count)
                buffer.clear()
        buffer += ("0 TRLR" + ged.EOL).encode("utf-8")
        self._write(stream, buffer, count)

        log_info(logger, "GEDCOM exported", {"tree_id": self.tree.id, "records": count})
        return count

    def _write(self, stream: BinaryIO, buffer: bytearray, count: int) -> None:
        try:
            stream.write(bytes(buffer))
        except (OSError, ValueError) as exc:
            logger.error("GEDCOM export of tree %s failed after %d records: %s", self.tree.id, count, exc)
            raise GedcomExportError(f"Writing the GEDCOM export failed: {exc}") from exc
