from __future__ import annotations
from datetime import datetime
from typing import Iterator, List, Optional, Tuple
import re

EOL = "\r\n"
# A GEDCOM line, terminator included, must not exceed 255 characters.
LINE_LENGTH = 255 - len(EOL)

MONTHS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")

_line_re = re.compile(r"^(?P<lvl>\d+)\s+(?:(?P<xref>@[^@]+@)\s+)?(?P<tag>[A-Za-z0-9_]+)(?:\s(?P<val>.*))?$")
_head_re = re.compile(r"^0(?: @(?P<xref>[^@]+)@)? (?P<tag>[A-Za-z0-9_]+)")
_conc_re = re.compile(r"^\d+ CONC ?(?P<val>.*)$")
_pointer_re = re.compile(r"^[1-9]\d* (?P<tag>[A-Za-z0-9_]+) @(?P<xref>[A-Za-z0-9:_.-]+)@$", re.MULTILINE)


def _clean_lines(text: str) -> Iterator[str]:
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        line = line.lstrip()
        if line:
            yield line


def parse_line(line: str) -> Optional[Tuple[int, Optional[str], str, str]]:
    """Return (level, xref, tag, value) for one GEDCOM line, or None if it is malformed."""
    m = _line_re.match(line)
    if not m:
        return None
    xref = m.group("xref")
    return int(m.group("lvl")), xref.strip("@") if xref else None, m.group("tag"), m.group("val") or ""


def split_records(text: str) -> Iterator[str]:
    """
    Split a block of GEDCOM text into top-level records.

    A record starts at every line whose level is 0. Line endings are
    normalised to "\\n" and blank lines are dropped.
    """
    record: List[str] = []
    for line in _clean_lines(text):
        if line.startswith("0") and record:
            yield "\n".join(record)
            record = []
        record.append(line)
    if record:
        yield "\n".join(record)


def normalize_record(record: str) -> str:
    """The stored form of a record: clean lines with CONC continuations merged into their parent line."""
    lines: List[str] = []
    for line in _clean_lines(record):
        m = _conc_re.match(line)
        if m and lines:
            lines[-1] += m.group("val")
        else:
            lines.append(line)
    return "\n".join(lines)


def record_header(record: str) -> Tuple[Optional[str], Optional[str]]:
    """(xref, tag) from the level-0 line. HEAD and TRLR have no xref."""
    m = _head_re.match(record)
    if not m:
        return None, None
    return m.group("xref"), m.group("tag")


def reformat_record(record: str) -> str:
    """
    Export form of a stored record.

    Every line is terminated with EOL. Lines longer than LINE_LENGTH are
    split into CONC continuations, never immediately after a space. Lines
    that do not parse, or have no value to split, are written as they are.
    """
    out: List[str] = []
    for line in re.split(r"[\r\n]+", record):
        if not line:
            continue
        parsed = parse_line(line) if len(line) > LINE_LENGTH else None
        if parsed is not None and parsed[3]:
            level, _, tag, value = parsed
            if tag != "CONT":
                level += 1
            value_start = len(line) - len(value)
            while len(line) > LINE_LENGTH:
                pos = LINE_LENGTH
                while pos > value_start and line[pos - 1] == " ":
                    pos -= 1
                if pos <= value_start:
                    # nothing but spaces in the value
                    break
                out.append(line[:pos])
                line = f"{level} CONC {line[pos:]}"
                value_start = len(f"{level} CONC ")
        out.append(line)
    return "".join(ln + EOL for ln in out)


def pointers(record: str) -> List[Tuple[str, str]]:
    """Distinct (tag, xref) links from the record's sub-lines, in order of appearance."""
    seen = []
    for m in _pointer_re.finditer(record):
        link = (m.group("tag"), m.group("xref"))
        if link not in seen:
            seen.append(link)
    return seen


def first_value(record: str, tag: str, level: int = 1) -> Optional[str]:
    m = re.search(rf"^{level} {re.escape(tag)}(?: (.*))?$", record, re.MULTILINE)
    if not m:
        return None
    return (m.group(1) or "").strip()


def names(record: str) -> List[Tuple[str, str, str]]:
    """(full, given, surname) for each level-1 NAME, using the Given /Surname/ convention."""
    out = []
    for m in re.finditer(r"^1 NAME(?: (.*))?$", record, re.MULTILINE):
        val = (m.group(1) or "").strip()
        if "/" in val:
            parts = val.split("/")
            given = parts[0].strip()
            surname = parts[1].strip()
        else:
            given = val
            surname = ""
        out.append((val, given, surname))
    return out


def family_members(record: str) -> Tuple[List[str], List[str]]:
    """Spouse xrefs (HUSB before WIFE) and child xrefs of a FAM record."""
    links = pointers(record)
    husbands = [xref for tag, xref in links if tag == "HUSB"]
    wives = [xref for tag, xref in links if tag == "WIFE"]
    children = [xref for tag, xref in links if tag == "CHIL"]
    return husbands + wives, children


def gedcom_date(when: datetime) -> str:
    return f"{when.day} {MONTHS[when.month - 1]} {when.year}"


def change_block(user_name: str, when: datetime) -> str:
    """The CHAN structure appended to every edited record."""
    return (
        "\n1 CHAN"
        f"\n2 DATE {gedcom_date(when)}"
        f"\n3 TIME {when.strftime('%H:%M:%S')}"
        f"\n2 _WT_USER {user_name}"
    )


def strip_structure(record: str, tag: str) -> str:
    """Remove every level-1 `tag` line of a record together with its sub-lines."""
    out: List[str] = []
    skipping = False
    for line in record.split("\n"):
        if line.startswith("1 "):
            skipping = line == f"1 {tag}" or line.startswith(f"1 {tag} ")
        elif not line[:1].isdigit() or line.startswith("0"):
            skipping = False
        if not skipping:
            out.append(line)
    return "\n".join(out)
