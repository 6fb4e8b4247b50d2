"""
Exception hierarchy for tree storage operations.

Validation, contention and I/O failures are raised as typed errors so callers
can map them to their own responses. Re-resolving a change that is already
accepted or rejected is not an error; the ledger treats it as a no-op.
"""
from __future__ import annotations

from typing import Optional


class GedTreeError(Exception):
    """Base exception for tree storage operations."""

    def __init__(self, message: str, error_code: Optional[str] = None, recovery_suggestion: Optional[str] = None):
        self.message = message
        self.error_code = error_code or "UNKNOWN_ERROR"
        self.recovery_suggestion = recovery_suggestion
        super().__init__(self.message)

    def to_dict(self) -> dict:
        result = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.recovery_suggestion:
            result["recovery_suggestion"] = self.recovery_suggestion
        return result


class InvalidRecordError(GedTreeError, ValueError):
    """GEDCOM supplied to a create call does not start with the expected placeholder."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "INVALID_RECORD")
        super().__init__(message, **kwargs)


class XrefContentionError(GedTreeError):
    """The xref counter row could not be locked before the transaction timed out."""

    def __init__(self, message: str = "Could not lock the xref counter", **kwargs):
        kwargs.setdefault("error_code", "XREF_CONTENTION")
        kwargs.setdefault("recovery_suggestion", "Retry the edit once other writers have finished")
        super().__init__(message, **kwargs)


class XrefExhaustedError(XrefContentionError):
    """The allocator gave up after its probe limit without finding a free xref."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "XREF_EXHAUSTED")
        kwargs.setdefault("recovery_suggestion", "Check the next_xref site setting for corruption")
        super().__init__(message, **kwargs)


class GedcomImportError(GedTreeError):
    """Reading the uploaded GEDCOM stream failed part way through."""

    def __init__(self, message: str, chunks_written: int = 0, **kwargs):
        kwargs.setdefault("error_code", "IMPORT_FAILED")
        kwargs.setdefault("recovery_suggestion", "Upload the file again; the tree stays unimported until then")
        super().__init__(message, **kwargs)
        self.chunks_written = chunks_written


class GedcomExportError(GedTreeError):
    """Writing to the export stream failed; the partial document must be discarded."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "EXPORT_FAILED")
        super().__init__(message, **kwargs)


class TreeNotFoundError(GedTreeError, LookupError):
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "TREE_NOT_FOUND")
        super().__init__(message, **kwargs)


class TreeExistsError(GedTreeError):
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "TREE_EXISTS")
        super().__init__(message, **kwargs)


class RecordNotFoundError(GedTreeError, LookupError):
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "RECORD_NOT_FOUND")
        super().__init__(message, **kwargs)
