"""
Exceptions raised by the export pipeline.

Parser mismatches are not errors: the parser returns ``None`` and the
entry is left out of the load.
"""
from __future__ import annotations


class ArchiveError(Exception):
    """Base class; ``str(exc)`` is the user-visible reason."""


class BackendUnavailable(ArchiveError):
    pass


class SegmentRenderFailure(ArchiveError):
    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"Failed to render {filename}: {reason}")
        self.filename = filename
        self.reason = reason


class NoRenderableContent(ArchiveError):
    def __init__(self, total: int, last_reason: str = "") -> None:
        message = f"No stories could be processed successfully (0 of {total})"
        if last_reason:
            message += f"; last error: {last_reason}"
        super().__init__(message)
        self.total = total


class DeliveryFailure(ArchiveError):
    pass


class ExportCancelled(ArchiveError):
    def __init__(self) -> None:
        super().__init__("Export cancelled")
