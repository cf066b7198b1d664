from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional, Protocol, Tuple


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class ContentRef(Protocol):
    """Borrowed handle to the bytes of one archived file."""

    @property
    def local_path(self) -> Optional[Path]:
        ...

    def open(self) -> BinaryIO:
        ...


# File supply
@dataclass(frozen=True)
class FileEntry:
    relative_path: str
    content: ContentRef = field(compare=False, repr=False)
    size: int = 0


# Parsed archive records
@dataclass(frozen=True)
class ReshareInfo:
    original_user: str
    reshare_count: int


@dataclass(frozen=True)
class MediaEntry:
    username: str
    filename: str
    date: str
    kind: MediaKind
    sequence_number: int = 0
    reshare_info: Optional[ReshareInfo] = None
    path: str = ""
    content: Optional[ContentRef] = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> Tuple[str, str, str]:
        return self.username, self.date, self.filename


@dataclass(frozen=True)
class AvatarRecord:
    username: str
    filename: str
    content: Optional[ContentRef] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ProfileSnapshot:
    username: str
    date: str
    filename: str
    path: str = ""
    content: Optional[ContentRef] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class UserStats:
    total_stories: int
    avg_per_day: str
    avg_per_week: str
    timespan_days: int = 0


# Export plans
class ExportKind(str, Enum):
    ORIGINAL = "original"
    RECORDING = "recording"
    SCREENSHOT = "screenshot"
    USER_DATE = "user-date"
    DATE = "date"
    USER = "user"

    @property
    def is_visual_experience(self) -> bool:
        return self in (ExportKind.USER_DATE, ExportKind.DATE, ExportKind.USER)


@dataclass(frozen=True)
class ExportPlan:
    kind: ExportKind
    entries: Tuple[MediaEntry, ...]
    identifier: str = ""


@dataclass(frozen=True)
class ExportWarning:
    code: str
    message: str


@dataclass(frozen=True)
class ExportResult:
    filename: str
    destination: Path
    segments_total: int
    segments_rendered: int
    backend: str = ""
    warnings: Tuple[ExportWarning, ...] = ()

    @property
    def degraded(self) -> bool:
        return any(w.code == "concatenation-unsupported" for w in self.warnings)
