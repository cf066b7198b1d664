from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from .logger import verbose
from .models import FileEntry, MediaKind
from .parser import CAPTURES_FOLDER, is_date_folder
from .utils import iter_files_recursively


LISTED_STORY_EXTS = (".jpg", ".jpeg", ".png", ".mp4")
CACHE_MAX_AGE = 3600


@dataclass(frozen=True)
class LocalContent:
    path: Path

    @property
    def local_path(self) -> Optional[Path]:
        return self.path

    def open(self) -> BinaryIO:
        return open(self.path, "rb")


class LocalArchiveSource:
    """Supplies every file under an archive folder as a flat snapshot."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def files(self) -> List[FileEntry]:
        out: List[FileEntry] = []
        for dirpath, names in iter_files_recursively(self.root):
            rel_dir = dirpath.relative_to(self.root)
            for name in names:
                if name.startswith("."):
                    continue
                path = dirpath / name
                rel = Path(self.root.name) / rel_dir / name
                try:
                    size = path.stat().st_size
                except OSError:
                    continue
                out.append(FileEntry(rel.as_posix(), LocalContent(path), size))
        verbose(f"found {len(out)} files under {self.root}")
        return out


# Directory listing contract
def list_dates(root: Path) -> List[str]:
    if not root.is_dir():
        return []
    dates = [p.name for p in root.iterdir() if p.is_dir() and is_date_folder(p.name)]
    return sorted(dates, reverse=True)


def list_stories(root: Path, date: str) -> List[Dict[str, str]]:
    date_dir = root / date
    if not is_date_folder(date) or not date_dir.is_dir():
        return []
    stories: List[Dict[str, str]] = []
    for user_dir in sorted(date_dir.iterdir()):
        if not user_dir.is_dir() or user_dir.name == CAPTURES_FOLDER:
            continue
        for f in sorted(user_dir.iterdir()):
            if not f.is_file() or not f.name.lower().endswith(LISTED_STORY_EXTS):
                continue
            kind = MediaKind.VIDEO if f.name.lower().endswith(".mp4") else MediaKind.IMAGE
            stories.append(
                {
                    "username": user_dir.name,
                    "filename": f.name,
                    "path": f"{date}/{user_dir.name}/{f.name}",
                    "type": kind.value,
                    "date": date,
                }
            )
    return stories


def guess_mime(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "application/octet-stream"
