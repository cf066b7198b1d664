from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .models import ContentRef


def iter_files_recursively(root: Path) -> Iterator[Tuple[Path, List[str]]]:
    for dirpath, dirnames, files in os.walk(root):
        dirnames.sort()
        yield Path(dirpath), sorted(files)


@contextmanager
def managed_tmp_dir(prefix: str = "story-export-", parent: Optional[Path] = None) -> Iterator[Path]:
    """Scratch folder for one export job, removed even if the job is abandoned."""
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(parent) if parent else None))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def materialize(content: ContentRef, dest_dir: Path, filename: str) -> Path:
    """Return a local file holding ``content``, copying into ``dest_dir`` if needed."""
    local = content.local_path
    if local is not None and local.is_file():
        return local
    out = dest_dir / filename
    with content.open() as src, open(out, "wb") as dst:
        shutil.copyfileobj(src, dst, length=65536)
    return out


def split_name(filename: str) -> Tuple[str, str]:
    """``a.b.jpg`` -> (``a.b``, ``.jpg``); names without a dot keep no extension."""
    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem:
        return filename, ""
    return stem, f".{ext}"


def truncate_filename(filename: str, max_length: int) -> str:
    """Shorten ``filename`` for status lines, keeping its extension."""
    if len(filename) <= max_length:
        return filename
    name, ext = split_name(filename)
    available = max_length - len(ext) - 3
    if available <= 0:
        return "..." + ext
    head = (available + 1) // 2
    tail = available // 2
    return name[:head] + "..." + (name[len(name) - tail:] if tail else "") + ext
