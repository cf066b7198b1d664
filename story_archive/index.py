"""
Grouped views over one load of the story archive.

Every load rebuilds all views from the supplied file snapshot; nothing is
merged into a previous load.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import PRIMARY_ACCOUNT
from .logger import debug, verbose
from .models import ContentRef, FileEntry, MediaEntry, ProfileSnapshot
from .parser import parse_avatar_path, parse_path, parse_snapshot_path


@dataclass(frozen=True)
class ArchiveIndex:
    by_date: Mapping[str, Tuple[MediaEntry, ...]] = field(default_factory=dict)
    by_user: Mapping[str, Tuple[MediaEntry, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return sum(len(v) for v in self.by_date.values())


@dataclass(frozen=True)
class Archive:
    index: ArchiveIndex
    avatars: Mapping[str, ContentRef] = field(default_factory=dict)
    snapshots: Mapping[str, Tuple[ProfileSnapshot, ...]] = field(default_factory=dict)
    primary: str = PRIMARY_ACCOUNT
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.index.by_date


def build_index(entries: Iterable[MediaEntry]) -> ArchiveIndex:
    structure: Dict[str, Dict[str, List[MediaEntry]]] = {}
    for entry in entries:
        structure.setdefault(entry.date, {}).setdefault(entry.username, []).append(entry)

    by_date: Dict[str, Tuple[MediaEntry, ...]] = {}
    by_user: Dict[str, List[MediaEntry]] = {}
    for date, users in structure.items():
        stories: List[MediaEntry] = []
        for username, files in users.items():
            # sorted() is stable, so equal numbers keep input order
            files = sorted(files, key=lambda e: e.sequence_number)
            stories.extend(files)
            by_user.setdefault(username, []).extend(files)
        if stories:
            by_date[date] = tuple(stories)

    return ArchiveIndex(
        by_date=by_date,
        by_user={u: tuple(s) for u, s in by_user.items()},
    )


def load_archive(files: Iterable[FileEntry], primary: str = PRIMARY_ACCOUNT) -> Archive:
    """Parse a flat file snapshot into avatars, profile snapshots and stories."""
    avatars: Dict[str, ContentRef] = {}
    snapshots: Dict[str, List[ProfileSnapshot]] = {}
    entries: List[MediaEntry] = []
    seen = set()
    skipped = 0

    for f in files:
        avatar = parse_avatar_path(f.relative_path, f.content)
        if avatar is not None:
            avatars[avatar.username] = f.content
            continue
        snapshot = parse_snapshot_path(f.relative_path, primary, f.content)
        if snapshot is not None:
            snapshots.setdefault(snapshot.username, []).append(snapshot)
            continue
        entry = parse_path(f.relative_path, primary, f.content)
        # (username, date, filename) must stay unique within one load
        if entry is not None and entry.key not in seen:
            seen.add(entry.key)
            entries.append(entry)
        else:
            skipped += 1
            debug(f"skipped {f.relative_path}")

    index = build_index(entries)
    verbose(
        f"loaded {len(index.by_date)} dates, {len(index.by_user)} users, "
        f"{len(avatars)} avatars, {sum(len(s) for s in snapshots.values())} snapshots"
    )
    return Archive(
        index=index,
        avatars=avatars,
        snapshots={u: tuple(s) for u, s in snapshots.items()},
        primary=primary,
        skipped=skipped,
    )


# Display ordering
def _pinned(username: str, primary: str) -> int:
    return 0 if username == primary else 1


def sorted_dates(index: ArchiveIndex) -> List[str]:
    return sorted(index.by_date, reverse=True)


def group_by_user(entries: Sequence[MediaEntry]) -> Dict[str, List[MediaEntry]]:
    grouped: Dict[str, List[MediaEntry]] = {}
    for e in entries:
        grouped.setdefault(e.username, []).append(e)
    return grouped


def users_for_date(
    index: ArchiveIndex, date: str, primary: str = PRIMARY_ACCOUNT
) -> List[Tuple[str, List[MediaEntry]]]:
    """Users with stories on ``date``: primary first, then most stories."""
    grouped = group_by_user(index.by_date.get(date, ()))
    return sorted(
        grouped.items(),
        key=lambda item: (_pinned(item[0], primary), -len(item[1]), item[0].lower()),
    )


def sorted_users(index: ArchiveIndex, primary: str = PRIMARY_ACCOUNT) -> List[str]:
    return sorted(index.by_user, key=lambda u: (_pinned(u, primary), u.lower()))


def dates_for_user(index: ArchiveIndex, username: str) -> List[Tuple[str, List[MediaEntry]]]:
    grouped: Dict[str, List[MediaEntry]] = {}
    for e in index.by_user.get(username, ()):
        grouped.setdefault(e.date, []).append(e)
    return sorted(grouped.items(), key=lambda item: item[0], reverse=True)


def chronological(entries: Iterable[MediaEntry]) -> List[MediaEntry]:
    return sorted(entries, key=lambda e: (e.date, e.filename))


def find_entry(index: ArchiveIndex, path: str) -> Optional[MediaEntry]:
    """Look up a story by its archive path, with or without the root folder."""
    wanted = path.strip("/")
    for entries in index.by_date.values():
        for e in entries:
            if e.path == wanted or e.path.split("/", 1)[-1] == wanted:
                return e
    return None


def snapshot_users(snapshots: Mapping[str, Sequence[ProfileSnapshot]]) -> List[str]:
    return sorted(snapshots, key=str.lower)


def snapshots_chronological(snapshots: Iterable[ProfileSnapshot]) -> List[ProfileSnapshot]:
    return sorted(snapshots, key=lambda s: (s.date, s.filename))
