"""
Path and filename parsing for the date-partitioned story archive.

Expected layout (the first segment is the archive folder itself)::

    AutoExport/Avatars/<user>_avatar_YYYYMMDD.jpg
    AutoExport/YYYYMMDD/<user>/<story files>
    AutoExport/YYYYMMDD/AccountCaptures/<profile snapshots>

Every parser returns ``None`` for paths that do not fit; callers skip them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .config import PRIMARY_ACCOUNT
from .logger import debug
from .models import AvatarRecord, ContentRef, MediaEntry, MediaKind, ProfileSnapshot, ReshareInfo


MEDIA_EXTS = (".jpg", ".jpeg", ".png", ".gif", ".mp4", ".mov", ".webm")
VIDEO_EXTS = (".mp4", ".mov", ".webm")
SNAPSHOT_IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

AVATARS_FOLDER = "Avatars"
CAPTURES_FOLDER = "AccountCaptures"

DATE_FOLDER = re.compile(r"[0-9]{8}")
SEQUENCE_SUFFIX = re.compile(r"_(\d+)\.(?:jpg|jpeg|png|gif|mp4|mov|webm)$", re.IGNORECASE)
AVATAR_NAME = re.compile(r"^(.+)_avatar_\d{8}\.(jpg|jpeg)$", re.IGNORECASE)
SNAPSHOT_EXT = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)


def split_path(relative_path: str) -> List[str]:
    return relative_path.replace("\\", "/").split("/")


def is_date_folder(name: str) -> bool:
    return DATE_FOLDER.fullmatch(name) is not None


def is_media_file(filename: str) -> bool:
    return filename.lower().endswith(MEDIA_EXTS)


def is_image_file(filename: str) -> bool:
    return filename.lower().endswith(SNAPSHOT_IMAGE_EXTS)


def media_kind_for(filename: str) -> MediaKind:
    return MediaKind.VIDEO if filename.lower().endswith(VIDEO_EXTS) else MediaKind.IMAGE


def extract_sequence_number(filename: str) -> int:
    """Story number from names like ``janedoe_story_20250808_01.jpg``."""
    m = SEQUENCE_SUFFIX.search(filename)
    return int(m.group(1)) if m else 0


# Reshare attribution
@dataclass(frozen=True)
class NoMatch:
    pass


@dataclass(frozen=True)
class SingleReshare:
    user: str


@dataclass(frozen=True)
class ChainReshare:
    user: str
    count: int


ReshareMatch = Union[NoMatch, SingleReshare, ChainReshare]

RESHARE_MARKER = re.compile(r"_reshare_([^.]+?)(?=_reshare_|\.)")
TRAILING_RESHARE = re.compile(r"_reshare_(.+?)(?=\.[^.]*$)")


def _match_chain(filename: str) -> ReshareMatch:
    users = [m.group(1) for m in RESHARE_MARKER.finditer(filename)]
    if not users:
        return NoMatch()
    # Last marker in the name is treated as the most recent reshare.
    if len(users) == 1:
        return SingleReshare(users[0])
    return ChainReshare(users[-1], len(users))


def _match_trailing(filename: str) -> ReshareMatch:
    m = TRAILING_RESHARE.search(filename)
    return SingleReshare(m.group(1)) if m else NoMatch()


RESHARE_MATCHERS: Sequence[Tuple[str, Callable[[str], ReshareMatch]]] = (
    ("chain", _match_chain),
    ("trailing", _match_trailing),
)


def match_reshare(filename: str) -> ReshareMatch:
    for _name, matcher in RESHARE_MATCHERS:
        result = matcher(filename)
        if not isinstance(result, NoMatch):
            return result
    return NoMatch()


def _strip_sequence(user: str, filename: str) -> str:
    m = SEQUENCE_SUFFIX.search(filename)
    if m:
        suffix = f"_{m.group(1)}"
        if user.endswith(suffix) and len(user) > len(suffix):
            return user[: -len(suffix)]
    return user


def extract_reshare_info(
    username: str, filename: str, primary: str = PRIMARY_ACCOUNT
) -> Optional[ReshareInfo]:
    if username != primary:
        return None
    result = match_reshare(filename)
    if isinstance(result, ChainReshare):
        return ReshareInfo(_strip_sequence(result.user, filename), result.count)
    if isinstance(result, SingleReshare):
        return ReshareInfo(_strip_sequence(result.user, filename), 1)
    return None


# Stories
def parse_path(
    relative_path: str,
    primary: str = PRIMARY_ACCOUNT,
    content: Optional[ContentRef] = None,
) -> Optional[MediaEntry]:
    parts = split_path(relative_path)
    if len(parts) < 4:
        return None
    date, username, filename = parts[1], parts[2], parts[-1]
    if not is_date_folder(date):
        return None
    if username == CAPTURES_FOLDER:
        return None
    if not is_media_file(filename):
        debug(f"skipping non-media file {relative_path}")
        return None
    return MediaEntry(
        username=username,
        filename=filename,
        date=date,
        kind=media_kind_for(filename),
        sequence_number=extract_sequence_number(filename),
        reshare_info=extract_reshare_info(username, filename, primary),
        path=relative_path,
        content=content,
    )


# Avatars
def parse_avatar_path(
    relative_path: str, content: Optional[ContentRef] = None
) -> Optional[AvatarRecord]:
    parts = split_path(relative_path)
    if len(parts) < 3 or parts[1] != AVATARS_FOLDER:
        return None
    filename = parts[2]
    m = AVATAR_NAME.match(filename)
    if not m:
        debug(f"skipping unrecognised avatar name {filename}")
        return None
    return AvatarRecord(username=m.group(1), filename=filename, content=content)


# Profile snapshots
def _search(pattern: str) -> Callable[[str], Optional[str]]:
    rx = re.compile(pattern)

    def matcher(name: str) -> Optional[str]:
        m = rx.match(name)
        return m.group(1) if m else None

    return matcher


def _plain_name(name: str) -> Optional[str]:
    return None if re.search(r"\d{6}", name) else name


SNAPSHOT_USERNAME_PATTERNS: Sequence[Callable[[str], Optional[str]]] = (
    _search(r"^(.+)_profile_\d{8}_\d{6}$"),
    _search(r"^(.+)_\d{8}_\d{6}$"),
    _search(r"^(.+)_screenshot_\d{8}$"),
    _search(r"^(.+)_\d{8}$"),
    _search(r"^(.+)_profile$"),
    _plain_name,
    _search(r"^(.+?)_[\d_]+$"),
)


def extract_snapshot_username(filename: str) -> str:
    name = SNAPSHOT_EXT.sub("", filename)
    username = name
    for pattern in SNAPSHOT_USERNAME_PATTERNS:
        found = pattern(name)
        if found:
            username = found
            break
    username = re.sub(r"_profile$", "", username)
    username = re.sub(r"_screenshot$", "", username)
    username = re.sub(r"_profile_.*$", "", username)
    return username.strip("._")


def parse_snapshot_path(
    relative_path: str,
    primary: str = PRIMARY_ACCOUNT,
    content: Optional[ContentRef] = None,
) -> Optional[ProfileSnapshot]:
    parts = split_path(relative_path)
    if len(parts) < 4:
        return None
    date, folder, filename = parts[1], parts[2], parts[3]
    if not is_date_folder(date) or folder != CAPTURES_FOLDER or not is_image_file(filename):
        return None
    username = extract_snapshot_username(filename)
    if not username or username == primary:
        return None
    return ProfileSnapshot(
        username=username,
        date=date,
        filename=filename,
        path=relative_path,
        content=content,
    )
