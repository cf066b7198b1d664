"""
Fuzzy lookup of a story username in the avatar table.

Avatar files and story folders spell some usernames differently
(``ava.lanelle`` vs ``ava_lanelle``), so lookups run an ordered list of
strategies and stop at the first key found.
"""
from __future__ import annotations

import re
from typing import Callable, Mapping, Optional, Sequence, Tuple, TypeVar

from .logger import verbose


T = TypeVar("T")

Strategy = Callable[[str, Mapping[str, object]], Optional[str]]

_SEPARATORS = re.compile(r"[._-]")


def exact(query: str, table: Mapping[str, object]) -> Optional[str]:
    return query if query in table else None


def dots_to_underscores(query: str, table: Mapping[str, object]) -> Optional[str]:
    candidate = query.replace(".", "_")
    return candidate if candidate in table else None


def underscores_to_dots(query: str, table: Mapping[str, object]) -> Optional[str]:
    candidate = query.replace("_", ".")
    return candidate if candidate in table else None


def _normalize(name: str) -> str:
    return _SEPARATORS.sub("", name).lower()


def normalized(query: str, table: Mapping[str, object]) -> Optional[str]:
    wanted = _normalize(query)
    for key in table:
        if _normalize(key) == wanted:
            return key
    return None


def substring(query: str, table: Mapping[str, object]) -> Optional[str]:
    wanted = query.lower()
    for key in table:
        lowered = key.lower()
        if wanted in lowered or lowered in wanted:
            return key
    return None


STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("exact", exact),
    ("dots-to-underscores", dots_to_underscores),
    ("underscores-to-dots", underscores_to_dots),
    ("normalized", normalized),
    ("substring", substring),
)


def match_avatar_key(username: str, table: Mapping[str, object]) -> Optional[str]:
    if not username or not table:
        return None
    for name, strategy in STRATEGIES:
        key = strategy(username, table)
        if key is not None:
            if name != "exact":
                verbose(f"avatar for '{username}' matched '{key}' ({name})")
            return key
    return None


def resolve_avatar(username: str, avatars: Mapping[str, T]) -> Optional[T]:
    """Return the avatar handle for ``username`` or ``None``.

    ``None`` is not an error: renderers draw a placeholder circle.
    """
    key = match_avatar_key(username, avatars)
    if key is None:
        verbose(f"no avatar found for {username}")
        return None
    return avatars[key]
