from __future__ import annotations

from datetime import date as Date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence, Tuple

from .models import MediaEntry, MediaKind, UserStats


def parse_date(value: str) -> Date:
    return Date(int(value[0:4]), int(value[4:6]), int(value[6:8]))


def days_between(first: str, last: str) -> int:
    return (parse_date(last) - parse_date(first)).days


def one_decimal(value: float) -> str:
    """Round halves up, so 2.25 reads as ``2.3``."""
    return str(Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def compute_user_stats(entries: Sequence[MediaEntry]) -> UserStats:
    total = len(entries)
    dates = sorted({e.date for e in entries})
    if not dates:
        return UserStats(total_stories=total, avg_per_day="0.0", avg_per_week="0.0")

    timespan = max(1, days_between(dates[0], dates[-1]) + 1)
    per_day = total / timespan
    return UserStats(
        total_stories=total,
        avg_per_day=one_decimal(per_day),
        avg_per_week=one_decimal(per_day * 7),
        timespan_days=timespan,
    )


def media_breakdown(entries: Iterable[MediaEntry]) -> Tuple[int, int]:
    images = 0
    videos = 0
    for e in entries:
        if e.kind == MediaKind.VIDEO:
            videos += 1
        else:
            images += 1
    return images, videos


def format_breakdown(entries: Sequence[MediaEntry]) -> str:
    images, videos = media_breakdown(entries)
    parts = [f"{len(entries)} stories"]
    if images:
        parts.append(f"{images} photos")
    if videos:
        parts.append(f"{videos} videos")
    return " • ".join(parts)


def format_user_stats(stats: UserStats, date_count: int) -> str:
    return (
        f"Total Stories: {stats.total_stories} • Avg/Day: {stats.avg_per_day} • "
        f"Avg/Week: {stats.avg_per_week} • {date_count} dates"
    )


def format_date_label(value: str) -> str:
    """``20250808`` -> ``Friday, August 8, 2025``."""
    d = parse_date(value)
    return f"{d.strftime('%A')}, {d.strftime('%B')} {d.day}, {d.year}"
