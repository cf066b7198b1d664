from __future__ import annotations

from typing import Optional, Sequence

from .index import ArchiveIndex, chronological
from .models import ExportKind, ExportPlan, MediaEntry
from .utils import split_name


class Planner:
    """Builds export plans and the filenames their artifacts are saved under."""

    def plan_story(self, entry: MediaEntry, kind: ExportKind = ExportKind.RECORDING) -> ExportPlan:
        if kind.is_visual_experience:
            raise ValueError(f"{kind.value} is not a single-story export")
        return ExportPlan(kind=kind, entries=(entry,), identifier=entry.filename)

    def plan_visual_experience(
        self, kind: ExportKind, identifier: str, entries: Sequence[MediaEntry]
    ) -> ExportPlan:
        if not kind.is_visual_experience:
            raise ValueError(f"{kind.value} is not a visual experience export")
        return ExportPlan(kind=kind, entries=tuple(chronological(entries)), identifier=identifier)

    def plan_from_index(
        self, index: ArchiveIndex, username: Optional[str] = None, date: Optional[str] = None
    ) -> ExportPlan:
        """Visual experience for a user, a date, or a user on one date."""
        if username and date:
            entries = [e for e in index.by_user.get(username, ()) if e.date == date]
            return self.plan_visual_experience(ExportKind.USER_DATE, f"{username}_{date}", entries)
        if date:
            return self.plan_visual_experience(ExportKind.DATE, date, index.by_date.get(date, ()))
        if username:
            return self.plan_visual_experience(ExportKind.USER, username, index.by_user.get(username, ()))
        raise ValueError("A username or a date is required")

    def output_filename(self, plan: ExportPlan, extension: str = ".mp4") -> str:
        count = len(plan.entries)
        if plan.kind == ExportKind.USER_DATE:
            # identifier is "<username>_<YYYYMMDD>"; usernames may contain underscores
            username, _, date = plan.identifier.rpartition("_")
            return f"visual_experience_{username}_{date}_{count}stories.mp4"
        if plan.kind == ExportKind.DATE:
            return f"visual_experience_{plan.identifier[:8]}_{count}stories.mp4"
        if plan.kind == ExportKind.USER:
            return f"visual_experience_{plan.identifier}_{count}stories.mp4"

        entry = plan.entries[0]
        stem, _ = split_name(entry.filename)
        if plan.kind == ExportKind.SCREENSHOT:
            return f"{stem}_screenshot.png"
        if plan.kind == ExportKind.ORIGINAL:
            return entry.filename
        return f"{stem}_screencapture{extension}"
