from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping

from .logger import dry_run as log_dry_run, info
from .matcher import match_avatar_key
from .models import ContentRef, ExportPlan, MediaKind
from .stats import media_breakdown


class DryRunSimulator:
    """Describes an export plan without rendering anything."""

    def __init__(self, avatars: Mapping[str, ContentRef]) -> None:
        self.avatars = avatars
        self.stats: Dict[str, int] = {}

    def simulate_export(self, plan: ExportPlan, filename: str, output_dir: Path) -> int:
        images, videos = media_breakdown(plan.entries)
        info(f"🎬 Would export {len(plan.entries)} stories ({images} photos, {videos} videos)")
        missing = 0
        for i, e in enumerate(plan.entries, 1):
            key = match_avatar_key(e.username, self.avatars)
            if key is None:
                missing += 1
            seconds = "6s" if e.kind == MediaKind.IMAGE else "source length"
            reshare = f", reshared from @{e.reshare_info.original_user}" if e.reshare_info else ""
            log_dry_run(
                f"would render {i}/{len(plan.entries)} '{e.path or e.filename}' "
                f"({seconds}, avatar: {key or 'placeholder'}{reshare})"
            )
        log_dry_run(f"would save '{output_dir / filename}'")
        self.stats = {"images": images, "videos": videos, "placeholders": missing}
        return len(plan.entries)
