from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .logger import LogLevel


PRIMARY_ACCOUNT = "medicalmedium"


@dataclass(frozen=True)
class AppConfig:
    primary_account: str = PRIMARY_ACCOUNT
    canvas_width: int = 1080
    canvas_height: int = 1920
    image_segment_seconds: float = 6.0
    fps: int = 30
    video_codec: str = "libx264"
    preset: str = "fast"
    use_ffmpeg: bool = True
    backend_timeout: float = 30.0
    render_timeout: float = 600.0
    request_timeout: float = 30.0
    dry_run: bool = False
    verbose: bool = False
    quiet: bool = False
    # Export destination
    output_dir: Path | None = None

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return self.canvas_width, self.canvas_height

    @property
    def log_level(self) -> LogLevel:
        """Quiet wins over verbose."""
        if self.quiet:
            return LogLevel.QUIET
        if self.verbose:
            return LogLevel.VERBOSE
        return LogLevel.NORMAL
