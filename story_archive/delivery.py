from __future__ import annotations

import shutil
from pathlib import Path
from typing import Protocol

from .errors import DeliveryFailure


class DeliverySink(Protocol):
    def deliver(self, artifact: Path, filename: str) -> Path:
        ...


class FolderSink:
    """Saves finished artifacts into an output folder."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def deliver(self, artifact: Path, filename: str) -> Path:
        dst = self.output_dir / filename
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact, dst)
        except OSError as e:
            raise DeliveryFailure(f"Could not save {filename}: {e}") from e
        return dst
