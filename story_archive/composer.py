"""
Export jobs: render stories onto the story canvas and save one artifact.

A job moves through ``IDLE -> INITIALIZING -> RENDERING -> COMBINING ->
DOWNLOADING -> DONE``; any non-terminal state can move to ``FAILED``.
Single stories and screenshots skip ``COMBINING``, original-file copies
skip rendering altogether.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from PIL import Image

from .backends import (
    FFmpegBackend,
    FrameCaptureBackend,
    RenderBackend,
    read_first_frame,
    supports_concatenation,
)
from .config import AppConfig
from .delivery import DeliverySink
from .errors import (
    ArchiveError,
    BackendUnavailable,
    ExportCancelled,
    NoRenderableContent,
    SegmentRenderFailure,
)
from .logger import verbose, warning
from .matcher import resolve_avatar
from .models import (
    ContentRef,
    ExportKind,
    ExportPlan,
    ExportResult,
    ExportWarning,
    MediaEntry,
)
from .overlay import OverlaySpec, render_frame, render_overlay
from .planner import Planner
from .utils import managed_tmp_dir, materialize, split_name, truncate_filename


ProgressCallback = Callable[[float, str], None]
BackendFactory = Callable[[AppConfig], RenderBackend]


class JobState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RENDERING = "rendering"
    COMBINING = "combining"
    DOWNLOADING = "downloading"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    JobState.IDLE: {JobState.INITIALIZING},
    JobState.INITIALIZING: {JobState.RENDERING, JobState.DOWNLOADING},
    JobState.RENDERING: {JobState.RENDERING, JobState.COMBINING, JobState.DOWNLOADING},
    JobState.COMBINING: {JobState.DOWNLOADING},
    JobState.DOWNLOADING: {JobState.DONE},
}


class ExportJob:
    def __init__(self, plan: ExportPlan) -> None:
        self.plan = plan
        self.state = JobState.IDLE
        self.current_index = -1
        self.failure_reason: Optional[str] = None
        self._cancel = threading.Event()

    @property
    def finished(self) -> bool:
        return self.state in (JobState.DONE, JobState.FAILED)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Ask a running job to stop at the next story boundary."""
        self._cancel.set()

    def transition(self, state: JobState) -> None:
        if state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal export state change {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, reason: str) -> None:
        if not self.finished:
            self.state = JobState.FAILED
            self.failure_reason = reason


class ProgressTracker:
    """Forwards progress, never letting the percentage go backwards."""

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self.callback = callback
        self.percent = 0.0

    def update(self, percent: float, message: str) -> None:
        self.percent = min(100.0, max(self.percent, float(percent)))
        if self.callback is not None:
            self.callback(self.percent, message)


@dataclass
class BackendCapabilities:
    full_backend_failed: bool = False
    reason: str = ""


class ExportSession:
    """Backend choice shared by every export job of a run.

    Once the full backend fails to start it is not tried again for the
    lifetime of the session.
    """

    def __init__(
        self,
        cfg: AppConfig,
        capabilities: Optional[BackendCapabilities] = None,
        full_backend: BackendFactory = FFmpegBackend,
        fallback_backend: BackendFactory = FrameCaptureBackend,
    ) -> None:
        self.cfg = cfg
        if capabilities is None:
            capabilities = BackendCapabilities()
            if not cfg.use_ffmpeg:
                capabilities.full_backend_failed = True
                capabilities.reason = "disabled by configuration"
        self.capabilities = capabilities
        self.full_backend = full_backend
        self.fallback_backend = fallback_backend
        self.backend: Optional[RenderBackend] = None
        self.lock = threading.Lock()

    def select_backend(self) -> Tuple[RenderBackend, List[ExportWarning]]:
        if self.backend is not None:
            return self.backend, []
        notes: List[ExportWarning] = []
        if not self.capabilities.full_backend_failed:
            full = self.full_backend(self.cfg)
            try:
                full.initialize()
                self.backend = full
                return full, notes
            except BackendUnavailable as e:
                self.capabilities.full_backend_failed = True
                self.capabilities.reason = str(e)
                warning(f"Full encoder unavailable, using frame capture: {e}")
                notes.append(ExportWarning("backend-fallback", str(e)))
        fallback = self.fallback_backend(self.cfg)
        fallback.initialize()
        self.backend = fallback
        return fallback, notes


class ExportComposer:
    def __init__(
        self,
        cfg: AppConfig,
        avatars: Mapping[str, ContentRef],
        sink: DeliverySink,
        session: Optional[ExportSession] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.cfg = cfg
        self.avatars = avatars
        self.sink = sink
        self.session = session if session is not None else ExportSession(cfg)
        self.on_progress = on_progress
        self.planner = Planner()
        self._avatar_cache: Dict[str, Optional[Image.Image]] = {}

    # Public API
    def run(self, plan: ExportPlan, job: Optional[ExportJob] = None) -> ExportResult:
        if not plan.entries:
            raise NoRenderableContent(0)
        job = job if job is not None else ExportJob(plan)
        progress = ProgressTracker(self.on_progress)
        try:
            with self.session.lock:
                if plan.kind == ExportKind.ORIGINAL:
                    return self._export_original(job, progress)
                if plan.kind == ExportKind.SCREENSHOT:
                    return self._export_screenshot(job, progress)
                return self._export_video(job, progress)
        except ArchiveError as e:
            job.fail(str(e))
            raise
        except KeyboardInterrupt:
            job.fail("cancelled")
            raise
        except Exception as e:
            job.fail(str(e) or type(e).__name__)
            raise
        finally:
            self._avatar_cache.clear()

    def export_story(self, entry: MediaEntry) -> ExportResult:
        return self.run(self.planner.plan_story(entry, ExportKind.RECORDING))

    def export_screenshot(self, entry: MediaEntry) -> ExportResult:
        return self.run(self.planner.plan_story(entry, ExportKind.SCREENSHOT))

    def export_original(self, entry: MediaEntry) -> ExportResult:
        return self.run(self.planner.plan_story(entry, ExportKind.ORIGINAL))

    def export_visual_experience(
        self, kind: ExportKind, identifier: str, entries: List[MediaEntry]
    ) -> ExportResult:
        return self.run(self.planner.plan_visual_experience(kind, identifier, entries))

    # Overlay
    def _avatar_image(self, username: str) -> Optional[Image.Image]:
        if username in self._avatar_cache:
            return self._avatar_cache[username]
        image: Optional[Image.Image] = None
        ref = resolve_avatar(username, self.avatars)
        if ref is not None:
            try:
                with ref.open() as fh:
                    image = Image.open(fh)
                    image.load()
            except OSError as e:
                verbose(f"could not load avatar for {username}: {e}")
                image = None
        self._avatar_cache[username] = image
        return image

    def overlay_for(self, entry: MediaEntry) -> Image.Image:
        spec = OverlaySpec(entry.username, entry.reshare_info, self.cfg.canvas_size)
        return render_overlay(spec, self._avatar_image(entry.username))

    # Stages
    def _source(self, entry: MediaEntry, work: Path, index: int) -> Path:
        if entry.content is None:
            raise SegmentRenderFailure(entry.filename, "no content handle")
        _, ext = split_name(entry.filename)
        return materialize(entry.content, work, f"source-{index:03d}{ext.lower()}")

    def _render_segments(
        self,
        job: ExportJob,
        backend: RenderBackend,
        work: Path,
        progress: ProgressTracker,
        notes: List[ExportWarning],
    ) -> List[Path]:
        entries = job.plan.entries
        total = len(entries)
        segments: List[Path] = []
        last_reason = ""
        for i, entry in enumerate(entries):
            if job.cancelled:
                raise ExportCancelled()
            job.transition(JobState.RENDERING)
            job.current_index = i
            progress.update(10 + 80 * i / total, f"Rendering story {i + 1}/{total}...")
            try:
                source = self._source(entry, work, i)
                overlay = self.overlay_for(entry)
                out = work / f"segment-{i:03d}{backend.extension}"
                segments.append(backend.render_segment(source, entry.kind, overlay, out))
            except Exception as e:
                failure = e if isinstance(e, SegmentRenderFailure) else SegmentRenderFailure(entry.filename, str(e))
                last_reason = failure.reason
                warning(str(failure))
                notes.append(ExportWarning("segment-failed", str(failure)))
        if not segments:
            raise NoRenderableContent(total, last_reason)
        return segments

    def _combine(
        self,
        job: ExportJob,
        backend: RenderBackend,
        segments: List[Path],
        work: Path,
        progress: ProgressTracker,
        notes: List[ExportWarning],
    ) -> Tuple[Path, int]:
        job.transition(JobState.COMBINING)
        progress.update(90, "Combining video segments...")
        if len(segments) == 1:
            return segments[0], 1
        if not supports_concatenation(backend):
            message = (
                f"{backend.name} cannot join clips; exported the first of "
                f"{len(segments)} segments only"
            )
            warning(message)
            notes.append(ExportWarning("concatenation-unsupported", message))
            return segments[0], 1
        try:
            combined = backend.concatenate(segments, work / f"combined{backend.extension}")  # type: ignore[attr-defined]
        except Exception as e:
            message = f"Joining {len(segments)} segments failed, exported the first only: {e}"
            warning(message)
            notes.append(ExportWarning("concatenation-unsupported", message))
            return segments[0], 1
        return combined, len(segments)

    def _deliver(
        self, job: ExportJob, artifact: Path, filename: str, progress: ProgressTracker
    ) -> Path:
        job.transition(JobState.DOWNLOADING)
        progress.update(95, "Starting download...")
        dest = self.sink.deliver(artifact, filename)
        job.transition(JobState.DONE)
        progress.update(100, f"Successfully exported {truncate_filename(filename, 40)}")
        return dest

    def _export_video(self, job: ExportJob, progress: ProgressTracker) -> ExportResult:
        plan = job.plan
        job.transition(JobState.INITIALIZING)
        progress.update(0, f"Preparing {len(plan.entries)} stories...")
        backend, notes = self.session.select_backend()
        progress.update(10, f"Rendering with {backend.name}")
        filename = self.planner.output_filename(plan, backend.extension)

        with managed_tmp_dir() as work:
            segments = self._render_segments(job, backend, work, progress, notes)
            if job.cancelled:
                raise ExportCancelled()
            artifact, rendered = self._combine(job, backend, segments, work, progress, notes)
            dest = self._deliver(job, artifact, filename, progress)

        return ExportResult(
            filename=filename,
            destination=dest,
            segments_total=len(plan.entries),
            segments_rendered=rendered,
            backend=backend.name,
            warnings=tuple(notes),
        )

    def _export_screenshot(self, job: ExportJob, progress: ProgressTracker) -> ExportResult:
        entry = job.plan.entries[0]
        filename = self.planner.output_filename(job.plan)
        job.transition(JobState.INITIALIZING)
        progress.update(0, "Preparing image...")
        with managed_tmp_dir() as work:
            job.transition(JobState.RENDERING)
            job.current_index = 0
            progress.update(25, "Loading media...")
            try:
                still = read_first_frame(self._source(entry, work, 0), entry.kind)
            except Exception as e:
                raise NoRenderableContent(1, str(e)) from e
            progress.update(50, "Composing image...")
            frame = render_frame(still, self.overlay_for(entry))
            out = work / "screenshot.png"
            frame.save(out, "PNG")
            progress.update(75, "Finalizing screenshot...")
            dest = self._deliver(job, out, filename, progress)
        return ExportResult(filename, dest, 1, 1, backend="pillow")

    def _export_original(self, job: ExportJob, progress: ProgressTracker) -> ExportResult:
        entry = job.plan.entries[0]
        filename = self.planner.output_filename(job.plan)
        job.transition(JobState.INITIALIZING)
        progress.update(0, "Starting download...")
        with managed_tmp_dir() as work:
            try:
                source = self._source(entry, work, 0)
            except (OSError, SegmentRenderFailure) as e:
                raise NoRenderableContent(1, str(e)) from e
            dest = self._deliver(job, source, filename, progress)
        return ExportResult(filename, dest, 1, 1, backend="copy")
