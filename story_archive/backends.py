from __future__ import annotations

import json
import subprocess
import warnings
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
from PIL import Image, ImageOps
from moviepy import ImageClip, VideoClip, VideoFileClip
from proglog import TqdmProgressBarLogger

from .config import AppConfig
from .errors import BackendUnavailable
from .logger import verbose
from .models import MediaKind
from .overlay import fit_rect, render_frame

# Benign short-read warning from the MoviePy frame reader
warnings.filterwarnings(
    "ignore",
    message=".*bytes wanted but.*bytes read.*",
    category=UserWarning,
    module="moviepy.video.io.ffmpeg_reader",
)

AUDIO_RATE = 44100
SILENT_AUDIO = f"anullsrc=channel_layout=stereo:sample_rate={AUDIO_RATE}"


class RenderBackend(Protocol):
    """Renders one story into a canvas-sized clip.

    Backends that can join clips also define
    ``concatenate(segments, out_path) -> Path``; its absence means exports
    fall back to the first segment.
    """

    name: str
    extension: str

    def initialize(self) -> None:
        ...

    def render_segment(
        self, media_path: Path, kind: MediaKind, overlay: Image.Image, out_path: Path
    ) -> Path:
        ...


def load_image(media_path: Path) -> Image.Image:
    with Image.open(media_path) as img:
        img = ImageOps.exif_transpose(img)
        return img.convert("RGBA") if "A" in img.getbands() else img.convert("RGB")


def read_first_frame(media_path: Path, kind: MediaKind) -> Image.Image:
    if kind == MediaKind.IMAGE:
        return load_image(media_path)
    clip = VideoFileClip(str(media_path), audio=False)
    try:
        return Image.fromarray(clip.get_frame(0))
    finally:
        clip.close()


def stream_rotation(stream: dict) -> int:
    """Rotation in degrees from the display matrix or the legacy ``rotate`` tag."""
    for side in stream.get("side_data_list") or []:
        if "rotation" in side:
            return int(float(side["rotation"]))
    return int(float((stream.get("tags") or {}).get("rotate", 0)))


def supports_concatenation(backend: RenderBackend) -> bool:
    return callable(getattr(backend, "concatenate", None))


class FFmpegBackend:
    """Full backend driving the ffmpeg and ffprobe command line tools."""

    name = "ffmpeg"
    extension = ".mp4"

    def __init__(self, cfg: AppConfig, binary: str = "ffmpeg", probe_binary: str = "ffprobe") -> None:
        self.cfg = cfg
        self.binary = binary
        self.probe_binary = probe_binary
        self.ready = False

    def initialize(self) -> None:
        if self.ready:
            return
        for tool in (self.binary, self.probe_binary):
            try:
                r = subprocess.run(
                    [tool, "-hide_banner", "-version"],
                    capture_output=True,
                    text=True,
                    timeout=self.cfg.backend_timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                raise BackendUnavailable(f"{tool} is not usable: {e}") from e
            if r.returncode != 0:
                raise BackendUnavailable(f"{tool} exited with status {r.returncode}")
        self.ready = True

    def _run(self, cmd: List[str]) -> None:
        verbose(" ".join(cmd))
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=self.cfg.render_timeout)
        if r.returncode != 0:
            tail = "\n".join(r.stderr.strip().splitlines()[-5:])
            raise RuntimeError(f"FFmpeg failed: {tail}")

    def probe(self, media_path: Path) -> Tuple[int, int, bool]:
        r = subprocess.run(
            [
                self.probe_binary,
                "-v", "error",
                "-show_entries", "stream=codec_type,width,height:stream_tags=rotate:stream_side_data=rotation",
                "-of", "json",
                str(media_path),
            ],
            capture_output=True,
            text=True,
            timeout=self.cfg.backend_timeout,
        )
        if r.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {media_path.name}: {r.stderr.strip()}")
        streams = json.loads(r.stdout or "{}").get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video is None:
            raise RuntimeError(f"no video stream in {media_path.name}")
        has_audio = any(s.get("codec_type") == "audio" for s in streams)
        width, height = int(video["width"]), int(video["height"])
        # ffmpeg autorotates decoded frames, so report the displayed size
        if stream_rotation(video) % 180 == 90:
            width, height = height, width
        return width, height, has_audio

    def _encode_args(self) -> List[str]:
        return [
            "-r", str(self.cfg.fps),
            "-c:v", self.cfg.video_codec,
            "-preset", self.cfg.preset,
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-ar", str(AUDIO_RATE),
            "-ac", "2",
            "-video_track_timescale", "90000",
            "-movflags", "+faststart",
        ]

    def render_segment(
        self, media_path: Path, kind: MediaKind, overlay: Image.Image, out_path: Path
    ) -> Path:
        if kind == MediaKind.IMAGE:
            frame_path = out_path.with_name(f"{out_path.stem}-frame.png")
            render_frame(load_image(media_path), overlay).save(frame_path)
            cmd = [
                self.binary, "-y",
                "-loop", "1", "-framerate", str(self.cfg.fps), "-i", str(frame_path),
                "-f", "lavfi", "-i", SILENT_AUDIO,
                "-t", f"{self.cfg.image_segment_seconds:g}",
                "-map", "0:v", "-map", "1:a",
                *self._encode_args(),
                str(out_path),
            ]
            self._run(cmd)
            return out_path

        width, height, has_audio = self.probe(media_path)
        x, y, w, h = fit_rect(width, height, overlay.size).rounded()
        # yuv420p needs even dimensions
        w -= w % 2
        h -= h % 2
        canvas_w, canvas_h = overlay.size
        overlay_path = out_path.with_name(f"{out_path.stem}-overlay.png")
        overlay.save(overlay_path)
        graph = (
            f"[0:v]scale={w}:{h},setsar=1,"
            f"pad={canvas_w}:{canvas_h}:{x}:{y}:black[base];"
            "[base][1:v]overlay=0:0:shortest=1:format=auto[v]"
        )
        cmd = [self.binary, "-y", "-i", str(media_path), "-loop", "1", "-i", str(overlay_path)]
        if not has_audio:
            cmd += ["-f", "lavfi", "-i", SILENT_AUDIO]
        cmd += [
            "-filter_complex", graph,
            "-map", "[v]",
            "-map", "0:a:0" if has_audio else "2:a",
            "-shortest",
            *self._encode_args(),
            str(out_path),
        ]
        self._run(cmd)
        return out_path

    def concatenate(self, segments: Sequence[Path], out_path: Path) -> Path:
        list_path = out_path.with_name(f"{out_path.stem}-concat.txt")
        lines = []
        for seg in segments:
            quoted = str(seg.resolve()).replace("'", "'\\''")
            lines.append(f"file '{quoted}'")
        list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        base = [self.binary, "-y", "-f", "concat", "-safe", "0", "-i", str(list_path)]
        try:
            self._run(base + ["-c", "copy", "-movflags", "+faststart", str(out_path)])
        except RuntimeError as e:
            verbose(f"stream copy concat failed, re-encoding: {e}")
            self._run(base + [*self._encode_args(), str(out_path)])
        return out_path


class FrameCaptureBackend:
    """Fallback backend: composes every frame in Python and encodes WebM via MoviePy.

    It renders single segments only; there is no ``concatenate``.
    """

    name = "frame-capture"
    extension = ".webm"

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg

    def initialize(self) -> None:
        return None

    def _write(self, clip, out_path: Path) -> None:
        clip.write_videofile(
            str(out_path),
            fps=self.cfg.fps,
            codec="libvpx",
            audio_codec="libvorbis",
            audio=clip.audio is not None,
            logger=TqdmProgressBarLogger(print_messages=False),
            threads=1,
        )

    def render_segment(
        self, media_path: Path, kind: MediaKind, overlay: Image.Image, out_path: Path
    ) -> Path:
        if kind == MediaKind.IMAGE:
            frame = np.asarray(render_frame(load_image(media_path), overlay))
            clip = ImageClip(frame).with_duration(self.cfg.image_segment_seconds)
            try:
                self._write(clip, out_path)
            finally:
                clip.close()
            return out_path

        source: Optional[VideoFileClip] = None
        composed = None
        try:
            source = VideoFileClip(str(media_path))
            src = source

            def frame_at(t: float) -> np.ndarray:
                return np.asarray(render_frame(Image.fromarray(src.get_frame(t)), overlay))

            composed = VideoClip(frame_function=frame_at, duration=source.duration)
            if source.audio is not None:
                composed = composed.with_audio(source.audio)
            self._write(composed, out_path)
        finally:
            for c in (composed, source):
                if c is not None:
                    c.close()
        return out_path
