#!/usr/bin/env python3
"""
Tests for the ffmpeg and frame-capture render backends.

No real encoder runs here: subprocess and MoviePy are patched.
"""

import json
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
from PIL import Image

from story_archive.backends import (
    FFmpegBackend,
    FrameCaptureBackend,
    load_image,
    read_first_frame,
    supports_concatenation,
)
from story_archive.config import AppConfig
from story_archive.errors import BackendUnavailable
from story_archive.models import MediaKind
from story_archive.overlay import OverlaySpec, render_overlay


def completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class BackendTestCase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.overlay = render_overlay(OverlaySpec("jane"))

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.cfg = AppConfig()

    def tearDown(self):
        self.tmp.cleanup()

    def image(self, name="story.png", size=(540, 960)):
        path = self.dir / name
        Image.new("RGB", size, (10, 20, 30)).save(path)
        return path


class TestFFmpegInitialize(BackendTestCase):

    @patch('story_archive.backends.subprocess.run')
    def test_initialize_checks_both_tools(self, mock_run):
        mock_run.return_value = completed()
        backend = FFmpegBackend(self.cfg)
        backend.initialize()
        backend.initialize()
        self.assertTrue(backend.ready)
        tools = [c.args[0][0] for c in mock_run.call_args_list]
        self.assertEqual(tools, ["ffmpeg", "ffprobe"])
        self.assertEqual(mock_run.call_args.kwargs["timeout"], self.cfg.backend_timeout)

    @patch('story_archive.backends.subprocess.run')
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("ffmpeg")
        with self.assertRaises(BackendUnavailable):
            FFmpegBackend(self.cfg).initialize()

    @patch('story_archive.backends.subprocess.run')
    def test_startup_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="ffmpeg", timeout=30)
        with self.assertRaises(BackendUnavailable):
            FFmpegBackend(self.cfg).initialize()

    @patch('story_archive.backends.subprocess.run')
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = completed(returncode=1)
        with self.assertRaises(BackendUnavailable) as ctx:
            FFmpegBackend(self.cfg).initialize()
        self.assertIn("status 1", str(ctx.exception))


class TestFFmpegRendering(BackendTestCase):

    @patch('story_archive.backends.subprocess.run')
    def test_probe(self, mock_run):
        streams = {"streams": [
            {"codec_type": "video", "width": 720, "height": 1280},
            {"codec_type": "audio"},
        ]}
        mock_run.return_value = completed(stdout=json.dumps(streams))
        self.assertEqual(FFmpegBackend(self.cfg).probe(Path("a.mp4")), (720, 1280, True))

    @patch('story_archive.backends.subprocess.run')
    def test_probe_without_video_stream(self, mock_run):
        mock_run.return_value = completed(stdout=json.dumps({"streams": [{"codec_type": "audio"}]}))
        with self.assertRaises(RuntimeError):
            FFmpegBackend(self.cfg).probe(Path("a.mp4"))

    @patch('story_archive.backends.subprocess.run')
    def test_probe_swaps_rotated_dimensions(self, mock_run):
        streams = {"streams": [
            {"codec_type": "video", "width": 1920, "height": 1080,
             "side_data_list": [{"rotation": -90}]},
        ]}
        mock_run.return_value = completed(stdout=json.dumps(streams))
        self.assertEqual(FFmpegBackend(self.cfg).probe(Path("a.mp4")), (1080, 1920, False))

    @patch('story_archive.backends.subprocess.run')
    def test_probe_reads_rotate_tag(self, mock_run):
        streams = {"streams": [
            {"codec_type": "video", "width": 1920, "height": 1080, "tags": {"rotate": "270"}},
        ]}
        mock_run.return_value = completed(stdout=json.dumps(streams))
        self.assertEqual(FFmpegBackend(self.cfg).probe(Path("a.mp4"))[:2], (1080, 1920))

    @patch('story_archive.backends.subprocess.run')
    def test_rotated_portrait_clip_fills_canvas(self, mock_run):
        streams = {"streams": [
            {"codec_type": "video", "width": 1920, "height": 1080,
             "side_data_list": [{"rotation": -90}]},
            {"codec_type": "audio"},
        ]}
        mock_run.side_effect = [completed(stdout=json.dumps(streams)), completed()]
        FFmpegBackend(self.cfg).render_segment(
            self.dir / "clip.mp4", MediaKind.VIDEO, self.overlay, self.dir / "s.mp4"
        )
        cmd = mock_run.call_args.args[0]
        graph = cmd[cmd.index("-filter_complex") + 1]
        self.assertIn("scale=1080:1920", graph)
        self.assertIn("pad=1080:1920:0:0", graph)

    @patch('story_archive.backends.subprocess.run')
    def test_image_segment(self, mock_run):
        mock_run.return_value = completed()
        out = self.dir / "segment-000.mp4"
        result = FFmpegBackend(self.cfg).render_segment(self.image(), MediaKind.IMAGE, self.overlay, out)
        self.assertEqual(result, out)
        cmd = mock_run.call_args.args[0]
        self.assertIn("-loop", cmd)
        self.assertEqual(cmd[cmd.index("-t") + 1], "6")
        self.assertIn("anullsrc=channel_layout=stereo:sample_rate=44100", cmd)
        self.assertEqual(cmd[-1], str(out))
        frame = Image.open(self.dir / "segment-000-frame.png")
        self.assertEqual(frame.size, (1080, 1920))

    @patch('story_archive.backends.subprocess.run')
    def test_video_segment_without_audio(self, mock_run):
        mock_run.return_value = completed()
        backend = FFmpegBackend(self.cfg)
        out = self.dir / "segment-001.mp4"
        with patch.object(backend, "probe", return_value=(1920, 1080, False)):
            backend.render_segment(self.dir / "clip.mp4", MediaKind.VIDEO, self.overlay, out)
        cmd = mock_run.call_args.args[0]
        graph = cmd[cmd.index("-filter_complex") + 1]
        self.assertIn("scale=1080:608", graph)
        self.assertIn("pad=1080:1920:0:656", graph)
        self.assertEqual(cmd[cmd.index("[v]") + 2], "2:a")
        self.assertIn("-shortest", cmd)
        self.assertTrue((self.dir / "segment-001-overlay.png").exists())

    @patch('story_archive.backends.subprocess.run')
    def test_video_segment_keeps_source_audio(self, mock_run):
        mock_run.return_value = completed()
        backend = FFmpegBackend(self.cfg)
        with patch.object(backend, "probe", return_value=(720, 1280, True)):
            backend.render_segment(self.dir / "clip.mp4", MediaKind.VIDEO, self.overlay, self.dir / "s.mp4")
        cmd = mock_run.call_args.args[0]
        self.assertIn("0:a:0", cmd)
        self.assertNotIn("lavfi", cmd)

    @patch('story_archive.backends.subprocess.run')
    def test_failure_reports_stderr_tail(self, mock_run):
        stderr = "\n".join(f"line {i}" for i in range(10))
        mock_run.return_value = completed(returncode=1, stderr=stderr)
        with self.assertRaises(RuntimeError) as ctx:
            FFmpegBackend(self.cfg).render_segment(
                self.image(), MediaKind.IMAGE, self.overlay, self.dir / "s.mp4"
            )
        self.assertIn("line 9", str(ctx.exception))
        self.assertNotIn("line 4", str(ctx.exception))

    @patch('story_archive.backends.subprocess.run')
    def test_concatenate_stream_copy(self, mock_run):
        mock_run.return_value = completed()
        segments = [self.dir / "segment-000.mp4", self.dir / "it's.mp4"]
        out = FFmpegBackend(self.cfg).concatenate(segments, self.dir / "combined.mp4")
        self.assertEqual(out, self.dir / "combined.mp4")
        cmd = mock_run.call_args.args[0]
        self.assertEqual(cmd[cmd.index("-c") + 1], "copy")
        listing = (self.dir / "combined-concat.txt").read_text(encoding="utf-8")
        self.assertIn("it'\\''s.mp4", listing)
        self.assertEqual(len(listing.splitlines()), 2)

    @patch('story_archive.backends.subprocess.run')
    def test_concatenate_reencodes_after_copy_failure(self, mock_run):
        mock_run.side_effect = [completed(returncode=1, stderr="Non-monotonous DTS"), completed()]
        FFmpegBackend(self.cfg).concatenate([self.dir / "a.mp4", self.dir / "b.mp4"], self.dir / "c.mp4")
        self.assertEqual(mock_run.call_count, 2)
        retry = mock_run.call_args.args[0]
        self.assertIn("-c:v", retry)
        self.assertNotIn("copy", retry)

    def test_concatenation_support(self):
        self.assertTrue(supports_concatenation(FFmpegBackend(self.cfg)))
        self.assertFalse(supports_concatenation(FrameCaptureBackend(self.cfg)))


class TestFrameCaptureBackend(BackendTestCase):

    @patch('story_archive.backends.ImageClip')
    def test_image_segment(self, mock_clip_cls):
        clip = MagicMock()
        clip.audio = None
        mock_clip_cls.return_value.with_duration.return_value = clip
        out = self.dir / "segment-000.webm"
        FrameCaptureBackend(self.cfg).render_segment(self.image(), MediaKind.IMAGE, self.overlay, out)

        frame = mock_clip_cls.call_args.args[0]
        self.assertEqual(frame.shape, (1920, 1080, 3))
        mock_clip_cls.return_value.with_duration.assert_called_once_with(6.0)
        args, kwargs = clip.write_videofile.call_args
        self.assertEqual(args[0], str(out))
        self.assertEqual(kwargs["codec"], "libvpx")
        self.assertFalse(kwargs["audio"])
        clip.close.assert_called_once()

    @patch('story_archive.backends.VideoClip')
    @patch('story_archive.backends.VideoFileClip')
    def test_video_segment_keeps_audio(self, mock_source_cls, mock_video_cls):
        source = mock_source_cls.return_value
        source.duration = 2.5
        source.get_frame.return_value = np.zeros((1280, 720, 3), dtype=np.uint8)
        composed = mock_video_cls.return_value
        with_audio = composed.with_audio.return_value

        FrameCaptureBackend(self.cfg).render_segment(
            self.dir / "clip.mp4", MediaKind.VIDEO, self.overlay, self.dir / "s.webm"
        )

        kwargs = mock_video_cls.call_args.kwargs
        self.assertEqual(kwargs["duration"], 2.5)
        frame = kwargs["frame_function"](0.0)
        self.assertEqual(frame.shape, (1920, 1080, 3))
        composed.with_audio.assert_called_once_with(source.audio)
        with_audio.write_videofile.assert_called_once()
        source.close.assert_called_once()

    @patch('story_archive.backends.VideoFileClip')
    def test_sources_closed_on_failure(self, mock_source_cls):
        source = mock_source_cls.return_value
        source.duration = 1.0
        with patch('story_archive.backends.VideoClip', side_effect=RuntimeError("bad")):
            with self.assertRaises(RuntimeError):
                FrameCaptureBackend(self.cfg).render_segment(
                    self.dir / "clip.mp4", MediaKind.VIDEO, self.overlay, self.dir / "s.webm"
                )
        source.close.assert_called_once()


class TestFrames(BackendTestCase):

    def test_load_image_keeps_alpha(self):
        path = self.dir / "alpha.png"
        Image.new("RGBA", (10, 10), (1, 2, 3, 4)).save(path)
        self.assertEqual(load_image(path).mode, "RGBA")
        self.assertEqual(load_image(self.image()).mode, "RGB")

    def test_first_frame_of_image(self):
        self.assertEqual(read_first_frame(self.image(size=(30, 40)), MediaKind.IMAGE).size, (30, 40))

    @patch('story_archive.backends.VideoFileClip')
    def test_first_frame_of_video(self, mock_clip_cls):
        mock_clip_cls.return_value.get_frame.return_value = np.zeros((8, 6, 3), dtype=np.uint8)
        frame = read_first_frame(Path("clip.mp4"), MediaKind.VIDEO)
        self.assertEqual(frame.size, (6, 8))
        mock_clip_cls.assert_called_once_with("clip.mp4", audio=False)
        mock_clip_cls.return_value.close.assert_called_once()


if __name__ == '__main__':
    unittest.main()
