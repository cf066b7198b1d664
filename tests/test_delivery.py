#!/usr/bin/env python3
"""
Tests for saving finished artifacts.
"""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from story_archive.delivery import FolderSink
from story_archive.errors import DeliveryFailure


class TestFolderSink(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.temp_dir)
        self.artifact = self.temp_dir / "combined.mp4"
        self.artifact.write_bytes(b"video")

    def test_deliver_creates_folder(self):
        out = self.temp_dir / "exports" / "nested"
        dest = FolderSink(out).deliver(self.artifact, "visual_experience_jane_2stories.mp4")
        self.assertEqual(dest, out / "visual_experience_jane_2stories.mp4")
        self.assertEqual(dest.read_bytes(), b"video")

    @patch('story_archive.delivery.shutil.copy2')
    def test_copy_error_becomes_delivery_failure(self, mock_copy):
        mock_copy.side_effect = PermissionError("read-only")
        with self.assertRaises(DeliveryFailure) as ctx:
            FolderSink(self.temp_dir / "exports").deliver(self.artifact, "a.mp4")
        self.assertIn("Could not save a.mp4", str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
