#!/usr/bin/env python3
"""
Tests for the Logger component.
"""

import unittest
from io import StringIO
from unittest.mock import MagicMock, patch

from story_archive.logger import (
    Logger,
    LogLevel,
    _safe_print,
    debug,
    dry_run,
    error,
    get_logger,
    info,
    set_logger,
    verbose,
    warning,
)


class TestLogger(unittest.TestCase):
    """Test logger functionality."""

    def setUp(self):
        self.original_logger = get_logger()
        self.logger = Logger(LogLevel.NORMAL)
        set_logger(self.logger)

    def tearDown(self):
        set_logger(self.original_logger)

    def test_error_goes_to_stderr(self):
        with patch('sys.stderr', new=StringIO()) as mock_stderr:
            error("Export failed")
            self.assertIn("❌ Error: Export failed", mock_stderr.getvalue())

    def test_error_with_exception(self):
        with patch('sys.stderr', new=StringIO()) as mock_stderr:
            error("Export failed", ValueError("disk full"))
            self.assertIn("❌ Error: Export failed: disk full", mock_stderr.getvalue())

    def test_error_debug_level_prints_traceback(self):
        set_logger(Logger(LogLevel.DEBUG))
        try:
            raise ValueError("boom")
        except ValueError as e:
            with patch('sys.stderr', new=StringIO()) as mock_stderr:
                error("Export failed", e)
                output = mock_stderr.getvalue()
        self.assertIn("Traceback", output)
        self.assertIn("boom", output)

    def test_quiet_suppresses_everything(self):
        set_logger(Logger(LogLevel.QUIET))
        with patch('sys.stdout', new=StringIO()) as out, patch('sys.stderr', new=StringIO()) as err:
            error("e")
            warning("w")
            info("i")
            dry_run("d")
            self.assertEqual(out.getvalue(), "")
            self.assertEqual(err.getvalue(), "")

    def test_warning_format(self):
        with patch('sys.stderr', new=StringIO()) as mock_stderr:
            warning("first segment only")
            self.assertIn("⚠️  Warning: first segment only", mock_stderr.getvalue())

    def test_verbose_and_debug_levels(self):
        with patch('sys.stdout', new=StringIO()) as out:
            verbose("hidden")
            debug("hidden")
            self.assertEqual(out.getvalue(), "")

        set_logger(Logger(LogLevel.VERBOSE))
        with patch('sys.stdout', new=StringIO()) as out:
            verbose("avatar matched")
            debug("hidden")
            self.assertEqual(out.getvalue(), "[verbose] avatar matched\n")

        set_logger(Logger(LogLevel.DEBUG))
        with patch('sys.stdout', new=StringIO()) as out:
            debug("skipped x")
            self.assertIn("[debug] skipped x", out.getvalue())

    def test_info_and_dry_run(self):
        with patch('sys.stdout', new=StringIO()) as out:
            info("hello")
            dry_run("would save")
            self.assertEqual(out.getvalue(), "hello\nDRY RUN: would save\n")

    def test_default_logger(self):
        set_logger(None)
        self.assertEqual(get_logger().level, LogLevel.NORMAL)

    def test_enabled(self):
        logger = Logger(LogLevel.VERBOSE)
        self.assertTrue(logger.enabled(LogLevel.NORMAL))
        self.assertFalse(logger.enabled(LogLevel.DEBUG))


class TestSafePrint(unittest.TestCase):

    def test_ascii_fallback(self):
        stream = MagicMock()
        written = []

        def fake_print(message, file=None, flush=False):
            if any(ord(c) > 127 for c in message):
                raise UnicodeEncodeError("ascii", message, 0, 1, "unsupported")
            written.append(message)

        with patch('builtins.print', side_effect=fake_print):
            _safe_print("💾 Saved a • b", file=stream)
        self.assertEqual(written, ["[SAVED] Saved a - b"])


if __name__ == '__main__':
    unittest.main()
