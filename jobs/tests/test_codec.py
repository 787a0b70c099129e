"""
Tests for jobs/codec.py (ffmpeg itself is never run)
"""
import subprocess
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase

from jobs.codec import FFmpegCodec
from jobs.errors import ConversionFailed, SourceUnavailable


class FFmpegCodecTest(SimpleTestCase):

    def setUp(self):
        workdir = tempfile.TemporaryDirectory()
        self.addCleanup(workdir.cleanup)
        self.workdir = Path(workdir.name)
        self.codec = FFmpegCodec()

    @patch("jobs.codec.subprocess.run")
    def test_convert_passes_range_and_timeout(self, mock_run):
        out = self.codec.convert(self.workdir / "in.mp4", 30, 45.5, self.workdir / "out.mp4")

        cmd = mock_run.call_args.args[0]
        self.assertEqual(cmd[cmd.index("-ss") + 1], "30.000")
        self.assertEqual(cmd[cmd.index("-t") + 1], "15.500")
        self.assertEqual(mock_run.call_args.kwargs["timeout"], self.codec.timeout)
        self.assertEqual(out, self.workdir / "out.mp4")

    @patch("jobs.codec.subprocess.run")
    def test_convert_failures_all_become_conversion_failed(self, mock_run):
        for error in (
            subprocess.CalledProcessError(1, "ffmpeg", stderr=b"Invalid data found"),
            FileNotFoundError("ffmpeg"),
            subprocess.TimeoutExpired("ffmpeg", 5),
        ):
            mock_run.side_effect = error
            with self.assertRaises(ConversionFailed, msg=repr(error)):
                self.codec.convert(self.workdir / "in.mp4", 0, 30, self.workdir / "out.mp4")

    @patch("jobs.codec.subprocess.run", side_effect=subprocess.CalledProcessError(1, "ffmpeg", stderr=b"Invalid data found"))
    def test_convert_keeps_ffmpeg_stderr(self, _run):
        with self.assertRaises(ConversionFailed) as ctx:
            self.codec.convert(self.workdir / "in.mp4", 0, 30, self.workdir / "out.mp4")
        self.assertIn("Invalid data found", ctx.exception.message)

    @patch("jobs.codec.subprocess.run", side_effect=subprocess.TimeoutExpired("ffmpeg", 5))
    def test_concat_timeout_is_conversion_failed(self, _run):
        with self.assertRaises(ConversionFailed):
            self.codec.concat([self.workdir / "a.mp4", self.workdir / "b.mp4"], self.workdir / "merged.mp4")

    @patch("jobs.codec.subprocess.run")
    def test_concat_lists_parts_in_given_order(self, mock_run):
        parts = [self.workdir / "part_00001.mp4", self.workdir / "part_00000.mp4"]

        self.codec.concat(parts, self.workdir / "merged.mp4")

        listing = (self.workdir / "merged.txt").read_text().splitlines()
        self.assertEqual(listing, [f"file '{p.resolve()}'" for p in parts])

    @patch("jobs.codec.subprocess.run")
    def test_duration_read_from_format_section(self, mock_run):
        mock_run.return_value = MagicMock(stdout='{"format": {"duration": "95.480000"}}')

        self.assertEqual(self.codec.probe_duration(self.workdir / "in.mp4"), 95.48)

    @patch("jobs.codec.subprocess.run", side_effect=FileNotFoundError("ffprobe"))
    def test_probe_without_ffprobe_is_source_unavailable(self, _run):
        with self.assertRaises(SourceUnavailable):
            self.codec.probe_duration(self.workdir / "in.mp4")
