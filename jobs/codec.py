"""
ffmpeg/ffprobe wrapper used to probe, convert and reassemble chunks.

Swappable through the JOBS_CODEC setting; anything with the same three
methods and ``extension`` / ``content_type`` attributes works.
"""
import json
import logging
import subprocess
from pathlib import Path

from django.conf import settings
from django.utils.module_loading import import_string

from .errors import ConversionFailed, SourceUnavailable

logger = logging.getLogger(__name__)


def _stderr_text(exc: subprocess.CalledProcessError) -> str:
    err = exc.stderr
    if isinstance(err, bytes):
        err = err.decode("utf-8", errors="ignore")
    return (err or str(exc))[-4000:]


class FFmpegCodec:
    """H.264/AAC conversion of time ranges, stream-copy concat for the merge."""

    def __init__(self):
        self.ffmpeg = settings.JOBS_FFMPEG_BINARY
        self.ffprobe = settings.JOBS_FFPROBE_BINARY
        self.extension = settings.JOBS_OUTPUT_EXTENSION
        self.content_type = settings.JOBS_OUTPUT_CONTENT_TYPE
        self.timeout = settings.JOBS_CODEC_TIMEOUT_SECONDS

    def probe_duration(self, path: Path) -> float:
        """Total duration of a media file in seconds."""
        cmd = [
            self.ffprobe,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            str(path),
        ]
        try:
            result = subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=60)
            duration = float(json.loads(result.stdout)["format"]["duration"])
        except subprocess.CalledProcessError as e:
            raise SourceUnavailable(f"ffprobe failed on {path}: {_stderr_text(e)}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise SourceUnavailable(f"ffprobe could not run on {path}: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise SourceUnavailable(f"No duration reported for {path}") from e
        return duration

    def convert(self, source: Path, start: float, end: float, output: Path) -> Path:
        """Transcode [start, end) of source into output."""
        output.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.ffmpeg,
            "-y",
            "-ss", f"{start:.3f}",
            "-i", str(source),
            "-t", f"{end - start:.3f}",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
            # timestamps restart at zero so the concat demuxer can stitch chunks
            "-avoid_negative_ts", "make_zero",
            str(output),
        ]
        try:
            subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                           timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise ConversionFailed(_stderr_text(e)) from e
        except (OSError, subprocess.SubprocessError) as e:
            # missing binary, unwritable output, or the timeout
            raise ConversionFailed(f"ffmpeg could not run: {e}") from e
        return output

    def concat(self, parts: list[Path], output: Path) -> Path:
        """Join converted chunks, in the given order, without re-encoding."""
        output.parent.mkdir(parents=True, exist_ok=True)
        listing = output.with_suffix(".txt")
        listing.write_text("".join(f"file '{p.resolve()}'\n" for p in parts))
        cmd = [
            self.ffmpeg,
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(listing),
            "-c", "copy",
            str(output),
        ]
        try:
            subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                           timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise ConversionFailed(f"concat failed: {_stderr_text(e)}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise ConversionFailed(f"concat could not run: {e}") from e
        logger.debug("Concatenated %d parts into %s", len(parts), output)
        return output


def get_codec():
    """Instantiate the configured codec (JOBS_CODEC)."""
    return import_string(settings.JOBS_CODEC)()
