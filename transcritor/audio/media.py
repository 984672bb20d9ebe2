"""
Media probing, normalization and chunking using ffmpeg/ffprobe.

Normalized target: mono, 16kHz, MP3 CBR 64kbps. The speech-to-text API
rejects files above 25MB, so long recordings are cut into fixed-length
chunks, each tagged with its offset on the original timeline.

The orchestrator talks to this module through ``FFmpegToolkit``, which keeps
the binaries and timeouts in one place.
"""

import logging
import math
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..config import ConfigManager
from ..errors import MediaToolError
from ..models import Quality

logger = logging.getLogger(__name__)

# Containers the transcription API accepts without conversion
NATIVE_EXTENSIONS = {"mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm"}
API_MAX_FILE_BYTES = 25 * 1024 * 1024

NORM_CHANNELS = 1
NORM_SAMPLE_RATE = 16000
NORM_BITRATE = "64k"
NORM_FORMAT = "mp3"

DEFAULT_MAX_CHUNK_DURATION = 600


@dataclass
class AudioChunk:
    """A time-bounded slice of the normalized audio."""

    index: int
    path: Path
    start_offset: float


def _run_tool(args: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    """Run an external media tool with captured output. Never uses a shell."""
    try:
        return subprocess.run(list(args), capture_output=True, text=True, timeout=timeout, check=False)
    except FileNotFoundError as e:
        raise MediaToolError(f"{args[0]} not found: {e}")
    except subprocess.TimeoutExpired:
        raise MediaToolError(f"{args[0]} timed out after {timeout}s")


def probe_duration(path: Path, ffprobe: str = "ffprobe", timeout: float = 30) -> float:
    """
    Get media duration in seconds using ffprobe.

    Returns 0.0 when the file cannot be probed; callers treat that as
    "unknown/short" and process the file as a single chunk.
    """
    args = [
        ffprobe,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]

    try:
        result = _run_tool(args, timeout)
    except MediaToolError as e:
        logger.warning(f"Could not probe {path}: {e}")
        return 0.0

    if result.returncode != 0:
        logger.warning(f"ffprobe failed for {path} (rc={result.returncode})")
        return 0.0

    try:
        return float(result.stdout.strip())
    except ValueError:
        logger.warning(f"Unparsable duration for {path}: {result.stdout[:50]!r}")
        return 0.0


def is_natively_accepted(path: Path) -> bool:
    """Check whether the API accepts ``path`` as-is (container and size)."""
    extension = path.suffix.lower().lstrip(".")
    return extension in NATIVE_EXTENSIONS and path.stat().st_size <= API_MAX_FILE_BYTES


def normalize_audio(
    input_path: Path,
    quality: Quality = Quality.STANDARD,
    output_dir: Optional[Path] = None,
    ffmpeg: str = "ffmpeg",
    timeout: float = 600,
) -> Path:
    """
    Convert arbitrary audio/video to mono, 16kHz, MP3 CBR 64kbps.

    Standard-quality files that the API already accepts are returned
    unchanged. Premium files are always normalized so that chunk boundaries
    are cut from a consistent stream.

    Args:
        input_path: Uploaded media file
        quality: Requested quality tier
        output_dir: Where to write the normalized file (default: beside input)
        ffmpeg: ffmpeg binary
        timeout: Seconds before the transcode is aborted

    Returns:
        Path to the normalized file (may be ``input_path`` itself)

    Raises:
        MediaToolError: ffmpeg is missing or failed
    """
    input_path = Path(input_path)
    if quality == Quality.STANDARD and is_natively_accepted(input_path):
        logger.info(f"Using {input_path.name} as-is (native format, within size limit)")
        return input_path

    output_dir = Path(output_dir) if output_dir else input_path.parent
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{input_path.stem}.normalized.{NORM_FORMAT}"

    args = [
        ffmpeg,
        "-y",
        "-i", str(input_path),
        "-vn",
        "-ac", str(NORM_CHANNELS),
        "-ar", str(NORM_SAMPLE_RATE),
        "-b:a", NORM_BITRATE,
        "-codec:a", "libmp3lame",
        str(output_path),
    ]

    result = _run_tool(args, timeout)
    if result.returncode != 0:
        stderr = result.stderr or ""
        raise MediaToolError(f"ffmpeg normalization failed (rc={result.returncode}): {stderr[:300]}")

    if not output_path.exists():
        raise MediaToolError("Normalized file not created")

    logger.info(f"Normalized audio: {output_path}")
    return output_path


def plan_chunk_offsets(duration: float, max_chunk_duration: float = DEFAULT_MAX_CHUNK_DURATION) -> List[float]:
    """
    Start offsets of the chunks a file of ``duration`` seconds is cut into.

    One chunk at 0 when the file fits, otherwise ``ceil(duration / max)``
    chunks at ``0, max, 2*max, ...``.
    """
    if max_chunk_duration <= 0:
        raise ValueError("max_chunk_duration must be positive")

    if duration <= max_chunk_duration:
        return [0.0]

    count = math.ceil(duration / max_chunk_duration)
    return [float(i * max_chunk_duration) for i in range(count)]


def split_into_chunks(
    normalized_path: Path,
    max_chunk_duration: float = DEFAULT_MAX_CHUNK_DURATION,
    quality: Quality = Quality.STANDARD,
    duration: Optional[float] = None,
    output_dir: Optional[Path] = None,
    ffmpeg: str = "ffmpeg",
    ffprobe: str = "ffprobe",
    timeout: float = 600,
) -> List[AudioChunk]:
    """
    Cut a normalized file into chunks of at most ``max_chunk_duration`` seconds.

    Files that fit in one chunk are not copied: the single chunk points at
    ``normalized_path``. Premium chunks are re-encoded to FLAC; standard
    chunks are stream-copied from the already compressed input.

    Args:
        normalized_path: Output of ``normalize_audio``
        max_chunk_duration: Chunk length in seconds
        quality: Requested quality tier
        duration: Known duration; probed when omitted
        output_dir: Directory for chunk files (default: beside input)

    Returns:
        Chunks in offset order

    Raises:
        MediaToolError: ffmpeg is missing or failed on any chunk
    """
    normalized_path = Path(normalized_path)
    if duration is None:
        duration = probe_duration(normalized_path, ffprobe=ffprobe)

    offsets = plan_chunk_offsets(duration, max_chunk_duration)
    if len(offsets) == 1:
        return [AudioChunk(index=0, path=normalized_path, start_offset=0.0)]

    output_dir = Path(output_dir) if output_dir else normalized_path.parent
    output_dir.mkdir(parents=True, exist_ok=True)

    if quality == Quality.PREMIUM:
        codec_args = ["-ac", str(NORM_CHANNELS), "-ar", str(NORM_SAMPLE_RATE), "-codec:a", "flac"]
        extension = ".flac"
    else:
        codec_args = ["-codec", "copy"]
        extension = normalized_path.suffix

    chunks = []
    for index, offset in enumerate(offsets):
        chunk_path = output_dir / f"{normalized_path.stem}.chunk_{index:03d}{extension}"
        args = [
            ffmpeg,
            "-y",
            "-ss", str(offset),
            "-i", str(normalized_path),
            "-t", str(max_chunk_duration),
            "-vn",
            *codec_args,
            str(chunk_path),
        ]

        result = _run_tool(args, timeout)
        if result.returncode != 0:
            stderr = result.stderr or "unknown error"
            raise MediaToolError(f"ffmpeg chunk {index} failed (rc={result.returncode}): {stderr[:200]}")

        if not chunk_path.exists():
            raise MediaToolError(f"Chunk file {index} not created")

        chunks.append(AudioChunk(index=index, path=chunk_path, start_offset=offset))

    logger.info(f"Split {normalized_path.name} into {len(chunks)} chunks of {max_chunk_duration}s")
    return chunks


class FFmpegToolkit:
    """Probe, normalize and split media with the configured ffmpeg binaries."""

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        ffmpeg_timeout: float = 600,
        ffprobe_timeout: float = 30,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.ffmpeg_timeout = ffmpeg_timeout
        self.ffprobe_timeout = ffprobe_timeout

    @classmethod
    def from_config(cls) -> "FFmpegToolkit":
        return cls(
            ffmpeg_binary=ConfigManager.get("FFMPEG_BINARY"),
            ffprobe_binary=ConfigManager.get("FFPROBE_BINARY"),
            ffmpeg_timeout=ConfigManager.get_float("FFMPEG_TIMEOUT"),
            ffprobe_timeout=ConfigManager.get_float("FFPROBE_TIMEOUT"),
        )

    def probe_duration(self, path: Path) -> float:
        return probe_duration(path, ffprobe=self.ffprobe_binary, timeout=self.ffprobe_timeout)

    def normalize(self, input_path: Path, quality: Quality, output_dir: Optional[Path] = None) -> Path:
        return normalize_audio(
            input_path, quality=quality, output_dir=output_dir, ffmpeg=self.ffmpeg_binary, timeout=self.ffmpeg_timeout
        )

    def split_into_chunks(
        self,
        normalized_path: Path,
        max_chunk_duration: float,
        quality: Quality,
        duration: Optional[float] = None,
        output_dir: Optional[Path] = None,
    ) -> List[AudioChunk]:
        return split_into_chunks(
            normalized_path,
            max_chunk_duration=max_chunk_duration,
            quality=quality,
            duration=duration,
            output_dir=output_dir,
            ffmpeg=self.ffmpeg_binary,
            ffprobe=self.ffprobe_binary,
            timeout=self.ffmpeg_timeout,
        )
